import io
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

import fitz
from fastapi.testclient import TestClient
from PIL import Image

from lessonhelper import ocr as ocr_module
from lessonhelper.ai_gateway import AIFailure, AIResult
from lessonhelper.api_server import create_app
from lessonhelper.books import BookStore
from lessonhelper.config import Settings
from lessonhelper.pdf_text import PAGE_CACHE


def _create_pdf(path: Path, page_texts: list[str]):
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()


class _FakeGateway:
    def __init__(self, result: AIResult | None = None, configured: bool = True):
        self.result = result or AIResult(ok=True, text="Rule: ...\nAnswer: 4", model="fake/model", attempts=1)
        self.configured = configured
        self.calls = []

    async def ask(self, prompt, *, system=None, task_type="general", model_hint=None, max_retries=None):
        self.calls.append({"prompt": prompt, "system": system, "task_type": task_type, "model_hint": model_hint})
        return self.result


class _ApiTestCase(unittest.TestCase):
    ocr_enabled = False

    def setUp(self):
        PAGE_CACHE.clear()
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.settings = Settings(
            openrouter_api_key="test-key",
            books_dir=root / "books",
            logs_dir=root / "logs",
            ocr_enabled=self.ocr_enabled,
        )
        self.settings.books_dir.mkdir(parents=True)
        pages = [f"Page {i} theory text." for i in range(1, 6)]
        pages[2] = "534. foo 535. Compute 2+2. 536. bar"
        _create_pdf(self.settings.books_dir / "algebra.pdf", pages)

        self.gateway = _FakeGateway()
        self.client_cm = TestClient(create_app(self.settings, gateway=self.gateway))
        self.client = self.client_cm.__enter__()

    def tearDown(self):
        self.client_cm.__exit__(None, None, None)
        self._tmp.cleanup()


class TestBooksEndpoints(_ApiTestCase):
    def test_list_books(self):
        response = self.client.get("/api/books")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"books": [{"id": "algebra.pdf", "filename": "algebra.pdf", "title": "algebra"}]},
        )

    def test_upload_book_sanitizes_name(self):
        files = {"book": ("Geometry 5 (new).pdf", b"%PDF-1.4 fake", "application/pdf")}
        response = self.client.post("/api/upload-book", files=files)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "filename": "Geometry_5_new_.pdf"})
        self.assertTrue((self.settings.books_dir / "Geometry_5_new_.pdf").exists())

    def test_upload_is_written_on_worker_thread(self):
        threads = []
        original_save = BookStore.save

        def recording_save(store, name, data):
            threads.append(threading.current_thread().name)
            return original_save(store, name, data)

        with patch.object(BookStore, "save", recording_save):
            files = {"book": ("big.pdf", b"%PDF-1.4 fake", "application/pdf")}
            response = self.client.post("/api/upload-book", files=files)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(threads), 1)
        self.assertTrue(threads[0].startswith("ThreadPoolExecutor"))

    def test_upload_without_file_is_bad_request(self):
        response = self.client.post("/api/upload-book")
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_upload_non_pdf_is_bad_request(self):
        files = {"book": ("notes.txt", b"hello", "text/plain")}
        response = self.client.post("/api/upload-book", files=files)
        self.assertEqual(response.status_code, 400)


class TestStrictEndpoint(_ApiTestCase):
    def test_strict_lookup_returns_fragment_and_answer(self):
        response = self.client.post(
            "/api/task/strict",
            json={"book": "algebra.pdf", "page": 3, "taskNumber": 535, "details": "show steps"},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["mode"], "strict")
        self.assertEqual(payload["pageIndex"], 3)
        self.assertEqual(payload["fragment"], "535. Compute 2+2.")
        self.assertEqual(payload["aiResponse"], "Rule: ...\nAnswer: 4")
        self.assertTrue(payload["ok"])
        self.assertTrue(payload["aiOk"])

        call = self.gateway.calls[0]
        self.assertTrue(call["prompt"].endswith("535. Compute 2+2."))
        self.assertIn("show steps", call["prompt"])
        self.assertEqual(call["task_type"], "math")

    def test_strict_task_missing_on_page_is_404_with_range(self):
        response = self.client.post("/api/task/strict", json={"book": "algebra.pdf", "page": 2, "taskNumber": 535})
        self.assertEqual(response.status_code, 404)
        payload = response.json()
        self.assertEqual(payload["pageIndex"], 2)
        self.assertEqual(payload["numPages"], 5)
        self.assertIn("535", payload["error"])
        self.assertEqual(self.gateway.calls, [])

    def test_strict_page_out_of_range_is_404(self):
        response = self.client.post("/api/task/strict", json={"book": "algebra.pdf", "page": 9, "taskNumber": 535})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["numPages"], 5)

    def test_strict_missing_params_is_400(self):
        response = self.client.post("/api/task/strict", json={"book": "algebra.pdf", "taskNumber": 535})
        self.assertEqual(response.status_code, 400)
        self.assertIn("page", response.json()["error"])

    def test_strict_non_numeric_task_is_400(self):
        response = self.client.post("/api/task/strict", json={"book": "algebra.pdf", "page": 3, "taskNumber": "abc"})
        self.assertEqual(response.status_code, 400)

    def test_strict_unknown_book_is_404(self):
        response = self.client.post("/api/task/strict", json={"book": "missing.pdf", "page": 1, "taskNumber": 1})
        self.assertEqual(response.status_code, 404)

    def test_subject_and_model_hint_are_forwarded(self):
        self.client.post(
            "/api/task/strict",
            json={"book": "algebra.pdf", "page": 3, "taskNumber": 535, "subject": "history", "model": "x/y"},
        )
        call = self.gateway.calls[0]
        self.assertEqual(call["task_type"], "general")
        self.assertEqual(call["model_hint"], "x/y")
        self.assertIn("Subject: history.", call["prompt"])

    def test_ai_failure_keeps_200_and_tags_error(self):
        self.gateway.result = AIResult(
            ok=False,
            text="OpenRouter error: 503 {}",
            kind=AIFailure.UPSTREAM_STATUS,
            model="fake/model",
            attempts=3,
            status_code=503,
        )
        response = self.client.post("/api/task/strict", json={"book": "algebra.pdf", "page": 3, "taskNumber": 535})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["aiOk"])
        self.assertEqual(payload["aiError"], "upstream_status")
        self.assertEqual(payload["aiResponse"], "OpenRouter error: 503 {}")


class TestSmartEndpoint(_ApiTestCase):
    def test_smart_lookup_scans_book(self):
        response = self.client.post("/api/task/smart", json={"book": "algebra.pdf", "taskNumber": 535})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["mode"], "smart")
        self.assertEqual(payload["pageIndex"], 3)
        self.assertEqual(payload["fragment"], "535. Compute 2+2.")

    def test_smart_lookup_not_found(self):
        response = self.client.post("/api/task/smart", json={"book": "algebra.pdf", "taskNumber": 900})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["numPages"], 5)

    def test_question_becomes_chat(self):
        response = self.client.post("/api/task/smart", json={"question": "What is a fraction?"})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["mode"], "chat")
        self.assertEqual(payload["question"], "What is a fraction?")
        self.assertEqual(self.gateway.calls[0]["task_type"], "chat")

    def test_details_alone_become_chat_question(self):
        response = self.client.post("/api/task/smart", json={"details": "Why is 0 even?"})
        self.assertEqual(response.json()["question"], "Why is 0 even?")

    def test_empty_smart_request_is_400(self):
        response = self.client.post("/api/task/smart", json={"question": "   "})
        self.assertEqual(response.status_code, 400)


class TestServiceEndpoints(_ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["ok"])
        self.assertTrue(payload["aiConfigured"])
        self.assertIn("/api/task/smart", payload["endpoints"])

    def test_metrics(self):
        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("latency", response.json())

    def test_image_ocr_stub_when_disabled(self):
        files = {"image": ("task.png", b"\x89PNG fake", "image/png")}
        response = self.client.post("/api/image-ocr", files=files)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["text"], ocr_module.OCR_STUB_TEXT)

    def test_image_ocr_requires_file(self):
        response = self.client.post("/api/image-ocr")
        self.assertEqual(response.status_code, 400)

    def test_clear_ocr_log(self):
        response = self.client.post("/api/image-ocr/clear")
        self.assertEqual(response.json(), {"cleared": True})

    def test_unexpected_error_is_500_json(self):
        with patch("lessonhelper.task_service.load_book", side_effect=RuntimeError("boom")):
            response = self.client.post("/api/task/smart", json={"book": "algebra.pdf", "taskNumber": 535})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "boom"})


class TestFindEndpoint(_ApiTestCase):
    def test_find_on_page_is_strict_and_skips_ai(self):
        response = self.client.post("/api/task/find", json={"book": "algebra.pdf", "page": 3, "taskNumber": 535})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"mode": "strict", "found": True, "pageIndex": 3, "numPages": 5, "fragment": "535. Compute 2+2."},
        )
        self.assertEqual(self.gateway.calls, [])

    def test_find_on_wrong_page_reports_not_found(self):
        response = self.client.post("/api/task/find", json={"book": "algebra.pdf", "page": 2, "taskNumber": 535})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["found"])
        self.assertIsNone(payload["fragment"])

    def test_find_without_page_scans_book(self):
        response = self.client.post("/api/task/find", json={"book": "algebra.pdf", "taskNumber": "535"})
        payload = response.json()
        self.assertEqual(payload["mode"], "smart")
        self.assertTrue(payload["found"])
        self.assertEqual(payload["pageIndex"], 3)
        self.assertEqual(self.gateway.calls, [])

    def test_find_missing_task_in_book(self):
        response = self.client.post("/api/task/find", json={"book": "algebra.pdf", "taskNumber": 900})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {"mode": "smart", "found": False, "pageIndex": None, "numPages": 5, "fragment": None},
        )

    def test_find_requires_book_and_task(self):
        response = self.client.post("/api/task/find", json={"book": "algebra.pdf"})
        self.assertEqual(response.status_code, 400)


class TestOcrRunsOffTheEventLoop(_ApiTestCase):
    ocr_enabled = True

    def test_health_answers_while_recognition_is_running(self):
        started = threading.Event()
        release = threading.Event()
        outcome = {}

        def slow_image_to_string(image, lang=None):
            started.set()
            outcome["released"] = release.wait(timeout=5)
            return "535. Compute 2+2."

        buffer = io.BytesIO()
        Image.new("RGB", (8, 8), "white").save(buffer, format="PNG")
        files = {"image": ("task.png", buffer.getvalue(), "image/png")}

        def post_image():
            outcome["response"] = self.client.post("/api/image-ocr", files=files)

        with patch.object(ocr_module.pytesseract, "image_to_string", slow_image_to_string):
            worker = threading.Thread(target=post_image)
            worker.start()
            self.assertTrue(started.wait(timeout=5))

            health = self.client.get("/health")
            release.set()
            worker.join(timeout=10)

        self.assertEqual(health.status_code, 200)
        self.assertTrue(outcome["released"])
        self.assertEqual(outcome["response"].json()["task"], "535")


if __name__ == "__main__":
    unittest.main()
