import unittest

from lessonhelper.fragments import TaskFragment, extract_task_fragment, find_task_in_book
from lessonhelper.pdf_text import Page


class TestExtractTaskFragment(unittest.TestCase):
    def test_fragment_ends_before_next_task(self):
        text = "Exercises 534. foo 535. Compute 2+2. 536. bar baz"
        self.assertEqual(extract_task_fragment(text, 535), "535. Compute 2+2.")

    def test_last_task_on_page_runs_to_end(self):
        text = "535. First task. 536. Find the perimeter of a square with side 4 cm."
        self.assertEqual(
            extract_task_fragment(text, 536),
            "536. Find the perimeter of a square with side 4 cm.",
        )

    def test_missing_marker_returns_none(self):
        self.assertIsNone(extract_task_fragment("534. one 536. three", 535))
        self.assertIsNone(extract_task_fragment("", 1))

    def test_parenthesis_separator_is_a_marker(self):
        text = "12) Solve x + 3 = 5. 13) Solve y - 1 = 0."
        self.assertEqual(extract_task_fragment(text, 12), "12. Solve x + 3 = 5.")

    def test_prefix_sharing_numbers_do_not_match(self):
        text = "350. Big task. 1535. Other task. 35. The right one. 36. Next."
        self.assertEqual(extract_task_fragment(text, 35), "35. The right one.")
        self.assertEqual(extract_task_fragment(text, 535), None)

    def test_next_boundary_is_anchored_too(self):
        # "3600." must not cut task 35 short; only a whole "36." ends it.
        text = "35. Write 3600. in words. 36. Next."
        self.assertEqual(extract_task_fragment(text, 35), "35. Write 3600. in words.")

    def test_decimal_number_is_not_a_marker(self):
        text = "7. A pen costs 12.5 hryvnias. 12. Real task twelve."
        self.assertEqual(extract_task_fragment(text, 12), "12. Real task twelve.")

    def test_sub_lettered_task_stays_inside_parent(self):
        text = "535. Main task. 535а. Extra part. 536. Next task."
        self.assertEqual(extract_task_fragment(text, 535), "535. Main task. 535а. Extra part.")

    def test_marker_without_body_is_not_found(self):
        self.assertIsNone(extract_task_fragment("Some text 535.", 535))

    def test_fragment_text_spanning_newlines(self):
        text = "40. First line\nsecond line\n41. other"
        self.assertEqual(extract_task_fragment(text, 40), "40. First line\nsecond line")


class TestFindTaskInBook(unittest.TestCase):
    def test_returns_lowest_matching_page(self):
        pages = [
            Page(1, "Intro text."),
            Page(2, "100. First occurrence. 101. Next."),
            Page(3, "100. Second occurrence. 101. Next."),
        ]
        found = find_task_in_book(pages, 100)
        self.assertEqual(found, TaskFragment(page_index=2, text="100. First occurrence."))

    def test_scan_order_ignores_input_order(self):
        pages = [Page(5, "7. late"), Page(2, "7. early")]
        self.assertEqual(find_task_in_book(pages, 7).page_index, 2)

    def test_not_found_after_all_pages(self):
        pages = [Page(i, f"Page {i} without tasks") for i in range(1, 6)]
        self.assertIsNone(find_task_in_book(pages, 535))

    def test_page_with_empty_marker_is_skipped(self):
        pages = [Page(1, "Chapter ends with 9."), Page(2, "9. Actual task text.")]
        found = find_task_in_book(pages, 9)
        self.assertEqual(found.page_index, 2)
        self.assertEqual(found.text, "9. Actual task text.")

    def test_only_page_47_of_200_matches(self):
        pages = [Page(i, f"Page {i}. Tasks 1. a 2. b") for i in range(1, 201)]
        pages[46] = Page(47, "534. foo 535. Compute 2+2. 536. bar")
        found = find_task_in_book(pages, 535)
        self.assertEqual(found.page_index, 47)
        self.assertEqual(found.text, "535. Compute 2+2.")


if __name__ == "__main__":
    unittest.main()
