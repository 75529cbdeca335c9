"""Prompt templates for task explanations and free-form questions."""
from __future__ import annotations

MODE_STRICT = "strict"
MODE_SMART = "smart"

TASK_TYPE_MATH = "math"
TASK_TYPE_CODE = "code"
TASK_TYPE_DEEP = "deep"
TASK_TYPE_GENERAL = "general"
TASK_TYPE_CHAT = "chat"

_MATH_SUBJECTS = {
    "math", "maths", "mathematics", "algebra", "geometry", "arithmetic", "physics",
    "математика", "алгебра", "геометрія", "фізика",
}
_CODE_SUBJECTS = {"code", "coding", "programming", "informatics", "computer science", "інформатика"}

STRICT_HINT = (
    "Work only with the text given below. Do not invent new conditions or data "
    "and do not change any numbers."
)
SMART_HINT = (
    "You may add extra explanations, examples and tips, "
    "but do not change the numbers or the conditions of the task."
)

TASK_STEPS = (
    "1) First, state briefly (1-3 sentences) the rule, property or formula the task is based on. "
    "Start that part with 'Rule:'.\n"
    "2) Then write the solution step by step. Start that part with 'Solution:'.\n"
    "3) Finish with a short final answer in the form 'Answer: ...'."
)


def classify_subject(subject: str | None) -> str:
    """Maps a free-text subject hint to a gateway task type."""
    key = " ".join(str(subject or "").strip().casefold().split())
    if not key:
        return TASK_TYPE_GENERAL
    if key in _MATH_SUBJECTS:
        return TASK_TYPE_MATH
    if key in _CODE_SUBJECTS:
        return TASK_TYPE_CODE
    return TASK_TYPE_GENERAL


def build_system_prompt(grade_level: str, language: str) -> str:
    return (
        f"You are a friendly tutor for a {grade_level} student. "
        f"Explain things very simply and always answer in {language}."
    )


def _clean(text: str | None) -> str:
    return str(text or "").strip()


def build_task_prompt(
    fragment: str,
    details: str | None = None,
    mode: str = MODE_SMART,
    subject: str | None = None,
) -> str:
    """
    Renders the rule -> solution -> answer template around a task fragment.

    The student's clarification is a separate sentence and the fragment always
    comes last, so the model can tell instructions from problem text.
    """
    parts = [STRICT_HINT if mode == MODE_STRICT else SMART_HINT, TASK_STEPS]

    if mode == MODE_STRICT:
        parts.append("Mode: strict (the page and the task number are known).")
    else:
        parts.append("Mode: smart search through the textbook.")

    subject_text = _clean(subject)
    if subject_text:
        parts.append(f"Subject: {subject_text}.")

    extra = _clean(details)
    if extra:
        parts.append(f'The student added this clarification: "{extra}". Pay special attention to it.')

    parts.append("Format the reply as Markdown.")
    parts.append(f"Task text from the textbook:\n{_clean(fragment)}")
    return "\n\n".join(parts)


def build_chat_prompt(question: str, details: str | None = None) -> str:
    """Renders the simple explain-with-an-example template for a free-form question."""
    parts = [
        "Explain the answer to the student's question at an elementary school level.",
        "Structure of the reply: a short explanation, then a simple example if it helps.",
    ]
    extra = _clean(details)
    if extra and extra != _clean(question):
        parts.append(f'The student added this clarification: "{extra}".')
    parts.append(f"Student question:\n{_clean(question)}")
    return "\n\n".join(parts)
