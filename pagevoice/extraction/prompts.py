"""Prompt template library for page OCR and title detection.

Responsibilities:
- Centralize prompt construction for the vision OCR and title steps.
- Keep prompts deterministic so repeated runs send identical requests.
"""

from __future__ import annotations

UNKNOWN_TITLE_ANSWER = "Unknown Book"


class PromptLibrary:
    """Build prompt strings for supported extraction tasks."""

    def ocr_system_prompt(self) -> str:
        """Return the system prompt asking for JSON page text."""

        return (
            "You transcribe photographed book pages. Extract all text on the page, in "
            "reading order, keeping paragraph breaks. A photo may show a double-page "
            "spread: read the left page before the right page. Include headings and "
            "chapter titles; skip nothing that is legible, and give your best reading of "
            "partly obscured text.\n"
            "Answer with one JSON object and nothing else:\n"
            '{"text": "<page text>", "pageCount": <1 or 2>, '
            '"confidence": "<high|medium|low>"}'
        )

    def ocr_user_prompt(self) -> str:
        """Return the user prompt that accompanies the page image."""

        return "Extract the text from this book page."

    def title_system_prompt(self) -> str:
        """Return the system prompt for book title detection."""

        return (
            "You identify book titles from opening text. Answer with the title only, "
            f"without quotes or commentary. If the title cannot be told, answer "
            f"{UNKNOWN_TITLE_ANSWER}."
        )

    def title_prompt(self, opening_text: str) -> str:
        """Return the title detection prompt for the first pages of a book."""

        return f"What is the title of the book this text comes from?\n\n{opening_text}"
