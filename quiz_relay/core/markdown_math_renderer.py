"""Markdown rendering for question text sent to the browser.

Architecture note:
    Question text is stored as markdown and rendered to HTML on every
    request. Math stays in ``$...$`` delimiters for MathJax on the client,
    so the server never depends on a math engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

from quiz_relay.core.models import QuizQuestion

EMPTY_QUESTION_HTML = "<p><em>No content provided.</em></p>"


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Renders question markdown, keeping math for the client."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = MarkdownIt("commonmark", {"html": self.enable_html}).enable(["table", "strikethrough"])

    def render_fragment(self, markdown_text: str | None) -> str:
        text = (markdown_text or "").strip()
        return self._markdown.render(text) if text else EMPTY_QUESTION_HTML

    def render_inline(self, markdown_text: str | None) -> str:
        """Render a single line (an answer option) without the wrapping paragraph."""
        return self._markdown.renderInline((markdown_text or "").strip())

    def render_question(self, question: QuizQuestion) -> dict[str, object]:
        """Browser view of a question; the expected answer is never included."""
        return {
            "id": question.id,
            "question_html": self.render_fragment(question.question_text),
            "options_html": [self.render_inline(option) for option in question.options],
        }


# One instance serves all requests; rendering does not mutate the parser.
renderer = MarkdownMathRenderer()
