"""
Message body cleaning with BeautifulSoup.

Renders an HTML mail body as readable plain text for the generative model:
scripts, styles and comments removed, table cells and block elements turned
into delimiters, and the result bounded to a character budget.
"""

import re

from bs4 import BeautifulSoup, Comment

TRUNCATION_MARKER = "... [truncated]"

_BLOCK_TAGS = ["p", "div", "tr", "li", "h1", "h2", "h3", "h4", "table"]
_CELL_TAGS = ["td", "th"]

_HORIZONTAL_WS = re.compile(r"[ \t\r\f\v\xa0]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    """Convert an HTML body to delimited plain text."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.find_all(["script", "style", "head", "noscript"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for cell in soup.find_all(_CELL_TAGS):
        cell.append(" | ")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n\n" if block.name == "p" else "\n")

    text = soup.get_text(separator=" ")
    return _collapse_whitespace(text)


def _collapse_whitespace(text: str) -> str:
    lines = [_HORIZONTAL_WS.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    return _BLANK_LINES.sub("\n\n", text).strip()


def clean_email_content(
    body_html: str | None,
    body_text: str | None,
    max_chars: int = 4000,
) -> str:
    """
    Produce the bounded plain-text rendition of a message body.

    The HTML rendition is used when it carries more text than the plain-text
    body.

    Args:
        body_html: HTML body, if any
        body_text: Plain-text body, if any
        max_chars: Character budget; longer content is cut and marked

    Returns:
        Cleaned content, at most max_chars plus the truncation marker
    """
    content = _collapse_whitespace(body_text or "")

    if body_html:
        rendered = html_to_text(body_html)
        if len(rendered) > len(content):
            content = rendered

    if len(content) > max_chars:
        content = content[:max_chars] + TRUNCATION_MARKER

    return content
