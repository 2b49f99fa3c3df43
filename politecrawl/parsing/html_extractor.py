from __future__ import annotations

from typing import NamedTuple

from bs4 import BeautifulSoup


NON_CONTENT_TAGS = ("script", "style", "noscript", "template")


class PageText(NamedTuple):
    title: str
    text: str


def extract_page(html: str) -> PageText:
    """Title and visible text from one parse of the document.

    Text has non-content tags removed and whitespace collapsed. Markup bs4
    cannot parse yields empty strings.
    """
    if not html:
        return PageText("", "")
    try:
        soup = BeautifulSoup(html, "lxml")
    except Exception:
        return PageText("", "")

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    for tag in soup(list(NON_CONTENT_TAGS)):
        tag.decompose()
    text = " ".join(soup.get_text(separator=" ", strip=True).split())
    return PageText(title, text)
