"""
Locates a named article (``ARTICLE A-1``) inside the flat paragraph list.

An article owns every paragraph from its header up to, but excluding, the next
article header of any name. Header recognition is table driven so new spellings
can be added without touching the scan.
"""

import re
from typing import List, Optional, Sequence

import structlog

from scopedit.document.base import DocumentModel
from scopedit.models import ArticleBoundary, Paragraph

logger = structlog.get_logger(__name__)

# Header spellings for a given normalised name. "{name}" is substituted before
# matching; a header either equals the first entry or starts with one of the rest.
HEADER_FORMATS: List[str] = [
    "ARTICLE {name}",
    "ARTICLE {name} ",
    "ARTICLE {name}–",
    "ARTICLE {name}-",
    "ARTICLE {name}:",
]

NEXT_ARTICLE_PATTERN = re.compile(r"^ARTICLE\s+[A-Z]-\d+", re.IGNORECASE)

# Patterns pulling an article name out of an instruction, tried in order.
ARTICLE_NAME_PATTERNS = [
    re.compile(r"\bARTICLE\s+([A-Z]-\d+)", re.IGNORECASE),
    re.compile(r"^\s*([A-Z]-\d+)\b", re.IGNORECASE),
]


def normalize_article_name(name: str) -> str:
    """'article a-1' -> 'A-1'."""
    name = name.strip()
    name = re.sub(r"^ARTICLE\s*", "", name, flags=re.IGNORECASE)
    return name.strip().upper()


def parse_article_name(instruction: str) -> Optional[str]:
    for pattern in ARTICLE_NAME_PATTERNS:
        match = pattern.search(instruction)
        if match:
            return match.group(1).upper()
    return None


def is_article_header(text: str, name: str) -> bool:
    header = text.strip().upper()
    exact, *prefixes = [fmt.format(name=name) for fmt in HEADER_FORMATS]
    return header == exact or any(header.startswith(prefix) for prefix in prefixes)


def find_article(paragraphs: Sequence[Paragraph], name: str) -> Optional[ArticleBoundary]:
    """
    Pure scan over ``paragraphs``. Returns None when no header matches; a
    missing article is an ordinary outcome for callers.
    """
    if not paragraphs:
        return None
    normalized = normalize_article_name(name)
    if not normalized:
        return None

    start = next((i for i, p in enumerate(paragraphs) if is_article_header(p.text, normalized)), None)
    if start is None:
        return None

    end = len(paragraphs) - 1
    for i in range(start + 1, len(paragraphs)):
        if NEXT_ARTICLE_PATTERN.match(paragraphs[i].text.strip()):
            end = i - 1
            break

    content = "\n".join(p.text for p in paragraphs[start : end + 1])
    return ArticleBoundary(
        name=normalized,
        start_paragraph_index=paragraphs[start].index,
        end_paragraph_index=paragraphs[end].index,
        content=content,
    )


class ArticleLocator:
    def __init__(self, document: DocumentModel):
        self.document = document

    async def locate(self, name: str) -> Optional[ArticleBoundary]:
        paragraphs = await self.document.get_paragraphs()
        boundary = find_article(paragraphs, name)
        if boundary is None:
            logger.info("Article not found", article=name, paragraphs=len(paragraphs))
        else:
            logger.debug(
                "Article located",
                article=boundary.name,
                start=boundary.start_paragraph_index,
                end=boundary.end_paragraph_index,
            )
        return boundary
