"""
Resolves caller supplied locator strings to exact spans inside a scoped range.

Agents rarely quote a document byte for byte, so resolution walks an ordered
cascade of query rewrites and stops at the first one that matches. Numbered
labels ("1.2") are resolved separately because the number is usually a list
label rather than literal text.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from scopedit.config import ScopeditSettings, get_settings
from scopedit.document.base import DocumentModel, SemanticRanker, Span, SpanStyle
from scopedit.errors import TextNotFoundError
from scopedit.models import Paragraph, SearchOptions
from scopedit.utils.numbering import normalize_label

logger = structlog.get_logger(__name__)


def _normalize_whitespace(query: str) -> str:
    return " ".join(query.split())


def _strip_trailing_punctuation(query: str) -> str:
    return re.sub(r"[.:;]+$", "", _normalize_whitespace(query)).strip()


def _append_colon(query: str) -> Optional[str]:
    query = _normalize_whitespace(query)
    if not query or query.endswith((".", ":", ";")):
        return None
    return query + ":"


def _last_words(query: str) -> Optional[str]:
    words = query.split()
    return " ".join(words[-3:]) if len(words) > 3 else None


def _first_words(query: str) -> Optional[str]:
    words = query.split()
    return " ".join(words[:3]) if len(words) > 3 else None


# Ordered query rewrites; the first variant with a hit wins.
CASCADE: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("literal", lambda q: q),
    ("whitespace", _normalize_whitespace),
    ("strip_punctuation", _strip_trailing_punctuation),
    ("append_colon", _append_colon),
    ("last_words", _last_words),
    ("first_words", _first_words),
]

# Literal numbering at the start of a paragraph, for documents typed without
# real list numbering: "1.2 text", "1.2. text", "3) text", "(4) text".
LITERAL_NUMBER_PATTERNS = [
    re.compile(r"^\(?\d+(?:\.\d+)+[.)]?(?:\s|$)"),
    re.compile(r"^\(?\d+[.)](?:\s|$)"),
]


def label_prefix_pattern(label: str) -> "re.Pattern[str]":
    """'1.2' matches '1.2', '1.2 x', '1.2. x', '1.2\\tx' but never '1.2.3 x'."""
    return re.compile(rf"^{re.escape(label)}(?:[.)]?(?:\s|$))")


def is_numbered(paragraph: Paragraph) -> bool:
    if paragraph.list_label:
        return True
    text = paragraph.text.strip()
    return any(p.match(text) for p in LITERAL_NUMBER_PATTERNS)


def _overlaps(a: Span, b: Span) -> bool:
    a_start, a_end = (a.start_paragraph, a.start_offset), (a.end_paragraph, a.end_offset)
    b_start, b_end = (b.start_paragraph, b.start_offset), (b.end_paragraph, b.end_offset)
    return a_start < b_end and b_start < a_end


def _collapse(text: str) -> Tuple[str, List[int]]:
    """Lower-cased text with whitespace runs collapsed, plus a map back to source offsets."""
    chars: List[str] = []
    index: List[int] = []
    previous_space = False
    for i, c in enumerate(text):
        if c.isspace():
            if previous_space:
                continue
            chars.append(" ")
            previous_space = True
        else:
            chars.append(c.lower())
            previous_space = False
        index.append(i)
    return "".join(chars), index


@dataclass
class _Chunk:
    text: str
    first: int
    last: int


class SearchResolver:
    def __init__(
        self,
        document: DocumentModel,
        ranker: Optional[SemanticRanker] = None,
        settings: Optional[ScopeditSettings] = None,
    ):
        self.document = document
        self.ranker = ranker
        self.settings = settings or get_settings()
        self.removed_style = SpanStyle(color=self.settings.removed_color, strikethrough=True)

    async def resolve(self, scope: Span, query: str, options: Optional[SearchOptions] = None) -> Span:
        _, spans = await self.resolve_all(scope, query, options)
        return spans[0]

    async def resolve_all(
        self, scope: Span, query: str, options: Optional[SearchOptions] = None
    ) -> Tuple[str, List[Span]]:
        """
        Every match of the first cascade step that succeeds, with the variant that
        matched. Text struck through by a pending change is not searchable.
        """
        struck = await self.document.styled_spans(scope, self.removed_style)

        def live(spans: List[Span]) -> List[Span]:
            return [s for s in spans if not any(_overlaps(s, dead) for dead in struck)]

        attempted: List[str] = []
        for step, rewrite in CASCADE:
            variant = rewrite(query or "")
            if not variant or variant in attempted:
                continue
            attempted.append(variant)
            spans = live(await self.document.search_in_range(scope, variant, options))
            if spans:
                logger.debug("Search resolved", step=step, variant=variant, matches=len(spans))
                return variant, spans

        spans = live(await self._paragraph_scan(scope, query or ""))
        if spans:
            logger.debug("Search resolved by paragraph scan", query=query, matches=len(spans))
            return _normalize_whitespace(query), spans
        attempted.append(f"paragraph scan: {_normalize_whitespace(query or '')}")

        raise TextNotFoundError(
            query,
            attempted=attempted,
            preview=await self.preview(scope),
            candidates=await self.semantic_candidates(scope, query),
        )

    async def _paragraph_scan(self, scope: Span, query: str) -> List[Span]:
        needle = _normalize_whitespace(query).lower()
        if not needle:
            return []
        window = self.settings.window_chars
        paragraphs = await self.document.get_paragraphs()
        hits = []
        for p in paragraphs:
            if not scope.contains_paragraph(p.index):
                continue
            lo = scope.start_offset if p.index == scope.start_paragraph else 0
            hi = scope.end_offset if p.index == scope.end_paragraph else len(p.text)
            collapsed, index = _collapse(p.text)
            pos = collapsed.find(needle)
            while pos != -1:
                start, end = index[pos], index[pos + len(needle) - 1] + 1
                if start >= lo and end <= hi:
                    hits.append(await self._narrow(p.index, p.text, start, end, window))
                pos = collapsed.find(needle, pos + 1)
        return hits

    async def _narrow(self, index: int, text: str, start: int, end: int, window: int) -> Span:
        # Re-search the exact document text inside a small window around the raw hit.
        around = Span(index, max(0, start - window), index, min(len(text), end + window))
        found = await self.document.search_in_range(around, text[start:end], SearchOptions(match_case=True))
        exact = [s for s in found if s.start_offset == start]
        return exact[0] if exact else Span(index, start, index, end)

    async def preview(self, scope: Span) -> str:
        text = await self.document.get_span_text(scope)
        limit = self.settings.preview_chars
        return text if len(text) <= limit else text[:limit] + "..."

    # -- numbered labels --------------------------------------------------

    async def _scoped_paragraphs(self, scope: Span) -> List[Paragraph]:
        return [p for p in await self.document.get_paragraphs() if scope.contains_paragraph(p.index)]

    def _find_label(self, paragraphs: Sequence[Paragraph], label: str) -> Optional[int]:
        wanted = normalize_label(label)
        for pos, p in enumerate(paragraphs):
            if p.list_label and normalize_label(p.list_label) == wanted:
                return pos
        pattern = label_prefix_pattern(wanted)
        for pos, p in enumerate(paragraphs):
            if pattern.match(p.text.strip()):
                return pos
        return None

    def _label_not_found(self, label: str, preview: str) -> TextNotFoundError:
        wanted = normalize_label(label)
        attempted = [f"list label {wanted}", f"{wanted} ", f"{wanted}.", f"{wanted}\t", wanted]
        return TextNotFoundError(label, attempted=attempted, preview=preview)

    async def resolve_label(self, scope: Span, label: str) -> Span:
        """The whole paragraph carrying ``label``, never just the number."""
        paragraphs = await self._scoped_paragraphs(scope)
        pos = self._find_label(paragraphs, label)
        if pos is None:
            raise self._label_not_found(label, await self.preview(scope))
        return await self.document.paragraph_range(paragraphs[pos].index)

    async def resolve_label_group(self, scope: Span, label: str) -> Tuple[int, int]:
        """
        Paragraph range of a numbered item: the labelled paragraph plus the
        unnumbered paragraphs that continue it, up to the next numbered one.
        """
        paragraphs = await self._scoped_paragraphs(scope)
        pos = self._find_label(paragraphs, label)
        if pos is None:
            raise self._label_not_found(label, await self.preview(scope))

        last = pos
        for following in range(pos + 1, len(paragraphs)):
            if is_numbered(paragraphs[following]):
                break
            last = following
        while last > pos and not paragraphs[last].text.strip():
            last -= 1
        return paragraphs[pos].index, paragraphs[last].index

    # -- reads ------------------------------------------------------------

    async def _scope_layout(self, scope: Span) -> Tuple[str, Dict[int, int]]:
        """Scoped text (paragraphs joined by newline) and each paragraph's offset in it."""
        parts = []
        bases: Dict[int, int] = {}
        cursor = 0
        for p in await self._scoped_paragraphs(scope):
            lo = scope.start_offset if p.index == scope.start_paragraph else 0
            hi = scope.end_offset if p.index == scope.end_paragraph else len(p.text)
            bases[p.index] = cursor - lo
            piece = p.text[lo:hi]
            parts.append(piece)
            cursor += len(piece) + 1
        return "\n".join(parts), bases

    async def snippets(
        self,
        scope: Span,
        query: str,
        context_chars: Optional[int] = None,
        max_matches: Optional[int] = None,
        options: Optional[SearchOptions] = None,
    ) -> Tuple[str, List[dict]]:
        radius = self.settings.context_chars if context_chars is None else context_chars
        variant, spans = await self.resolve_all(scope, query, options)
        if max_matches is not None:
            spans = spans[:max_matches]

        text, bases = await self._scope_layout(scope)
        results = []
        for span in spans:
            match_start = bases[span.start_paragraph] + span.start_offset
            match_end = bases[span.end_paragraph] + span.end_offset
            snippet_start = max(0, match_start - radius)
            snippet_end = min(len(text), match_end + radius)
            results.append(
                {
                    "match_text": text[match_start:match_end],
                    "snippet": text[snippet_start:snippet_end],
                    "match_start": match_start,
                    "match_end": match_end,
                    "snippet_start": snippet_start,
                    "snippet_end": snippet_end,
                }
            )
        return variant, results

    # -- semantic fallback ------------------------------------------------

    def _chunks(self, paragraphs: Sequence[Paragraph]) -> List[_Chunk]:
        if not any(is_numbered(p) for p in paragraphs):
            return [_Chunk(p.text, p.index, p.index) for p in paragraphs if p.text.strip()]

        chunks: List[_Chunk] = []
        for p in paragraphs:
            if is_numbered(p) or not chunks:
                text = f"{p.list_label} {p.text}" if p.list_label else p.text
                chunks.append(_Chunk(text, p.index, p.index))
            elif p.text.strip():
                chunks[-1].text += "\n" + p.text
                chunks[-1].last = p.index
        return [c for c in chunks if c.text.strip()]

    async def semantic_candidates(
        self, scope: Span, query: str, context_chars: Optional[int] = None
    ) -> List[dict]:
        """Top ranked chunks of the scope as candidate snippets. Empty without a ranker."""
        if self.ranker is None:
            return []
        paragraphs = await self._scoped_paragraphs(scope)
        chunks = self._chunks(paragraphs)
        if not chunks:
            return []

        try:
            ranked = await self.ranker.rank(query, [c.text for c in chunks])
        except Exception:
            logger.warning("Semantic ranker failed", query=query, exc_info=True)
            return []

        picked: List[int] = []
        for i in ranked or []:
            if isinstance(i, int) and 0 <= i < len(chunks) and i not in picked:
                picked.append(i)
            if len(picked) >= self.settings.semantic_top_k:
                break

        radius = self.settings.context_chars if context_chars is None else context_chars
        text, bases = await self._scope_layout(scope)
        candidates = []
        for i in picked:
            chunk = chunks[i]
            start = max(0, bases[chunk.first])
            end = start + len(chunk.text)
            candidates.append(
                {
                    "rank": len(candidates) + 1,
                    "paragraph_start": chunk.first,
                    "paragraph_end": chunk.last,
                    "text": chunk.text,
                    "snippet": text[max(0, start - radius) : min(len(text), end + radius)],
                }
            )
        logger.info("Semantic candidates", query=query, count=len(candidates))
        return candidates
