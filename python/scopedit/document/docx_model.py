import asyncio
import re
from contextlib import asynccontextmanager
from copy import deepcopy
from io import BytesIO
from pathlib import Path
from typing import IO, AsyncIterator, List, Optional, Union

import structlog
from docx import Document
from docx.document import Document as DocumentObject
from docx.enum.text import WD_COLOR_INDEX
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor
from docx.text.run import Run

from scopedit.document.base import Span, SpanStyle
from scopedit.errors import InvalidLocatorError
from scopedit.models import FormatSpec, Paragraph, SearchOptions
from scopedit.utils.docx import (
    iter_body_paragraphs,
    new_run_like,
    normalize_docx,
    paragraph_runs,
    paragraph_text,
    run_offsets,
    split_run,
)
from scopedit.utils.numbering import ListLabeler

logger = structlog.get_logger(__name__)


def _split_at(p_element, offset: int):
    """Guarantees a run boundary at ``offset``."""
    for r, start, end in run_offsets(p_element):
        if start < offset < end:
            split_run(r, offset - start)
            return


def _runs_between(p_element, start: int, end: int) -> List:
    """Runs exactly covering [start, end), splitting the boundary runs when needed."""
    if end <= start:
        return []
    _split_at(p_element, end)
    _split_at(p_element, start)
    return [r for r, s, e in run_offsets(p_element) if e > s and s >= start and e <= end]


def _runs_overlapping(p_element, start: int, end: int) -> List:
    return [r for r, s, e in run_offsets(p_element) if e > s and s < end and e > start]


def _insert_run_at(p_element, offset: int, text: str, attach: str = "after"):
    """
    Inserts a new run holding ``text`` at ``offset``. The new run copies the
    formatting of its neighbour: the run ending at ``offset`` when attach is
    "after", the run starting there when attach is "before".
    """
    _split_at(p_element, offset)
    offsets = [(r, s, e) for r, s, e in run_offsets(p_element) if e > s]
    preceding = next((r for r, s, e in reversed(offsets) if e == offset), None)
    following = next((r for r, s, e in offsets if s == offset), None)

    template = preceding if attach == "after" else following
    new_r = new_run_like(template if template is not None else (preceding or following), text)
    if preceding is not None:
        preceding.addnext(new_r)
    elif following is not None:
        following.addprevious(new_r)
    else:
        runs = paragraph_runs(p_element)
        if runs:
            runs[-1].addnext(new_r)
        else:
            p_element.append(new_r)
    return new_r


def _remove_run(r_element):
    parent = r_element.getparent()
    if parent is not None:
        parent.remove(r_element)


def _apply_style(r_element, style: SpanStyle):
    font = Run(r_element, None).font
    font.color.rgb = RGBColor.from_string(style.color) if style.color else None
    font.strike = True if style.strikethrough else None


def _run_style(r_element) -> SpanStyle:
    font = Run(r_element, None).font
    rgb = font.color.rgb
    return SpanStyle(color=str(rgb) if rgb is not None else None, strikethrough=bool(font.strike))


def _highlight(name: str) -> WD_COLOR_INDEX:
    key = name.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return WD_COLOR_INDEX[key]
    except KeyError:
        raise InvalidLocatorError(f"Unknown highlight colour: {name}") from None


class DocxDocumentModel:
    """
    DocumentModel backed by a python-docx ``Document``.

    Paragraphs are the body paragraphs in reading order, including those nested
    in table cells. Edits work on runs: the engine splits runs at span
    boundaries and writes whole runs, so run formatting outside the touched span
    is never altered.
    """

    def __init__(self, doc: DocumentObject):
        self.doc = doc
        normalize_docx(self.doc)
        self._lock = asyncio.Lock()
        self._holder: Optional[asyncio.Task] = None

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxDocumentModel":
        return cls(Document(BytesIO(data)))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "DocxDocumentModel":
        with open(path, "rb") as f:
            return cls(Document(f))

    def save(self, target: Union[str, Path, IO[bytes]]):
        self.doc.save(target)

    def to_bytes(self) -> bytes:
        stream = BytesIO()
        self.doc.save(stream)
        return stream.getvalue()

    def full_text(self) -> str:
        return "\n".join(paragraph_text(p) for p in self._elements())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Exclusive access to the document. Other tasks wait; the holding task may not re-enter."""
        task = asyncio.current_task()
        if self._lock.locked() and self._holder is task:
            raise RuntimeError("Document transactions cannot be nested")
        async with self._lock:
            self._holder = task
            try:
                yield
            finally:
                self._holder = None

    # -- paragraph access -------------------------------------------------

    def _elements(self) -> List:
        return [p._p for p in iter_body_paragraphs(self.doc)]

    def _element(self, index: int, elements: Optional[List] = None):
        elements = elements if elements is not None else self._elements()
        if not 0 <= index < len(elements):
            raise IndexError(f"Paragraph index {index} out of range (0..{len(elements) - 1})")
        return elements[index]

    def _bounds(self, span: Span, index: int, text_len: int):
        lo = span.start_offset if index == span.start_paragraph else 0
        hi = span.end_offset if index == span.end_paragraph else text_len
        return max(0, lo), min(text_len, hi)

    async def get_paragraphs(self) -> List[Paragraph]:
        labeler = ListLabeler.for_document(self.doc)
        result = []
        for i, para in enumerate(iter_body_paragraphs(self.doc)):
            style = para.style.name if para.style is not None else None
            result.append(
                Paragraph(
                    index=i,
                    text=paragraph_text(para._p),
                    list_label=labeler.label_for(para._p),
                    style=style,
                )
            )
        return result

    async def paragraph_range(self, start: int, end: Optional[int] = None) -> Span:
        end = start if end is None else end
        elements = self._elements()
        self._element(start, elements)
        last = self._element(end, elements)
        if end < start:
            raise IndexError(f"Paragraph range {start}..{end} is reversed")
        return Span(start, 0, end, len(paragraph_text(last)))

    async def expand_to(self, first: Span, last: Span) -> Span:
        return Span(first.start_paragraph, first.start_offset, last.end_paragraph, last.end_offset)

    # -- text -------------------------------------------------------------

    async def search_in_range(self, scope: Span, text: str, options: Optional[SearchOptions] = None) -> List[Span]:
        if not text:
            return []
        options = options or SearchOptions()
        pattern = re.escape(text)
        if options.match_whole_word:
            pattern = rf"(?<!\w){pattern}(?!\w)"
        regex = re.compile(pattern, 0 if options.match_case else re.IGNORECASE)

        elements = self._elements()
        hits = []
        for index in scope.paragraph_indexes:
            if index >= len(elements):
                break
            p_text = paragraph_text(elements[index])
            lo, hi = self._bounds(scope, index, len(p_text))
            for match in regex.finditer(p_text, lo, hi):
                hits.append(Span(index, match.start(), index, match.end()))
        return hits

    async def get_span_text(self, span: Span) -> str:
        elements = self._elements()
        parts = []
        for index in span.paragraph_indexes:
            p_text = paragraph_text(self._element(index, elements))
            lo, hi = self._bounds(span, index, len(p_text))
            parts.append(p_text[lo:hi])
        return "\n".join(parts)

    def _clear_span(self, span: Span, elements: List):
        """Removes the text of ``span``, merging the paragraphs it crosses."""
        first = self._element(span.start_paragraph, elements)
        if span.is_single_paragraph:
            for r in _runs_between(first, span.start_offset, span.end_offset):
                _remove_run(r)
            return

        last = self._element(span.end_paragraph, elements)
        for r in _runs_between(first, span.start_offset, len(paragraph_text(first))):
            _remove_run(r)
        for r in _runs_between(last, 0, span.end_offset):
            _remove_run(r)

        for child in list(last):
            if child.tag == qn("w:pPr"):
                continue
            first.append(child)
        for index in range(span.end_paragraph, span.start_paragraph, -1):
            p = elements[index]
            p.getparent().remove(p)

    async def replace_span(self, span: Span, text: str) -> Span:
        elements = self._elements()
        first = self._element(span.start_paragraph, elements)
        hi = span.end_offset if span.is_single_paragraph else len(paragraph_text(first))
        covered = _runs_overlapping(first, span.start_offset, max(span.start_offset + 1, hi))
        template = deepcopy(covered[0]) if covered else None

        self._clear_span(span, elements)
        if text:
            new_r = _insert_run_at(first, span.start_offset, text)
            if template is not None:
                # The replacement keeps the formatting of the text it replaces.
                old_rpr = new_r.find(qn("w:rPr"))
                if old_rpr is not None:
                    new_r.remove(old_rpr)
                if template.rPr is not None:
                    new_r.insert(0, deepcopy(template.rPr))
        return Span(span.start_paragraph, span.start_offset, span.start_paragraph, span.start_offset + len(text))

    async def insert_span_after(self, span: Span, text: str) -> Span:
        p = self._element(span.end_paragraph)
        _insert_run_at(p, span.end_offset, text, attach="after")
        return Span(span.end_paragraph, span.end_offset, span.end_paragraph, span.end_offset + len(text))

    async def insert_span_before(self, span: Span, text: str) -> Span:
        p = self._element(span.start_paragraph)
        _insert_run_at(p, span.start_offset, text, attach="before")
        return Span(
            span.start_paragraph, span.start_offset, span.start_paragraph, span.start_offset + len(text)
        )

    async def delete_span(self, span: Span) -> None:
        self._clear_span(span, self._elements())

    # -- style ------------------------------------------------------------

    def _span_runs(self, span: Span, split: bool) -> List:
        elements = self._elements()
        runs = []
        for index in span.paragraph_indexes:
            p = self._element(index, elements)
            lo, hi = self._bounds(span, index, len(paragraph_text(p)))
            runs.extend(_runs_between(p, lo, hi) if split else _runs_overlapping(p, lo, hi))
        return runs

    async def set_span_style(self, span: Span, style: SpanStyle) -> None:
        for r in self._span_runs(span, split=True):
            _apply_style(r, style)

    async def get_span_style(self, span: Span) -> SpanStyle:
        styles = [_run_style(r) for r in self._span_runs(span, split=False)]
        if not styles:
            return SpanStyle()
        colors = {s.color for s in styles}
        return SpanStyle(
            color=colors.pop() if len(colors) == 1 else None,
            strikethrough=all(s.strikethrough for s in styles),
        )

    async def styled_spans(self, scope: Span, style: SpanStyle) -> List[Span]:
        """Maximal runs of text inside ``scope`` carrying exactly ``style``, one paragraph at a time."""
        wanted = SpanStyle(color=style.color.upper() if style.color else None, strikethrough=style.strikethrough)
        elements = self._elements()
        spans = []
        for index in scope.paragraph_indexes:
            if index >= len(elements):
                break
            p = elements[index]
            lo, hi = self._bounds(scope, index, len(paragraph_text(p)))
            current = None
            for r, s, e in run_offsets(p):
                if e <= s or e <= lo or s >= hi:
                    continue
                if _run_style(r) == wanted:
                    s, e = max(s, lo), min(e, hi)
                    if current is not None and current[1] == s:
                        current = (current[0], e)
                    else:
                        if current is not None:
                            spans.append(Span(index, current[0], index, current[1]))
                        current = (s, e)
                elif current is not None:
                    spans.append(Span(index, current[0], index, current[1]))
                    current = None
            if current is not None:
                spans.append(Span(index, current[0], index, current[1]))
        return spans

    # -- paragraphs -------------------------------------------------------

    async def insert_paragraph(self, index: int, text: str, before: bool = False) -> int:
        """
        Inserts a new paragraph next to paragraph ``index`` and returns its index.
        Paragraph properties (style, list numbering) are copied from the reference.
        """
        ref = self._element(index)
        new_p = deepcopy(ref)
        for child in list(new_p):
            if child.tag != qn("w:pPr"):
                new_p.remove(child)
        runs = paragraph_runs(ref)
        new_r = new_run_like(runs[0] if runs else None, text)
        _apply_style(new_r, SpanStyle())
        new_p.append(new_r)

        if before:
            ref.addprevious(new_p)
            return index
        ref.addnext(new_p)
        return index + 1

    async def delete_paragraph(self, index: int) -> None:
        p = self._element(index)
        parent = p.getparent()
        if parent.tag == qn("w:tc") and len(parent.findall(qn("w:p"))) == 1:
            # A table cell must keep one paragraph.
            for child in list(p):
                if child.tag != qn("w:pPr"):
                    p.remove(child)
            return
        parent.remove(p)

    # -- character formatting ---------------------------------------------

    async def get_span_format(self, span: Span) -> FormatSpec:
        runs = self._span_runs(span, split=False)
        if not runs:
            return FormatSpec()
        font = Run(runs[0], None).font
        color = font.color.rgb
        highlight = font.highlight_color
        return FormatSpec(
            bold=font.bold,
            italic=font.italic,
            underline=None if font.underline is None else bool(font.underline),
            font_size=font.size.pt if font.size is not None else None,
            font_color=str(color) if color is not None else None,
            highlight_color=highlight.name.lower() if highlight is not None else None,
        )

    async def apply_span_format(self, span: Span, fmt: FormatSpec, reset: bool = False) -> None:
        """
        Applies ``fmt`` to every run of ``span``. Fields left at None are untouched,
        unless ``reset`` is set, in which case None removes the property (used to
        restore a captured format).
        """
        highlight = _highlight(fmt.highlight_color) if fmt.highlight_color else None
        for r in self._span_runs(span, split=True):
            font = Run(r, None).font
            if reset or fmt.bold is not None:
                font.bold = fmt.bold
            if reset or fmt.italic is not None:
                font.italic = fmt.italic
            if reset or fmt.underline is not None:
                font.underline = fmt.underline
            if reset or fmt.font_size is not None:
                font.size = Pt(fmt.font_size) if fmt.font_size is not None else None
            if reset or fmt.font_color is not None:
                font.color.rgb = RGBColor.from_string(fmt.font_color.lstrip("#").upper()) if fmt.font_color else None
            if reset or highlight is not None:
                font.highlight_color = highlight

