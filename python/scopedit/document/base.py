"""
The Document Model seam.

The engine never touches a document directly: everything goes through an object
satisfying ``DocumentModel``. Offsets inside a ``Span`` are character offsets into
``Paragraph.text``; paragraph indexes are positional and go stale after any
paragraph insertion or deletion.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncContextManager, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from scopedit.models import FormatSpec, Paragraph, SearchOptions


@dataclass(frozen=True)
class Span:
    start_paragraph: int
    start_offset: int
    end_paragraph: int
    end_offset: int

    @property
    def is_single_paragraph(self) -> bool:
        return self.start_paragraph == self.end_paragraph

    @property
    def paragraph_indexes(self) -> range:
        return range(self.start_paragraph, self.end_paragraph + 1)

    def contains_paragraph(self, index: int) -> bool:
        return self.start_paragraph <= index <= self.end_paragraph


@dataclass(frozen=True)
class SpanStyle:
    """Colour (hex RGB, upper case, or None for automatic) and strikethrough flag."""

    color: Optional[str] = None
    strikethrough: bool = False


@runtime_checkable
class DocumentModel(Protocol):
    async def get_paragraphs(self) -> List["Paragraph"]: ...

    async def paragraph_range(self, start: int, end: Optional[int] = None) -> Span: ...

    async def expand_to(self, first: Span, last: Span) -> Span: ...

    async def search_in_range(self, scope: Span, text: str, options: Optional["SearchOptions"] = None) -> List[Span]: ...

    async def get_span_text(self, span: Span) -> str: ...

    async def replace_span(self, span: Span, text: str) -> Span: ...

    async def insert_span_after(self, span: Span, text: str) -> Span: ...

    async def insert_span_before(self, span: Span, text: str) -> Span: ...

    async def delete_span(self, span: Span) -> None: ...

    async def set_span_style(self, span: Span, style: SpanStyle) -> None: ...

    async def get_span_style(self, span: Span) -> SpanStyle: ...

    async def styled_spans(self, scope: Span, style: SpanStyle) -> List[Span]: ...

    async def insert_paragraph(self, index: int, text: str, before: bool = False) -> int: ...

    async def delete_paragraph(self, index: int) -> None: ...

    async def get_span_format(self, span: Span) -> "FormatSpec": ...

    async def apply_span_format(self, span: Span, fmt: "FormatSpec", reset: bool = False) -> None: ...

    def transaction(self) -> AsyncContextManager[None]: ...


@runtime_checkable
class SemanticRanker(Protocol):
    """Optional relevance scorer used only after literal search is exhausted."""

    async def rank(self, query: str, chunks: List[str]) -> List[int]: ...
