"""
Editing sessions.

An ``EditSession`` binds the engine to one document: it owns the change ledger
and the diff renderer. Each instruction opens a ``ScopedEditor`` bound to one
article and a fresh EditGuard; the editor's operations are the tools an agent
calls. They always return a ToolResult and never raise for expected failures.
"""

import functools
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from scopedit.article import ArticleLocator, normalize_article_name, parse_article_name
from scopedit.config import ScopeditSettings, get_settings
from scopedit.document.base import DocumentModel, SemanticRanker, Span
from scopedit.errors import (
    ArticleNotFoundError,
    GuardViolation,
    InvalidLocatorError,
    NotFoundError,
    ScopeditError,
    TextNotFoundError,
)
from scopedit.guard import WILDCARDS, EditGuard, is_label_locator
from scopedit.instructions import InstructionContextExtractor
from scopedit.markup import change_to_markup
from scopedit.models import (
    ArticleBoundary,
    ArticleScope,
    DeleteChange,
    EditChange,
    FormatChange,
    FormatSpec,
    InsertChange,
    InsertLocation,
    ParagraphScope,
    SearchOptions,
    ToolResult,
)
from scopedit.redline.ledger import ChangeLedger
from scopedit.redline.proposal import DiffProposal
from scopedit.search import SearchResolver

logger = structlog.get_logger(__name__)

# An "after" anchor followed by fewer characters than this ends its paragraph.
PARAGRAPH_TAIL_CHARS = 5


def tool_operation(action: str):
    """Converts engine errors raised by an editor operation into failed ToolResults."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs) -> ToolResult:
            try:
                return await fn(self, *args, **kwargs)
            except TextNotFoundError as e:
                logger.info("Locator not resolved", action=action, query=e.query, attempted=e.attempted)
                data = {"candidates": e.candidates} if e.candidates else None
                return ToolResult.fail(str(e), attempted=e.attempted, preview=e.preview, data=data)
            except NotFoundError as e:
                return ToolResult.fail(str(e), attempted=e.attempted, preview=e.preview)
            except GuardViolation as e:
                return ToolResult.fail(str(e), data={"hint": e.hint})
            except ScopeditError as e:
                logger.info("Operation failed", action=action, error=str(e))
                return ToolResult.fail(str(e))
            except Exception as e:
                logger.exception("Unexpected error", action=action)
                return ToolResult.fail(f"Unexpected error during {action}: {e}")

        return wrapper

    return decorator


class EditSession:
    def __init__(
        self,
        document: DocumentModel,
        ranker: Optional[SemanticRanker] = None,
        settings: Optional[ScopeditSettings] = None,
    ):
        self.document = document
        self.settings = settings or get_settings()
        self.proposal = DiffProposal(document, self.settings)
        self.ledger = ChangeLedger(document, self.proposal)
        self.resolver = SearchResolver(document, ranker=ranker, settings=self.settings)
        self.locator = ArticleLocator(document)
        self.extractor = InstructionContextExtractor()

    async def begin_instruction(self, instruction: str, article: Optional[str] = None) -> "ScopedEditor":
        """
        Opens the working context of one instruction: the article it targets
        and an EditGuard allowing only the terms the instruction mentions.

        Unlike the editor tools this raises ArticleNotFoundError or
        InvalidLocatorError; the MCP server turns them into a failed ToolResult.
        """
        name = article or parse_article_name(instruction)
        if not name:
            raise InvalidLocatorError("No article given and none named in the instruction (expected e.g. 'ARTICLE A-1')")

        async with self.document.transaction():
            boundary = await self.locator.locate(name)
        if boundary is None:
            raise ArticleNotFoundError(normalize_article_name(name))

        guard = EditGuard(self.extractor.extract_tokens(instruction))
        logger.info(
            "Instruction started",
            article=boundary.name,
            start=boundary.start_paragraph_index,
            end=boundary.end_paragraph_index,
            allowed_tokens=len(guard.allowed_tokens),
        )
        return ScopedEditor(self, instruction, boundary, guard)

    async def accept(self, change_id: str) -> ToolResult:
        return await self.ledger.accept(change_id)

    async def reject(self, change_id: str) -> ToolResult:
        return await self.ledger.reject(change_id)

    async def accept_all(self) -> ToolResult:
        return await self.ledger.accept_all()

    async def reject_all(self) -> ToolResult:
        return await self.ledger.reject_all()

    def pending(self) -> List:
        return self.ledger.pending()


class ScopedEditor:
    def __init__(self, session: EditSession, instruction: str, boundary: ArticleBoundary, guard: EditGuard):
        self.session = session
        self.instruction = instruction
        self.boundary = boundary
        self.guard = guard

    @property
    def document(self) -> DocumentModel:
        return self.session.document

    @property
    def resolver(self) -> SearchResolver:
        return self.session.resolver

    def article_preview(self) -> str:
        limit = self.session.settings.article_preview_chars
        content = self.boundary.content
        return content if len(content) <= limit else content[:limit] + "..."

    async def _scope(self) -> Span:
        return await self.document.paragraph_range(
            self.boundary.start_paragraph_index, self.boundary.end_paragraph_index
        )

    def _article_scope(self) -> ArticleScope:
        return ArticleScope(
            article_start=self.boundary.start_paragraph_index,
            article_end=self.boundary.end_paragraph_index,
        )

    def _grow(self, paragraphs: int = 1):
        self.boundary.end_paragraph_index += paragraphs

    async def _pieces(self, span: Span) -> List[str]:
        if span.is_single_paragraph:
            return [await self.document.get_span_text(span)]
        pieces = []
        for index in span.paragraph_indexes:
            whole = await self.document.paragraph_range(index)
            lo = span.start_offset if index == span.start_paragraph else 0
            hi = span.end_offset if index == span.end_paragraph else whole.end_offset
            pieces.append(await self.document.get_span_text(Span(index, lo, index, hi)))
        return pieces

    async def _target(self, locator: str, options: SearchOptions):
        """Span and change scope for an edit/delete/format locator."""
        scope = await self._scope()
        if is_label_locator(locator):
            start, end = await self.resolver.resolve_label_group(scope, locator.strip())
            span = await self.document.paragraph_range(start, end)
            return span, ParagraphScope(target_paragraph=start, target_end_paragraph=end)
        span = await self.resolver.resolve(scope, locator, options)
        return span, self._article_scope()

    async def _record(self, change) -> List[str]:
        """Second phase of every mutation: render the diff and record the change."""
        async with self.document.transaction():
            warning = await self.session.proposal.render(change)
            change.render_warning = warning
            self.session.ledger.add(change)
        self.guard.mark_mutated()
        return [warning] if warning else []

    def _change_data(self, change, **extra) -> Dict[str, Any]:
        data = {"change_id": change.id, "kind": change.kind, "markup": change_to_markup(change)}
        data.update(extra)
        return data

    # -- tools ------------------------------------------------------------

    @tool_operation("read_document")
    async def read_document(
        self,
        query: str,
        context_chars: Optional[int] = None,
        max_matches: Optional[int] = None,
        match_case: bool = False,
        match_whole_word: bool = False,
    ) -> ToolResult:
        if not self.guard.check_read(query):
            raise GuardViolation(
                "read_document",
                f'query "{query}" is not part of the current instruction; {self.guard.hint()}',
            )
        options = SearchOptions(match_case=match_case, match_whole_word=match_whole_word)
        stripped = (query or "").strip()

        async with self.document.transaction():
            scope = await self._scope()
            if stripped.lower() in WILDCARDS:
                content = await self.document.get_span_text(scope)
                variant = stripped
                matches = [{"match_text": content, "snippet": content}]
            elif is_label_locator(stripped):
                start, end = await self.resolver.resolve_label_group(scope, stripped)
                text = await self.document.get_span_text(await self.document.paragraph_range(start, end))
                variant = stripped
                matches = [{"match_text": text, "snippet": text, "paragraph_start": start, "paragraph_end": end}]
            else:
                variant, matches = await self.resolver.snippets(scope, query, context_chars, max_matches, options)

        self.guard.mark_read(query)
        warnings = []
        if variant != query:
            warnings.append(f'No literal match for "{query}"; matched "{variant}" instead')
        return ToolResult.ok(
            {
                "article": self.boundary.name,
                "query": query,
                "matched_variant": variant,
                "match_count": len(matches),
                "matches": matches,
            },
            warnings=warnings,
        )

    @tool_operation("edit_text")
    async def edit_text(
        self, search_text: str, new_text: str, match_case: bool = False, match_whole_word: bool = False
    ) -> ToolResult:
        """Replaces the first match of ``search_text`` inside the article."""
        self.guard.check_mutate("edit_text", search_text)
        options = SearchOptions(match_case=match_case, match_whole_word=match_whole_word)

        async with self.document.transaction():
            span, scope = await self._target(search_text, options)
            old_text = await self.document.get_span_text(span)
            change = EditChange(
                old_text=old_text,
                new_text=new_text,
                search_text=search_text,
                scope=scope,
                description=f'Replace "{old_text}" with "{new_text}"',
            )
            change._pieces = await self._pieces(span)
            await self.session.proposal.apply(change, span)

        warnings = await self._record(change)
        return ToolResult.ok(self._change_data(change, old_text=old_text, new_text=new_text), warnings=warnings)

    @tool_operation("delete_text")
    async def delete_text(self, search_text: str, match_case: bool = False, match_whole_word: bool = False) -> ToolResult:
        self.guard.check_mutate("delete_text", search_text)
        options = SearchOptions(match_case=match_case, match_whole_word=match_whole_word)

        async with self.document.transaction():
            span, scope = await self._target(search_text, options)
            old_text = await self.document.get_span_text(span)
            change = DeleteChange(
                old_text=old_text,
                search_text=search_text,
                scope=scope,
                description=f'Delete "{old_text}"',
            )
            change._pieces = await self._pieces(span)
            await self.session.proposal.apply(change, span)

        warnings = await self._record(change)
        return ToolResult.ok(self._change_data(change, old_text=old_text), warnings=warnings)

    @tool_operation("format_text")
    async def format_text(
        self, search_text: str, format: Union[FormatSpec, Dict[str, Any]], match_case: bool = False
    ) -> ToolResult:
        try:
            fmt = format if isinstance(format, FormatSpec) else FormatSpec(**format)
        except (ValidationError, TypeError) as e:
            raise InvalidLocatorError(f"Invalid format: {e}") from None
        if fmt.is_empty():
            raise InvalidLocatorError("Format request sets no attribute")
        self.guard.check_mutate("format_text", search_text)

        async with self.document.transaction():
            span, scope = await self._target(search_text, SearchOptions(match_case=match_case))
            matched = await self.document.get_span_text(span)
            change = FormatChange(
                search_text=matched,
                format=fmt,
                scope=scope,
                description=f'Format "{matched}"',
            )
            await self.session.proposal.apply(change, span)

        warnings = await self._record(change)
        return ToolResult.ok(self._change_data(change, text=matched), warnings=warnings)

    @tool_operation("insert_text")
    async def insert_text(self, text: str, location: str, search_text: Optional[str] = None) -> ToolResult:
        """
        Inserts ``text`` relative to ``search_text``.

        before: a new paragraph when the anchor starts its paragraph, inline otherwise.
        after: a new paragraph when the anchor (nearly) ends its paragraph, inline otherwise.
        inline: right after the anchor, inside the sentence.
        beginning / end: a new paragraph at the start or end of the article.
        """
        try:
            loc = InsertLocation(location)
        except ValueError:
            choices = ", ".join(item.value for item in InsertLocation)
            raise InvalidLocatorError(f"Invalid location: {location}. Use one of: {choices}") from None
        if not text or not text.strip():
            raise InvalidLocatorError("Nothing to insert")
        if loc in (InsertLocation.BEFORE, InsertLocation.AFTER, InsertLocation.INLINE) and not search_text:
            raise InvalidLocatorError(f'Location "{loc.value}" requires search_text')
        self.guard.check_mutate("insert_text", search_text or loc.value)

        async with self.document.transaction():
            span = await self._insert(text, loc, search_text)
            change = InsertChange(
                new_text=text,
                location=loc,
                search_text=search_text,
                scope=self._article_scope(),
                description=f'Insert "{text}" ({loc.value})',
            )
            await self.session.proposal.apply(change, span)

        warnings = await self._record(change)
        return ToolResult.ok(self._change_data(change, new_text=text, location=loc.value), warnings=warnings)

    async def _new_paragraph(self, index: int, text: str, before: bool = False) -> Span:
        new_index = await self.document.insert_paragraph(index, text, before=before)
        self._grow()
        return await self.document.paragraph_range(new_index)

    async def _insert(self, text: str, loc: InsertLocation, search_text: Optional[str]) -> Span:
        start = self.boundary.start_paragraph_index
        end = self.boundary.end_paragraph_index
        if loc == InsertLocation.BEGINNING:
            # Styled like the article's first body paragraph, not like its header.
            if end > start:
                return await self._new_paragraph(start + 1, text, before=True)
            return await self._new_paragraph(start, text)
        if loc == InsertLocation.END:
            return await self._new_paragraph(end, text)

        scope = await self._scope()
        if is_label_locator(search_text):
            first, last = await self.resolver.resolve_label_group(scope, search_text.strip())
            found = await self.document.paragraph_range(first if loc == InsertLocation.BEFORE else last)
        else:
            found = await self.resolver.resolve(scope, search_text)

        if loc == InsertLocation.BEFORE:
            paragraph = await self.document.get_span_text(await self.document.paragraph_range(found.start_paragraph))
            if not paragraph[: found.start_offset].strip():
                return await self._new_paragraph(found.start_paragraph, text, before=True)
            padded = text if text[-1:].isspace() else text + " "
            return await self.document.insert_span_before(found, padded)

        if loc == InsertLocation.AFTER:
            paragraph = await self.document.get_span_text(await self.document.paragraph_range(found.end_paragraph))
            if len(paragraph[found.end_offset :].strip()) < PARAGRAPH_TAIL_CHARS:
                return await self._new_paragraph(found.end_paragraph, text)

        padded = text if text[:1].isspace() else " " + text
        return await self.document.insert_span_after(found, padded)
