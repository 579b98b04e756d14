"""
Visual diff proposals.

A pending change lives in the document as coloured text: proposed text in the
proposed colour, old text struck through in the removed colour. Accept and
reject collapse that pair into a single state. Both locate their spans again by
trimmed text AND style, so unrelated text with the same words is never touched.
"""

from typing import List, Optional, Tuple

import structlog

from scopedit.config import ScopeditSettings, get_settings
from scopedit.document.base import DocumentModel, Span, SpanStyle
from scopedit.errors import ProposalMismatchError, RenderFailure
from scopedit.models import (
    ArticleScope,
    DeleteChange,
    EditChange,
    FormatChange,
    InsertChange,
    ParagraphScope,
    SearchOptions,
)

logger = structlog.get_logger(__name__)

PLAIN = SpanStyle()

# Operation names used when collapsing a proposal.
_DROP = "drop"
_CLEAR = "clear"
_RESTORE = "restore"


def _distance(span: Span, anchor: Optional[Span]) -> Tuple[int, int]:
    if anchor is None:
        return (0, 0)
    return (abs(span.start_paragraph - anchor.start_paragraph), abs(span.start_offset - anchor.start_offset))


class DiffProposal:
    def __init__(self, document: DocumentModel, settings: Optional[ScopeditSettings] = None):
        self.document = document
        self.settings = settings or get_settings()
        self.proposed_style = SpanStyle(color=self.settings.proposed_color)
        self.removed_style = SpanStyle(color=self.settings.removed_color, strikethrough=True)

    # -- mutation ---------------------------------------------------------

    async def apply(self, change, span: Span):
        """
        Performs the content mutation of ``change`` at the resolved ``span``.

        Edits replace the text (the first paragraph of the range for
        multi-paragraph edits), formats are applied eagerly. Deletes and
        inserts are no-ops here: a delete only strikes at render time, an insert
        was written by its operation already.
        """
        if isinstance(change, EditChange):
            if self._is_multi(change):
                first = await self.document.paragraph_range(span.start_paragraph)
                change._span = await self.document.replace_span(first, change.new_text)
            else:
                change._span = await self.document.replace_span(span, change.new_text)
        elif isinstance(change, FormatChange):
            change.previous_format = await self.document.get_span_format(span)
            await self.document.apply_span_format(span, change.format)
            change._span = span
        else:
            change._span = span

    # -- render -----------------------------------------------------------

    async def render(self, change) -> Optional[str]:
        """Paints the change. Never raises: failures come back as a warning string."""
        try:
            await self._render(change)
        except Exception as e:
            logger.warning("Diff rendering failed", change_id=change.id, kind=change.kind, error=str(e))
            return f"Diff rendering failed for {change.id}: {e}"
        return None

    async def _render(self, change):
        if isinstance(change, FormatChange):
            return
        if isinstance(change, InsertChange):
            await self._render_insert(change)
            return
        span = change._span
        if span is None:
            raise RenderFailure(f"No resolved span for {change.kind} change")

        if isinstance(change, EditChange):
            if change.new_text:
                await self.document.set_span_style(span, self.proposed_style)
            pieces = self._removed_pieces(change)
            first_old = pieces[0] if pieces else ""
            if first_old:
                old_span = await self.document.insert_span_after(span, "\n" + first_old)
                await self.document.set_span_style(old_span, self.removed_style)
            if self._is_multi(change):
                scope = change.scope
                rest_start = scope.target_paragraph + 1
                if scope.target_end_paragraph >= rest_start:
                    rest = await self.document.paragraph_range(rest_start, scope.target_end_paragraph)
                    await self.document.set_span_style(rest, self.removed_style)
        elif isinstance(change, DeleteChange):
            await self.document.set_span_style(span, self.removed_style)

    async def _render_insert(self, change: InsertChange):
        wanted = change.new_text.strip()
        if not wanted:
            return
        span = change._span
        if span is not None and (await self.document.get_span_text(span)).strip() == wanted:
            await self.document.set_span_style(span, self.proposed_style)
            return

        scope = await self._scope_span(change)
        hits = await self.document.search_in_range(scope, wanted, SearchOptions(match_case=True))
        if not hits:
            raise RenderFailure(f'Inserted text "{wanted[:60]}" not found')
        best = min(hits, key=lambda s: _distance(s, span))
        await self.document.set_span_style(best, self.proposed_style)
        change._span = best

    # -- accept / reject --------------------------------------------------

    async def accept(self, change):
        if isinstance(change, FormatChange):
            return
        proposed, removed = await self._locate(change)
        ops = [(s, _DROP) for s in removed]
        if proposed is not None:
            ops.append((proposed, _CLEAR))
        if self._is_multi(change):
            ops += await self._blank_gaps([s for s, _ in ops])
        await self._run_ops(ops)

    async def reject(self, change):
        if isinstance(change, FormatChange):
            await self._reject_format(change)
            return
        proposed, removed = await self._locate(change)
        ops = [(s, _RESTORE) for s in removed]
        if proposed is not None:
            ops.append((proposed, _DROP))
        await self._run_ops(ops)

    async def _run_ops(self, ops: List[Tuple[Span, str]]):
        # Right to left, bottom to top: an operation never shifts a span still to be processed.
        for span, op in sorted(ops, key=lambda o: (o[0].start_paragraph, o[0].start_offset), reverse=True):
            if op == _CLEAR:
                await self.document.set_span_style(span, PLAIN)
            elif op == _DROP:
                if await self._is_whole_paragraph(span):
                    await self.document.delete_paragraph(span.start_paragraph)
                else:
                    await self.document.delete_span(span)
            elif op == _RESTORE:
                await self.document.set_span_style(span, PLAIN)
                text = await self.document.get_span_text(span)
                if text.startswith("\n"):
                    await self.document.delete_span(
                        Span(span.start_paragraph, span.start_offset, span.start_paragraph, span.start_offset + 1)
                    )

    async def _blank_gaps(self, spans: List[Span]) -> List[Tuple[Span, str]]:
        """Empty paragraphs enclosed by the spans of one change; they go with it on accept."""
        paragraphs = {s.start_paragraph for s in spans}
        if len(paragraphs) < 2:
            return []
        gaps = []
        for index in range(min(paragraphs) + 1, max(paragraphs)):
            if index in paragraphs:
                continue
            whole = await self.document.paragraph_range(index)
            if not (await self.document.get_span_text(whole)).strip():
                gaps.append((whole, _DROP))
        return gaps

    async def _reject_format(self, change: FormatChange):
        if change.previous_format is None:
            return
        span = change._span
        if span is None or (await self.document.get_span_text(span)) != change.search_text:
            scope = await self._scope_span(change)
            hits = await self.document.search_in_range(scope, change.search_text, SearchOptions(match_case=True))
            if not hits:
                raise ProposalMismatchError(f'Formatted text "{change.search_text}" not found')
            span = min(hits, key=lambda s: _distance(s, change._span))
        await self.document.apply_span_format(span, change.previous_format, reset=True)

    # -- locating ---------------------------------------------------------

    def _is_multi(self, change) -> bool:
        return isinstance(change.scope, ParagraphScope) and change.scope.is_multi_paragraph

    def _removed_pieces(self, change) -> List[str]:
        if isinstance(change, InsertChange):
            return []
        if change._pieces:
            return list(change._pieces)
        if self._is_multi(change):
            return change.old_text.split("\n")
        return [change.old_text]

    async def _is_whole_paragraph(self, span: Span) -> bool:
        if not span.is_single_paragraph:
            return False
        paragraph = await self.document.get_span_text(await self.document.paragraph_range(span.start_paragraph))
        return paragraph.strip() == (await self.document.get_span_text(span)).strip()

    async def _whole_document(self) -> Optional[Span]:
        count = len(await self.document.get_paragraphs())
        if count == 0:
            return None
        return await self.document.paragraph_range(0, count - 1)

    async def _scope_span(self, change) -> Span:
        count = len(await self.document.get_paragraphs())
        scope = change.scope
        if isinstance(scope, ArticleScope):
            start, end = scope.article_start, scope.article_end
        elif isinstance(scope, ParagraphScope):
            start, end = scope.target_paragraph, scope.target_end_paragraph
        else:
            start, end = 0, count - 1
        end = min(end, count - 1)
        if start > end:
            start, end = 0, count - 1
        return await self.document.paragraph_range(start, end)

    async def _styled(self, scope: Span, style: SpanStyle, text: str, exclude: List[Span]) -> List[Span]:
        wanted = text.strip()
        found = []
        for span in await self.document.styled_spans(scope, style):
            if span in exclude:
                continue
            if (await self.document.get_span_text(span)).strip() == wanted:
                found.append(span)
        return found

    async def _find(self, style: SpanStyle, text: str, anchor: Optional[Span], exclude: List[Span], scopes) -> Optional[Span]:
        for scope in scopes:
            if scope is None:
                continue
            found = await self._styled(scope, style, text, exclude)
            if found:
                return min(found, key=lambda s: _distance(s, anchor))
        return None

    async def _locate(self, change) -> Tuple[Optional[Span], List[Span]]:
        """Proposed span and removed spans of ``change``; the scoped range first, then the whole document."""
        scopes = [await self._scope_span(change), await self._whole_document()]
        anchor = change._span

        proposed = None
        new_text = getattr(change, "new_text", "")
        if new_text and new_text.strip():
            proposed = await self._find(self.proposed_style, new_text, anchor, [], scopes)
            if proposed is None:
                raise ProposalMismatchError(f"Proposed text for {change.id} not found: {new_text.strip()[:60]!r}")
            anchor = proposed

        removed: List[Span] = []
        for piece in self._removed_pieces(change):
            if not piece.strip():
                continue
            span = await self._find(self.removed_style, piece, anchor, removed, scopes)
            if span is None:
                raise ProposalMismatchError(f"Removed text for {change.id} not found: {piece.strip()[:60]!r}")
            removed.append(span)
        return proposed, removed
