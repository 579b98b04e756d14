import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from scopedit.config import get_settings
from scopedit.document.docx_model import DocxDocumentModel
from scopedit.errors import ScopeditError
from scopedit.models import FormatSpec, ToolResult
from scopedit.session import EditSession, ScopedEditor
from scopedit.utils.logging import configure_logging

# MCP communicates over stdio: every log line goes to stderr as JSON.
configure_logging(get_settings().log_level, json=True)

logger = structlog.get_logger(__name__)

mcp = FastMCP("Scopedit Proposal Service")


@dataclass
class _OpenDocument:
    path: Path
    model: DocxDocumentModel
    session: EditSession
    editor: Optional[ScopedEditor] = None


_documents: Dict[str, _OpenDocument] = {}


def _key(file_path: str) -> str:
    return str(Path(file_path).expanduser().resolve())


def _render(result: ToolResult) -> str:
    return result.model_dump_json(indent=2, exclude_none=True)


def _get(file_path: str) -> _OpenDocument:
    key = _key(file_path)
    if key not in _documents:
        p = Path(key)
        if not p.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        model = DocxDocumentModel.from_path(p)
        _documents[key] = _OpenDocument(path=p, model=model, session=EditSession(model))
        logger.info("Document opened", path=key)
    return _documents[key]


def _editor(file_path: str) -> ScopedEditor:
    doc = _get(file_path)
    if doc.editor is None:
        raise ScopeditError("No active instruction: call begin_instruction first")
    return doc.editor


@mcp.tool()
async def open_document(file_path: str) -> str:
    """
    Opens a DOCX file for scoped editing and lists its articles.
    The document stays in memory until save_document or close_document.

    Args:
        file_path: Absolute path to the DOCX file.
    """
    try:
        doc = _get(file_path)
        paragraphs = await doc.model.get_paragraphs()
        headers = [p.text.strip() for p in paragraphs if p.text.strip().upper().startswith("ARTICLE ")]
        return _render(ToolResult.ok({"path": str(doc.path), "paragraphs": len(paragraphs), "articles": headers}))
    except Exception as e:
        return _render(ToolResult.fail(f"Error opening file: {e}"))


@mcp.tool()
async def begin_instruction(file_path: str, instruction: str, article: Optional[str] = None) -> str:
    """
    Starts a new instruction. Locates the article it targets and restricts
    searches to the terms mentioned in the instruction. Every later edit tool
    works inside that article only, and each edit requires a fresh read_document call.

    Args:
        file_path: Absolute path to the DOCX file.
        instruction: The user's instruction, verbatim (e.g. 'In ARTICLE A-1 delete paragraph 1.3').
        article: Optional article name (e.g. 'A-1') when the instruction does not name one.
    """
    try:
        doc = _get(file_path)
        doc.editor = await doc.session.begin_instruction(instruction, article=article)
        boundary = doc.editor.boundary
        return _render(
            ToolResult.ok(
                {
                    "article": boundary.name,
                    "start_paragraph": boundary.start_paragraph_index,
                    "end_paragraph": boundary.end_paragraph_index,
                    "allowed_terms": sorted(doc.editor.guard.allowed_tokens),
                    "preview": doc.editor.article_preview(),
                }
            )
        )
    except ScopeditError as e:
        attempted = getattr(e, "attempted", None)
        return _render(ToolResult.fail(str(e), attempted=attempted))
    except Exception as e:
        logger.exception("begin_instruction failed")
        return _render(ToolResult.fail(f"Error starting instruction: {e}"))


@mcp.tool()
async def read_document(
    file_path: str,
    query: str,
    context_chars: Optional[int] = None,
    max_matches: Optional[int] = None,
    match_case: bool = False,
    match_whole_word: bool = False,
) -> str:
    """
    Searches the active article and returns context snippets around each match.
    Use '*' for the whole article (only when the instruction quotes no terms),
    or a paragraph number such as '1.2'.
    """
    try:
        result = await _editor(file_path).read_document(query, context_chars, max_matches, match_case, match_whole_word)
    except Exception as e:
        result = ToolResult.fail(str(e))
    return _render(result)


@mcp.tool()
async def edit_text(
    file_path: str, search_text: str, new_text: str, match_case: bool = False, match_whole_word: bool = False
) -> str:
    """
    Proposes replacing the first match of search_text with new_text. The old text
    stays visible, struck through in red, next to the new text in green until
    the change is accepted or rejected. A paragraph number ('1.2') replaces the
    whole numbered item.
    """
    try:
        result = await _editor(file_path).edit_text(search_text, new_text, match_case, match_whole_word)
    except Exception as e:
        result = ToolResult.fail(str(e))
    return _render(result)


@mcp.tool()
async def insert_text(file_path: str, text: str, location: str, search_text: Optional[str] = None) -> str:
    """
    Proposes inserting text.

    Args:
        location: 'before', 'after' or 'inline' (relative to search_text), or
                  'beginning' / 'end' of the article.
        search_text: Anchor text or paragraph number; required for before/after/inline.
    """
    try:
        result = await _editor(file_path).insert_text(text, location, search_text)
    except Exception as e:
        result = ToolResult.fail(str(e))
    return _render(result)


@mcp.tool()
async def delete_text(file_path: str, search_text: str, match_case: bool = False, match_whole_word: bool = False) -> str:
    """Proposes deleting the first match of search_text (or a whole numbered paragraph, e.g. '1.3')."""
    try:
        result = await _editor(file_path).delete_text(search_text, match_case, match_whole_word)
    except Exception as e:
        result = ToolResult.fail(str(e))
    return _render(result)


@mcp.tool()
async def format_text(
    file_path: str,
    search_text: str,
    bold: Optional[bool] = None,
    italic: Optional[bool] = None,
    underline: Optional[bool] = None,
    font_size: Optional[float] = None,
    font_color: Optional[str] = None,
    highlight_color: Optional[str] = None,
) -> str:
    """Applies character formatting to the first match of search_text. Rejecting the change restores the old format."""
    fmt = FormatSpec(
        bold=bold,
        italic=italic,
        underline=underline,
        font_size=font_size,
        font_color=font_color,
        highlight_color=highlight_color,
    )
    try:
        result = await _editor(file_path).format_text(search_text, fmt)
    except Exception as e:
        result = ToolResult.fail(str(e))
    return _render(result)


@mcp.tool()
async def list_pending_changes(file_path: str) -> str:
    """Lists pending changes as CriticMarkup ({--old--}{++new++}) with their ids."""
    try:
        session = _get(file_path).session
        pending = session.pending()
        data = {
            "count": len(pending),
            "summary": session.ledger.summary(),
            "changes": [json.loads(c.model_dump_json()) for c in pending],
        }
        return _render(ToolResult.ok(data))
    except Exception as e:
        return _render(ToolResult.fail(str(e)))


@mcp.tool()
async def accept_change(file_path: str, change_id: str) -> str:
    """Accepts one pending change: the struck text is removed and the new text becomes plain."""
    try:
        return _render(await _get(file_path).session.accept(change_id))
    except Exception as e:
        return _render(ToolResult.fail(str(e)))


@mcp.tool()
async def reject_change(file_path: str, change_id: str) -> str:
    """Rejects one pending change: the proposed text is removed and the old text restored."""
    try:
        return _render(await _get(file_path).session.reject(change_id))
    except Exception as e:
        return _render(ToolResult.fail(str(e)))


@mcp.tool()
async def accept_all_changes(file_path: str) -> str:
    """Accepts every pending change in order. A failing change does not stop the others."""
    try:
        return _render(await _get(file_path).session.accept_all())
    except Exception as e:
        return _render(ToolResult.fail(str(e)))


@mcp.tool()
async def reject_all_changes(file_path: str) -> str:
    """Rejects every pending change in order. A failing change does not stop the others."""
    try:
        return _render(await _get(file_path).session.reject_all())
    except Exception as e:
        return _render(ToolResult.fail(str(e)))


@mcp.tool()
async def save_document(file_path: str, output_path: Optional[str] = None) -> str:
    """
    Saves the document, pending proposals included.

    Args:
        output_path: Optional. Defaults to '<name>_proposed.docx' next to the
                     source, or the source itself if it already carries that suffix.
    """
    try:
        doc = _get(file_path)
        if not output_path:
            p = doc.path
            if p.stem.endswith("_proposed"):
                output_path = str(p)
            else:
                output_path = str(p.parent / f"{p.stem}_proposed{p.suffix}")
        doc.model.save(output_path)
        pending = len(doc.session.pending())
        return _render(ToolResult.ok({"saved_to": output_path, "pending_changes": pending}))
    except Exception as e:
        return _render(ToolResult.fail(f"Error saving document: {e}"))


@mcp.tool()
def close_document(file_path: str) -> str:
    """Drops the in-memory document and its change ledger without saving."""
    doc = _documents.pop(_key(file_path), None)
    if doc is None:
        return _render(ToolResult.fail(f"Document not open: {file_path}"))
    return _render(ToolResult.ok({"closed": str(doc.path), "discarded_pending": len(doc.session.pending())}))


def main():
    mcp.run()


if __name__ == "__main__":
    main()
