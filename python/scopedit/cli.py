import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

from scopedit import __version__
from scopedit.article import find_article
from scopedit.config import get_settings
from scopedit.document.docx_model import DocxDocumentModel
from scopedit.errors import ScopeditError
from scopedit.instructions import extract_tokens
from scopedit.models import ToolResult
from scopedit.session import EditSession, ScopedEditor
from scopedit.utils.logging import configure_logging


def _load_document(path: Path) -> DocxDocumentModel:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    return DocxDocumentModel.from_path(path)


def _print_result(result: ToolResult):
    print(result.model_dump_json(indent=2, exclude_none=True))


def _load_instructions(path: Path) -> List[Dict[str, Any]]:
    """
    Accepts one instruction object or a list of them:
    {"instruction": "...", "article": "A-1"?, "operations": [{"op": "edit", ...}, ...]}
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error parsing JSON edits: {e}", file=sys.stderr)
        sys.exit(1)
    return data if isinstance(data, list) else [data]


def handle_tokens(args):
    print(json.dumps(sorted(extract_tokens(args.instruction)), indent=2))


def handle_locate(args):
    model = _load_document(args.input)
    paragraphs = asyncio.run(model.get_paragraphs())
    boundary = find_article(paragraphs, args.article)
    if boundary is None:
        print(f"Article {args.article} not found.", file=sys.stderr)
        sys.exit(1)
    print(boundary.model_dump_json(indent=2))


async def _read(args) -> ToolResult:
    session = EditSession(_load_document(args.input))
    editor = await session.begin_instruction(args.instruction, article=args.article)
    return await editor.read_document(args.query, context_chars=args.context, max_matches=args.max_matches)


def handle_read(args):
    try:
        result = asyncio.run(_read(args))
    except ScopeditError as e:
        result = ToolResult.fail(str(e))
    _print_result(result)
    if not result.success:
        sys.exit(1)


async def _run_operation(editor: ScopedEditor, op: Dict[str, Any]) -> ToolResult:
    kind = op.get("op")
    locator = op.get("search_text")

    # Every mutation needs its own fresh read of the text it targets.
    read = await editor.read_document(locator or editor.boundary.name, max_matches=1)
    if not read.success and locator:
        return read

    if kind == "edit":
        return await editor.edit_text(locator, op.get("new_text", ""), op.get("match_case", False))
    if kind == "insert":
        return await editor.insert_text(op.get("text", ""), op.get("location", "after"), locator)
    if kind == "delete":
        return await editor.delete_text(locator, op.get("match_case", False))
    if kind == "format":
        return await editor.format_text(locator, op.get("format", {}))
    return ToolResult.fail(f"Unknown operation: {kind}")


async def _apply(args, model: DocxDocumentModel) -> Dict[str, int]:
    session = EditSession(model)
    stats = {"applied": 0, "failed": 0}
    for item in _load_instructions(args.edits):
        try:
            editor = await session.begin_instruction(item.get("instruction", ""), article=item.get("article"))
        except ScopeditError as e:
            print(f"[!] {e}", file=sys.stderr)
            stats["failed"] += len(item.get("operations", []))
            continue

        for op in item.get("operations", []):
            result = await _run_operation(editor, op)
            if result.success:
                stats["applied"] += 1
                print(f"[+] {result.data.get('markup', '')}", file=sys.stderr)
            else:
                stats["failed"] += 1
                print(f"[!] {op.get('op')}: {result.error}", file=sys.stderr)
            for warning in result.warnings:
                print(f"    warning: {warning}", file=sys.stderr)

    if args.accept_all:
        result = await session.accept_all()
    elif args.reject_all:
        result = await session.reject_all()
    else:
        result = None
    if result is not None:
        for warning in result.warnings:
            print(f"    warning: {warning}", file=sys.stderr)
    pending = session.ledger.summary()
    if pending:
        print(pending)
    return stats


def handle_apply(args):
    model = _load_document(args.input)
    stats = asyncio.run(_apply(args, model))

    output_path = args.output
    if not output_path:
        if args.input.stem.endswith("_proposed"):
            output_path = args.input
        else:
            output_path = args.input.with_name(f"{args.input.stem}_proposed.docx")
    model.save(output_path)

    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(f"Stats: {stats['applied']} applied, {stats['failed']} failed.", file=sys.stderr)
    if stats["failed"] > 0:
        sys.exit(1)


def handle_serve(args):
    from scopedit.server import main as serve

    serve()


def main():
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    parser = argparse.ArgumentParser(prog="scopedit", description="Scopedit: scoped redline proposals for DOCX contracts")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_tokens = subparsers.add_parser("tokens", help="Show the search terms an instruction allows")
    p_tokens.add_argument("instruction", help="Instruction text")
    p_tokens.set_defaults(func=handle_tokens)

    p_locate = subparsers.add_parser("locate", help="Show the paragraph range of an article")
    p_locate.add_argument("input", type=Path, help="Input DOCX")
    p_locate.add_argument("article", help="Article name, e.g. A-1")
    p_locate.set_defaults(func=handle_locate)

    p_read = subparsers.add_parser("read", help="Search an article the way an agent would")
    p_read.add_argument("input", type=Path, help="Input DOCX")
    p_read.add_argument("query", help="Search text, paragraph number or '*'")
    p_read.add_argument("--instruction", default="", help="Instruction restricting the allowed terms")
    p_read.add_argument("--article", help="Article name when the instruction names none")
    p_read.add_argument("--context", type=int, default=None, help="Snippet radius in characters")
    p_read.add_argument("--max-matches", type=int, default=None, help="Maximum number of matches")
    p_read.set_defaults(func=handle_read)

    p_apply = subparsers.add_parser("apply", help="Apply instruction operations as visual proposals")
    p_apply.add_argument("input", type=Path, help="Input DOCX")
    p_apply.add_argument("edits", type=Path, help="JSON file with instructions and operations")
    p_apply.add_argument("-o", "--output", type=Path, help="Output DOCX path")
    resolution = p_apply.add_mutually_exclusive_group()
    resolution.add_argument("--accept-all", action="store_true", help="Accept every proposal before saving")
    resolution.add_argument("--reject-all", action="store_true", help="Reject every proposal before saving")
    p_apply.set_defaults(func=handle_apply)

    p_serve = subparsers.add_parser("serve", help="Run the MCP server over stdio")
    p_serve.set_defaults(func=handle_serve)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
