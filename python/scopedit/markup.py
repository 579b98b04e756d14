"""
CriticMarkup rendering of ledger changes, for summaries handed back to the agent
and for the CLI.
"""

from typing import Iterable, List

from scopedit.diff import to_critic_markup
from scopedit.models import DeleteChange, EditChange, FormatChange, InsertChange


def _describe_format(change: FormatChange) -> str:
    fields = change.format.model_dump(exclude_none=True)
    return ", ".join(f"{k}={v}" for k, v in fields.items()) or "no-op"


def change_to_markup(change) -> str:
    if isinstance(change, EditChange):
        return to_critic_markup(change.old_text, change.new_text)
    if isinstance(change, InsertChange):
        return f"{{++{change.new_text}++}}"
    if isinstance(change, DeleteChange):
        return f"{{--{change.old_text}--}}"
    if isinstance(change, FormatChange):
        return f"{change.search_text}{{>>format: {_describe_format(change)}<<}}"
    raise TypeError(f"Unsupported change type: {type(change).__name__}")


def changes_to_markup(changes: Iterable) -> str:
    lines: List[str] = []
    for change in changes:
        line = f"[{change.id}] ({change.kind}, {change.state.value}) {change_to_markup(change)}"
        if change.render_warning:
            line += f"{{>>render warning: {change.render_warning}<<}}"
        lines.append(line)
    return "\n".join(lines)
