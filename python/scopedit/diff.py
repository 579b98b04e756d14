import re
from typing import Dict, List, Tuple

import structlog
from diff_match_patch import diff_match_patch

logger = structlog.get_logger(__name__)

Diff = Tuple[int, str]  # (op, text); op is -1 delete, 0 equal, 1 insert


def word_diff(old_text: str, new_text: str) -> List[Diff]:
    """
    Word-level diff of two strings. Tokens are words, whitespace runs and single
    punctuation marks, so a diff never splits a word in the middle.
    """
    dmp = diff_match_patch()

    chars1, chars2, token_array = _words_to_chars(old_text, new_text)
    diffs = dmp.diff_main(chars1, chars2, False)
    dmp.diff_cleanupSemantic(diffs)
    dmp.diff_charsToLines(diffs, token_array)
    return [(op, text) for op, text in diffs if text]


def to_critic_markup(old_text: str, new_text: str) -> str:
    """'shall commence' -> 'shall begin' gives 'shall {--commence--}{++begin++}'."""
    out = []
    pending_delete = None
    for op, text in word_diff(old_text, new_text):
        if op == -1:
            pending_delete = (pending_delete or "") + text
            continue
        if pending_delete is not None:
            out.append(f"{{--{pending_delete}--}}")
            pending_delete = None
        if op == 1:
            out.append(f"{{++{text}++}}")
        else:
            out.append(text)
    if pending_delete is not None:
        out.append(f"{{--{pending_delete}--}}")
    return "".join(out)


_TOKEN = re.compile(r"\s+|\w+|[^\w\s]")


def _words_to_chars(old_text: str, new_text: str) -> Tuple[str, str, List[str]]:
    """One private character per distinct token, the trick diff_linesToChars plays with lines."""
    vocabulary: List[str] = []
    codes: Dict[str, str] = {}

    def encode(text: str) -> str:
        out = []
        for token in _TOKEN.findall(text):
            if token not in codes:
                codes[token] = chr(len(vocabulary))
                vocabulary.append(token)
            out.append(codes[token])
        return "".join(out)

    return encode(old_text), encode(new_text), vocabulary
