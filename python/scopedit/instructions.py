"""
Pulls the search terms an instruction legitimately allows.

The result is the allow-list the EditGuard enforces for the rest of the
instruction. Extraction is permissive: an extra token only widens what may be
read, a missing one blocks legitimate work.
"""

import re
from typing import Callable, Iterable, List, Set, Tuple

import structlog

logger = structlog.get_logger(__name__)

_WORD = re.compile(r"\b\w{4,}\b")
_QUOTE_CHARS = "\"'“”‘’"


def _whole(value: str) -> Iterable[str]:
    yield value


def _phrase(value: str) -> Iterable[str]:
    yield value
    yield from _WORD.findall(value)


def _words(value: str) -> Iterable[str]:
    yield from _WORD.findall(value)


# (name, pattern, expansion). Every pattern exposes the token as group 1.
TOKEN_PATTERNS: List[Tuple[str, "re.Pattern[str]", Callable[[str], Iterable[str]]]] = [
    ("numbered", re.compile(r"(?<![\d.])(\d+(?:\.\d+)+)"), _whole),
    ("double_quoted", re.compile(r'"([^"\n]+)"'), _phrase),
    ("smart_double_quoted", re.compile(r"“([^”\n]+)”"), _phrase),
    ("smart_single_quoted", re.compile(r"‘([^’\n]+)’"), _phrase),
    # Apostrophes inside words ("party's") neither open nor close a quote.
    ("single_quoted", re.compile(r"(?<!\w)'([^\n]+?)'(?=[\s.,;:!?)]|$)"), _phrase),
    (
        "action_reference",
        re.compile(
            r"\b(?:delete|substitute|replace|insert|add|paragraph)\s+(?:paragraph\s+|section\s+|clause\s+)?(\d+(?:\.\d+)*)",
            re.IGNORECASE,
        ),
        _whole,
    ),
    ("anchor_phrase", re.compile(r"\b(?:before|after)\s+(.+?)(?=;|\n|\.\s|\.$|$)", re.IGNORECASE), _phrase),
    ("substitution", re.compile(r"\bsubstitute\b[^:\n]*:\s*([^\n]+)", re.IGNORECASE), _words),
    ("article_reference", re.compile(r"\b([A-Z]-\d+)\b", re.IGNORECASE), _whole),
]


def _clean(token: str) -> str:
    return token.strip().strip(_QUOTE_CHARS).strip().lower()


def extract_tokens(instruction: str) -> Set[str]:
    tokens: Set[str] = set()
    if not instruction:
        return tokens
    for name, pattern, expand in TOKEN_PATTERNS:
        for match in pattern.finditer(instruction):
            for raw in expand(match.group(1)):
                token = _clean(raw)
                if token:
                    tokens.add(token)
    logger.debug("Extracted instruction tokens", count=len(tokens))
    return tokens


class InstructionContextExtractor:
    def extract_tokens(self, instruction: str) -> Set[str]:
        return extract_tokens(instruction)
