import re
from typing import Iterable, List, Optional, Set

import structlog

from scopedit.errors import GuardViolation

logger = structlog.get_logger(__name__)

LABEL_LOCATOR = re.compile(r"^\s*\d+\.\d+\s*$")
_NUMBERED_TOKEN = re.compile(r"^\d+(?:\.\d+)+$")
_WORD = re.compile(r"\b\w{4,}\b")

WILDCARDS = {"*", "all"}


def label_variants(label: str) -> List[str]:
    """Spellings under which a numbered label shows up in text: 1.2, 1.2., 1. 2, (1.2), 1.2)"""
    return [
        label,
        f"{label}.",
        label.replace(".", ". "),
        f"({label})",
        f"{label})",
        f"{label}\t",
    ]


def is_label_locator(locator: Optional[str]) -> bool:
    return bool(locator) and bool(LABEL_LOCATOR.match(locator))


class EditGuard:
    """
    Read-before-write gate for a single instruction.

    A mutation needs a read performed after the previous mutation, unless its
    locator is a numbered label such as "1.2". Reads are limited to queries
    related to the instruction's allow-list when that list is non-empty.
    """

    def __init__(self, allowed_tokens: Optional[Iterable[str]] = None):
        self.allowed_tokens: Set[str] = {t.strip().lower() for t in (allowed_tokens or []) if t and t.strip()}
        self.has_fresh_read = False
        self.last_query: Optional[str] = None

    def check_read(self, query: str) -> bool:
        if not self.allowed_tokens:
            return True
        q = (query or "").strip().lower()
        if not q or q in WILDCARDS:
            return False

        q_words = set(_WORD.findall(q))
        for token in self.allowed_tokens:
            if token in q or q in token:
                return True
            if _NUMBERED_TOKEN.match(token):
                if any(variant in q for variant in label_variants(token)) or q.strip("().") == token:
                    return True
            if " " in token and q_words & set(_WORD.findall(token)):
                return True
        return False

    def mark_read(self, query: str):
        self.has_fresh_read = True
        self.last_query = query

    def check_mutate(self, action: str, locator: Optional[str] = None):
        if is_label_locator(locator):
            return
        if not self.has_fresh_read:
            logger.info("Mutation blocked without fresh read", action=action, last_query=self.last_query)
            raise GuardViolation(
                action,
                "call read_document with a term from the instruction first; every edit needs a fresh read",
            )

    def mark_mutated(self):
        self.has_fresh_read = False

    def hint(self) -> str:
        if not self.allowed_tokens:
            return "any query is allowed"
        return "allowed terms: " + ", ".join(sorted(self.allowed_tokens))
