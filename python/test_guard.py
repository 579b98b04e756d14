"""
Tests for the read-before-write EditGuard.

Run: pytest test_guard.py
From: python/
"""

import pytest

from scopedit.errors import GuardViolation
from scopedit.guard import EditGuard, is_label_locator, label_variants
from scopedit.instructions import extract_tokens


def test_reads_follow_the_instruction():
    guard = EditGuard(extract_tokens("Delete paragraph 1.3"))

    assert guard.check_read("1.3")
    assert guard.check_read("(1.3)")
    assert not guard.check_read("unrelated clause")
    assert not guard.check_read("1.4")


def test_wildcard_needs_an_empty_allow_list():
    assert not EditGuard({"shall commence"}).check_read("*")
    assert not EditGuard({"shall commence"}).check_read("all")
    assert EditGuard().check_read("*")
    assert EditGuard().check_read("anything at all")


def test_partial_and_word_overlap():
    guard = EditGuard({"shall commence on the start date"})
    assert guard.check_read("shall commence")
    assert guard.check_read("commencement date")
    assert not guard.check_read("payment")


def test_mutation_requires_a_fresh_read():
    guard = EditGuard({"shall commence"})

    with pytest.raises(GuardViolation) as exc:
        guard.check_mutate("edit_text", "shall commence")
    assert "edit_text blocked" in str(exc.value)

    guard.mark_read("shall commence")
    guard.check_mutate("edit_text", "shall commence")
    guard.mark_mutated()

    with pytest.raises(GuardViolation):
        guard.check_mutate("edit_text", "shall begin")


def test_label_locators_skip_the_read():
    guard = EditGuard({"1.3"})
    guard.check_mutate("delete_text", "1.3")
    guard.check_mutate("delete_text", " 1.3 ")
    with pytest.raises(GuardViolation):
        guard.check_mutate("delete_text", "1.3 The works")


def test_label_helpers():
    assert is_label_locator("1.2")
    assert not is_label_locator("1.2.3")
    assert not is_label_locator("clause 1.2")
    assert not is_label_locator(None)
    assert "1. 2" in label_variants("1.2")


def test_hint_lists_allowed_terms():
    assert EditGuard({"b", "a"}).hint() == "allowed terms: a, b"
    assert EditGuard().hint() == "any query is allowed"
