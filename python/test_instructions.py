"""
Tests for instruction token extraction.

Run: pytest test_instructions.py
From: python/
"""

import re

import pytest

from scopedit.guard import EditGuard
from scopedit.instructions import InstructionContextExtractor, extract_tokens


def test_numbered_reference():
    assert "1.3" in extract_tokens("Delete paragraph 1.3")


def test_quoted_phrases_and_their_words():
    tokens = extract_tokens('In ARTICLE A-1 replace "shall commence" with "shall begin"')

    assert {"shall commence", "shall begin", "commence", "begin", "shall"} <= tokens
    assert "a-1" in tokens


def test_smart_and_single_quotes():
    tokens = extract_tokens("Replace “Effective Date” with ‘Start Date’ and 'Closing' with 'Completion'")
    assert {"effective date", "start date", "closing", "completion"} <= tokens


def test_apostrophes_are_not_quotes():
    tokens = extract_tokens("Remove the Contractor's obligation to report")
    assert not any(t.startswith("s obligation") for t in tokens)


def test_anchor_phrase():
    tokens = extract_tokens("Add a sentence after the payment terms; keep the rest")
    assert "the payment terms" in tokens
    assert "payment" in tokens


def test_substitution_words():
    tokens = extract_tokens("Substitute paragraph 2.1 with the following: Payment is due within forty days")
    assert "2.1" in tokens
    assert {"payment", "within", "forty", "days"} <= tokens
    assert "is" not in tokens


def test_empty_instruction():
    assert extract_tokens("") == set()
    assert extract_tokens("Tidy up the wording") == set()


@pytest.mark.parametrize(
    "instruction,phrases",
    [
        ('In ARTICLE A-1 replace "shall commence" with "shall begin"', ["shall commence", "shall begin"]),
        ("Delete paragraphs 1.3 and 4.2.1", []),
        ("Insert “Notwithstanding the foregoing,” before 3.2", ["notwithstanding the foregoing,"]),
        ("A-4: substitute clause 4.1 with: The Employer may terminate", []),
        ("In ARTICLE A-1 delete 'the Contractor's obligations'", ["the contractor's obligations"]),
        ("Replace 'the Employer's Representative' with 'the Engineer'.", ["the employer's representative", "the engineer"]),
    ],
)
def test_tokens_cover_every_quoted_and_numbered_term(instruction, phrases):
    tokens = InstructionContextExtractor().extract_tokens(instruction)
    for phrase in phrases:
        assert phrase in tokens
    for number in re.findall(r"\d+(?:\.\d+)+", instruction):
        assert number in tokens
    assert all(t == t.lower() for t in tokens)


def test_quoted_phrase_with_apostrophe_passes_the_read_gate():
    tokens = extract_tokens("In ARTICLE A-1 delete 'the Contractor's obligations'")
    assert EditGuard(tokens).check_read("the Contractor's obligations")
    assert not any(t.startswith("s obligations") for t in tokens)
