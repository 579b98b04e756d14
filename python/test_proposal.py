"""
Tests for DiffProposal: rendering a change as coloured text and collapsing it
again on accept or reject.

Run: pytest test_proposal.py
From: python/
"""

import asyncio

import pytest
from docx import Document

from scopedit.config import ScopeditSettings
from scopedit.document.base import Span
from scopedit.document.docx_model import DocxDocumentModel
from scopedit.errors import ProposalMismatchError
from scopedit.models import (
    ArticleScope,
    DeleteChange,
    EditChange,
    FormatChange,
    FormatSpec,
    InsertChange,
    InsertLocation,
    ParagraphScope,
)
from scopedit.redline.proposal import DiffProposal

SENTENCE = "1.3 The works shall commence on the start date."


def _run(coro):
    return asyncio.run(coro)


def _setup(*texts):
    doc = Document()
    for text in texts or ("ARTICLE A-1", SENTENCE):
        doc.add_paragraph(text)
    model = DocxDocumentModel(doc)
    return model, DiffProposal(model, ScopeditSettings())


def _texts(model):
    return [p.text for p in _run(model.get_paragraphs())]


def _find(model, text):
    hits = _run(model.search_in_range(_run(model.paragraph_range(0, len(_texts(model)) - 1)), text))
    return hits[0]


def _styled(model, proposal):
    everything = _run(model.paragraph_range(0, len(_texts(model)) - 1))
    proposed = _run(model.styled_spans(everything, proposal.proposed_style))
    removed = _run(model.styled_spans(everything, proposal.removed_style))
    return proposed, removed


def _edit(model, proposal, old, new):
    change = EditChange(old_text=old, new_text=new, search_text=old, scope=ArticleScope(article_start=0, article_end=1))
    _run(proposal.apply(change, _find(model, old)))
    assert _run(proposal.render(change)) is None
    return change


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------


def test_edit_renders_new_then_struck_old():
    model, proposal = _setup()
    _edit(model, proposal, "shall commence", "shall begin")

    assert _texts(model)[1] == "1.3 The works shall begin\nshall commence on the start date."
    proposed, removed = _styled(model, proposal)
    assert [_run(model.get_span_text(s)) for s in proposed] == ["shall begin"]
    assert [_run(model.get_span_text(s)) for s in removed] == ["\nshall commence"]


def test_edit_accept():
    model, proposal = _setup()
    change = _edit(model, proposal, "shall commence", "shall begin")
    _run(proposal.accept(change))

    assert _texts(model)[1] == "1.3 The works shall begin on the start date."
    assert _styled(model, proposal) == ([], [])


def test_edit_reject_restores_original():
    model, proposal = _setup()
    change = _edit(model, proposal, "shall commence", "shall begin")
    _run(proposal.reject(change))

    assert _texts(model)[1] == SENTENCE
    assert _styled(model, proposal) == ([], [])


def test_accept_ignores_identical_unstyled_text():
    model, proposal = _setup("ARTICLE A-1", SENTENCE, "Elsewhere shall begin and shall commence appear plainly.")
    change = _edit(model, proposal, "shall commence", "shall begin")
    _run(proposal.accept(change))

    assert _texts(model)[2] == "Elsewhere shall begin and shall commence appear plainly."
    assert _texts(model)[1] == "1.3 The works shall begin on the start date."


def test_multi_paragraph_edit():
    model, proposal = _setup("ARTICLE A-1", "1.3 Old heading", "continuation one", "continuation two", "1.4 Next")
    scope = ParagraphScope(target_paragraph=1, target_end_paragraph=3)
    span = _run(model.paragraph_range(1, 3))
    change = EditChange(old_text=_run(model.get_span_text(span)), new_text="1.3 New", scope=scope)
    change._pieces = ["1.3 Old heading", "continuation one", "continuation two"]

    _run(proposal.apply(change, span))
    assert _run(proposal.render(change)) is None
    assert _texts(model)[1:4] == ["1.3 New\n1.3 Old heading", "continuation one", "continuation two"]

    _run(proposal.reject(change))
    assert _texts(model) == ["ARTICLE A-1", "1.3 Old heading", "continuation one", "continuation two", "1.4 Next"]


def test_multi_paragraph_edit_accept_drops_old_paragraphs():
    model, proposal = _setup("ARTICLE A-1", "1.3 Old heading", "continuation one", "1.4 Next")
    scope = ParagraphScope(target_paragraph=1, target_end_paragraph=2)
    span = _run(model.paragraph_range(1, 2))
    change = EditChange(old_text=_run(model.get_span_text(span)), new_text="1.3 New", scope=scope)
    change._pieces = ["1.3 Old heading", "continuation one"]

    _run(proposal.apply(change, span))
    _run(proposal.render(change))
    _run(proposal.accept(change))

    assert _texts(model) == ["ARTICLE A-1", "1.3 New", "1.4 Next"]


def test_multi_paragraph_accept_takes_enclosed_blank_paragraphs():
    texts = ("ARTICLE A-1", "1.3 Old heading", "", "continuation one", "1.4 Next")
    model, proposal = _setup(*texts)
    scope = ParagraphScope(target_paragraph=1, target_end_paragraph=3)
    span = _run(model.paragraph_range(1, 3))
    change = EditChange(old_text=_run(model.get_span_text(span)), new_text="1.3 New", scope=scope)
    change._pieces = ["1.3 Old heading", "", "continuation one"]

    _run(proposal.apply(change, span))
    _run(proposal.render(change))
    _run(proposal.accept(change))

    assert _texts(model) == ["ARTICLE A-1", "1.3 New", "1.4 Next"]
    assert _styled(model, proposal) == ([], [])


# ---------------------------------------------------------------------------
# Insert / delete / format
# ---------------------------------------------------------------------------


def _insert_inline(model, proposal):
    span = _run(model.insert_span_after(_find(model, "shall commence"), " promptly"))
    change = InsertChange(new_text="promptly", location=InsertLocation.INLINE, scope=ArticleScope(article_start=0, article_end=1))
    _run(proposal.apply(change, span))
    assert _run(proposal.render(change)) is None
    return change


def test_insert_accept_and_reject():
    model, proposal = _setup()
    change = _insert_inline(model, proposal)
    proposed, _ = _styled(model, proposal)
    assert [_run(model.get_span_text(s)) for s in proposed] == [" promptly"]

    _run(proposal.accept(change))
    assert _texts(model)[1] == "1.3 The works shall commence promptly on the start date."
    assert _styled(model, proposal) == ([], [])

    model, proposal = _setup()
    change = _insert_inline(model, proposal)
    _run(proposal.reject(change))
    assert _texts(model)[1] == SENTENCE


def test_inserted_paragraph_reject_removes_it():
    model, proposal = _setup()
    index = _run(model.insert_paragraph(1, "1.4 A new clause."))
    change = InsertChange(new_text="1.4 A new clause.", location=InsertLocation.END, scope=ArticleScope(article_start=0, article_end=2))
    _run(proposal.apply(change, _run(model.paragraph_range(index))))
    _run(proposal.render(change))

    _run(proposal.reject(change))
    assert _texts(model) == ["ARTICLE A-1", SENTENCE]


def test_delete_accept_and_reject():
    model, proposal = _setup()
    change = DeleteChange(old_text="on the start date", scope=ArticleScope(article_start=0, article_end=1))
    _run(proposal.apply(change, _find(model, "on the start date")))
    _run(proposal.render(change))

    _, removed = _styled(model, proposal)
    assert [_run(model.get_span_text(s)) for s in removed] == ["on the start date"]

    _run(proposal.reject(change))
    assert _texts(model)[1] == SENTENCE
    assert _styled(model, proposal) == ([], [])

    _run(proposal.apply(change, _find(model, "on the start date")))
    _run(proposal.render(change))
    _run(proposal.accept(change))
    assert _texts(model)[1] == "1.3 The works shall commence ."


def test_deleting_a_whole_paragraph_removes_it():
    model, proposal = _setup("ARTICLE A-1", "1.2 Keep", SENTENCE)
    span = _run(model.paragraph_range(2))
    change = DeleteChange(old_text=SENTENCE, scope=ParagraphScope(target_paragraph=2, target_end_paragraph=2))
    _run(proposal.apply(change, span))
    _run(proposal.render(change))
    _run(proposal.accept(change))

    assert _texts(model) == ["ARTICLE A-1", "1.2 Keep"]


def test_format_reject_restores_previous_format():
    model, proposal = _setup()
    span = _find(model, "The works")
    change = FormatChange(search_text="The works", format=FormatSpec(bold=True, italic=True), scope=ArticleScope(article_start=0, article_end=1))
    _run(proposal.apply(change, span))

    assert change.previous_format.bold is None
    assert _run(model.get_span_format(span)).bold is True

    _run(proposal.reject(change))
    fmt = _run(model.get_span_format(span))
    assert fmt.bold is None
    assert fmt.italic is None


# ---------------------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------------------


def test_render_failure_is_reported_not_raised():
    model, proposal = _setup()
    change = DeleteChange(old_text="on the start date", scope=ArticleScope(article_start=0, article_end=1))

    warning = _run(proposal.render(change))
    assert warning.startswith(f"Diff rendering failed for {change.id}")


def test_accept_without_render_raises_mismatch():
    model, proposal = _setup()
    change = DeleteChange(old_text="on the start date", scope=ArticleScope(article_start=0, article_end=1))
    with pytest.raises(ProposalMismatchError):
        _run(proposal.accept(change))


def test_proposal_is_found_outside_stale_scope():
    """Scope indexes drift after paragraph inserts; the whole document is searched next."""
    model, proposal = _setup()
    change = _edit(model, proposal, "shall commence", "shall begin")
    _run(model.insert_paragraph(0, "PREAMBLE", before=True))
    change._span = Span(1, 14, 1, 25)

    _run(proposal.accept(change))
    assert _texts(model)[2] == "1.3 The works shall begin on the start date."
