"""
Tests for the python-docx backed DocumentModel.

Run: pytest test_document_model.py
From: python/
"""

import asyncio

import pytest
from docx import Document
from docx.shared import RGBColor

from scopedit.document.base import Span, SpanStyle
from scopedit.document.docx_model import DocxDocumentModel
from scopedit.models import FormatSpec, SearchOptions


def _model(*texts):
    doc = Document()
    for text in texts:
        doc.add_paragraph(text)
    return DocxDocumentModel(doc)


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def test_paragraphs_are_indexed_in_order():
    model = _model("ARTICLE A-1", "First clause.", "Second clause.")
    paragraphs = _run(model.get_paragraphs())

    assert [p.index for p in paragraphs] == [0, 1, 2]
    assert [p.text for p in paragraphs] == ["ARTICLE A-1", "First clause.", "Second clause."]
    assert paragraphs[1].style == "Normal"
    assert paragraphs[1].list_label is None


def test_table_cell_paragraphs_are_included():
    doc = Document()
    doc.add_paragraph("Before table")
    table = doc.add_table(rows=1, cols=2)
    table.cell(0, 0).text = "Left cell"
    table.cell(0, 1).text = "Right cell"
    doc.add_paragraph("After table")
    model = DocxDocumentModel(doc)

    texts = [p.text for p in _run(model.get_paragraphs())]
    assert texts == ["Before table", "Left cell", "Right cell", "After table"]


def test_fragmented_runs_read_as_one_text():
    doc = Document()
    p = doc.add_paragraph()
    p.add_run("Con")
    p.add_run("tract")
    model = DocxDocumentModel(doc)

    assert _run(model.get_paragraphs())[0].text == "Contract"
    hits = _run(model.search_in_range(_run(model.paragraph_range(0)), "contract"))
    assert hits == [Span(0, 0, 0, 8)]


def test_search_options():
    model = _model("The Works and the works", "network")
    scope = _run(model.paragraph_range(0, 1))

    assert len(_run(model.search_in_range(scope, "works"))) == 2
    assert _run(model.search_in_range(scope, "Works", SearchOptions(match_case=True))) == [Span(0, 4, 0, 9)]
    assert _run(model.search_in_range(scope, "work", SearchOptions(match_whole_word=True))) == []


def test_search_respects_offsets_of_scope():
    model = _model("alpha beta alpha")
    hits = _run(model.search_in_range(Span(0, 1, 0, 16), "alpha"))
    assert hits == [Span(0, 11, 0, 16)]


def test_span_text_across_paragraphs():
    model = _model("abc", "def", "ghi")
    assert _run(model.get_span_text(Span(0, 1, 2, 2))) == "bc\ndef\ngh"
    assert _run(model.expand_to(Span(0, 1, 0, 2), Span(2, 0, 2, 2))) == Span(0, 1, 2, 2)


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def test_replace_keeps_formatting_of_replaced_text():
    doc = Document()
    p = doc.add_paragraph()
    p.add_run("The ")
    bold = p.add_run("Contractor")
    bold.bold = True
    p.add_run(" shall")
    model = DocxDocumentModel(doc)

    new_span = _run(model.replace_span(Span(0, 4, 0, 14), "Builder"))

    assert new_span == Span(0, 4, 0, 11)
    assert doc.paragraphs[0].text == "The Builder shall"
    builder = [r for r in doc.paragraphs[0].runs if r.text == "Builder"]
    assert builder and builder[0].bold is True


def test_insert_after_with_line_break():
    model = _model("shall begin on time")
    new_span = _run(model.insert_span_after(Span(0, 0, 0, 11), "\nshall commence"))

    assert new_span == Span(0, 11, 0, 26)
    assert _run(model.get_span_text(new_span)) == "\nshall commence"
    assert _run(model.get_paragraphs())[0].text == "shall begin\nshall commence on time"
    assert model.doc.paragraphs[0]._p.xpath(".//w:br")


def test_insert_before():
    model = _model("world")
    span = _run(model.insert_span_before(Span(0, 0, 0, 5), "hello "))
    assert span == Span(0, 0, 0, 6)
    assert model.full_text() == "hello world"


def test_delete_within_paragraph():
    model = _model("The works shall commence.")
    _run(model.delete_span(Span(0, 9, 0, 15)))
    assert model.full_text() == "The works commence."


def test_delete_across_paragraphs_merges_them():
    model = _model("abc", "def", "ghi", "jkl")
    _run(model.delete_span(Span(0, 1, 2, 1)))

    texts = [p.text for p in _run(model.get_paragraphs())]
    assert texts == ["ahi", "jkl"]


def test_insert_and_delete_paragraph():
    doc = Document()
    doc.add_paragraph("ARTICLE A-1")
    doc.add_paragraph("First item", style="List Bullet")
    model = DocxDocumentModel(doc)

    index = _run(model.insert_paragraph(1, "Second item"))
    assert index == 2
    paragraphs = _run(model.get_paragraphs())
    assert paragraphs[2].text == "Second item"
    assert paragraphs[2].style == "List Bullet"

    before = _run(model.insert_paragraph(1, "Zeroth item", before=True))
    assert before == 1
    assert [p.text for p in _run(model.get_paragraphs())] == ["ARTICLE A-1", "Zeroth item", "First item", "Second item"]

    _run(model.delete_paragraph(1))
    assert [p.text for p in _run(model.get_paragraphs())] == ["ARTICLE A-1", "First item", "Second item"]


def test_paragraph_range_validation():
    model = _model("only")
    with pytest.raises(IndexError):
        _run(model.paragraph_range(3))
    assert _run(model.paragraph_range(0)) == Span(0, 0, 0, 4)


# ---------------------------------------------------------------------------
# Styles and formatting
# ---------------------------------------------------------------------------


def test_span_style_roundtrip_and_styled_spans():
    model = _model("keep green keep red keep")
    green = SpanStyle(color="89D185")
    red = SpanStyle(color="F48771", strikethrough=True)

    _run(model.set_span_style(Span(0, 5, 0, 10), green))
    _run(model.set_span_style(Span(0, 16, 0, 19), red))

    assert _run(model.get_span_style(Span(0, 5, 0, 10))) == green
    assert _run(model.get_span_style(Span(0, 16, 0, 19))) == red
    assert _run(model.get_span_style(Span(0, 0, 0, 4))) == SpanStyle()

    scope = _run(model.paragraph_range(0))
    assert _run(model.styled_spans(scope, green)) == [Span(0, 5, 0, 10)]
    assert _run(model.styled_spans(scope, red)) == [Span(0, 16, 0, 19)]

    _run(model.set_span_style(Span(0, 5, 0, 10), SpanStyle()))
    assert _run(model.styled_spans(scope, green)) == []
    assert model.full_text() == "keep green keep red keep"


def test_mixed_style_reports_no_colour():
    model = _model("half and half")
    _run(model.set_span_style(Span(0, 0, 0, 4), SpanStyle(color="89D185")))
    assert _run(model.get_span_style(Span(0, 0, 0, 13))).color is None


def test_apply_and_restore_format():
    model = _model("Important notice here")
    span = Span(0, 0, 0, 9)

    previous = _run(model.get_span_format(span))
    assert previous.bold is None

    _run(model.apply_span_format(span, FormatSpec(bold=True, font_color="#ff0000", highlight_color="yellow")))
    run = [r for r in model.doc.paragraphs[0].runs if r.text == "Important"][0]
    assert run.bold is True
    assert run.font.color.rgb == RGBColor(0xFF, 0x00, 0x00)

    current = _run(model.get_span_format(span))
    assert current.bold is True
    assert current.highlight_color == "yellow"

    _run(model.apply_span_format(span, previous, reset=True))
    run = [r for r in model.doc.paragraphs[0].runs if r.text == "Important"][0]
    assert run.bold is None
    assert run.font.color.rgb is None
    assert run.font.highlight_color is None


def test_transactions_cannot_nest():
    model = _model("text")

    async def nested():
        async with model.transaction():
            async with model.transaction():
                pass

    with pytest.raises(RuntimeError):
        _run(nested())


def test_concurrent_transactions_wait_their_turn():
    model = _model("text")
    order = []

    async def worker(name):
        async with model.transaction():
            order.append(f"{name} in")
            await asyncio.sleep(0)
            order.append(f"{name} out")

    async def both():
        await asyncio.gather(worker("a"), worker("b"))

    _run(both())
    assert order == ["a in", "a out", "b in", "b out"]


def test_save_and_reload_preserves_text():
    model = _model("ARTICLE A-1", "Body")
    _run(model.insert_span_after(Span(1, 0, 1, 4), " text"))
    reloaded = DocxDocumentModel.from_bytes(model.to_bytes())
    assert reloaded.full_text() == "ARTICLE A-1\nBody text"
