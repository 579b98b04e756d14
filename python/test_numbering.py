"""
Tests for list label reconstruction from numbering.xml.

Run: pytest test_numbering.py
From: python/
"""

from docx.oxml import parse_xml
from docx.oxml.ns import nsdecls

from scopedit.utils.numbering import ListLabeler, format_number, normalize_label

NUMBERING = f"""
<w:numbering {nsdecls("w")}>
  <w:abstractNum w:abstractNumId="0">
    <w:lvl w:ilvl="0"><w:start w:val="1"/><w:numFmt w:val="decimal"/><w:lvlText w:val="%1."/></w:lvl>
    <w:lvl w:ilvl="1"><w:start w:val="1"/><w:numFmt w:val="decimal"/><w:lvlText w:val="%1.%2"/></w:lvl>
    <w:lvl w:ilvl="2"><w:start w:val="1"/><w:numFmt w:val="lowerLetter"/><w:lvlText w:val="(%3)"/></w:lvl>
  </w:abstractNum>
  <w:abstractNum w:abstractNumId="1">
    <w:lvl w:ilvl="0"><w:start w:val="1"/><w:numFmt w:val="bullet"/><w:lvlText w:val="•"/></w:lvl>
  </w:abstractNum>
  <w:num w:numId="1"><w:abstractNumId w:val="0"/></w:num>
  <w:num w:numId="2"><w:abstractNumId w:val="1"/></w:num>
</w:numbering>
"""

STYLES = f"""
<w:styles {nsdecls("w")}>
  <w:style w:type="paragraph" w:styleId="Clause">
    <w:pPr><w:numPr><w:ilvl w:val="1"/><w:numId w:val="1"/></w:numPr></w:pPr>
  </w:style>
  <w:style w:type="character" w:styleId="Strong"/>
</w:styles>
"""


def _numbered(ilvl, num_id="1"):
    return parse_xml(
        f'<w:p {nsdecls("w")}><w:pPr><w:numPr><w:ilvl w:val="{ilvl}"/><w:numId w:val="{num_id}"/></w:numPr></w:pPr>'
        f"<w:r><w:t>text</w:t></w:r></w:p>"
    )


def _styled(style_id):
    return parse_xml(f'<w:p {nsdecls("w")}><w:pPr><w:pStyle w:val="{style_id}"/></w:pPr><w:r><w:t>text</w:t></w:r></w:p>')


def _plain():
    return parse_xml(f'<w:p {nsdecls("w")}><w:r><w:t>text</w:t></w:r></w:p>')


def _labeler():
    return ListLabeler(parse_xml(NUMBERING.strip()), parse_xml(STYLES.strip()))


def test_multilevel_labels_in_document_order():
    labeler = _labeler()
    levels = [0, 1, 1, 2, 2, 0, 1]
    labels = [labeler.label_for(_numbered(lvl)) for lvl in levels]
    assert labels == ["1.", "1.1", "1.2", "(a)", "(b)", "2.", "2.1"]


def test_unnumbered_paragraphs_have_no_label():
    labeler = _labeler()
    assert labeler.label_for(_plain()) is None
    assert labeler.label_for(_numbered(0, num_id="0")) is None
    assert labeler.label_for(_numbered(0, num_id="99")) is None


def test_style_linked_numbering():
    labeler = _labeler()
    assert labeler.label_for(_styled("Clause")) == "1.1"
    assert labeler.label_for(_styled("Clause")) == "1.2"
    assert labeler.label_for(_styled("Normal")) is None


def test_bullets_use_their_symbol():
    assert _labeler().label_for(_numbered(0, num_id="2")) == "•"


def test_format_number():
    assert format_number(3, "decimal") == "3"
    assert format_number(4, "upperRoman") == "IV"
    assert format_number(9, "lowerRoman") == "ix"
    assert format_number(2, "upperLetter") == "B"
    assert format_number(27, "lowerLetter") == "aa"
    assert format_number(7, "decimalZero") == "07"
    assert format_number(5, "none") == ""


def test_normalize_label():
    assert normalize_label("1.2.") == "1.2"
    assert normalize_label("(a)") == "a"
    assert normalize_label(" 3) ") == "3"
