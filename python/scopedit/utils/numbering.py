"""
Computes the visible list label ("1.2.", "(a)") of auto-numbered paragraphs.

Word never stores the rendered number: it keeps a w:numPr (numId + ilvl) on the
paragraph or on its style, and a level definition (numFmt + lvlText) in
numbering.xml. The label has to be reconstructed by counting paragraphs in
document order.
"""

from typing import Dict, List, Optional, Tuple

import structlog
from docx.document import Document as DocumentObject
from docx.oxml.ns import qn

logger = structlog.get_logger(__name__)

LevelDef = Tuple[str, str, int]  # (numFmt, lvlText, start)


def _to_roman(value: int) -> str:
    numerals = [
        (1000, "m"), (900, "cm"), (500, "d"), (400, "cd"),
        (100, "c"), (90, "xc"), (50, "l"), (40, "xl"),
        (10, "x"), (9, "ix"), (5, "v"), (4, "iv"), (1, "i"),
    ]
    out = ""
    for number, numeral in numerals:
        while value >= number:
            out += numeral
            value -= number
    return out


def _to_letters(value: int) -> str:
    # Word repeats the letter past z: aa, bb, ...
    if value <= 0:
        return ""
    letter = chr(ord("a") + (value - 1) % 26)
    return letter * ((value - 1) // 26 + 1)


def format_number(value: int, num_fmt: str) -> str:
    if num_fmt == "lowerLetter":
        return _to_letters(value)
    if num_fmt == "upperLetter":
        return _to_letters(value).upper()
    if num_fmt == "lowerRoman":
        return _to_roman(value)
    if num_fmt == "upperRoman":
        return _to_roman(value).upper()
    if num_fmt == "decimalZero":
        return f"{value:02d}"
    if num_fmt == "none":
        return ""
    return str(value)


def _val(element, tag: str, default: Optional[str] = None) -> Optional[str]:
    if element is None:
        return default
    child = element.find(qn(tag))
    if child is None:
        return default
    return child.get(qn("w:val"), default)


def _numbering_element(doc: DocumentObject):
    # python-docx creates a default numbering part when the package has none,
    # which would be harmless but pointless; look the relationship up instead.
    try:
        for rel in doc.part.rels.values():
            if rel.reltype.endswith("/numbering"):
                return rel.target_part.element
    except (AttributeError, KeyError):
        logger.debug("Numbering part not readable")
    return None


class ListLabeler:
    """
    Stateful label generator. ``label_for`` must be fed every paragraph of the
    body in document order, otherwise the counters drift.
    """

    def __init__(self, numbering=None, styles=None):
        self._levels: Dict[str, Dict[int, LevelDef]] = {}
        self._num_to_abstract: Dict[str, str] = {}
        self._style_numpr: Dict[str, Tuple[str, int]] = {}
        self._counters: Dict[str, List[Optional[int]]] = {}

        if numbering is not None:
            self._load_numbering(numbering)
        if styles is not None:
            self._load_styles(styles)

    @classmethod
    def for_document(cls, doc: DocumentObject) -> "ListLabeler":
        try:
            styles = doc.styles.element
        except (AttributeError, KeyError):
            styles = None
        return cls(_numbering_element(doc), styles)

    def _load_numbering(self, numbering):
        for abstract in numbering.findall(qn("w:abstractNum")):
            abstract_id = abstract.get(qn("w:abstractNumId"))
            levels = {}
            for lvl in abstract.findall(qn("w:lvl")):
                ilvl = int(lvl.get(qn("w:ilvl"), "0"))
                num_fmt = _val(lvl, "w:numFmt", "decimal")
                lvl_text = _val(lvl, "w:lvlText", "")
                start = int(_val(lvl, "w:start", "1") or 1)
                levels[ilvl] = (num_fmt, lvl_text, start)
            self._levels[abstract_id] = levels

        for num in numbering.findall(qn("w:num")):
            num_id = num.get(qn("w:numId"))
            abstract_id = _val(num, "w:abstractNumId")
            if abstract_id is not None:
                self._num_to_abstract[num_id] = abstract_id

    def _load_styles(self, styles):
        for style in styles.findall(qn("w:style")):
            if style.get(qn("w:type")) != "paragraph":
                continue
            num_pr = style.find(qn("w:pPr") + "/" + qn("w:numPr"))
            if num_pr is None:
                continue
            num_id = _val(num_pr, "w:numId")
            if num_id:
                self._style_numpr[style.get(qn("w:styleId"))] = (num_id, int(_val(num_pr, "w:ilvl", "0") or 0))

    def _numpr_for(self, p_element) -> Optional[Tuple[str, int]]:
        p_pr = p_element.find(qn("w:pPr"))
        if p_pr is None:
            return None
        num_pr = p_pr.find(qn("w:numPr"))
        style_id = _val(p_pr, "w:pStyle")
        style_numpr = self._style_numpr.get(style_id) if style_id else None
        if num_pr is not None:
            num_id = _val(num_pr, "w:numId")
            ilvl_raw = _val(num_pr, "w:ilvl")
            if ilvl_raw is None:
                ilvl = style_numpr[1] if style_numpr else 0
            else:
                ilvl = int(ilvl_raw)
            if num_id is None and style_numpr:
                num_id = style_numpr[0]
            return (num_id, ilvl) if num_id and num_id != "0" else None
        return style_numpr

    def label_for(self, p_element) -> Optional[str]:
        numpr = self._numpr_for(p_element)
        if numpr is None:
            return None
        num_id, ilvl = numpr
        abstract_id = self._num_to_abstract.get(num_id)
        levels = self._levels.get(abstract_id) if abstract_id is not None else None
        if not levels or ilvl not in levels:
            return None

        counters = self._counters.setdefault(abstract_id, [None] * 9)
        for lvl in range(ilvl):
            if counters[lvl] is None:
                counters[lvl] = levels.get(lvl, ("decimal", "", 1))[2]
        current = counters[ilvl]
        counters[ilvl] = levels[ilvl][2] if current is None else current + 1
        for lvl in range(ilvl + 1, len(counters)):
            counters[lvl] = None

        num_fmt, lvl_text, _ = levels[ilvl]
        if num_fmt == "bullet":
            return lvl_text or None

        label = lvl_text
        for lvl in range(ilvl, -1, -1):
            placeholder = f"%{lvl + 1}"
            if placeholder in label:
                fmt = levels.get(lvl, ("decimal", "", 1))[0]
                label = label.replace(placeholder, format_number(counters[lvl] or 0, fmt))
        return label or None


def normalize_label(label: str) -> str:
    """'1.2.' -> '1.2', '(a)' -> 'a'."""
    return label.strip().strip("()").rstrip(".").strip()
