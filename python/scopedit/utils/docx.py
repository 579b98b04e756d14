"""
Low-level utilities for manipulating DOCX XML structures.
Paragraph text here is always the concatenation of ``get_run_text`` over
``paragraph_runs``; every offset used by the document model depends on that.
"""

from copy import deepcopy
from typing import Iterator, List, Tuple, Union

import structlog
from docx.document import Document as DocumentObject
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.table import Table, _Cell
from docx.text.paragraph import Paragraph
from docx.text.run import Run

logger = structlog.get_logger(__name__)

# Tags whose content is captured by get_run_text or are properties.
_TEXT_TAGS = {
    qn("w:t"),
    qn("w:tab"),
    qn("w:br"),
    qn("w:cr"),
    qn("w:rPr"),
}


def get_run_text(r_element) -> str:
    """
    Extracts text from a w:r element, converting <w:tab/> to a space and <w:br/> to a newline.
    """
    text = ""
    for child in r_element:
        if child.tag == qn("w:t"):
            text += child.text or ""
        elif child.tag == qn("w:tab"):
            text += " "
        elif child.tag in (qn("w:br"), qn("w:cr")):
            text += "\n"
    return text


def set_run_text(r_element, text: str):
    """Replaces the run content; '\\n' becomes <w:br/>, '\\t' becomes <w:tab/>. rPr is kept."""
    Run(r_element, None).text = text


def has_special_content(r_element) -> bool:
    """
    True if the run holds elements that text rewriting would destroy
    (drawings, field characters, comment references...).
    """
    return any(child.tag not in _TEXT_TAGS for child in r_element)


def paragraph_runs(p_element) -> List:
    """Visible runs of a paragraph in document order, including runs inside hyperlinks."""
    return list(p_element.xpath("./w:r | ./w:hyperlink/w:r"))


def run_offsets(p_element) -> List[Tuple[object, int, int]]:
    """[(run, start, end)] with character offsets into the paragraph text."""
    result = []
    cursor = 0
    for r in paragraph_runs(p_element):
        length = len(get_run_text(r))
        result.append((r, cursor, cursor + length))
        cursor += length
    return result


def paragraph_text(p_element) -> str:
    return "".join(get_run_text(r) for r in paragraph_runs(p_element))


def split_run(r_element, split_index: int):
    """Splits a run in two at ``split_index``; both halves keep the original rPr."""
    text = get_run_text(r_element)
    right = deepcopy(r_element)
    set_run_text(r_element, text[:split_index])
    set_run_text(right, text[split_index:])
    r_element.addnext(right)
    return r_element, right


def new_run_like(template, text: str):
    run = OxmlElement("w:r")
    if template is not None and template.rPr is not None:
        run.append(deepcopy(template.rPr))
    set_run_text(run, text)
    return run


def _are_runs_identical(r1, r2) -> bool:
    xml1 = r1.rPr.xml if r1.rPr is not None else ""
    xml2 = r2.rPr.xml if r2.rPr is not None else ""
    return xml1 == xml2


def coalesce_runs(p_element):
    """
    Merges adjacent sibling runs with identical formatting so that words split by
    editing history (["Con", "tract"]) become one run again.
    """
    runs = p_element.findall(qn("w:r"))
    i = 0
    while i < len(runs) - 1:
        current, nxt = runs[i], runs[i + 1]
        if (
            current.getnext() is not nxt
            or has_special_content(current)
            or has_special_content(nxt)
            or not _are_runs_identical(current, nxt)
        ):
            i += 1
            continue
        for child in list(nxt):
            if child.tag == qn("w:rPr"):
                continue
            current.append(child)
        p_element.remove(nxt)
        runs.pop(i + 1)


def iter_block_items(parent) -> Iterator[Union[Paragraph, Table]]:
    """
    Yields Paragraph or Table objects in the order they appear in the XML.
    Supports Document and Cell objects. Recursion is left to the caller.
    """
    if isinstance(parent, DocumentObject):
        parent_elm = parent.element.body
    elif isinstance(parent, _Cell):
        parent_elm = parent._tc
    elif hasattr(parent, "_element"):
        parent_elm = parent._element
    else:
        raise ValueError(f"Unsupported parent type for iteration: {type(parent)}")

    for child in parent_elm.iterchildren():
        if child.tag == qn("w:p"):
            yield Paragraph(child, parent)
        elif child.tag == qn("w:tbl"):
            yield Table(child, parent)


def iter_body_paragraphs(container) -> Iterator[Paragraph]:
    """Flattens the body into paragraphs, descending into table cells (merged cells once)."""
    for item in iter_block_items(container):
        if isinstance(item, Paragraph):
            yield item
        elif isinstance(item, Table):
            for row in item.rows:
                seen = set()
                for cell in row.cells:
                    if cell._tc in seen:
                        continue
                    seen.add(cell._tc)
                    yield from iter_body_paragraphs(cell)


def normalize_docx(doc: DocumentObject):
    """
    Removes proof errors (spellcheck squiggles) and coalesces runs so that text
    search is not defeated by run fragmentation.
    """
    logger.debug("Normalizing DOCX structure")
    for proof_err in doc.element.xpath("//w:proofErr"):
        proof_err.getparent().remove(proof_err)
    for paragraph in iter_body_paragraphs(doc):
        coalesce_runs(paragraph._p)
