"""
Flow-document renderer - one .docx per report.

Title, metadata block, optional description, then a Heading 1 plus
type-specific body for each visible section, closed by a centred footer.
Rich text is projected to plain text; formatting loss is accepted.
"""

import io
import re
import logging
from typing import Callable, Dict, List

from bs4 import BeautifulSoup
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

from section_model import ReportView, SectionType, SectionView, UnknownContent, ensure_exhaustive

logger = logging.getLogger("humanitarian-reports.export.docx")

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
SYSTEM_NAME = "Humanitarian Report System"

FOOTER_COLOR = RGBColor(0x66, 0x66, 0x66)

BLOCK_TAGS = ["p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"]


def html_to_text(html: str) -> str:
    """Plain text of a rich-text body; block elements and <br> become line breaks."""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(BLOCK_TAGS):
        block.append("\n")
    text = re.sub(r"\n{3,}", "\n\n", soup.get_text().replace("\xa0", " "))
    return text.strip()


def _format_location(loc) -> str:
    text = f"• {loc.name} ({loc.type})"
    if loc.affected_people:
        text += f" - {loc.affected_people} affected"
    if loc.description:
        text += f" - {loc.description}"
    return text


def _add_two_column_table(doc, headers: List[str], rows: List[List[str]]) -> None:
    table = doc.add_table(rows=1, cols=2)
    table.style = "Table Grid"
    for cell, header in zip(table.rows[0].cells, headers):
        cell.paragraphs[0].add_run(header).bold = True
    for values in rows:
        cells = table.add_row().cells
        for cell, value in zip(cells, values):
            cell.text = value


def _add_placeholder(doc, section: SectionView) -> None:
    doc.add_paragraph().add_run(f"[{section.type_name} section]").italic = True


# ── Per-type writers ─────────────────────────────────────────

def _rich_text(doc, section: SectionView) -> None:
    doc.add_paragraph(html_to_text(section.content.text))


def _statistics(doc, section: SectionView) -> None:
    stats = section.content.statistics
    if not stats:
        return
    rows = [[stat.label, f"{stat.value} {stat.unit or ''}".strip()] for stat in stats]
    _add_two_column_table(doc, ["Metric", "Value"], rows)


def _chart(doc, section: SectionView) -> None:
    chart = section.content.chart
    caption = chart.title if chart is not None and chart.title else section.title
    doc.add_paragraph().add_run(f"Chart: {caption}").italic = True
    if chart is not None and chart.data:
        rows = [[str(label), str(value)] for label, value in chart.rows()]
        _add_two_column_table(doc, ["Label", "Value"], rows)


def _map(doc, section: SectionView) -> None:
    locations = section.content.locations
    if not locations:
        return
    doc.add_paragraph().add_run("Locations:").bold = True
    for loc in locations:
        doc.add_paragraph(_format_location(loc))


SECTION_WRITERS: Dict[SectionType, Callable[[object, SectionView], None]] = {
    SectionType.TEXT: _rich_text,
    SectionType.RECOMMENDATIONS: _rich_text,
    SectionType.TABLE: _rich_text,
    SectionType.STATISTICS: _statistics,
    SectionType.CHART: _chart,
    SectionType.MAP: _map,
    SectionType.IMAGE_GALLERY: _add_placeholder,
    SectionType.ASSESSMENT_DATA: _add_placeholder,
}
ensure_exhaustive(SECTION_WRITERS, "document renderer")


def _add_metadata_line(doc, label: str, value: str) -> None:
    para = doc.add_paragraph()
    para.add_run(f"{label}: ").bold = True
    para.add_run(value)


def _add_footer_line(doc, text: str) -> None:
    para = doc.add_paragraph()
    para.alignment = WD_ALIGN_PARAGRAPH.CENTER
    run = para.add_run(text)
    run.font.size = Pt(10)
    run.font.color.rgb = FOOTER_COLOR


def render_document(view: ReportView) -> bytes:
    """Build the flow document for a report view and return the .docx bytes."""
    doc = Document()
    doc.core_properties.title = view.title
    if view.author_name:
        doc.core_properties.author = view.author_name

    title = doc.add_heading(view.title, level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    _add_metadata_line(doc, "Organization", view.organisation_name)
    _add_metadata_line(doc, "Author", view.author_name)
    _add_metadata_line(doc, "Date", view.generated_label)
    _add_metadata_line(doc, "Status", view.status)

    if view.description:
        doc.add_paragraph(view.description)

    for section in view.sections:
        doc.add_heading(section.title, level=1)
        if isinstance(section.content, UnknownContent):
            _add_placeholder(doc, section)
        else:
            SECTION_WRITERS[section.content.section_type](doc, section)

    divider = doc.add_paragraph("---")
    divider.alignment = WD_ALIGN_PARAGRAPH.CENTER
    _add_footer_line(doc, f"Generated by {SYSTEM_NAME}")
    _add_footer_line(doc, f"{view.organisation_name} - {view.generated_label}")

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()
