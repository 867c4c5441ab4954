"""
Spreadsheet renderer - one .xlsx workbook per report.

Sheet layout:
  Overview            title, metadata block, contents list of every section
  Statistics N        one per STATISTICS section with data
  Chart N             one per CHART section with data points
  Locations N         one per MAP section with locations
  Assessment N        placeholder per ASSESSMENT_DATA section
  Assessments         report-level assessments, when present
N is the section's 1-based position among the visible sections.
"""

import io
import logging
from typing import Callable, Dict, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from section_model import (
    DATE_FORMAT, ReportView, SectionType, SectionView, UnknownContent, ensure_exhaustive,
)

logger = logging.getLogger("humanitarian-reports.export.xlsx")

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TITLE_FONT = Font(size=16, bold=True)
SHEET_TITLE_FONT = Font(size=14, bold=True)
BOLD_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color="DBEAFE", end_color="DBEAFE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

THOUSANDS_FORMAT = "#,##0"
COORDINATE_FORMAT = "0.000000"
ASSESSMENT_PLACEHOLDER = "Assessment data export coming soon"

OVERVIEW_WIDTH = 4  # columns A:D


def _apply_header_style(ws: Worksheet, row: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = BOLD_FONT
        cell.fill = HEADER_FILL
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center")


def _set_widths(ws: Worksheet, width: int, col_count: int) -> None:
    for col in range(1, col_count + 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def _write_sheet_title(ws: Worksheet, title: str, col_count: int) -> None:
    ws["A1"] = title
    ws["A1"].font = SHEET_TITLE_FONT
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=col_count)


def _write_header(ws: Worksheet, row: int, headers) -> None:
    for col, header in enumerate(headers, 1):
        ws.cell(row=row, column=col, value=header)
    _apply_header_style(ws, row, len(headers))


# ── Per-type sheet writers ───────────────────────────────────
# Each returns the name of the sheet it created, or None.

def _statistics_sheet(wb: Workbook, section: SectionView) -> Optional[str]:
    stats = section.content.statistics
    if not stats:
        return None
    ws = wb.create_sheet(f"Statistics {section.position}")
    _write_sheet_title(ws, section.title, 3)
    _write_header(ws, 3, ["Metric", "Value", "Unit"])
    for row, stat in enumerate(stats, 4):
        ws.cell(row=row, column=1, value=stat.label)
        value_cell = ws.cell(row=row, column=2, value=stat.value)
        value_cell.number_format = THOUSANDS_FORMAT
        ws.cell(row=row, column=3, value=stat.unit or "")
    _set_widths(ws, 25, 3)
    return ws.title


def _chart_sheet(wb: Workbook, section: SectionView) -> Optional[str]:
    chart = section.content.chart
    if chart is None or not chart.data:
        return None
    rows = chart.rows()
    ws = wb.create_sheet(f"Chart {section.position}")
    _write_sheet_title(ws, chart.title or section.title, 2)
    _write_header(ws, 3, ["Label", "Value"])
    for row, (label, value) in enumerate(rows, 4):
        ws.cell(row=row, column=1, value=label)
        ws.cell(row=row, column=2, value=value).number_format = THOUSANDS_FORMAT
    _set_widths(ws, 25, 2)
    return ws.title


def _locations_sheet(wb: Workbook, section: SectionView) -> Optional[str]:
    locations = section.content.locations
    if not locations:
        return None
    ws = wb.create_sheet(f"Locations {section.position}")
    _write_sheet_title(ws, section.title, 6)
    _write_header(ws, 3, ["Name", "Type", "Latitude", "Longitude", "Affected People", "Description"])
    for row, loc in enumerate(locations, 4):
        ws.cell(row=row, column=1, value=loc.name)
        ws.cell(row=row, column=2, value=loc.type)
        ws.cell(row=row, column=3, value=loc.latitude).number_format = COORDINATE_FORMAT
        ws.cell(row=row, column=4, value=loc.longitude).number_format = COORDINATE_FORMAT
        ws.cell(row=row, column=5, value=loc.affected_people).number_format = THOUSANDS_FORMAT
        ws.cell(row=row, column=6, value=loc.description or "")
    _set_widths(ws, 20, 6)
    return ws.title


def _assessment_data_sheet(wb: Workbook, section: SectionView) -> Optional[str]:
    ws = wb.create_sheet(f"Assessment {section.position}")
    _write_sheet_title(ws, section.title, 4)
    ws["A3"] = ASSESSMENT_PLACEHOLDER
    _set_widths(ws, 20, 4)
    return ws.title


def _no_sheet(wb: Workbook, section: SectionView) -> Optional[str]:
    # Listed in the Overview contents only
    return None


SHEET_WRITERS: Dict[SectionType, Callable[[Workbook, SectionView], Optional[str]]] = {
    SectionType.TEXT: _no_sheet,
    SectionType.RECOMMENDATIONS: _no_sheet,
    SectionType.TABLE: _no_sheet,
    SectionType.IMAGE_GALLERY: _no_sheet,
    SectionType.STATISTICS: _statistics_sheet,
    SectionType.CHART: _chart_sheet,
    SectionType.MAP: _locations_sheet,
    SectionType.ASSESSMENT_DATA: _assessment_data_sheet,
}
ensure_exhaustive(SHEET_WRITERS, "spreadsheet renderer")


# ── Overview & assessments ───────────────────────────────────

def _write_overview(ws: Worksheet, view: ReportView) -> int:
    """Title + metadata block. Returns the next free row."""
    ws["A1"] = view.title
    ws["A1"].font = TITLE_FONT
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=OVERVIEW_WIDTH)

    metadata = [
        ("Organization:", view.organisation_name),
        ("Author:", view.author_name),
        ("Date:", view.generated_label),
        ("Status:", view.status),
    ]
    row = 3
    for label, value in metadata:
        ws.cell(row=row, column=1, value=label).font = BOLD_FONT
        ws.cell(row=row, column=2, value=value)
        row += 1

    if view.description:
        row += 1
        ws.cell(row=row, column=1, value="Description:").font = BOLD_FONT
        ws.cell(row=row, column=2, value=view.description).alignment = Alignment(wrap_text=True)
        ws.merge_cells(start_row=row, start_column=2, end_row=row, end_column=OVERVIEW_WIDTH)
        row += 1

    _set_widths(ws, 20, OVERVIEW_WIDTH)
    return row + 1


def _write_contents(ws: Worksheet, start_row: int, view: ReportView, sheet_names: Dict[str, str]) -> None:
    if not view.sections:
        return
    ws.cell(row=start_row, column=1, value="Sections").font = SHEET_TITLE_FONT
    _write_header(ws, start_row + 1, ["#", "Title", "Type", "Sheet"])
    for row, section in enumerate(view.sections, start_row + 2):
        ws.cell(row=row, column=1, value=section.position)
        ws.cell(row=row, column=2, value=section.title)
        ws.cell(row=row, column=3, value=section.type_name)
        ws.cell(row=row, column=4, value=sheet_names.get(section.id, ""))


def _write_assessments(wb: Workbook, view: ReportView) -> None:
    ws = wb.create_sheet("Assessments")
    _write_header(ws, 1, ["Location", "Type", "Affected People", "Households", "Start Date", "End Date"])
    for row, assessment in enumerate(view.assessments, 2):
        ws.cell(row=row, column=1, value=assessment.location)
        ws.cell(row=row, column=2, value=assessment.type)
        ws.cell(row=row, column=3, value=assessment.affected_people).number_format = THOUSANDS_FORMAT
        ws.cell(row=row, column=4, value=assessment.households).number_format = THOUSANDS_FORMAT
        ws.cell(row=row, column=5, value=assessment.start_date.strftime(DATE_FORMAT) if assessment.start_date else "")
        ws.cell(row=row, column=6, value=assessment.end_date.strftime(DATE_FORMAT) if assessment.end_date else "")
    _set_widths(ws, 20, 6)


def render_workbook(view: ReportView) -> bytes:
    """Build the workbook for a report view and return the .xlsx bytes."""
    wb = Workbook()
    if view.author_name:
        wb.properties.creator = view.author_name
    wb.properties.title = view.title

    overview = wb.active
    overview.title = "Overview"
    contents_row = _write_overview(overview, view)

    sheet_names: Dict[str, str] = {}
    for section in view.sections:
        if isinstance(section.content, UnknownContent):
            continue
        sheet_name = SHEET_WRITERS[section.content.section_type](wb, section)
        if sheet_name:
            sheet_names[section.id] = sheet_name

    _write_contents(overview, contents_row, view, sheet_names)

    if view.assessments:
        _write_assessments(wb, view)

    buf = io.BytesIO()
    wb.save(buf)
    logger.debug(f"Workbook for report {view.id[:8]}: sheets={wb.sheetnames}")
    return buf.getvalue()
