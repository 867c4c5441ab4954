"""
HTML renderer - a single self-contained page (inline <style>, no external assets).

Serves both the authenticated download and the anonymous share-link view.
Rich-text payloads (TEXT, RECOMMENDATIONS, TABLE) are emitted verbatim: they
come from authenticated editors only. Everything else is escaped.
"""

import logging
from html import escape
from typing import Callable, Dict, List

from section_model import ReportView, SectionType, SectionView, UnknownContent, ensure_exhaustive

logger = logging.getLogger("humanitarian-reports.export.html")

HTML_MIME_TYPE = "text/html; charset=utf-8"
SYSTEM_NAME = "Humanitarian Report System"

STYLESHEET = """
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; background: #f5f5f5; }
    .container { max-width: 900px; margin: 0 auto; padding: 20px; background: #fff; box-shadow: 0 0 20px rgba(0,0,0,0.1); }
    .header { text-align: center; padding: 40px 0; border-bottom: 3px solid #2563eb; margin-bottom: 40px; }
    h1 { color: #2563eb; font-size: 2.5em; margin-bottom: 20px; }
    .description { font-size: 1.1em; color: #6b7280; margin-top: 10px; }
    .metadata { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 15px; padding: 20px; background: #f9fafb; border-radius: 8px; margin-bottom: 40px; }
    .metadata-item { display: flex; flex-direction: column; }
    .metadata-label { font-weight: 600; color: #6b7280; font-size: 0.9em; text-transform: uppercase; }
    .metadata-value { color: #111827; font-size: 1.1em; margin-top: 4px; }
    .section { margin-bottom: 40px; padding: 20px 0; border-bottom: 1px solid #e5e7eb; }
    .section:last-child { border-bottom: none; }
    h2 { color: #1e40af; font-size: 1.8em; margin-bottom: 20px; padding-bottom: 10px; border-bottom: 2px solid #dbeafe; }
    .statistics { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 20px; margin: 20px 0; }
    .stat-card { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: #fff; padding: 20px; border-radius: 12px; box-shadow: 0 4px 6px rgba(0,0,0,0.1); }
    .stat-value { font-size: 2em; font-weight: bold; margin-bottom: 8px; }
    .stat-label { font-size: 0.9em; opacity: 0.9; }
    table { width: 100%; border-collapse: collapse; margin: 20px 0; }
    th, td { border: 1px solid #e5e7eb; padding: 12px; text-align: left; }
    th { background-color: #f3f4f6; font-weight: 600; }
    tr:nth-child(even) { background-color: #f9fafb; }
    .placeholder { background: #f3f4f6; padding: 40px; text-align: center; border-radius: 8px; color: #6b7280; font-style: italic; }
    .location-list { list-style: none; padding: 0; }
    .location-item { background: #f9fafb; padding: 15px; margin-bottom: 10px; border-radius: 8px; border-left: 4px solid #2563eb; }
    .location-name { font-weight: 600; color: #111827; margin-bottom: 5px; }
    .location-details { color: #6b7280; font-size: 0.9em; }
    .footer { text-align: center; margin-top: 60px; padding-top: 30px; border-top: 2px solid #e5e7eb; color: #6b7280; }
    .footer-logo { font-size: 1.2em; font-weight: 600; color: #2563eb; margin-bottom: 10px; }
    .footer-note { margin-top: 10px; font-size: 0.9em; }
    @media print { body { background: #fff; } .container { box-shadow: none; max-width: 100%; } }
"""


def _placeholder(text: str) -> str:
    return f'<div class="placeholder">{escape(text)}</div>'


# ── Per-type fragments ───────────────────────────────────────

def _rich_text(section: SectionView) -> str:
    return f"<div>{section.content.text}</div>"


def _stat_value(stat) -> str:
    return f"{stat.value} {stat.unit or ''}".strip()


def _statistics(section: SectionView) -> str:
    stats = section.content.statistics
    if not stats:
        return ""
    cards = "".join(
        '<div class="stat-card">'
        f'<div class="stat-value">{escape(_stat_value(stat))}</div>'
        f'<div class="stat-label">{escape(stat.label)}</div>'
        "</div>"
        for stat in stats
    )
    return f'<div class="statistics">{cards}</div>'


def _chart(section: SectionView) -> str:
    chart = section.content.chart
    caption = chart.title if chart is not None and chart.title else section.title
    html = _placeholder(f"Chart: {caption}")
    if chart is not None and chart.data:
        rows = "".join(
            f"<tr><td>{escape(str(label))}</td><td>{escape(str(value))}</td></tr>"
            for label, value in chart.rows()
        )
        html += f"<table><thead><tr><th>Label</th><th>Value</th></tr></thead><tbody>{rows}</tbody></table>"
    return html


def _map(section: SectionView) -> str:
    locations = section.content.locations
    if not locations:
        return ""
    items: List[str] = []
    for loc in locations:
        details = ""
        if loc.affected_people:
            details += f"Affected: {loc.affected_people} people • "
        details += f"Coordinates: {loc.latitude}, {loc.longitude}"
        if loc.description:
            details += f"<br>{escape(loc.description)}"
        items.append(
            '<li class="location-item">'
            f'<div class="location-name">{escape(loc.name)} ({escape(loc.type)})</div>'
            f'<div class="location-details">{details}</div>'
            "</li>"
        )
    return f'<ul class="location-list">{"".join(items)}</ul>'


def _image_gallery(section: SectionView) -> str:
    return _placeholder("Image gallery - Images not included in this export")


def _assessment_data(section: SectionView) -> str:
    return _placeholder("Assessment data section")


SECTION_FRAGMENTS: Dict[SectionType, Callable[[SectionView], str]] = {
    SectionType.TEXT: _rich_text,
    SectionType.RECOMMENDATIONS: _rich_text,
    SectionType.TABLE: _rich_text,
    SectionType.STATISTICS: _statistics,
    SectionType.CHART: _chart,
    SectionType.MAP: _map,
    SectionType.IMAGE_GALLERY: _image_gallery,
    SectionType.ASSESSMENT_DATA: _assessment_data,
}
ensure_exhaustive(SECTION_FRAGMENTS, "HTML renderer")


def render_section(section: SectionView) -> str:
    if isinstance(section.content, UnknownContent):
        body = _placeholder(f"[{section.type_name} section]")
    else:
        body = SECTION_FRAGMENTS[section.content.section_type](section)
    return f'<div class="section"><h2>{escape(section.title)}</h2>{body}</div>'


def _metadata_item(label: str, value: str) -> str:
    return (
        '<div class="metadata-item">'
        f'<span class="metadata-label">{label}</span>'
        f'<span class="metadata-value">{escape(value)}</span>'
        "</div>"
    )


def render_html(view: ReportView) -> str:
    """Render a report view as a complete HTML document."""
    description = f'<p class="description">{escape(view.description)}</p>' if view.description else ""
    metadata = "".join([
        _metadata_item("Organization", view.organisation_name),
        _metadata_item("Author", view.author_name),
        _metadata_item("Date", view.generated_label),
        _metadata_item("Status", view.status),
    ])
    sections = "\n".join(render_section(section) for section in view.sections)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{escape(view.title)}</title>
<style>{STYLESHEET}</style>
</head>
<body>
<div class="container">
<div class="header">
<h1>{escape(view.title)}</h1>
{description}
</div>
<div class="metadata">{metadata}</div>
{sections}
<div class="footer">
<div class="footer-logo">{SYSTEM_NAME}</div>
<p>{escape(view.organisation_name)} - {view.generated_label}</p>
<p class="footer-note">This report was automatically generated and may contain sensitive information.</p>
</div>
</div>
</body>
</html>
"""
