"""
Humanitarian Report System - Section Model

Format-agnostic representation of a report and its typed sections.
Every renderer consumes a ReportView built by `build_report_view`, which is
the only place sections are filtered to visible ones and sorted by order.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

DATE_FORMAT = "%Y-%m-%d"


class SectionType(str, Enum):
    TEXT = "TEXT"
    STATISTICS = "STATISTICS"
    CHART = "CHART"
    MAP = "MAP"
    TABLE = "TABLE"
    IMAGE_GALLERY = "IMAGE_GALLERY"
    ASSESSMENT_DATA = "ASSESSMENT_DATA"
    RECOMMENDATIONS = "RECOMMENDATIONS"


# ============================================================
# CONTENT PAYLOADS (one variant per section type)
# ============================================================

class _Content(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    section_type: ClassVar[SectionType]


class Statistic(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: Union[int, float, str]
    unit: Optional[str] = None


class ChartSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: str = ""
    data: List[Dict[str, Any]] = Field(default_factory=list)
    x_axis_key: str = Field("label", alias="xAxisKey")
    data_key: str = Field("value", alias="dataKey")

    def rows(self) -> List[Tuple[Any, Any]]:
        """(label, value) pairs in data order. A record missing either key raises KeyError."""
        return [(record[self.x_axis_key], record[self.data_key]) for record in self.data]


class Location(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    type: str = ""
    latitude: float
    longitude: float
    affected_people: Optional[int] = Field(None, alias="affectedPeople")
    description: Optional[str] = None


class MapSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    locations: List[Location] = Field(default_factory=list)


class TextContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.TEXT
    text: str = ""


class RecommendationsContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.RECOMMENDATIONS
    text: str = ""


class TableContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.TABLE
    text: str = ""  # pre-rendered HTML table markup


class StatisticsContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.STATISTICS
    statistics: List[Statistic] = Field(default_factory=list)


class ChartContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.CHART
    chart: Optional[ChartSpec] = None


class MapContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.MAP
    map: Optional[MapSpec] = None

    @property
    def locations(self) -> List[Location]:
        return list(self.map.locations) if self.map else []


class ImageGalleryContent(_Content):
    section_type: ClassVar[SectionType] = SectionType.IMAGE_GALLERY
    images: List[Any] = Field(default_factory=list)


class AssessmentDataContent(_Content):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    section_type: ClassVar[SectionType] = SectionType.ASSESSMENT_DATA


@dataclass(frozen=True)
class UnknownContent:
    """Payload of a stored section whose type tag is not a SectionType"""
    raw_type: str
    data: Dict[str, Any] = field(default_factory=dict)


SectionContent = Union[
    TextContent, RecommendationsContent, TableContent, StatisticsContent,
    ChartContent, MapContent, ImageGalleryContent, AssessmentDataContent,
    UnknownContent,
]

CONTENT_MODELS: Dict[SectionType, type] = {
    SectionType.TEXT: TextContent,
    SectionType.RECOMMENDATIONS: RecommendationsContent,
    SectionType.TABLE: TableContent,
    SectionType.STATISTICS: StatisticsContent,
    SectionType.CHART: ChartContent,
    SectionType.MAP: MapContent,
    SectionType.IMAGE_GALLERY: ImageGalleryContent,
    SectionType.ASSESSMENT_DATA: AssessmentDataContent,
}


def parse_section_type(raw_type: str) -> Optional[SectionType]:
    try:
        return SectionType(raw_type)
    except ValueError:
        return None


def parse_section_content(raw_type: str, raw: Optional[Dict[str, Any]]) -> SectionContent:
    """Validate a stored JSON payload into its typed variant.

    Raises pydantic.ValidationError when the payload does not fit the type.
    """
    section_type = parse_section_type(raw_type)
    if section_type is None:
        return UnknownContent(raw_type=raw_type, data=dict(raw or {}))
    return CONTENT_MODELS[section_type].model_validate(raw or {})


def ensure_exhaustive(handlers: Dict[SectionType, Any], owner: str) -> None:
    """Fail at import time when a renderer lacks a handler for some SectionType"""
    missing = [t.value for t in SectionType if t not in handlers]
    if missing:
        raise RuntimeError(f"{owner} has no handler for section types: {', '.join(missing)}")


# ============================================================
# REPORT VIEW (what renderers consume)
# ============================================================

@dataclass(frozen=True)
class SectionView:
    id: str
    title: str
    order: int
    position: int  # 1-based among visible sections, in render order
    content: SectionContent

    @property
    def type_name(self) -> str:
        if isinstance(self.content, UnknownContent):
            return self.content.raw_type
        return self.content.section_type.value


@dataclass(frozen=True)
class AssessmentRow:
    location: str
    type: str
    affected_people: int
    households: int
    start_date: Optional[datetime]
    end_date: Optional[datetime]


@dataclass(frozen=True)
class ReportView:
    id: str
    title: str
    slug: str
    description: Optional[str]
    status: str
    organisation_name: str
    author_name: str
    generated_on: date
    sections: Tuple[SectionView, ...] = ()
    assessments: Tuple[AssessmentRow, ...] = ()

    @property
    def generated_label(self) -> str:
        return self.generated_on.strftime(DATE_FORMAT)


def _enum_value(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _author_name(author: Any) -> str:
    if author is None:
        return ""
    name = getattr(author, "display_name", None)
    if name:
        return name
    return f"{getattr(author, 'first_name', '')} {getattr(author, 'last_name', '')}".strip()


def visible_sections_in_order(sections: List[Any]) -> List[Any]:
    return sorted((s for s in sections if s.is_visible), key=lambda s: s.order)


def build_report_view(report: Any, today: Optional[date] = None) -> ReportView:
    """Snapshot a loaded report into the view every renderer consumes.

    Invisible sections are dropped and the rest sorted by `order` here and
    nowhere else; `position` is assigned over the visible sequence.
    """
    sections = tuple(
        SectionView(
            id=section.id,
            title=section.title,
            order=section.order,
            position=position,
            content=parse_section_content(section.type, section.content),
        )
        for position, section in enumerate(visible_sections_in_order(report.sections or []), start=1)
    )

    assessments = tuple(
        AssessmentRow(
            location=a.location,
            type=_enum_value(a.type),
            affected_people=a.affected_people or 0,
            households=a.households or 0,
            start_date=a.start_date,
            end_date=a.end_date,
        )
        for a in (getattr(report, "assessments", None) or [])
    )

    organisation = getattr(report, "organisation", None)
    return ReportView(
        id=report.id,
        title=report.title,
        slug=report.slug,
        description=report.description,
        status=_enum_value(report.status),
        organisation_name=organisation.name if organisation is not None else "",
        author_name=_author_name(getattr(report, "author", None)),
        generated_on=today or datetime.now(timezone.utc).date(),
        sections=sections,
        assessments=assessments,
    )
