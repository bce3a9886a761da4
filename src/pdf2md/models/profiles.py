"""Data models for the four-pass intelligent pipeline."""

from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_PAGE_NUMBER_PATTERN = r"^\s*\d+\s*$"


# =============================================================================
# Pass 1: Layout Profile
# =============================================================================


class Zone(str, Enum):
    HEADER = "header"
    FOOTER = "footer"
    MARGIN = "margin"


class FootnoteStyle(str, Enum):
    """How footnote markers look on the page."""

    NUMBERED = "numbered"
    SYMBOLIC = "symbolic"
    NONE = "none"


class ColumnLayout(str, Enum):
    SINGLE = "single"
    DOUBLE = "double"
    MIXED = "mixed"


class ZoneBoundary(BaseModel):
    """Vertical band as percentages of page height."""

    top: float
    bottom: float


class MarginZones(BaseModel):
    """Horizontal margins as percentages of page width."""

    left: float = 5
    right: float = 95


class PageZones(BaseModel):
    header_zone: ZoneBoundary = Field(default_factory=lambda: ZoneBoundary(top=0, bottom=10))
    footer_zone: ZoneBoundary = Field(default_factory=lambda: ZoneBoundary(top=90, bottom=100))
    margin_zones: MarginZones = Field(default_factory=MarginZones)


class RepeatedElements(BaseModel):
    """Running header/footer text and the page-number regex."""

    headers: list[str] = Field(default_factory=list)
    footers: list[str] = Field(default_factory=list)
    page_numbers: str = DEFAULT_PAGE_NUMBER_PATTERN


class DecorativeImagePosition(BaseModel):
    page: int
    zone: Zone


class DecorativeImages(BaseModel):
    positions: list[DecorativeImagePosition] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)


class LayoutProfile(BaseModel):
    """Page layout shared by all pages. Read-only after Pass 1."""

    page_zones: PageZones = Field(default_factory=PageZones)
    repeated_elements: RepeatedElements = Field(default_factory=RepeatedElements)
    decorative_images: DecorativeImages = Field(default_factory=DecorativeImages)
    footnote_style: FootnoteStyle = FootnoteStyle.NONE
    column_layout: ColumnLayout = ColumnLayout.SINGLE


# =============================================================================
# Pass 2: Structure Profile
# =============================================================================


class DocumentType(str, Enum):
    """Closed document-type taxonomy."""

    ACADEMIC = "academic"
    BOOK = "book"
    REPORT = "report"
    MARKETING = "marketing"
    MANUAL = "manual"
    LEGAL = "legal"
    OTHER = "other"


class FootnotePlacement(str, Enum):
    """Where rendered footnote definitions go."""

    DOCUMENT_END = "document-end"
    SECTION_END = "section-end"
    INLINE = "inline"


class CrossReferenceStyle(str, Enum):
    INLINE = "inline"
    ENDNOTE = "endnote"
    CHAPTER_END = "chapter-end"


class PageRange(BaseModel):
    """Inclusive 1-based page range."""

    start: int
    end: int


class TocEntry(BaseModel):
    """Single entry in table of contents."""

    level: int
    title: str
    page: int
    children: list["TocEntry"] = Field(default_factory=list)


class TocInfo(BaseModel):
    explicit: bool = False
    entries: list[TocEntry] = Field(default_factory=list)


class HeadingStyle(BaseModel):
    level: int
    indicators: list[str] = Field(default_factory=list)


class Hierarchy(BaseModel):
    max_depth: int = 2
    heading_styles: list[HeadingStyle] = Field(default_factory=list)


class DocumentSections(BaseModel):
    """Front/body/back matter split. ``body.start <= body.end`` always holds."""

    front_matter: PageRange | None = None
    body: PageRange
    back_matter: PageRange | None = None


class CrossReferences(BaseModel):
    footnote_style: CrossReferenceStyle = CrossReferenceStyle.INLINE
    citation_style: str | None = None


class StructureProfile(BaseModel):
    """Logical structure of the document. Read-only after Pass 2."""

    document_type: DocumentType = DocumentType.OTHER
    toc: TocInfo = Field(default_factory=TocInfo)
    hierarchy: Hierarchy = Field(default_factory=Hierarchy)
    sections: DocumentSections
    cross_references: CrossReferences = Field(default_factory=CrossReferences)


# =============================================================================
# Pass 3: Raw Content
# =============================================================================


class Section(BaseModel):
    """A chunk of page content under one heading.

    Sections form a continuation chain through ``continues_from``, not a tree.
    """

    id: str
    level: int = Field(default=0, ge=0, le=6)
    title: str = ""
    content: str = ""
    footnote_refs: list[str] = Field(default_factory=list)
    image_refs: list[str] = Field(default_factory=list)
    continues_from: str | None = None


class Footnote(BaseModel):
    id: str
    content: str
    page: int


class ImageRef(BaseModel):
    id: str
    description: str = ""
    data_url: str = ""
    page: int
    is_decorative: bool = False


class RawContent(BaseModel):
    """Everything extracted from every page."""

    sections: list[Section] = Field(default_factory=list)
    footnotes: dict[str, Footnote] = Field(default_factory=dict)
    images: dict[str, ImageRef] = Field(default_factory=dict)
    pending_continuations: list[str] = Field(default_factory=list)


# =============================================================================
# Pass 4: Organization
# =============================================================================


class HeadingCorrection(BaseModel):
    """Heading level before and after hierarchy repair."""

    original: int
    corrected: int
    was_fixed: bool = False
