"""Data models exchanged with the AI conversion service."""

from enum import Enum

from pydantic import BaseModel, Field

from pdf2md.models.complexity import TextDensity


class ContentType(str, Enum):
    """Coarse document category reported by document analysis."""

    INVOICE = "invoice"
    REPORT = "report"
    MANUAL = "manual"
    ACADEMIC = "academic"
    FORM = "form"
    OTHER = "other"


class ImageType(str, Enum):
    """Kind of image detected on a page."""

    PHOTO = "photo"
    DIAGRAM = "diagram"
    CHART = "chart"
    LOGO = "logo"
    ICON = "icon"
    SCREENSHOT = "screenshot"
    OTHER = "other"


class ProviderCapabilities(BaseModel):
    """What an AI service can accept."""

    supports_native_pdf: bool = False
    max_pdf_pages: int = 0
    max_image_size: int = 20 * 1024 * 1024
    max_context_tokens: int = 1_000_000
    has_recitation_filter: bool = False
    supported_image_formats: list[str] = Field(
        default_factory=lambda: ["image/png", "image/jpeg"]
    )


class DocumentAnalysis(BaseModel):
    """Document-level characteristics."""

    language: str = "Unknown"
    has_toc: bool = False
    page_count: int = 0
    estimated_images: int = 0
    estimated_tables: int = 0
    estimated_code_blocks: int = 0
    header_pattern: str | None = None
    footer_pattern: str | None = None
    content_type: ContentType = ContentType.OTHER
    text_density: TextDensity = TextDensity.NORMAL


class HeadingInfo(BaseModel):
    """A heading and the page it appears on."""

    level: int
    text: str
    page: int


class SectionInfo(BaseModel):
    """A section spanning a page range."""

    title: str
    level: int
    start_page: int
    end_page: int
    children: list["SectionInfo"] = Field(default_factory=list)


class DocumentStructure(BaseModel):
    """Heading hierarchy of a document."""

    headings: list[HeadingInfo] = Field(default_factory=list)
    sections: list[SectionInfo] = Field(default_factory=list)
    headings_by_page: dict[int, list[HeadingInfo]] = Field(default_factory=dict)
    max_depth: int = 0


class ImageInfo(BaseModel):
    """An image region the AI service found on a page.

    ``bbox`` is ``[ymin, xmin, ymax, xmax]`` on a 0-1000 scale.
    """

    id: str
    bbox: list[float] = Field(default_factory=lambda: [0, 0, 1000, 1000])
    description: str = "Image"
    type: ImageType = ImageType.OTHER


class PageConversionResult(BaseModel):
    """Markdown for one page."""

    content: str = ""
    images: dict[str, ImageInfo] = Field(default_factory=dict)
    summary: str = ""
    last_paragraph: str = ""
    warnings: list[str] = Field(default_factory=list)


class PageContext(BaseModel):
    """Context sent with each page conversion request."""

    page_number: int
    total_pages: int
    previous_content: str = ""
    previous_summary: str = ""
    expected_headings: list[HeadingInfo] = Field(default_factory=list)
    current_section: str | None = None
    header_pattern: str | None = None
    footer_pattern: str | None = None
    language: str = "Unknown"


# =============================================================================
# Window Context
# =============================================================================


class WindowGlobalContext(BaseModel):
    total_pages: int
    language: str = "Unknown"
    toc: list[HeadingInfo] = Field(default_factory=list)
    header_pattern: str | None = None
    footer_pattern: str | None = None


class WindowPosition(BaseModel):
    window_number: int
    total_windows: int
    start_page: int
    end_page: int
    percent_complete: int = 0


class WindowStructure(BaseModel):
    sections_in_window: list[SectionInfo] = Field(default_factory=list)
    expected_headings: list[HeadingInfo] = Field(default_factory=list)
    continued_section: str | None = None
    section_continues_after: bool = False


class PendingReference(BaseModel):
    id: str
    type: str = "footnote"  # footnote | figure | table


class WindowContinuity(BaseModel):
    previous_window_tail: str = ""
    previous_window_summary: str = ""
    pending_references: list[PendingReference] = Field(default_factory=list)


class WindowExpectations(BaseModel):
    estimated_images: int = 0
    estimated_tables: int = 0
    has_code_blocks: bool = False
    has_math_formulas: bool = False


class WindowContext(BaseModel):
    """Context sent with each window conversion request."""

    global_context: WindowGlobalContext
    position: WindowPosition
    structure: WindowStructure = Field(default_factory=WindowStructure)
    continuity: WindowContinuity = Field(default_factory=WindowContinuity)
    expectations: WindowExpectations = Field(default_factory=WindowExpectations)


class WindowResult(BaseModel):
    """Markdown for one window of pages."""

    markdown: str = ""
    last_paragraph: str = ""
    summary: str = ""
    unresolved_references: list[str] = Field(default_factory=list)
    detected_images: list[ImageInfo] = Field(default_factory=list)
