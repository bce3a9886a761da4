"""Data models for pipeline and conversion results."""

from pydantic import BaseModel, Field

from pdf2md.models.complexity import ComplexityAssessment, ComplexityLevel, PipelineType
from pdf2md.models.llm import (
    DocumentAnalysis,
    DocumentStructure,
    HeadingInfo,
    SectionInfo,
    WindowResult,
)
from pdf2md.models.profiles import DocumentType, LayoutProfile, StructureProfile


class WindowSpec(BaseModel):
    """Contiguous page range processed as one unit by the full pipeline."""

    window_number: int
    start_page: int
    end_page: int
    sections_in_window: list[SectionInfo] = Field(default_factory=list)
    expected_headings: list[HeadingInfo] = Field(default_factory=list)

    class Config:
        frozen = True


class PipelineMetadata(BaseModel):
    """Metadata every strategy reports."""

    page_count: int
    language: str = "Unknown"
    has_toc: bool = False
    processing_time_ms: int = 0
    pipeline: PipelineType
    document_type: DocumentType | None = None
    window_count: int | None = None


class PipelineResult(BaseModel):
    """Output of the direct and light strategies."""

    markdown: str
    contents: list[str] = Field(default_factory=list)
    metadata: PipelineMetadata
    structure: DocumentStructure | None = None
    analysis: DocumentAnalysis | None = None


class FullPipelineResult(PipelineResult):
    """Output of the windowed strategy."""

    windows: list[WindowSpec] = Field(default_factory=list)
    window_results: list[WindowResult] = Field(default_factory=list)


class IntelligentPipelineResult(BaseModel):
    """Output of the four-pass strategy."""

    markdown: str
    metadata: PipelineMetadata
    layout: LayoutProfile
    structure: StructureProfile


class ConversionMetadata(BaseModel):
    page_count: int
    language: str = "Unknown"
    has_toc: bool = False
    processing_time_ms: int = 0
    pipeline: PipelineType
    complexity: ComplexityLevel


class ConversionResult(BaseModel):
    """Uniform result returned by the facade regardless of strategy."""

    markdown: str
    contents: list[str] = Field(default_factory=list)
    metadata: ConversionMetadata
    structure: DocumentStructure | None = None
    analysis: DocumentAnalysis | None = None
    complexity: ComplexityAssessment


class ErrorRecord(BaseModel):
    """A failure observed during a robust conversion."""

    context: str
    error: Exception
    recovered: bool = False

    class Config:
        arbitrary_types_allowed = True


class RobustConversionResult(ConversionResult):
    errors: list[ErrorRecord] = Field(default_factory=list)
    full_success: bool = True
