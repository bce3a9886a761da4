"""Data models."""

from pdf2md.models.complexity import (
    ComplexityAssessment,
    ComplexityFactors,
    ComplexityLevel,
    PipelineType,
    TextDensity,
)
from pdf2md.models.document import (
    CropOptions,
    EmbeddedImage,
    OutlineItem,
    PdfMetadata,
    RenderOptions,
    VectorRegion,
    VectorRegionType,
)
from pdf2md.models.llm import (
    ContentType,
    DocumentAnalysis,
    DocumentStructure,
    HeadingInfo,
    ImageInfo,
    ImageType,
    PageContext,
    PageConversionResult,
    ProviderCapabilities,
    SectionInfo,
    WindowContext,
    WindowResult,
)
from pdf2md.models.profiles import (
    DocumentType,
    Footnote,
    FootnotePlacement,
    ImageRef,
    LayoutProfile,
    RawContent,
    Section,
    StructureProfile,
    TocEntry,
)
from pdf2md.models.results import (
    ConversionMetadata,
    ConversionResult,
    ErrorRecord,
    FullPipelineResult,
    IntelligentPipelineResult,
    PipelineMetadata,
    PipelineResult,
    RobustConversionResult,
    WindowSpec,
)

__all__ = [
    # Complexity models
    "ComplexityLevel",
    "PipelineType",
    "TextDensity",
    "ComplexityFactors",
    "ComplexityAssessment",
    # Render service models
    "PdfMetadata",
    "OutlineItem",
    "RenderOptions",
    "EmbeddedImage",
    "CropOptions",
    "VectorRegion",
    "VectorRegionType",
    # AI service models
    "ContentType",
    "ImageType",
    "ProviderCapabilities",
    "DocumentAnalysis",
    "HeadingInfo",
    "SectionInfo",
    "DocumentStructure",
    "ImageInfo",
    "PageConversionResult",
    "PageContext",
    "WindowContext",
    "WindowResult",
    # Profile models
    "DocumentType",
    "FootnotePlacement",
    "LayoutProfile",
    "StructureProfile",
    "TocEntry",
    "Section",
    "Footnote",
    "ImageRef",
    "RawContent",
    # Result models
    "WindowSpec",
    "PipelineMetadata",
    "PipelineResult",
    "FullPipelineResult",
    "IntelligentPipelineResult",
    "ConversionMetadata",
    "ConversionResult",
    "ErrorRecord",
    "RobustConversionResult",
]
