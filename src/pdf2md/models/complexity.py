"""Data models for document complexity assessment."""

from enum import Enum

from pydantic import BaseModel, Field


class ComplexityLevel(str, Enum):
    """Overall complexity bucket of a document."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class PipelineType(str, Enum):
    """Conversion strategy."""

    DIRECT = "direct"
    LIGHT = "light"
    FULL = "full"
    INTELLIGENT = "intelligent"


class TextDensity(str, Enum):
    """Average amount of text per page."""

    SPARSE = "sparse"
    NORMAL = "normal"
    DENSE = "dense"


class ComplexityFactors(BaseModel):
    """Signals sampled from the document that feed the score."""

    page_count: int
    has_toc: bool = False
    estimated_images: int = 0
    estimated_tables: int = 0
    has_vector_graphics: bool = False
    text_density: TextDensity = TextDensity.NORMAL
    structure_depth: int = 1
    avg_chars_per_page: int = 0
    has_code: bool = False
    has_math: bool = False


class ComplexityAssessment(BaseModel):
    """Result of classifying a document. Computed once per document."""

    level: ComplexityLevel
    score: int = Field(ge=0, le=100)
    factors: ComplexityFactors
    recommended_pipeline: PipelineType
    estimated_seconds: int = 0
    reasoning: list[str] = Field(default_factory=list)

    class Config:
        frozen = True
