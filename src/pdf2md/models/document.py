"""Data models for the document render/text service."""

from enum import Enum

from pydantic import BaseModel, Field


class PdfMetadata(BaseModel):
    """Document-level metadata."""

    page_count: int
    title: str | None = None
    author: str | None = None
    subject: str | None = None
    creator: str | None = None
    producer: str | None = None
    creation_date: str | None = None


class OutlineItem(BaseModel):
    """Single bookmark in the document outline."""

    title: str
    page_number: int | None = None
    children: list["OutlineItem"] = Field(default_factory=list)


class RenderOptions(BaseModel):
    """Page rasterisation options."""

    dpi: int = 72


class EmbeddedImage(BaseModel):
    """Raster image embedded in a page."""

    data: bytes = b""
    width: int
    height: int
    format: str = "raw"

    class Config:
        arbitrary_types_allowed = True


class CropOptions(BaseModel):
    """Crop box as ``[ymin, xmin, ymax, xmax]`` on a 0-1000 scale."""

    bbox: list[float]


class VectorRegionType(str, Enum):
    """Best-effort classification of a vector drawing cluster."""

    LOGO = "logo"
    DECORATION = "decoration"
    DIAGRAM = "diagram"
    CHART = "chart"
    UNKNOWN = "unknown"


class VectorRegion(BaseModel):
    """A cluster of vector paths. ``bbox`` is ``[x, y, width, height]`` in page units."""

    bbox: list[float]
    type: VectorRegionType = VectorRegionType.UNKNOWN
    path_count: int = 0
    complexity: float = 0.0
