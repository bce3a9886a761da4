"""Interfaces of the external render and AI services."""

from abc import ABC, abstractmethod

from pdf2md.models.document import (
    CropOptions,
    EmbeddedImage,
    OutlineItem,
    PdfMetadata,
    RenderOptions,
    VectorRegion,
)
from pdf2md.models.llm import (
    DocumentAnalysis,
    DocumentStructure,
    PageContext,
    PageConversionResult,
    ProviderCapabilities,
    WindowContext,
    WindowResult,
)


class RenderService(ABC):
    """Page rendering and text extraction for one open document.

    Must be released with ``close()`` (or used as a context manager).
    Pages are numbered from 1.
    """

    @abstractmethod
    def page_count(self) -> int:
        pass

    @abstractmethod
    def metadata(self) -> PdfMetadata:
        pass

    @abstractmethod
    async def outline(self) -> list[OutlineItem] | None:
        """Return the bookmark tree, or None if the document has none."""
        pass

    @abstractmethod
    async def render_page(self, page_num: int, options: RenderOptions | None = None) -> str:
        """Render a page and return it as base64 PNG (no data URL prefix)."""
        pass

    @abstractmethod
    async def page_text(self, page_num: int) -> str:
        pass

    @abstractmethod
    async def crop_image(self, base64_image: str, options: CropOptions) -> str:
        """Crop a rendered page and return the region as a PNG data URL."""
        pass

    @abstractmethod
    async def extract_page_range(self, start_page: int, end_page: int) -> bytes:
        """Return a standalone PDF holding pages ``start_page..end_page``."""
        pass

    @abstractmethod
    async def page_images(self, page_num: int) -> list[EmbeddedImage]:
        pass

    async def detect_vector_regions(self, page_num: int) -> list[VectorRegion]:
        return []

    async def render_as_svg(self, page_num: int) -> str | None:
        return None

    async def render_region(
        self, page_num: int, region: VectorRegion, scale: float = 3.0
    ) -> str | None:
        return None

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class AIService(ABC):
    """AI document-understanding service."""

    name: str = "ai"
    capabilities: ProviderCapabilities = ProviderCapabilities()

    @abstractmethod
    async def analyze_document(self, data: bytes | str) -> DocumentAnalysis:
        """Analyze a whole PDF (bytes) or sampled text (str)."""
        pass

    @abstractmethod
    async def extract_structure(
        self, data: bytes | str, analysis: DocumentAnalysis
    ) -> DocumentStructure:
        pass

    @abstractmethod
    async def convert_page(
        self, image_base64: str, context: PageContext
    ) -> PageConversionResult:
        pass

    @abstractmethod
    async def convert_window(
        self, pdf_data: bytes, context: WindowContext
    ) -> WindowResult:
        pass

    @abstractmethod
    async def summarize(self, content: str, max_length: int = 500) -> str:
        pass

    @abstractmethod
    async def chat(self, prompt: str) -> str:
        """Free-form completion, used for structured analysis prompts."""
        pass
