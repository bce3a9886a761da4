"""Shared fixtures and fake services for pdf2md tests."""

import pytest

from pdf2md.core.services import AIService, RenderService
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
    WindowContext,
    WindowResult,
)


class FakeRenderService(RenderService):
    """In-memory document: one text string per page."""

    def __init__(
        self,
        pages: list[str],
        outline: list[OutlineItem] | None = None,
        images_per_page: int = 0,
        regions: list[VectorRegion] | None = None,
    ):
        self.pages = pages
        self._outline = outline
        self.images_per_page = images_per_page
        self.regions = regions or []
        self.rendered: list[int] = []
        self.closed = False

    def page_count(self) -> int:
        return len(self.pages)

    def metadata(self) -> PdfMetadata:
        return PdfMetadata(page_count=len(self.pages), title="Fake document")

    async def outline(self) -> list[OutlineItem] | None:
        return self._outline

    async def render_page(self, page_num: int, options: RenderOptions | None = None) -> str:
        self.rendered.append(page_num)
        return f"page-{page_num}-png"

    async def page_text(self, page_num: int) -> str:
        return self.pages[page_num - 1]

    async def crop_image(self, base64_image: str, options: CropOptions) -> str:
        return f"data:image/png;base64,{base64_image}-crop"

    async def extract_page_range(self, start_page: int, end_page: int) -> bytes:
        return f"pdf:{start_page}-{end_page}".encode()

    async def page_images(self, page_num: int) -> list[EmbeddedImage]:
        return [EmbeddedImage(width=100, height=100) for _ in range(self.images_per_page)]

    async def detect_vector_regions(self, page_num: int) -> list[VectorRegion]:
        return self.regions

    def close(self) -> None:
        self.closed = True


class FakeAIService(AIService):
    """Scripted AI service.

    ``page_results`` maps page numbers to conversion results; pages without
    an entry get ``"Page N content."``. ``chat_responses`` are returned in
    order, repeating the last one.
    """

    name = "fake"

    def __init__(
        self,
        page_results: dict[int, PageConversionResult] | None = None,
        chat_responses: list[str] | None = None,
        structure: DocumentStructure | None = None,
        analysis: DocumentAnalysis | None = None,
    ):
        self.page_results = page_results or {}
        self.chat_responses = chat_responses or ["{}"]
        self.structure = structure or DocumentStructure()
        self.analysis = analysis or DocumentAnalysis(language="English")
        self.page_contexts: list[PageContext] = []
        self.window_contexts: list[WindowContext] = []
        self.prompts: list[str] = []

    async def analyze_document(self, data: bytes | str) -> DocumentAnalysis:
        return self.analysis

    async def extract_structure(
        self, data: bytes | str, analysis: DocumentAnalysis
    ) -> DocumentStructure:
        return self.structure

    async def convert_page(
        self, image_base64: str, context: PageContext
    ) -> PageConversionResult:
        self.page_contexts.append(context)
        result = self.page_results.get(context.page_number)
        if result is None:
            return PageConversionResult(
                content=f"Page {context.page_number} content.",
                summary=f"Summary of page {context.page_number}",
            )
        return result

    async def convert_window(self, pdf_data: bytes, context: WindowContext) -> WindowResult:
        self.window_contexts.append(context)
        position = context.position
        return WindowResult(
            markdown=f"Window {position.window_number} covers pages "
            f"{position.start_page}-{position.end_page}.",
            summary=f"Window {position.window_number}",
        )

    async def summarize(self, content: str, max_length: int = 500) -> str:
        return content[:max_length]

    async def chat(self, prompt: str) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.chat_responses)) - 1
        return self.chat_responses[index]


@pytest.fixture
def four_page_render():
    return FakeRenderService(
        [
            "Introduction\nThis document explains things.",
            "Chapter one text continues here.",
            "More text on the third page.",
            "Conclusion and closing remarks.",
        ]
    )


@pytest.fixture
def fake_ai():
    return FakeAIService()
