"""PDF render/text service backed by pypdf, pdfplumber and Pillow."""

import asyncio
import base64
import io
import logging
import threading
from pathlib import Path

# Suppress warnings about malformed PDF object references from PDF libraries
logging.getLogger("pdfminer").setLevel(logging.ERROR)
logging.getLogger("pypdf").setLevel(logging.ERROR)

import pdfplumber
import pypdf
from PIL import Image
from pypdf.errors import EmptyFileError, FileNotDecryptedError, PdfReadError
from pypdf.generic import ContentStream

from pdf2md.core.services import RenderService
from pdf2md.core.vector_detector import (
    Viewport,
    detect_vector_regions,
    generate_simple_svg,
)
from pdf2md.models.document import (
    CropOptions,
    EmbeddedImage,
    OutlineItem,
    PdfMetadata,
    RenderOptions,
    VectorRegion,
)

log = logging.getLogger(__name__)


def _encode_png(image: Image.Image) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


class PdfRenderService(RenderService):
    """Render and extract pages from a PDF file on disk."""

    def __init__(self, pdf_path: Path):
        self.path = pdf_path
        if not pdf_path.exists():
            raise FileNotFoundError(f"File not found: {pdf_path}")

        try:
            self._reader = pypdf.PdfReader(str(pdf_path))
        except FileNotDecryptedError:
            raise ValueError("PDF is encrypted. Please decrypt first.")
        except EmptyFileError:
            raise ValueError("PDF file is empty.")
        except PdfReadError as e:
            raise ValueError(f"PDF appears corrupted: {e}")

        self._plumber = pdfplumber.open(str(pdf_path))
        # pdfplumber documents must not be rendered from two threads at once
        self._render_lock = threading.Lock()

    def _check_page(self, page_num: int) -> None:
        if not 1 <= page_num <= len(self._reader.pages):
            raise ValueError(
                f"Page {page_num} out of range (1-{len(self._reader.pages)})"
            )

    def page_count(self) -> int:
        return len(self._reader.pages)

    def metadata(self) -> PdfMetadata:
        """Extract document metadata from the PDF info dictionary."""
        info = self._reader.metadata or {}

        def field(key: str) -> str | None:
            value = info.get(key)
            return str(value) if value else None

        return PdfMetadata(
            page_count=self.page_count(),
            title=field("/Title") or self.path.stem,
            author=field("/Author"),
            subject=field("/Subject"),
            creator=field("/Creator"),
            producer=field("/Producer"),
            creation_date=field("/CreationDate"),
        )

    async def outline(self) -> list[OutlineItem] | None:
        """Convert pypdf's nested outline into an OutlineItem tree.

        pypdf represents children as a list directly following their parent.
        """
        if not self._reader.outline:
            return None

        def convert(items: list) -> list[OutlineItem]:
            result: list[OutlineItem] = []
            for item in items:
                if isinstance(item, list):
                    if result:
                        result[-1].children.extend(convert(item))
                    else:
                        result.extend(convert(item))
                    continue

                page_number = None
                try:
                    page_number = self._reader.get_destination_page_number(item) + 1
                except Exception:
                    # Unresolvable destinations keep their title
                    pass
                result.append(OutlineItem(title=str(item.title), page_number=page_number))
            return result

        return convert(self._reader.outline)

    def _render_image(self, page_num: int, dpi: int) -> Image.Image:
        with self._render_lock:
            page = self._plumber.pages[page_num - 1]
            return page.to_image(resolution=dpi).original.convert("RGB")

    async def render_page(self, page_num: int, options: RenderOptions | None = None) -> str:
        self._check_page(page_num)
        dpi = (options or RenderOptions()).dpi
        image = await asyncio.to_thread(self._render_image, page_num, dpi)
        return _encode_png(image)

    async def page_text(self, page_num: int) -> str:
        self._check_page(page_num)
        return self._reader.pages[page_num - 1].extract_text() or ""

    async def crop_image(self, base64_image: str, options: CropOptions) -> str:
        ymin, xmin, ymax, xmax = options.bbox[:4]
        image = Image.open(io.BytesIO(base64.b64decode(base64_image)))

        # 0-1000 scale to pixels
        left = int(xmin / 1000 * image.width)
        top = int(ymin / 1000 * image.height)
        right = max(left + 1, int(xmax / 1000 * image.width))
        bottom = max(top + 1, int(ymax / 1000 * image.height))

        cropped = image.crop((left, top, right, bottom))
        return f"data:image/png;base64,{_encode_png(cropped)}"

    async def extract_page_range(self, start_page: int, end_page: int) -> bytes:
        self._check_page(start_page)
        self._check_page(end_page)

        writer = pypdf.PdfWriter()
        for index in range(start_page - 1, end_page):
            writer.add_page(self._reader.pages[index])

        buffer = io.BytesIO()
        writer.write(buffer)
        return buffer.getvalue()

    async def page_images(self, page_num: int) -> list[EmbeddedImage]:
        self._check_page(page_num)
        images: list[EmbeddedImage] = []

        for image_file in self._reader.pages[page_num - 1].images:
            try:
                pil_image = image_file.image
                if pil_image is None:
                    continue
                images.append(
                    EmbeddedImage(
                        data=image_file.data,
                        width=pil_image.width,
                        height=pil_image.height,
                        format=(pil_image.format or "raw").lower(),
                    )
                )
            except Exception as e:
                # Unsupported filters or broken streams
                log.debug(f"Skipping image {image_file.name} on page {page_num}: {e}")
                continue

        return images

    # =========================================================================
    # Vector Graphics
    # =========================================================================

    def _page_viewport(self, page_num: int, scale: float = 1.0) -> Viewport:
        page = self._reader.pages[page_num - 1]
        return Viewport(
            width=float(page.mediabox.width) * scale,
            height=float(page.mediabox.height) * scale,
            scale=scale,
        )

    async def detect_vector_regions(self, page_num: int) -> list[VectorRegion]:
        self._check_page(page_num)
        page = self._reader.pages[page_num - 1]

        contents = page.get_contents()
        if contents is None:
            return []

        try:
            stream = ContentStream(contents, self._reader)
        except Exception as e:
            log.warning(f"Could not parse content stream of page {page_num}: {e}")
            return []

        return detect_vector_regions(stream.operations, self._page_viewport(page_num))

    async def render_as_svg(self, page_num: int) -> str | None:
        regions = await self.detect_vector_regions(page_num)
        if not regions:
            return None
        return "\n".join(generate_simple_svg(region) for region in regions)

    async def render_region(
        self, page_num: int, region: VectorRegion, scale: float = 3.0
    ) -> str | None:
        self._check_page(page_num)
        image = await asyncio.to_thread(self._render_image, page_num, int(72 * scale))

        x, y, width, height = region.bbox
        cropped = image.crop(
            (
                int(x * scale),
                int(y * scale),
                int((x + width) * scale),
                int((y + height) * scale),
            )
        )
        return _encode_png(cropped)

    def close(self) -> None:
        self._plumber.close()
