import fitz, hashlib, logging
from typing import Optional
from PIL import Image

log = logging.getLogger("examprep")


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def open_document(data: bytes) -> "fitz.Document":
    """Decode PDF bytes. Raises ValueError when the bytes are not a usable PDF."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ValueError(f"Cannot open as PDF: {e}") from e
    if doc.page_count < 1:
        doc.close()
        raise ValueError("PDF has no pages")
    log.info(f"[extract] decoded pdf sha256={_sha256(data)[:12]} pages={doc.page_count}")
    return doc


class PageTextExtractor:
    """Embedded text layer of one page, no OCR."""

    def extract(self, page: "fitz.Page") -> str:
        blocks = page.get_text("blocks")
        parts = []
        for b in blocks:
            t = b[4]
            if isinstance(t, str) and t.strip():
                parts.append(" ".join(t.split()))
        return " ".join(parts)


class PageRasterizer:
    """Renders one page to a Pillow image at a fixed zoom, for OCR input."""

    def __init__(self, scale: float = 2.0):
        self.scale = scale

    def render(self, page: "fitz.Page") -> Optional[Image.Image]:
        try:
            pix = page.get_pixmap(matrix=fitz.Matrix(self.scale, self.scale), alpha=False)
        except Exception as e:
            log.warning(f"[extract] page {page.number + 1} could not be rasterized: {e}")
            return None
        return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
