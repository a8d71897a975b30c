# src/secure_viewer/services/rasterizer.py
"""Page rasterization of decrypted documents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import fitz  # PyMuPDF
from PIL import Image

from secure_viewer.core.exceptions import PageOutOfRangeError, ValidationError
from secure_viewer.core.settings import settings


@dataclass(frozen=True)
class RasterPage:
    image: Image.Image
    page_number: int
    page_count: int


class PageRasterizer(Protocol):
    """Turns document bytes into one raster image per 1-based page."""

    def page_count(self, document: bytes) -> int: ...

    def render_page(self, document: bytes, page_number: int) -> RasterPage: ...


class PdfRasterizer:
    """Renders PDF pages with PyMuPDF."""

    def __init__(self, scale: float | None = None) -> None:
        self.scale = settings.render_scale if scale is None else scale

    @staticmethod
    def _open(document: bytes) -> fitz.Document:
        try:
            return fitz.open(stream=document, filetype="pdf")
        except (RuntimeError, ValueError) as err:
            raise ValidationError("Document is not a readable PDF") from err

    def page_count(self, document: bytes) -> int:
        doc = self._open(document)
        try:
            return doc.page_count
        finally:
            doc.close()

    def render_page(self, document: bytes, page_number: int) -> RasterPage:
        doc = self._open(document)
        try:
            total = doc.page_count
            if page_number < 1 or page_number > total:
                raise PageOutOfRangeError(page_number, total)
            matrix = fitz.Matrix(self.scale, self.scale)
            pix = doc[page_number - 1].get_pixmap(matrix=matrix, alpha=False)
            image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
            return RasterPage(image=image, page_number=page_number, page_count=total)
        finally:
            doc.close()
