"""
Page rasterization and OCR for scanned statements.
"""
import logging
from typing import List, Optional

import fitz  # PyMuPDF for PDF handling
import numpy as np
import pytesseract
from PIL import Image
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RasterizationError(RuntimeError):
    """The PDF could not be opened or a page could not be rendered."""


class OCRUnavailableError(RuntimeError):
    """No usable OCR engine is installed."""


class OCRResult(BaseModel):
    text: str
    confidence: Optional[float] = None


class PdfRasterizer:
    """Renders pages of an in-memory PDF to RGB numpy arrays."""

    def __init__(self, content: bytes, scale: float = 2.0):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.content = content
        self.scale = scale
        self.pdf: Optional[fitz.Document] = None

    def __enter__(self):
        try:
            self.pdf = fitz.open(stream=self.content, filetype="pdf")
        except Exception as e:
            raise RasterizationError(f"Unable to open PDF: {e}") from e
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.pdf:
            self.pdf.close()
            self.pdf = None

    @property
    def page_count(self) -> int:
        return self.pdf.page_count if self.pdf else 0

    def render(self, page_index: int, scale: Optional[float] = None) -> np.ndarray:
        """
        Render one page.

        Args:
            page_index: Zero-based page number
            scale: Zoom factor; defaults to the rasterizer's scale (2.0 for OCR quality)

        Returns:
            H x W x 3 uint8 RGB array
        """
        if self.pdf is None:
            raise RasterizationError("PDF is not open")

        zoom = scale or self.scale
        try:
            page = self.pdf.load_page(page_index)
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
            img = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
        except Exception as e:
            raise RasterizationError(f"Failed to render page {page_index + 1}: {e}") from e

        if pix.n == 1:
            img = np.repeat(img, 3, axis=2)
        return img.copy()


class OCREngine:
    """Converts a page image to plain text."""

    name = "base"

    def is_available(self) -> bool:
        return False

    def recognize(self, image: np.ndarray) -> OCRResult:
        raise NotImplementedError


class TesseractEngine(OCREngine):
    name = "tesseract"

    def __init__(self, tesseract_cmd: Optional[str] = None, config: str = "--psm 6", lang: str = "eng"):
        self.logger = logging.getLogger(self.__class__.__name__)
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.config = config
        self.lang = lang

    def is_available(self) -> bool:
        try:
            version = pytesseract.get_tesseract_version()
            self.logger.info(f"Tesseract {version} available")
            return True
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            self.logger.error(f"Tesseract not available: {e}")
            return False

    def recognize(self, image: np.ndarray) -> OCRResult:
        text = pytesseract.image_to_string(Image.fromarray(image), lang=self.lang, config=self.config)
        return OCRResult(text=text)


class PaddleEngine(OCREngine):
    name = "paddle"

    def __init__(self, min_confidence: float = 0.5):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.min_confidence = min_confidence
        self.ocr = None

    def is_available(self) -> bool:
        try:
            from paddleocr import PaddleOCR
        except ImportError:
            self.logger.error("PaddleOCR not installed. Install: pip install paddleocr paddlepaddle")
            return False
        if self.ocr is None:
            self.ocr = PaddleOCR(use_angle_cls=True, lang='en')
        return True

    def recognize(self, image: np.ndarray) -> OCRResult:
        if self.ocr is None and not self.is_available():
            raise OCRUnavailableError("PaddleOCR is not available")

        ocr_results = self.ocr.ocr(image, cls=True)

        page_text: List[str] = []
        confidences: List[float] = []
        if ocr_results and ocr_results[0]:
            for result in ocr_results[0]:
                text = result[1][0]
                confidence = result[1][1]
                if confidence > self.min_confidence:
                    page_text.append(text)
                    confidences.append(confidence)

        mean_confidence = sum(confidences) / len(confidences) if confidences else None
        return OCRResult(text='\n'.join(page_text), confidence=mean_confidence)


class OCRProcessor:
    """Handles OCR for rasterized statement pages."""

    def __init__(self, engine: Optional[OCREngine] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.engine = engine or TesseractEngine()
        self._available: Optional[bool] = None

    def ensure_available(self) -> None:
        """Probe the engine once per processor; raise if it can't run."""
        if self._available is None:
            self._available = self.engine.is_available()
        if not self._available:
            raise OCRUnavailableError(f"OCR engine '{self.engine.name}' is not available")

    def recognize(self, image: np.ndarray) -> OCRResult:
        self.ensure_available()
        result = self.engine.recognize(image)
        self.logger.debug(f"OCR extracted {len(result.text)} characters")
        return result


def create_ocr_engine(name: str = "tesseract", tesseract_cmd: Optional[str] = None,
                      min_confidence: float = 0.5) -> OCREngine:
    if name == "paddle":
        return PaddleEngine(min_confidence=min_confidence)
    if name != "tesseract":
        logger.warning(f"Unknown OCR engine '{name}', falling back to tesseract")
    return TesseractEngine(tesseract_cmd=tesseract_cmd)
