"""Shared fixtures.

Pipeline tests swap the PDF rasterizer and OCR engine for fakes that treat the
document bytes as UTF-8 page texts separated by form feeds. Each page is
"rendered" as a 1 x N x 1 uint8 array of its text bytes and the fake engine
decodes it back, so everything after OCR runs for real.
"""

from datetime import date

import numpy as np
import pytest

from config import PipelineSettings
from extract import BankStatementProcessor
from image_preprocess import ImagePreprocessor
from ocr_processor import OCREngine, OCRResult, RasterizationError
from storage import InMemoryDocumentStore, InMemoryPreferenceStore, InMemoryTransactionStore

TODAY = date(2024, 3, 20)


class TextRasterizer:
    def __init__(self, content: bytes, scale: float = 2.0):
        self.content = content
        self.scale = scale
        self.pages = []

    def __enter__(self):
        if self.content.startswith(b"%BROKEN"):
            raise RasterizationError("Unable to open PDF: broken file")
        self.pages = self.content.decode("utf-8").split("\f")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def render(self, page_index: int, scale=None) -> np.ndarray:
        data = np.frombuffer(self.pages[page_index].encode("utf-8"), dtype=np.uint8)
        return data.reshape(1, -1, 1).copy()


class TextOCREngine(OCREngine):
    name = "text"

    def __init__(self, available: bool = True):
        self.available = available
        self.probes = 0
        self.calls = 0

    def is_available(self) -> bool:
        self.probes += 1
        return self.available

    def recognize(self, image: np.ndarray) -> OCRResult:
        self.calls += 1
        return OCRResult(text=image.tobytes().decode("utf-8"))


STATEMENT_PAGE_1 = """First National Bank
Statement Period: 02/01/2024 to 02/29/2024
Account ending in 1234
New Balance $1,234.56
Payment Due Date 03/25/2024
February 2024
02/03 Purchase at Starbucks 5.75 994.25
02/05 PAYROLL ACME CORP DIRECT DEPOSIT 2,500.00 3,494.25
this line is OCR noise 12
02/07 NETFLIX.COM SUBSCRIPTION 15.99-
"""

STATEMENT_PAGE_2 = """Page 2 of 2
02/12 POS DEBIT WHOLE FOODS MARKET #1234 -82.10
02/14 ZELLE PAYMENT FROM JANE DOE 40.00
02/20 SHELL OIL 57441 (45.00)
"""


@pytest.fixture
def settings():
    return PipelineSettings()


@pytest.fixture
def stores():
    return {
        "document_store": InMemoryDocumentStore(),
        "transaction_store": InMemoryTransactionStore(),
        "preference_store": InMemoryPreferenceStore(),
    }


@pytest.fixture
def ocr_engine():
    return TextOCREngine()


@pytest.fixture
def make_processor(settings, stores, ocr_engine):
    def _make(**overrides):
        kwargs = dict(stores)
        kwargs.update(
            ocr_engine=ocr_engine,
            image_preprocessor=ImagePreprocessor(),
            rasterizer_factory=TextRasterizer,
            today=TODAY,
        )
        kwargs.update(overrides)
        return BankStatementProcessor(settings, **kwargs)

    return _make


@pytest.fixture
def statement_bytes():
    return (STATEMENT_PAGE_1 + "\f" + STATEMENT_PAGE_2).encode("utf-8")
