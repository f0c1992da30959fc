"""
Runtime settings for the statement extraction pipeline.

Values come from ``BSP_*`` environment variables; anything unset falls back to
the defaults below.
"""
import os
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


def getenv_str(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    return v if v is not None else default


def getenv_int(name: str, default: int) -> int:
    v = os.getenv(name)
    try:
        return int(v) if v is not None else default
    except ValueError:
        return default


def getenv_float(name: str, default: float) -> float:
    v = os.getenv(name)
    try:
        return float(v) if v is not None else default
    except ValueError:
        return default


def getenv_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


class PipelineSettings(BaseModel):
    """Tunable limits and collaborator settings."""

    # Currency sanity bounds
    min_amount: Decimal = Decimal("-100000")
    max_amount: Decimal = Decimal("100000")
    max_reasonable_amount: Decimal = Decimal("50000")

    # Deduplication / categorization thresholds
    similarity_threshold: float = Field(0.8, ge=0, le=1)
    ai_confidence_threshold: float = Field(0.7, ge=0, le=1)

    # Rasterization / OCR
    render_scale: float = 2.0
    ocr_engine: str = "tesseract"
    tesseract_cmd: Optional[str] = None
    ocr_min_confidence: float = 0.5

    # Smart categorization (OpenAI-compatible endpoint)
    smart_categorization: bool = False
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: Optional[str] = None
    llm_timeout: int = 30

    # Logging / storage
    log_level: str = "INFO"
    log_file: Optional[str] = None
    store_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        max_amount = getenv_float("BSP_MAX_AMOUNT", 100000.0)
        return cls(
            min_amount=Decimal(str(-abs(max_amount))),
            max_amount=Decimal(str(abs(max_amount))),
            max_reasonable_amount=Decimal(str(getenv_float("BSP_MAX_REASONABLE_AMOUNT", 50000.0))),
            similarity_threshold=getenv_float("BSP_SIMILARITY_THRESHOLD", 0.8),
            ai_confidence_threshold=getenv_float("BSP_AI_CONFIDENCE_THRESHOLD", 0.7),
            render_scale=getenv_float("BSP_RENDER_SCALE", 2.0),
            ocr_engine=getenv_str("BSP_OCR_ENGINE", "tesseract"),
            tesseract_cmd=getenv_str("BSP_TESSERACT_CMD"),
            ocr_min_confidence=getenv_float("BSP_OCR_MIN_CONFIDENCE", 0.5),
            smart_categorization=getenv_bool("BSP_SMART_CATEGORIZATION", False),
            llm_base_url=getenv_str("BSP_LLM_BASE_URL", "https://api.openai.com/v1"),
            llm_model=getenv_str("BSP_LLM_MODEL", "gpt-4o-mini"),
            llm_api_key=getenv_str("BSP_LLM_API_KEY", os.getenv("OPENAI_API_KEY")),
            llm_timeout=getenv_int("BSP_LLM_TIMEOUT", 30),
            log_level=getenv_str("BSP_LOG_LEVEL", "INFO"),
            log_file=getenv_str("BSP_LOG_FILE"),
            store_dir=getenv_str("BSP_STORE_DIR"),
        )
