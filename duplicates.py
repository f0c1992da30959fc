"""
Near-duplicate detection for extracted transactions and whole-file hashing.
"""
import hashlib
import logging
from decimal import Decimal
from typing import Iterable

from rapidfuzz.distance import Levenshtein

from schema import ExtractedTransaction

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8


def description_similarity(first: str, second: str) -> float:
    """1 - edit distance / longer length, case-insensitive; two empty strings are identical."""
    a = (first or '').lower()
    b = (second or '').lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def is_duplicate(candidate: ExtractedTransaction, existing: Iterable[ExtractedTransaction],
                 threshold: float = SIMILARITY_THRESHOLD) -> bool:
    """
    Check a transaction against already-imported ones.

    Args:
        candidate: Newly extracted transaction
        existing: Snapshot of stored transactions
        threshold: Minimum description similarity to count as the same transaction

    Returns:
        True if some existing transaction has the same day, amount and a similar description
    """
    amount = Decimal(candidate.amount)
    for other in existing:
        if other.date != candidate.date or Decimal(other.amount) != amount:
            continue
        similarity = description_similarity(other.description, candidate.description)
        if similarity >= threshold:
            logger.debug(
                f"Duplicate of {other.id}: {candidate.description!r} ~ {other.description!r} "
                f"({similarity:.2f})"
            )
            return True
    return False


def compute_content_hash(content: bytes) -> str:
    """SHA-256 hex digest of the raw file bytes."""
    return hashlib.sha256(content).hexdigest()
