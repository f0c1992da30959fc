"""
Optional AI categorization through an OpenAI-compatible chat completions API.
"""
import json
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Union

import requests

from config import PipelineSettings
from schema import CategorySuggestion

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = {
    'income': ['Salary', 'Investment Income', 'Refunds', 'Other Income'],
    'expense': [
        'Rent',
        'Groceries',
        'Utilities',
        'Transportation',
        'Entertainment',
        'Healthcare',
        'Shopping',
        'Education',
        'Personal Care',
        'Insurance',
        'Credit Card Payment',
        'Other Expenses',
    ],
}

SYSTEM_PROMPT = (
    "You are a financial transaction categorization assistant. "
    "Categorize transactions accurately based on their description and amount."
)


class SmartCategorizationError(RuntimeError):
    """The categorization service could not be reached or rejected the request."""


class SmartCategorizationClient:
    """Asks a language model for a category suggestion."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 base_url: str = "https://api.openai.com/v1", timeout: int = 30,
                 temperature: float = 0.3, max_tokens: int = 150):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.logger.info(f"Smart categorization client initialized (model={self.model})")

    def suggest(self, description: str, amount: Union[Decimal, float], when: Optional[date] = None,
                categories: Optional[List[str]] = None) -> CategorySuggestion:
        """
        Request a category suggestion for one transaction.

        Args:
            description: Cleaned transaction description
            amount: Signed amount; negative means expense
            when: Transaction date
            categories: Allowed categories (defaults to the built-in list)

        Returns:
            CategorySuggestion with the model's confidence

        Raises:
            SmartCategorizationError: on network, HTTP or response-shape errors
        """
        categories = categories or DEFAULT_CATEGORIES['income'] + DEFAULT_CATEGORIES['expense']
        prompt = self._build_prompt(description, amount, when, categories)

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                },
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise SmartCategorizationError(f"Error querying categorization API: {e}") from e

        if response.status_code != 200:
            self.logger.error(f"Categorization API error: {response.status_code} {response.text[:200]}")
            raise SmartCategorizationError(f"Categorization API error: {response.status_code}")

        try:
            content = response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SmartCategorizationError(f"Unexpected categorization API response: {e}") from e

        suggestion = self.parse_response(content)
        self.logger.info(
            f"Transaction categorized: {description!r} -> {suggestion.category} "
            f"(confidence {suggestion.confidence:.2f})"
        )
        return suggestion

    @staticmethod
    def _build_prompt(description: str, amount, when: Optional[date], categories: List[str]) -> str:
        direction = 'income' if amount >= 0 else 'expense'
        when_str = when.isoformat() if when else 'unknown'
        return f"""
Categorize this financial transaction:

Description: {description}
Amount: ${abs(amount)} ({direction})
Date: {when_str}

Available categories:
{', '.join(categories)}

Respond in JSON format:
{{
  "category": "selected category",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}}"""

    def parse_response(self, content: str) -> CategorySuggestion:
        """Parse the model's JSON answer; malformed output becomes a low-confidence guess."""
        try:
            text = content.strip()
            if '{' in text and '}' in text:
                text = text[text.find('{'):text.rfind('}') + 1]
            parsed = json.loads(text)
            confidence = float(parsed.get('confidence') or 0.5)
            return CategorySuggestion(
                category=parsed.get('category') or 'Other Expenses',
                confidence=min(max(confidence, 0.0), 1.0),
                reasoning=parsed.get('reasoning'),
            )
        except (ValueError, TypeError, AttributeError) as e:
            self.logger.warning(f"Failed to parse JSON response, using fallback: {e}")
            return CategorySuggestion(category='Other Expenses', confidence=0.3)


def create_llm_client(api_key: Optional[str] = None, model: Optional[str] = None,
                      settings: Optional[PipelineSettings] = None) -> Optional[SmartCategorizationClient]:
    """Build a client, or None when no API key is configured."""
    settings = settings or PipelineSettings()
    key = api_key or settings.llm_api_key
    if not key:
        logger.warning("Categorization API key not configured")
        return None

    return SmartCategorizationClient(
        api_key=key,
        model=model or settings.llm_model,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout,
    )
