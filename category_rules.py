"""
User-authored category rules: loading from the preference store and matching.
"""
import re
import json
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from schema import CategoryRule, MatchType

logger = logging.getLogger(__name__)

CATEGORY_RULES_KEY = 'budget.categoryRules'


def load_category_rules(store) -> List[CategoryRule]:
    """
    Read the persisted rule list from a preference store.

    Args:
        store: Anything with ``get_item(key) -> Optional[str]``

    Returns:
        Parsed rules; empty when the key is missing or holds malformed JSON
    """
    try:
        raw = store.get_item(CATEGORY_RULES_KEY)
    except Exception as e:
        logger.error(f"Error reading category rules: {e}")
        return []

    if not raw:
        return []

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Error loading category rules: {e}")
        return []

    if not isinstance(data, list):
        logger.error(f"Category rules must be a JSON array, got {type(data).__name__}")
        return []

    rules = []
    for idx, item in enumerate(data):
        try:
            rules.append(CategoryRule.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed category rule at index {idx}: {e}")
    return rules


def save_category_rules(store, rules: List[CategoryRule]) -> None:
    payload = [rule.model_dump(by_alias=True) for rule in rules]
    store.set_item(CATEGORY_RULES_KEY, json.dumps(payload))


class CategoryRuleEngine:
    """Evaluates category rules; compiled regexes are cached per engine."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._regex_cache: Dict[Tuple[str, str], Optional[re.Pattern]] = {}

    def apply_rules(self, description: str, rules: List[CategoryRule]) -> Optional[str]:
        """
        Return the category of the highest-priority matching rule.

        Disabled rules are ignored. Among equal priorities the first listed
        rule wins.

        Args:
            description: Transaction description
            rules: Candidate rules

        Returns:
            The winning category, or None when nothing matches
        """
        enabled = [rule for rule in rules if rule.enabled]
        # sorted() is stable, so list order breaks priority ties
        for rule in sorted(enabled, key=lambda r: r.priority, reverse=True):
            if self.matches(description, rule):
                self.logger.debug(f"Rule {rule.id} matched {description!r} -> {rule.category}")
                return rule.category
        return None

    def matches(self, description: str, rule: CategoryRule) -> bool:
        if not rule.pattern:
            return True

        text = (description or '').lower()
        pattern = rule.pattern.lower()

        if rule.match_type == MatchType.CONTAINS:
            return pattern in text
        if rule.match_type == MatchType.STARTS_WITH:
            return text.startswith(pattern)
        if rule.match_type == MatchType.ENDS_WITH:
            return text.endswith(pattern)
        if rule.match_type == MatchType.REGEX:
            compiled = self._compile(rule)
            return bool(compiled and compiled.search(description or ''))
        return False

    def _compile(self, rule: CategoryRule) -> Optional[re.Pattern]:
        key = (rule.id, rule.pattern)
        if key not in self._regex_cache:
            try:
                self._regex_cache[key] = re.compile(rule.pattern, re.IGNORECASE)
            except re.error as e:
                self.logger.error(f"Invalid regex pattern in rule {rule.id}: {rule.pattern!r} ({e})")
                self._regex_cache[key] = None
        return self._regex_cache[key]
