import logging

import pytest

from category_rules import CATEGORY_RULES_KEY, CategoryRuleEngine, load_category_rules, save_category_rules
from schema import CategoryRule, MatchType
from storage import InMemoryPreferenceStore


@pytest.fixture
def engine():
    return CategoryRuleEngine()


def _rule(rule_id, pattern, category, match_type=MatchType.CONTAINS, priority=0, enabled=True):
    return CategoryRule(id=rule_id, pattern=pattern, category=category,
                        match_type=match_type, priority=priority, enabled=enabled)


def test_highest_priority_wins(engine):
    rules = [
        _rule("a", "coffee", "Low", priority=1),
        _rule("b", "coffee", "High", priority=5),
        _rule("c", "coffee", "Middle", priority=3),
    ]
    assert engine.apply_rules("BLUE BOTTLE COFFEE", rules) == "High"


def test_equal_priority_keeps_list_order(engine):
    rules = [_rule("a", "coffee", "First"), _rule("b", "coffee", "Second")]
    assert engine.apply_rules("coffee", rules) == "First"


def test_disabled_rules_are_ignored(engine):
    rules = [_rule("a", "coffee", "Disabled", priority=10, enabled=False), _rule("b", "coffee", "Enabled")]
    assert engine.apply_rules("coffee", rules) == "Enabled"


def test_no_match_returns_none(engine):
    assert engine.apply_rules("GROCERY", [_rule("a", "coffee", "Coffee")]) is None
    assert engine.apply_rules("GROCERY", []) is None


@pytest.mark.parametrize(
    "match_type, pattern, description, expected",
    [
        (MatchType.CONTAINS, "BUCKS", "purchase at starbucks", True),
        (MatchType.STARTS_WITH, "uber", "UBER TRIP", True),
        (MatchType.STARTS_WITH, "trip", "UBER TRIP", False),
        (MatchType.ENDS_WITH, "trip", "UBER TRIP", True),
        (MatchType.ENDS_WITH, "uber", "UBER TRIP", False),
        (MatchType.REGEX, r"^shell\s+oil", "SHELL OIL 57441", True),
        (MatchType.REGEX, r"\d{6}", "SHELL OIL 57441", False),
    ],
)
def test_match_types(engine, match_type, pattern, description, expected):
    assert engine.matches(description, _rule("r", pattern, "X", match_type=match_type)) is expected


def test_empty_pattern_matches_anything(engine):
    assert engine.matches("anything at all", _rule("r", "", "Catch All"))
    assert engine.apply_rules("", [_rule("r", "", "Catch All")]) == "Catch All"


def test_invalid_regex_never_matches_and_does_not_raise(engine, caplog):
    rules = [_rule("bad", "[unclosed", "Broken", match_type=MatchType.REGEX, priority=9), _rule("ok", "a", "Fine")]
    with caplog.at_level(logging.ERROR):
        assert engine.apply_rules("a transaction", rules) == "Fine"
    assert "Invalid regex pattern in rule bad" in caplog.text


def test_compiled_regex_is_cached(engine):
    rule = _rule("r", "^uber", "Rideshare", match_type=MatchType.REGEX)
    engine.matches("UBER TRIP", rule)
    engine.matches("LYFT RIDE", rule)
    assert list(engine._regex_cache) == [("r", "^uber")]


# ---- Persistence -------------------------------------------------------------


def test_load_missing_key_is_empty():
    assert load_category_rules(InMemoryPreferenceStore()) == []


@pytest.mark.parametrize("raw", ["{not json", '{"id": "1"}', "null", '"text"'])
def test_load_malformed_value_is_empty(raw):
    assert load_category_rules(InMemoryPreferenceStore({CATEGORY_RULES_KEY: raw})) == []


def test_load_skips_malformed_entries():
    raw = '[{"id": "1", "pattern": "uber", "category": "Rides"}, {"pattern": "no id or category"}]'
    rules = load_category_rules(InMemoryPreferenceStore({CATEGORY_RULES_KEY: raw}))
    assert [r.id for r in rules] == ["1"]
    assert rules[0].match_type == MatchType.CONTAINS
    assert rules[0].priority == 0
    assert rules[0].enabled is True


def test_save_then_load_uses_camel_case_keys():
    store = InMemoryPreferenceStore()
    save_category_rules(store, [_rule("1", "^uber", "Rides", match_type=MatchType.REGEX, priority=2)])

    assert '"matchType": "regex"' in store.get_item(CATEGORY_RULES_KEY)
    [rule] = load_category_rules(store)
    assert rule.match_type == MatchType.REGEX
    assert rule.priority == 2
