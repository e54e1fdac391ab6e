"""Unit tests for the outfit matcher (strategies, exclusions, fallback)."""

import random
from itertools import combinations
from types import SimpleNamespace

import pytest

from coherence import are_items_compatible, is_complete_outfit
from matching import (
    OUTFIT_STRATEGIES,
    MatchPreferences,
    attempt_strategy,
    fallback_items,
    match_items_for_look,
    score_candidate,
    strategy_order,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_counter = iter(range(10_000))


def _item(name, category, gender="unisex", **kwargs) -> SimpleNamespace:
    defaults = {
        "id": f"it-{next(_counter)}",
        "name": name,
        "category": category,
        "subcategory": None,
        "gender": gender,
        "price": 2000,
        "tags": ["casual"],
        "occasion": ["casual"],
        "colors": ["black"],
        "description": None,
        "is_active": True,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


class ListCatalog:
    def __init__(self, items):
        self.items = list(items)

    def by_category(self, category, gender=None):
        return [
            i for i in self.items
            if i.category == category and (gender is None or i.gender in (gender, "unisex"))
        ]


def _casual_catalog(extra=()):
    return ListCatalog([
        _item("Cotton Tee", "top"),
        _item("Graphic Tee", "top"),
        _item("Blue Jeans", "bottom"),
        _item("Cargo Pants", "bottom"),
        _item("Canvas Sneakers", "shoes"),
        _item("Casual Cap", "accessory"),
        *extra,
    ])


def _assert_valid_look(items):
    assert 2 <= len(items) <= 4
    categories = [i.category for i in items]
    assert len(categories) == len(set(categories))
    for a, b in combinations(items, 2):
        assert are_items_compatible(a, b)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def test_separates_look_has_top_bottom_and_extras():
    prefs = MatchPreferences(strategy_index=2)
    items = match_items_for_look(_casual_catalog(), prefs, rng=random.Random(1))

    _assert_valid_look(items)
    categories = {i.category for i in items}
    assert {"top", "bottom"} <= categories
    assert len(items) >= 3


def test_dress_strategy_only_adds_allowed_categories():
    catalog = _casual_catalog(extra=[_item("Sundress", "dress", gender="female")])
    prefs = MatchPreferences(gender="female", strategy_index=0)

    items = match_items_for_look(catalog, prefs, rng=random.Random(3))

    _assert_valid_look(items)
    assert items[0].category == "dress"
    assert all(i.category in ("dress", "shoes", "accessory", "bag", "jewelry") for i in items)


def test_male_user_never_gets_a_dress():
    catalog = _casual_catalog(extra=[_item("Sundress", "dress", gender="unisex")])
    prefs = MatchPreferences(gender="male", strategy_index=0)

    for seed in range(10):
        items = match_items_for_look(catalog, prefs, rng=random.Random(seed))
        assert items
        assert all(i.category != "dress" for i in items)


def test_gender_filter_excludes_other_gender_items():
    catalog = _casual_catalog(extra=[_item("Womens Blouse Tee", "top", gender="female")])
    prefs = MatchPreferences(gender="male", strategy_index=2)

    for seed in range(10):
        items = match_items_for_look(catalog, prefs, rng=random.Random(seed))
        assert all(i.gender in ("male", "unisex") for i in items)


def test_excluded_items_are_never_used():
    catalog = _casual_catalog()
    excluded = {i.id for i in catalog.items if i.name in ("Cotton Tee", "Blue Jeans")}
    prefs = MatchPreferences(strategy_index=2, exclude_item_ids=excluded)

    items = match_items_for_look(catalog, prefs, rng=random.Random(7))

    _assert_valid_look(items)
    assert not excluded & {i.id for i in items}


def test_separates_skip_complete_outfit_candidates():
    catalog = ListCatalog([
        _item("Linen Co-ord", "top"),
        _item("Blue Jeans", "bottom"),
        _item("Canvas Sneakers", "shoes"),
    ])
    strategy = next(s for s in OUTFIT_STRATEGIES if s.name == "separates")

    assert attempt_strategy(strategy, catalog, MatchPreferences(), random.Random(0)) is None


def test_formality_gate_holds_across_strategies():
    catalog = ListCatalog([
        _item("Grey Hoodie", "top", tags=[], occasion=[]),
        _item("Silk Evening Trousers", "bottom", tags=[], occasion=[]),
        _item("Gala Heels", "shoes", tags=[], occasion=[]),
    ])

    for seed in range(5):
        items = match_items_for_look(catalog, MatchPreferences(strategy_index=seed), rng=random.Random(seed))
        for a, b in combinations(items, 2):
            assert are_items_compatible(a, b)


def test_strategy_order_rotates():
    assert strategy_order(0)[0].name == "dress_outfit"
    assert strategy_order(2)[0].name == "separates"
    assert strategy_order(5)[0].name == "set_outfit"
    assert len(strategy_order(3)) == len(OUTFIT_STRATEGIES)


def test_same_seed_same_look():
    catalog = _casual_catalog()
    first = match_items_for_look(catalog, MatchPreferences(strategy_index=2), rng=random.Random(42))
    second = match_items_for_look(catalog, MatchPreferences(strategy_index=2), rng=random.Random(42))
    assert [i.id for i in first] == [i.id for i in second]


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

def test_fallback_only_when_allowed():
    catalog = ListCatalog([
        _item("Cotton Tee", "top"),
        _item("Canvas Sneakers", "shoes"),
    ])
    prefs = MatchPreferences()

    assert match_items_for_look(catalog, prefs, rng=random.Random(0), allow_fallback=False) == []

    items = match_items_for_look(catalog, prefs, rng=random.Random(0))
    assert [i.category for i in items] == ["top", "shoes"]


def test_fallback_keeps_formality_gate():
    catalog = ListCatalog([
        _item("Grey Hoodie", "top", tags=[], occasion=[]),
        _item("Gala Heels", "shoes", tags=[], occasion=[]),
    ])
    assert fallback_items(catalog, MatchPreferences()) == []


def test_fallback_dress_skips_top_and_bottom():
    catalog = ListCatalog([
        _item("Wrap", "dress"),
        _item("Cotton Tee", "top"),
        _item("Canvas Sneakers", "shoes"),
    ])
    items = fallback_items(catalog, MatchPreferences())
    assert [i.category for i in items] == ["dress", "shoes"]
    assert is_complete_outfit(items[0])


def test_empty_catalog_returns_nothing():
    assert match_items_for_look(ListCatalog([]), MatchPreferences(), rng=random.Random(0)) == []


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def test_score_rewards_style_and_budget():
    rng = random.Random(0)
    prefs = MatchPreferences(style_preferences=["casual"], budget_range="low")

    in_budget = _item("Cotton Tee", "top", price=1500)
    pricey = _item("Cotton Tee", "top", price=20000)

    # шум < 5, разница по бюджету 30
    assert score_candidate(in_budget, prefs, rng) > score_candidate(pricey, prefs, rng) + 20


def test_ignore_preferences_drops_style_and_budget():
    rng = random.Random(0)
    prefs = MatchPreferences(style_preferences=["casual"], budget_range="low", ignore_preferences=True)
    score = score_candidate(_item("Cotton Tee", "top", price=20000), prefs, rng)
    assert 0 <= score < 5


@pytest.mark.parametrize("field,value,bonus", [("name", "Date Night Tee", 50), ("description", "great for a date", 30)])
def test_occasion_bonus(field, value, bonus):
    prefs = MatchPreferences(occasion="date", ignore_preferences=True)
    item = _item("Cotton Tee", "top", tags=[], occasion=[])
    setattr(item, field, value)
    score = score_candidate(item, prefs, random.Random(0))
    assert bonus <= score < bonus + 5
