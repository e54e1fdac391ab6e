"""
Outfit matcher: подбирает 2-4 совместимые вещи каталога в один образ.

Стратегии описаны декларативно (OUTFIT_STRATEGIES) и прогоняются одной функцией
attempt_strategy(); порядок ротируется по strategy_index, чтобы три образа
одного запроса получались разной формы.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from coherence import (
    are_items_compatible,
    get_allowed_categories_for_complete_outfit,
    is_complete_outfit,
    is_item_coherent_with_look,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutfitStrategy:
    name: str
    base: tuple[str, ...]
    optional: tuple[str, ...]
    min_items: int
    max_items: int
    complete_base: bool


OUTFIT_STRATEGIES: tuple[OutfitStrategy, ...] = (
    OutfitStrategy("dress_outfit", ("dress",), ("shoes", "accessory", "bag", "jewelry"), 1, 3, True),
    OutfitStrategy("set_outfit", ("outfit",), ("shoes", "accessory", "bag", "jewelry"), 1, 3, True),
    OutfitStrategy("separates", ("top", "bottom"), ("shoes", "accessory"), 2, 3, False),
    OutfitStrategy("layered", ("top", "bottom"), ("shoes", "outerwear"), 2, 3, False),
)

# Look всегда 2-4 вещи
MIN_LOOK_ITEMS = 2

# цены в KES
BUDGET_RANGES: dict[str, tuple[int, float]] = {
    "low": (0, 3000),
    "mid": (3000, 15000),
    "premium": (15000, float("inf")),
}

FALLBACK_CATEGORY_ORDER: tuple[str, ...] = ("dress", "top", "bottom", "shoes")

# категории, которые никогда не подбираются для данного пола
GENDER_EXCLUDED_CATEGORIES: dict[str, frozenset[str]] = {
    "male": frozenset({"dress"}),
}


class CatalogIndex(Protocol):
    def by_category(self, category: str, gender: str | None = None) -> list: ...


@dataclass
class MatchPreferences:
    gender: str | None = None
    style_preferences: list[str] = field(default_factory=list)
    budget_range: str | None = None
    occasion: str | None = None
    exclude_item_ids: set[str] = field(default_factory=set)
    strategy_index: int = 0
    ignore_preferences: bool = False


# ---------------- Scoring ----------------

def _lower(values) -> list[str]:
    return [str(v).lower() for v in (values or [])]


def score_candidate(item, prefs: MatchPreferences, rng: random.Random) -> float:
    # небольшой шум, чтобы одинаковые по весу вещи не выбирались всегда в одном порядке
    score = rng.random() * 5

    tags = _lower(item.tags)

    if not prefs.ignore_preferences:
        for style in prefs.style_preferences or []:
            if style.lower() in tags:
                score += 10

    if prefs.occasion:
        occasion = prefs.occasion.lower()
        name = (item.name or "").lower()
        description = (getattr(item, "description", None) or "").lower()

        if occasion in name:
            score += 50
        elif occasion in description:
            score += 30

        if any(occasion in t for t in tags):
            score += 15
        if any(occasion in o for o in _lower(item.occasion)):
            score += 20

    if not prefs.ignore_preferences and prefs.budget_range in BUDGET_RANGES:
        low, high = BUDGET_RANGES[prefs.budget_range]
        if low <= (item.price or 0) <= high:
            score += 10
        else:
            score -= 20

    return score


# ---------------- Candidate selection ----------------

def _is_blocked_category(category: str, prefs: MatchPreferences) -> bool:
    return category in GENDER_EXCLUDED_CATEGORIES.get(prefs.gender or "", frozenset())


def _candidates(catalog: CatalogIndex, category: str, prefs: MatchPreferences, used_ids: set[str]) -> list:
    if _is_blocked_category(category, prefs):
        return []
    return [
        i for i in catalog.by_category(category, prefs.gender)
        if getattr(i, "is_active", True)
        and i.id not in prefs.exclude_item_ids
        and i.id not in used_ids
    ]


def rank_candidates(catalog: CatalogIndex, category: str, prefs: MatchPreferences,
                    rng: random.Random, used_ids: set[str] | None = None) -> list:
    pool = _candidates(catalog, category, prefs, used_ids or set())
    scored = [(score_candidate(i, prefs, rng), i) for i in pool]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [i for _, i in scored]


def fits_outfit_shape(candidate, selected: Sequence) -> bool:
    """Цельный образ дополняется только обувью/аксессуарами, категории не повторяются."""
    allowed = get_allowed_categories_for_complete_outfit()

    if any(s.category == candidate.category for s in selected):
        return False
    if candidate.category not in allowed and any(is_complete_outfit(s) for s in selected):
        return False
    if is_complete_outfit(candidate) and any(s.category not in allowed for s in selected):
        return False
    return True


def _pick_first_coherent(ranked: Sequence, selected: Sequence, allow_complete: bool = True):
    for candidate in ranked:
        if not allow_complete and is_complete_outfit(candidate):
            continue
        if not fits_outfit_shape(candidate, selected):
            continue
        if is_item_coherent_with_look(candidate, selected):
            return candidate
    return None


# ---------------- Strategies ----------------

def strategy_order(index: int) -> list[OutfitStrategy]:
    first = index % len(OUTFIT_STRATEGIES)
    return [OUTFIT_STRATEGIES[first]] + [s for i, s in enumerate(OUTFIT_STRATEGIES) if i != first]


def attempt_strategy(strategy: OutfitStrategy, catalog: CatalogIndex, prefs: MatchPreferences,
                     rng: random.Random) -> list | None:
    if any(_is_blocked_category(c, prefs) for c in strategy.base):
        return None

    selected: list = []
    used_ids: set[str] = set()

    # 1) база: все категории обязательны
    for category in strategy.base:
        ranked = rank_candidates(catalog, category, prefs, rng, used_ids)
        pick = _pick_first_coherent(ranked, selected, allow_complete=strategy.complete_base)
        if pick is None:
            return None
        selected.append(pick)
        used_ids.add(pick.id)

    # 2) цельный образ: только разрешённые дополнения
    optional = list(strategy.optional)
    if strategy.complete_base or any(is_complete_outfit(i) for i in selected):
        allowed = get_allowed_categories_for_complete_outfit()
        optional = [c for c in optional if c in allowed]

    # 3) 1-2 дополнительные вещи в случайном порядке категорий
    rng.shuffle(optional)
    slots = min(strategy.max_items - len(selected), rng.randint(1, 2))
    target = len(selected) + max(slots, 0)

    for category in optional:
        if len(selected) >= target:
            break
        ranked = rank_candidates(catalog, category, prefs, rng, used_ids)
        pick = _pick_first_coherent(ranked, selected, allow_complete=False)
        if pick is not None:
            selected.append(pick)
            used_ids.add(pick.id)

    # 4) минимум стратегии, но не меньше двух вещей на образ
    if len(selected) >= max(strategy.min_items, MIN_LOOK_ITEMS):
        return selected
    return None


def fallback_items(catalog: CatalogIndex, prefs: MatchPreferences) -> list:
    """
    Best-effort сборка: первые доступные вещи по фиксированному порядку категорий.
    Скоринг совместимости не применяется, но жёсткий фильтр формальности остаётся.
    """
    selected: list = []
    has_dress = False

    for category in FALLBACK_CATEGORY_ORDER:
        if len(selected) >= MIN_LOOK_ITEMS:
            break
        if has_dress and category in ("top", "bottom"):
            continue

        for candidate in _candidates(catalog, category, prefs, {s.id for s in selected}):
            if not fits_outfit_shape(candidate, selected):
                continue
            if not all(are_items_compatible(candidate, s) for s in selected):
                continue
            selected.append(candidate)
            if category == "dress":
                has_dress = True
            break

    return selected if len(selected) >= MIN_LOOK_ITEMS else []


def match_items_for_look(catalog: CatalogIndex, prefs: MatchPreferences,
                         rng: random.Random | None = None, allow_fallback: bool = True) -> list:
    rng = rng or random.Random()

    for strategy in strategy_order(prefs.strategy_index):
        items = attempt_strategy(strategy, catalog, prefs, rng)
        if items:
            logger.debug("strategy %s matched %d items", strategy.name, len(items))
            return items

    if not allow_fallback:
        return []

    items = fallback_items(catalog, prefs)
    if items:
        logger.info("matcher used fallback composition (%d items)", len(items))
    return items
