"""
Coherence engine: формальность вещей, "цельные" образы и попарная совместимость.

Чистые функции без I/O. На вход подходит любой объект с полями
name / category / subcategory / tags / occasion / colors (ORM Item, SimpleNamespace, ...).
"""
from typing import Iterable, Protocol, Sequence

FORMALITY_LEVELS: tuple[str, ...] = ("casual", "smart_casual", "formal", "evening")
DEFAULT_FORMALITY = "smart_casual"

FORMALITY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "casual": (
        "sweatpants", "hoodie", "sneakers", "track pants", "t-shirt", "tee",
        "joggers", "slides", "flip-flops", "cargo", "denim", "jeans", "casual",
        "streetwear", "athleisure", "sporty", "relaxed", "everyday", "weekend",
    ),
    "smart_casual": (
        "chinos", "polo", "loafers", "blazer", "cardigan", "khaki", "button-up",
        "smart", "brunch", "date", "work", "office", "business casual", "preppy",
        "classic", "timeless", "versatile", "refined",
    ),
    "formal": (
        "dress pants", "dress shirt", "oxford", "heels", "boots", "formal", "suit",
        "tailored", "professional", "meeting", "interview", "elegant",
        "sophisticated", "polished", "structured",
    ),
    "evening": (
        "gown", "cocktail dress", "tuxedo", "evening", "black tie", "red carpet",
        "glamorous", "luxe", "party", "gala", "wedding", "prom", "ball",
    ),
}

COMPLETE_OUTFIT_CATEGORIES = frozenset({"outfit", "dress"})
COMPLETE_OUTFIT_KEYWORDS: tuple[str, ...] = (
    "set", "suit", "combo", "matching", "co-ord", "coord", "jumpsuit", "romper",
    "overall", "and pants", "and trouser", "and shorts", "and skirt",
    "two-piece", "two piece",
)

# единственные категории, которые можно добавить поверх цельного образа
COMPLETE_OUTFIT_ALLOWED = frozenset({"shoes", "accessory", "bag", "jewelry"})

NEUTRAL_COLORS = frozenset({"black", "white", "grey", "gray", "beige", "navy", "brown", "cream"})

DEFAULT_MIN_AVG_SCORE = 10


def _lower_list(values: Iterable[str] | None) -> list[str]:
    return [str(v).lower() for v in (values or [])]


# ---------------- Classifier ----------------

class ItemClassifier(Protocol):
    def formality(self, item) -> str: ...

    def is_complete_outfit(self, item) -> bool: ...


class KeywordClassifier:
    """Классификация подстрокой по фиксированным спискам ключевых слов."""

    def __init__(
        self,
        formality_keywords: dict[str, Sequence[str]] | None = None,
        complete_keywords: Sequence[str] | None = None,
    ):
        self.formality_keywords = formality_keywords or FORMALITY_KEYWORDS
        self.complete_keywords = tuple(complete_keywords or COMPLETE_OUTFIT_KEYWORDS)

    def formality(self, item) -> str:
        parts = [
            getattr(item, "name", None) or "",
            getattr(item, "subcategory", None) or "",
            *(getattr(item, "tags", None) or []),
            *(getattr(item, "occasion", None) or []),
        ]
        text = " ".join(str(p) for p in parts).lower()

        # от самого формального к самому простому, первое совпадение выигрывает
        for level in reversed(FORMALITY_LEVELS):
            for kw in self.formality_keywords.get(level, ()):
                if kw in text:
                    return level
        return DEFAULT_FORMALITY

    def is_complete_outfit(self, item) -> bool:
        if getattr(item, "category", None) in COMPLETE_OUTFIT_CATEGORIES:
            return True
        name = (getattr(item, "name", None) or "").lower()
        return any(kw in name for kw in self.complete_keywords)


_classifier: ItemClassifier = KeywordClassifier()


def use_classifier(classifier: ItemClassifier) -> ItemClassifier:
    """Подменяет классификатор (например, обученной моделью). Возвращает предыдущий."""
    global _classifier
    previous = _classifier
    _classifier = classifier
    return previous


# ---------------- Public API ----------------

def is_complete_outfit(item) -> bool:
    return _classifier.is_complete_outfit(item)


def get_formality_level(item) -> str:
    return _classifier.formality(item)


def formality_index(item) -> int:
    level = get_formality_level(item)
    if level not in FORMALITY_LEVELS:
        level = DEFAULT_FORMALITY
    return FORMALITY_LEVELS.index(level)


def are_items_compatible(a, b) -> bool:
    # жёсткий фильтр: разница уровней не больше одного шага
    return abs(formality_index(a) - formality_index(b)) <= 1


def calculate_coherence_score(a, b) -> int:
    score = 0

    diff = abs(formality_index(a) - formality_index(b))
    if diff == 0:
        score += 25
    elif diff == 1:
        score += 15
    else:
        score -= 20

    occasions_a = set(_lower_list(getattr(a, "occasion", None)))
    occasions_b = set(_lower_list(getattr(b, "occasion", None)))
    score += 15 * len(occasions_a & occasions_b)

    tags_a = set(_lower_list(getattr(a, "tags", None)))
    tags_b = set(_lower_list(getattr(b, "tags", None)))
    score += 5 * len(tags_a & tags_b)

    colors_a = _lower_list(getattr(a, "colors", None))
    colors_b = _lower_list(getattr(b, "colors", None))
    if any(c in NEUTRAL_COLORS for c in colors_a + colors_b):
        score += 5
    if set(colors_a) & set(colors_b):
        score += 10

    return score


def is_item_coherent_with_look(candidate, existing: Sequence, min_avg_score: float = DEFAULT_MIN_AVG_SCORE) -> bool:
    if not existing:
        return True

    for item in existing:
        if not are_items_compatible(candidate, item):
            return False

    total = sum(calculate_coherence_score(candidate, item) for item in existing)
    return total / len(existing) >= min_avg_score


def get_allowed_categories_for_complete_outfit() -> frozenset[str]:
    return COMPLETE_OUTFIT_ALLOWED
