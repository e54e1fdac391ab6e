"""
Чат со стилистом Nima: подбор образов из каталога по поводу / контексту.

Бизнес-исходы (no_photo, insufficient_credits, no_matches) возвращаются в
ChatLooksResult и никогда не бросаются исключением.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy.orm import Session

import rate_limit
from catalog import SqlCatalog, get_items_in_order
from coherence import is_item_coherent_with_look
from credits import deduct_credit, refund_credits
from looks_service import LookResult, create_look, get_owned_look
from matching import MatchPreferences, match_items_for_look
from models import Item, Look, User
from profiles import matching_gender, primary_user_image
from queueing import AfterCommit
from state_machine import GenerationStatus

logger = logging.getLogger(__name__)

LOOKS_PER_REQUEST = 3
MAX_MATCH_ATTEMPTS = 2
PREVIOUS_LOOKS_WINDOW = 20
REMIX_OVERLAP_THRESHOLD = 0.5
REMIX_ALTERNATIVES_LIMIT = 20

OCCASION_COMMENTS: dict[str, list[str]] = {
    "date": [
        "You're going to look absolutely stunning! This look has just the right mix of charm and confidence.",
        "Date night ready! This outfit says 'I put in effort but I'm effortlessly cool.'",
        "Trust me, they won't be able to take their eyes off you in this!",
    ],
    "work": [
        "Professional but with personality - that's the vibe here. You'll command the room!",
        "This look means business while still showing off your style. Power move!",
        "Office-appropriate but make it fashion. You've got this!",
    ],
    "casual": [
        "Easy, breezy, and totally you. Perfect for whatever the day brings!",
        "Relaxed vibes with elevated style - the best kind of casual.",
        "Comfort meets cool. This is giving effortless chic!",
    ],
    "party": [
        "Time to shine! This look is made for making an entrance.",
        "Party-ready and absolutely gorgeous. Get ready to turn heads!",
        "This outfit says 'I'm here and I came to have fun!'",
    ],
}

DEFAULT_COMMENTS = [
    "I curated this look just for you based on your style preferences!",
    "These pieces work beautifully together. You're going to love how this feels!",
    "Your style, elevated. I picked each piece to complement your vibe.",
    "This combination is *chef's kiss*. Trust the process!",
]

# twist -> какие категории меняем
TWIST_SWAPS: list[tuple[tuple[str, ...], tuple[str, ...]]] = [
    (("casual", "relaxed"), ("shoes", "bottom")),
    (("formal", "dress"), ("shoes", "top")),
    (("evening", "night"), ("top", "accessory")),
]


@dataclass
class ChatLooksResult:
    success: bool
    message: str
    look_ids: list[str] = field(default_factory=list)
    scenario: str | None = None  # fresh / remix
    fallback_used: bool = False


def generate_nima_comment(occasion: str | None, context: str | None, first_name: str | None,
                          rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    greetings = [f"{first_name}, ", f"Hey {first_name}! ", ""] if first_name else [""]
    greeting = rng.choice(greetings)

    comments = DEFAULT_COMMENTS
    text = " ".join(x for x in (occasion, context) if x).lower()
    if text:
        for key, options in OCCASION_COMMENTS.items():
            if key in text:
                comments = options
                break
    return greeting + rng.choice(comments)


def preferences_for(user: User, occasion: str | None) -> MatchPreferences:
    return MatchPreferences(
        gender=matching_gender(user),
        style_preferences=list(user.style_preferences or []),
        budget_range=user.budget_range,
        occasion=occasion,
    )


def previous_item_ids(db: Session, user_id: str) -> set[str]:
    looks = (
        db.query(Look)
        .filter(Look.creator_user_id == user_id)
        .order_by(Look.created_at.desc())
        .limit(PREVIOUS_LOOKS_WINDOW)
        .all()
    )
    ids: set[str] = set()
    for look in looks:
        ids.update(look.item_ids or [])
    return ids


def overlap_ratio(matched_ids: Sequence[str], previous_ids: set[str]) -> float:
    if not matched_ids:
        return 0.0
    return sum(1 for i in matched_ids if i in previous_ids) / len(matched_ids)


# ---------------- Multi-look ----------------

def create_looks_from_chat(
    db: Session,
    user: User,
    occasion: str | None,
    context: str | None,
    after: AfterCommit,
    rng: random.Random | None = None,
) -> ChatLooksResult:
    rng = rng or random.Random()

    if not primary_user_image(db, user.id):
        return ChatLooksResult(success=False, message="no_photo")

    limit = rate_limit.hit("create_look", user.id)
    if not limit.ok:
        return ChatLooksResult(success=False, message="rate_limited")

    credit = deduct_credit(db, user.id, LOOKS_PER_REQUEST)
    if not credit.success:
        return ChatLooksResult(success=False, message="insufficient_credits")

    catalog = SqlCatalog(db)
    base_prefs = preferences_for(user, occasion)
    previous_ids = previous_item_ids(db, user.id)

    looks: list[Look] = []
    used_ids: set[str] = set()
    matched_ids: list[str] = []
    fallback_used = False
    attempt = 0

    try:
        # попытка 1: с предпочтениями; попытка 2: без стиля/бюджета, если не вышло ничего
        while not looks and attempt < MAX_MATCH_ATTEMPTS:
            relaxed = attempt == 1
            fallback_used = relaxed
            if relaxed:
                logger.info("strict matching yielded 0 looks for user %s, relaxing", user.id)

            for i in range(LOOKS_PER_REQUEST):
                prefs = MatchPreferences(
                    gender=base_prefs.gender,
                    style_preferences=base_prefs.style_preferences,
                    budget_range=base_prefs.budget_range,
                    occasion=occasion,
                    exclude_item_ids=used_ids,
                    strategy_index=i,
                    ignore_preferences=relaxed,
                )
                items = match_items_for_look(catalog, prefs, rng=rng, allow_fallback=False)
                if len(items) < 2:
                    continue

                for item in items:
                    used_ids.add(item.id)
                    matched_ids.append(item.id)

                look = create_look(
                    db,
                    items,
                    creator=user,
                    name=f"{occasion} Look #{i + 1}" if occasion else f"Option {i + 1}",
                    occasion=occasion,
                    nima_comment=generate_nima_comment(occasion, context, user.first_name, rng),
                    creation_source="chat",
                )
                looks.append(look)

            attempt += 1

        for look in looks:
            after.add("jobs.generate_look_image", look.id, user.id)
        if looks:
            db.commit()
    except Exception:
        # кредиты уже списаны отдельной транзакцией: возвращаем все три
        logger.exception("multi-look creation failed for user %s", user.id)
        db.rollback()
        refund_credits(db, user.id, LOOKS_PER_REQUEST)
        raise

    if not looks:
        refund_credits(db, user.id, LOOKS_PER_REQUEST)
        return ChatLooksResult(success=False, message="no_matches")

    # списали за три: возвращаем за несобранные
    missing = LOOKS_PER_REQUEST - len(looks)
    if missing > 0:
        refund_credits(db, user.id, missing)

    scenario = "remix" if overlap_ratio(matched_ids, previous_ids) > REMIX_OVERLAP_THRESHOLD else "fresh"
    n = len(looks)
    if fallback_used:
        message = f"I couldn't find exact matches for everything, but I found {n} looks that capture the vibe! ✨"
    elif scenario == "remix":
        message = f"I found {n} looks - some featuring items you've loved before with fresh combinations!"
    else:
        message = f"I found {n} amazing looks for you! Step into the fitting room to see yourself in these outfits."

    return ChatLooksResult(
        success=True,
        message=message,
        look_ids=[lk.id for lk in looks],
        scenario=scenario,
        fallback_used=fallback_used,
    )


# ---------------- Single look ----------------

def create_look_from_chat(
    db: Session,
    user: User,
    occasion: str | None,
    context: str | None,
    after: AfterCommit,
    rng: random.Random | None = None,
) -> LookResult:
    rng = rng or random.Random()

    if not primary_user_image(db, user.id):
        return LookResult(success=False, error="no_photo")

    limit = rate_limit.hit("create_look", user.id)
    if not limit.ok:
        return LookResult(success=False, error="rate_limited")

    prefs = preferences_for(user, occasion)
    prefs.strategy_index = rng.randrange(4)
    items = match_items_for_look(SqlCatalog(db), prefs, rng=rng)
    if len(items) < 2:
        return LookResult(success=False, error="no_matches")

    credit = deduct_credit(db, user.id, 1)
    if not credit.success:
        return LookResult(success=False, error="insufficient_credits")

    look = create_look(
        db,
        items,
        creator=user,
        name=f"{occasion} Look" if occasion else "Curated Look",
        occasion=occasion,
        nima_comment=generate_nima_comment(occasion, context, user.first_name, rng),
        creation_source="chat",
    )
    after.add("jobs.generate_look_image", look.id, user.id)
    return LookResult(
        success=True,
        look_id=look.id,
        public_id=look.public_id,
        message=(
            f"I found {len(items)} items that match your style! "
            "Step into the fitting room to see yourself in this look."
        ),
    )


def create_mixed_look(
    db: Session,
    user: User,
    item_ids: Sequence[str],
    occasion: str | None,
    after: AfterCommit,
) -> LookResult:
    """Явный список вещей из чата: меньше двух или неактивная вещь: ошибка."""
    item_ids = list(dict.fromkeys(item_ids))
    if len(item_ids) < 2:
        return LookResult(success=False, error="A look needs at least 2 items.")

    items = get_items_in_order(db, item_ids)
    if len(items) != len(item_ids) or any(not i.is_active for i in items):
        return LookResult(success=False, error="Some items are no longer available.")

    if not primary_user_image(db, user.id):
        return LookResult(success=False, error="no_photo")

    credit = deduct_credit(db, user.id, 1)
    if not credit.success:
        return LookResult(success=False, error="insufficient_credits")

    look = create_look(
        db,
        items,
        creator=user,
        name=f"{occasion} Mix" if occasion else "Custom Mix",
        occasion=occasion,
        nima_comment=generate_nima_comment(occasion, None, user.first_name),
        creation_source="chat",
    )
    after.add("jobs.generate_look_image", look.id, user.id)
    return LookResult(
        success=True,
        look_id=look.id,
        public_id=look.public_id,
        message="I've mixed these pieces into a new look! Step into the fitting room to see it on you.",
    )


def _swap_categories(twist: str, items: Sequence[Item], rng: random.Random) -> set[str]:
    twist_lower = (twist or "").lower()
    for keywords, categories in TWIST_SWAPS:
        if any(k in twist_lower for k in keywords):
            return set(categories)
    return {rng.choice(list(items)).category}


def create_remixed_look(
    db: Session,
    user: User,
    source_look_id: str,
    twist: str,
    occasion: str | None,
    after: AfterCommit,
    rng: random.Random | None = None,
) -> LookResult:
    rng = rng or random.Random()

    source = db.query(Look).filter(Look.id == source_look_id).first()
    if not source or not source.is_active:
        return LookResult(success=False, error="Source look not found.")

    source_items = [i for i in get_items_in_order(db, source.item_ids or []) if i.is_active]
    if len(source_items) < 2:
        return LookResult(success=False, error="Not enough valid items in source look.")

    if not primary_user_image(db, user.id):
        return LookResult(success=False, error="no_photo")

    swap = _swap_categories(twist, source_items, rng)
    catalog = SqlCatalog(db, limit=REMIX_ALTERNATIVES_LIMIT)
    gender = matching_gender(user)

    new_items: list[Item] = []
    used: set[str] = set()
    for idx, item in enumerate(source_items):
        if item.category not in swap:
            new_items.append(item)
            used.add(item.id)
            continue

        # замена должна оставаться совместимой с остальными вещами образа
        others = new_items + source_items[idx + 1:]
        alternatives = [
            alt for alt in catalog.by_category(item.category, gender)
            if alt.is_active and alt.id != item.id and alt.id not in used
            and is_item_coherent_with_look(alt, others)
        ]
        similar = [a for a in alternatives if abs((a.price or 0) - (item.price or 0)) < (item.price or 0) * 0.5]
        pool = similar or alternatives
        chosen = rng.choice(pool) if pool else item
        new_items.append(chosen)
        used.add(chosen.id)

    credit = deduct_credit(db, user.id, 1)
    if not credit.success:
        return LookResult(success=False, error="insufficient_credits")

    look = create_look(
        db,
        new_items,
        creator=user,
        name=f"{source.name} ({twist})" if source.name else f"{twist.title()} Remix",
        occasion=occasion or source.occasion,
        nima_comment=generate_nima_comment(occasion or source.occasion, twist, user.first_name, rng),
        creation_source="chat",
        original_look_id=source.id,
    )
    after.add("jobs.generate_look_image", look.id, user.id)
    return LookResult(
        success=True,
        look_id=look.id,
        public_id=look.public_id,
        message=f"I've remixed your look with a {twist} twist! Step into the fitting room to see this fresh take.",
    )


def schedule_chat_look_generation(db: Session, user: User, look_ids: Sequence[str], after: AfterCommit) -> int:
    """(Пере)ставит генерацию для своих pending looks; дубли безопасны: воркер пропустит не-pending."""
    scheduled = 0
    for look_id in look_ids:
        look = get_owned_look(db, user, look_id)
        if look.generation_status != GenerationStatus.PENDING.value:
            continue
        after.add("jobs.generate_look_image", look.id, user.id)
        scheduled += 1
    return scheduled
