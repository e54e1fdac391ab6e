"""
Первые образы пользователя после онбординга.

AI выбирает вещи из каталога (JSON-массив в ответе); всё, что он вернул,
проходит те же проверки, что и матчер. Недостающие образы добирает матчер.
"""
import json
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy.orm import Session

import ai_client
import rate_limit
from catalog import SqlCatalog
from coherence import are_items_compatible
from credits import deduct_credit
from looks_service import create_look
from matching import (
    GENDER_EXCLUDED_CATEGORIES,
    MatchPreferences,
    fits_outfit_shape,
    match_items_for_look,
)
from models import Item, Look, User
from profiles import matching_gender, primary_user_image
from prompts import ONBOARDING_USER_PROMPT, nima_comment_prompt, onboarding_system_prompt
from queueing import AfterCommit

logger = logging.getLogger(__name__)

ONBOARDING_LOOKS = 3
ONBOARDING_CATALOG_LIMIT = 100
MAX_COMMENT_LENGTH = 150
FALLBACK_COMMENT = "This look is absolutely perfect for you! Trust the process."

JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class OnboardingResult:
    success: bool
    error: str | None = None
    looks_requested: int = 0


@dataclass
class ProposedLook:
    items: list[Item]
    name: str | None = None
    occasion: str | None = None
    style_tags: list[str] = field(default_factory=list)


# ---------------- Start (API) ----------------

def start_onboarding(db: Session, user: User, after: AfterCommit) -> OnboardingResult:
    """Бесплатно, не чаще раза в сутки."""
    if not primary_user_image(db, user.id):
        return OnboardingResult(success=False, error="no_photo")

    limit = rate_limit.hit("start_onboarding", user.id)
    if not limit.ok:
        return OnboardingResult(success=False, error="rate_limited")

    after.add("jobs.process_onboarding_looks", user.id, [], 0)
    return OnboardingResult(success=True, looks_requested=ONBOARDING_LOOKS)


def generate_more_looks(db: Session, user: User, after: AfterCommit) -> OnboardingResult:
    """Ещё три образа в том же стиле, без повторения уже показанных вещей. 3 кредита."""
    if not primary_user_image(db, user.id):
        return OnboardingResult(success=False, error="no_photo")

    limit = rate_limit.hit("generate_more_looks", user.id)
    if not limit.ok:
        return OnboardingResult(success=False, error="rate_limited")

    credit = deduct_credit(db, user.id, ONBOARDING_LOOKS)
    if not credit.success:
        return OnboardingResult(success=False, error="insufficient_credits")

    exclude = sorted(shown_item_ids(db, user.id))
    after.add("jobs.process_onboarding_looks", user.id, exclude, ONBOARDING_LOOKS)
    return OnboardingResult(success=True, looks_requested=ONBOARDING_LOOKS)


def shown_item_ids(db: Session, user_id: str) -> set[str]:
    rows = (
        db.query(Look.item_ids)
        .filter(Look.creator_user_id == user_id, Look.creation_source == "onboarding")
        .all()
    )
    ids: set[str] = set()
    for (item_ids,) in rows:
        ids.update(item_ids or [])
    return ids


# ---------------- AI selection ----------------

def onboarding_candidates(db: Session, gender: str | None, exclude_ids: set[str]) -> list[Item]:
    q = db.query(Item).filter(Item.is_active.is_(True))
    if gender in ("male", "female"):
        q = q.filter(Item.gender.in_([gender, "unisex"]))
    # платье мужчине не показываем, даже unisex
    blocked = GENDER_EXCLUDED_CATEGORIES.get(gender or "")
    if blocked:
        q = q.filter(Item.category.notin_(sorted(blocked)))
    items = q.limit(ONBOARDING_CATALOG_LIMIT + len(exclude_ids)).all()
    return [i for i in items if i.id not in exclude_ids][:ONBOARDING_CATALOG_LIMIT]


def parse_looks_json(text: str) -> list[dict[str, Any]]:
    """Вытаскивает JSON-массив из ответа модели; мусор вокруг игнорируется."""
    m = JSON_ARRAY_RE.search(text or "")
    if not m:
        return []
    try:
        data = json.loads(m.group(0))
    except ValueError:
        return []
    return [x for x in data if isinstance(x, dict)] if isinstance(data, list) else []


def validate_no_duplicate_categories(items: Sequence[Item]) -> list[Item]:
    """Оставляет первую вещь каждой категории."""
    seen: set[str] = set()
    result: list[Item] = []
    for item in items:
        if item.category in seen:
            logger.info("dropping duplicate category %s (%s)", item.category, item.id)
            continue
        seen.add(item.category)
        result.append(item)
    return result


def _validated_items(raw_items: Sequence[Any], by_id: dict[str, Item], used: set[str]) -> list[Item]:
    picked: list[Item] = []
    for raw in raw_items:
        item_id = raw.get("itemId") if isinstance(raw, dict) else raw
        item = by_id.get(str(item_id)) if item_id is not None else None
        if item is None or item.id in used or item in picked:
            continue
        picked.append(item)

    selected: list[Item] = []
    for item in validate_no_duplicate_categories(picked):
        if not fits_outfit_shape(item, selected):
            continue
        # жёсткий фильтр формальности: как у матчера
        if not all(are_items_compatible(item, s) for s in selected):
            continue
        selected.append(item)
    return selected[:4]


def select_items_for_looks(user: User, candidates: Sequence[Item]) -> list[ProposedLook]:
    if not candidates:
        return []

    system = onboarding_system_prompt(
        matching_gender(user),
        list(user.style_preferences or []),
        user.budget_range,
        user.first_name,
        candidates,
    )
    try:
        text = ai_client.generate_text(ONBOARDING_USER_PROMPT, system=system, temperature=0.8)
    except ai_client.AIServiceError as e:
        logger.warning("AI item selection failed for user %s: %s", user.id, e)
        return []

    by_id = {i.id: i for i in candidates}
    used: set[str] = set()
    looks: list[ProposedLook] = []
    for raw in parse_looks_json(text):
        items = _validated_items(raw.get("items") or [], by_id, used)
        if len(items) < 2:
            continue
        used.update(i.id for i in items)
        tags = raw.get("styleTags") if isinstance(raw.get("styleTags"), list) else []
        looks.append(ProposedLook(
            items=items,
            name=raw.get("name") or None,
            occasion=raw.get("occasion") or None,
            style_tags=[str(t) for t in tags],
        ))
        if len(looks) >= ONBOARDING_LOOKS:
            break
    return looks


def generate_look_comment(look_name: str, occasion: str | None, first_name: str | None) -> str:
    try:
        text = ai_client.generate_text(
            nima_comment_prompt(look_name, occasion or "everyday", first_name),
            temperature=0.9,
        )
    except ai_client.AIServiceError as e:
        logger.warning("AI comment failed: %s", e)
        return FALLBACK_COMMENT
    return text[:MAX_COMMENT_LENGTH] if text else FALLBACK_COMMENT


# ---------------- Build ----------------

def build_onboarding_looks(db: Session, user: User, exclude_ids: Sequence[str],
                           rng: random.Random | None = None) -> list[Look]:
    """Создаёт до трёх pending looks (flush, без commit)."""
    rng = rng or random.Random()
    excluded = set(exclude_ids or [])
    gender = matching_gender(user)

    proposals = select_items_for_looks(user, onboarding_candidates(db, gender, excluded))

    used = set(excluded)
    for p in proposals:
        used.update(i.id for i in p.items)

    # AI вернул меньше трёх: добираем матчером
    catalog = SqlCatalog(db)
    index = 0
    while len(proposals) < ONBOARDING_LOOKS and index < ONBOARDING_LOOKS * 2:
        prefs = MatchPreferences(
            gender=gender,
            style_preferences=list(user.style_preferences or []),
            budget_range=user.budget_range,
            exclude_item_ids=set(used),
            strategy_index=index,
        )
        items = match_items_for_look(catalog, prefs, rng=rng)
        index += 1
        if len(items) < 2:
            continue
        used.update(i.id for i in items)
        proposals.append(ProposedLook(items=items))

    looks: list[Look] = []
    for n, p in enumerate(proposals[:ONBOARDING_LOOKS]):
        name = p.name or f"Look #{n + 1}"
        looks.append(create_look(
            db,
            p.items,
            creator=user,
            name=name,
            occasion=p.occasion,
            nima_comment=generate_look_comment(name, p.occasion, user.first_name),
            created_by="system",
            creation_source="onboarding",
            style_tags=p.style_tags or None,
        ))
    return looks
