import uuid
from datetime import datetime
from typing import Literal

from sqlalchemy.orm import Session

from models import ItemTryOn, Look, StateHistory
from state_machine import EVENT_FOR_STATUS, GenerationStatus, next_status


EntityType = Literal["look", "item_try_on"]


class StateTransitionError(Exception):
    """
    Бизнес-ошибка перехода состояния.
    НЕ является системной ошибкой (500).
    """
    pass


def _status_field(entity_type: EntityType) -> str:
    if entity_type == "look":
        return "generation_status"
    if entity_type == "item_try_on":
        return "status"
    raise StateTransitionError(f"Unsupported entity_type: {entity_type}")


def entity_type_of(entity) -> EntityType:
    if isinstance(entity, Look):
        return "look"
    if isinstance(entity, ItemTryOn):
        return "item_try_on"
    raise StateTransitionError(f"Unsupported entity: {type(entity).__name__}")


# ============================================================
# CHANGE_GENERATION_STATUS
# ============================================================

def change_status(
    db: Session,
    entity,
    target: GenerationStatus | str,
    error_message: str | None = None,
    actor_id: str | None = None,
) -> bool:
    """
    Переводит look / item_try_on в target по FSM и пишет StateHistory.

    Повторная установка текущего статуса: no-op (last-write-wins для
    error_message), возвращает False. Запрещённый переход: InvalidStateTransition.
    """
    entity_type = entity_type_of(entity)
    field = _status_field(entity_type)

    target = GenerationStatus(target)
    current = GenerationStatus(getattr(entity, field) or GenerationStatus.PENDING.value)
    now = datetime.utcnow()

    if current == target:
        if target == GenerationStatus.FAILED and error_message:
            entity.error_message = error_message
            entity.updated_at = now
        return False

    event = EVENT_FOR_STATUS[target]
    new_status = next_status(current, event)

    setattr(entity, field, new_status.value)
    if new_status == GenerationStatus.FAILED:
        entity.error_message = error_message or "Unknown error"
    else:
        # pending (retry) / processing / completed: прошлую ошибку чистим
        entity.error_message = None
    entity.updated_at = now

    db.add(
        StateHistory(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            entity_id=entity.id,
            from_state=current.value,
            to_state=new_status.value,
            event=event,
            actor=str(actor_id) if actor_id else None,
            created_at=now,
        )
    )
    return True


def retry_generation(db: Session, entity, actor_id: str | None = None) -> None:
    """Явный ретрай: строго failed -> pending (pending -> pending здесь не no-op, а ошибка)."""
    field = _status_field(entity_type_of(entity))
    next_status(GenerationStatus(getattr(entity, field)), "retry")
    change_status(db, entity, GenerationStatus.PENDING, actor_id=actor_id)
