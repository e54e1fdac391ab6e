import enum
from typing import Dict


class GenerationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidStateTransition(Exception):
    """
    Бросается, если система пытается сделать запрещённый переход.
    Это НЕ 500, это бизнес-ошибка.
    """
    pass


# ============================================================
# GENERATION STATE MACHINE (look / item try-on)
# ============================================================

GENERATION_TRANSITIONS: Dict[GenerationStatus, Dict[str, GenerationStatus]] = {
    GenerationStatus.PENDING: {
        "start": GenerationStatus.PROCESSING,
        "fail": GenerationStatus.FAILED,
    },

    GenerationStatus.PROCESSING: {
        "complete": GenerationStatus.COMPLETED,
        "fail": GenerationStatus.FAILED,
    },

    # только явный ретрай пользователя
    GenerationStatus.FAILED: {
        "retry": GenerationStatus.PENDING,
    },

    GenerationStatus.COMPLETED: {},
}

# какое событие ведёт в целевой статус
EVENT_FOR_STATUS: Dict[GenerationStatus, str] = {
    GenerationStatus.PROCESSING: "start",
    GenerationStatus.COMPLETED: "complete",
    GenerationStatus.FAILED: "fail",
    GenerationStatus.PENDING: "retry",
}


def next_status(current: GenerationStatus, event: str) -> GenerationStatus:
    allowed = GENERATION_TRANSITIONS.get(current, {})
    if event not in allowed:
        names = ", ".join(allowed.keys()) or "none"
        raise InvalidStateTransition(
            f"Event '{event}' is not allowed from state '{current.value}'. "
            f"Allowed events: {names}"
        )
    return allowed[event]
