import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Один URL на API и RQ-воркер: looks / try-ons / credits живут в одной базе
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set (API and worker both need it)")


def _connect_args(url: str) -> dict:
    # sqlite в тестах: одно соединение видят TestClient и потоки загрузки картинок;
    # timeout ждёт конкурирующее списание кредитов вместо "database is locked"
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 30}
    return {}


engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    future=True,
    connect_args=_connect_args(DATABASE_URL),
)

# jobs закрывают сессию до вызова AI и читают захваченные поля после commit
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)

# все таблицы регистрируются в Base.metadata до create_all и Alembic autogenerate
import models  # noqa: E402,F401
from models import Base  # noqa: E402


def init_db() -> None:
    """
    AUTO_CREATE_DB=1: таблицы Nima создаются на старте (локально и в тестах).
    Иначе схему ведёт Alembic (a1c3e5f70001 и далее).
    """
    if os.getenv("AUTO_CREATE_DB", "0") == "1":
        Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Сессия на запрос: роуты коммитят сами (или через AfterCommit)."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
