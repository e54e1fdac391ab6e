"""
Pytest configuration and shared fixtures.

Окружение выставляется до импорта модулей API: db.py и auth.py читают его при импорте.
Внешние сервисы (очередь RQ, MinIO, Redis, AI gateway, Expo push) заменены
in-memory двойниками.
"""
import os
import tempfile
import uuid
from datetime import datetime
from types import SimpleNamespace
from typing import Any

_TMP = tempfile.mkdtemp(prefix="nima-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'nima.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALG"] = "HS256"
os.environ["AUTO_CREATE_DB"] = "1"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["MINIO_ACCESS_KEY"] = "test"
os.environ["MINIO_SECRET_KEY"] = "test"
os.environ.pop("FINGO_WEBHOOK_SECRET", None)
os.environ.pop("FINGO_WEBHOOK_SECRET_KEY", None)

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from jose import jwt  # noqa: E402

import ai_client  # noqa: E402
import notifications  # noqa: E402
import queueing  # noqa: E402
import rate_limit  # noqa: E402
import storage  # noqa: E402
from db import SessionLocal, engine  # noqa: E402
from models import Base, Item, ItemImage, User, UserImage  # noqa: E402


# ============================================================================
# Doubles
# ============================================================================

class RecordingQueue:
    """Вместо rq.Queue: запоминает поставленные задачи."""

    def __init__(self):
        self.jobs: list[tuple[str, tuple]] = []
        self.delayed: list[tuple[str, tuple, Any]] = []

    def enqueue(self, func_path, *args):
        self.jobs.append((func_path, args))
        return SimpleNamespace(id=str(uuid.uuid4()))

    def enqueue_in(self, delay, func_path, *args):
        self.delayed.append((func_path, args, delay))
        return SimpleNamespace(id=str(uuid.uuid4()))

    def names(self) -> list[str]:
        return [name for name, _ in self.jobs]

    def args_for(self, func_path: str) -> list[tuple]:
        return [args for name, args in self.jobs if name == func_path]


class _FakeObject:
    def __init__(self, data: bytes):
        self._data = data

    def read(self) -> bytes:
        return self._data

    def close(self):
        pass

    def release_conn(self):
        pass


class FakeMinio:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.buckets: set[str] = set()

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets.add(bucket)

    def put_object(self, bucket, key, stream, length, content_type=None):
        self.objects[key] = stream.read()

    def get_object(self, bucket, key):
        if key not in self.objects:
            raise KeyError(key)
        return _FakeObject(self.objects[key])

    def presigned_get_object(self, bucket, key, expires=None):
        return f"http://minio:9000/{bucket}/{key}?sig=test"

    def remove_object(self, bucket, key):
        self.objects.pop(key, None)


class FakeAI:
    """Ответы AI gateway: text: строка, images: очередь ImageResult (последний повторяется)."""

    def __init__(self):
        self.text = "A confident person in a clean studio, natural light."
        self.images: list[ai_client.ImageResult] = [ai_client.ImageResult(text=None, image=b"PNGDATA")]
        self.text_calls: list[dict] = []
        self.image_calls: list[list[dict]] = []
        self.text_error: Exception | None = None
        self.image_error: Exception | None = None

    def generate_text(self, prompt, system=None, temperature=0.7):
        self.text_calls.append({"prompt": prompt, "system": system, "temperature": temperature})
        if self.text_error:
            raise self.text_error
        return self.text

    def generate_image(self, parts):
        self.image_calls.append(parts)
        if self.image_error:
            raise self.image_error
        if len(self.images) > 1:
            return self.images.pop(0)
        return self.images[0]


# ============================================================================
# Fixtures: infrastructure
# ============================================================================

@pytest.fixture(autouse=True)
def schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def queue(monkeypatch) -> RecordingQueue:
    q = RecordingQueue()
    monkeypatch.setattr(queueing, "_queue", lambda: q)
    return q


@pytest.fixture(autouse=True)
def blobs(monkeypatch) -> FakeMinio:
    client = FakeMinio()
    monkeypatch.setattr(storage, "_client", lambda: client)
    return client


@pytest.fixture(autouse=True)
def redis_server(monkeypatch):
    r = fakeredis.FakeRedis()
    monkeypatch.setattr(rate_limit, "_client", lambda: r)
    return r


@pytest.fixture(autouse=True)
def fake_ai(monkeypatch) -> FakeAI:
    ai = FakeAI()
    monkeypatch.setattr(ai_client, "generate_text", ai.generate_text)
    monkeypatch.setattr(ai_client, "generate_image", ai.generate_image)
    return ai


@pytest.fixture(autouse=True)
def pushes(monkeypatch) -> list[dict]:
    sent: list[dict] = []

    def _send(tokens, title, body, data=None, channel_id="default"):
        sent.append({"tokens": tokens, "title": title, "body": body, "data": data or {}})
        return True

    monkeypatch.setattr(notifications, "send_expo_push", _send)
    return sent


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c


# ============================================================================
# Fixtures: data factories
# ============================================================================

def _now() -> datetime:
    return datetime.utcnow()


def make_user(db, **overrides) -> User:
    now = _now()
    data = dict(
        id=str(uuid.uuid4()),
        external_id=f"ext_{uuid.uuid4().hex[:10]}",
        email="amani@example.com",
        first_name="Amani",
        gender="female",
        style_preferences=["casual"],
        budget_range="mid",
        credits=0,
        free_credits_used_this_week=0,
        weekly_credits_reset_at=now,
        onboarding_completed=False,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    data.update(overrides)
    u = User(**data)
    db.add(u)
    db.commit()
    return u


def make_item(db, blobs: FakeMinio | None = None, with_image: bool = True, **overrides) -> Item:
    now = _now()
    item_id = overrides.pop("id", None) or str(uuid.uuid4())
    data = dict(
        id=item_id,
        public_id=f"item_{uuid.uuid4().hex[:10]}",
        name="Plain Jeans",
        brand="Kitenge Co",
        description=None,
        category="bottom",
        gender="unisex",
        price=2500,
        currency="KES",
        colors=["blue"],
        sizes=["M"],
        tags=["casual"],
        occasion=["casual"],
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    data.update(overrides)
    item = Item(**data)
    db.add(item)
    if with_image:
        key = f"items/{item_id}.jpg"
        if blobs is not None:
            blobs.objects[key] = b"ITEMIMG"
        db.add(ItemImage(id=str(uuid.uuid4()), item_id=item_id, storage_key=key, sort_order=0, is_primary=True))
    db.commit()
    return item


def make_photo(db, user: User, blobs: FakeMinio | None = None) -> UserImage:
    key = f"users/{user.id}/{uuid.uuid4()}.jpg"
    if blobs is not None:
        blobs.objects[key] = b"USERPHOTO"
    img = UserImage(
        id=str(uuid.uuid4()),
        user_id=user.id,
        storage_key=key,
        content_type="image/jpeg",
        is_primary=True,
        created_at=_now(),
    )
    db.add(img)
    db.commit()
    return img


def casual_wardrobe(db, blobs: FakeMinio | None = None, gender: str = "unisex") -> dict[str, Item]:
    """Небольшой согласованный casual каталог: верх, низ, обувь, аксессуар."""
    return {
        "top": make_item(db, blobs, name="Cotton Tee", category="top", colors=["white"], gender=gender),
        "top2": make_item(db, blobs, name="Striped Tee", category="top", colors=["black"], gender=gender),
        "bottom": make_item(db, blobs, name="Blue Jeans", category="bottom", colors=["blue"], gender=gender),
        "bottom2": make_item(db, blobs, name="Denim Shorts", category="bottom", colors=["black"], gender=gender),
        "shoes": make_item(db, blobs, name="Canvas Sneakers", category="shoes", colors=["white"], gender=gender),
        "accessory": make_item(db, blobs, name="Casual Cap", category="accessory", colors=["black"], gender=gender),
    }


def auth_headers(user: User) -> dict[str, str]:
    token = jwt.encode({"sub": user.external_id, "email": user.email}, "test-secret", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def fresh(db, model, pk):
    db.expire_all()
    return db.get(model, pk)
