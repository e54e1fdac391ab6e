import logging
import os
import uuid
from datetime import timedelta
from io import BytesIO

from minio import Minio

logger = logging.getLogger(__name__)


def _bucket() -> str:
    return (os.getenv("MINIO_BUCKET") or "nima").strip()


def _endpoint() -> str:
    endpoint = os.getenv("MINIO_ENDPOINT", "minio:9000")
    return endpoint.replace("http://", "").replace("https://", "")


def _client() -> Minio:
    access_key = os.getenv("MINIO_ACCESS_KEY")
    secret_key = os.getenv("MINIO_SECRET_KEY")
    secure = os.getenv("MINIO_SECURE", "0") == "1"
    if not access_key or not secret_key:
        raise RuntimeError("MINIO_ACCESS_KEY/MINIO_SECRET_KEY are not set")
    return Minio(_endpoint(), access_key=access_key, secret_key=secret_key, secure=secure)


def ensure_bucket():
    bucket = _bucket()
    c = _client()
    if not c.bucket_exists(bucket):
        c.make_bucket(bucket)


def put_object(object_key: str, data: bytes, content_type: str):
    c = _client()
    c.put_object(_bucket(), object_key, BytesIO(data), length=len(data), content_type=content_type)


def store(data: bytes, content_type: str = "image/png", prefix: str = "generated") -> str:
    """Сохраняет блоб и возвращает его ключ (storage id)."""
    ext = "png" if content_type == "image/png" else "jpg"
    object_key = f"{prefix}/{uuid.uuid4()}.{ext}"
    put_object(object_key, data, content_type)
    return object_key


def get_bytes(object_key: str) -> bytes:
    c = _client()
    resp = c.get_object(_bucket(), object_key)
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()


def get_url(object_key: str, expires_in: int = 3600) -> str | None:
    try:
        raw_url = _client().presigned_get_object(
            _bucket(),
            object_key,
            expires=timedelta(seconds=expires_in),
        )
    except Exception as e:
        logger.warning("cannot generate url for %s: %s", object_key, e)
        return None

    # внутренний адрес MinIO -> публичный, если задан
    public_minio = os.getenv("MINIO_PUBLIC_ENDPOINT")
    if not public_minio:
        return raw_url
    external = public_minio.replace("http://", "").replace("https://", "")
    return raw_url.replace(_endpoint(), external)


def delete(object_key: str) -> None:
    _client().remove_object(_bucket(), object_key)
