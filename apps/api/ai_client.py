"""
HTTP-клиент к внутреннему AI сервису (apps/ai): генерация текста и изображений.

Сервис считаем ненадёжным, у каждого вызова таймаут. Отсутствие картинки в ответе
нормальный исход (image=None), а не исключение.
"""
import base64
import os
from dataclasses import dataclass
from typing import Any

import requests


class AIServiceError(Exception):
    pass


@dataclass
class ImageResult:
    text: str | None
    image: bytes | None
    mime_type: str = "image/png"


def _ai_url() -> str:
    return (os.getenv("AI_INTERNAL_URL") or "http://ai:8002").strip().rstrip("/")


def _timeout() -> tuple[float, float]:
    connect = float((os.getenv("AI_CONNECT_TIMEOUT") or "5").strip())
    read = float((os.getenv("AI_READ_TIMEOUT") or "120").strip())
    return connect, read


def _post(path: str, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        resp = requests.post(f"{_ai_url()}{path}", json=payload, timeout=_timeout())
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as e:
        raise AIServiceError(f"AI request failed: {e}") from e
    except ValueError as e:
        raise AIServiceError(f"AI returned malformed JSON: {e}") from e


# ---------------- Prompt parts ----------------

def text_part(text: str) -> dict[str, Any]:
    return {"text": text}


def image_part(data: bytes, mime_type: str = "image/jpeg") -> dict[str, Any]:
    return {
        "inline_data": {
            "mime_type": mime_type,
            "data": base64.b64encode(data).decode("ascii"),
        }
    }


# ---------------- Calls ----------------

def generate_text(prompt: str, system: str | None = None, temperature: float = 0.7) -> str:
    result = _post(
        "/v1/text/generate",
        {"prompt": prompt, "system": system, "temperature": temperature},
    )
    return (result.get("text") or "").strip()


def generate_image(parts: list[dict[str, Any]]) -> ImageResult:
    result = _post("/v1/image/generate", {"parts": parts})

    image_b64 = result.get("image_b64")
    image = None
    if image_b64:
        try:
            image = base64.b64decode(image_b64)
        except (ValueError, TypeError):
            image = None

    return ImageResult(
        text=result.get("text"),
        image=image or None,
        mime_type=result.get("mime_type") or "image/png",
    )


def provider_name() -> str:
    return (os.getenv("AI_PROVIDER_NAME") or "openai-gpt-image").strip()
