import base64
import logging
import os
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from openai import OpenAI, OpenAIError
from pydantic import BaseModel

logging.basicConfig(level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="Nima AI Gateway", version="0.1")


def _text_model() -> str:
    return (os.getenv("TEXT_MODEL") or "gpt-4o-mini").strip()


def _image_model() -> str:
    return (os.getenv("IMAGE_MODEL") or "gpt-image-1").strip()


def _client() -> OpenAI:
    api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if not api_key:
        raise HTTPException(status_code=503, detail="OPENAI_API_KEY is not set")
    timeout = float((os.getenv("OPENAI_TIMEOUT") or "110").strip())
    return OpenAI(api_key=api_key, timeout=timeout)


@app.get("/health")
def health():
    return {"status": "ok"}


# ---------------- Text ----------------

class TextReq(BaseModel):
    prompt: str
    system: Optional[str] = None
    temperature: float = 0.7


@app.post("/v1/text/generate")
def generate_text(req: TextReq):
    messages = []
    if req.system:
        messages.append({"role": "system", "content": req.system})
    messages.append({"role": "user", "content": req.prompt})

    try:
        resp = _client().chat.completions.create(
            model=_text_model(),
            messages=messages,
            temperature=req.temperature,
        )
    except OpenAIError as e:
        logger.warning("text generation failed: %s", e)
        raise HTTPException(status_code=502, detail=f"text generation failed: {e}")

    text = resp.choices[0].message.content if resp.choices else None
    return {"text": (text or "").strip()}


# ---------------- Image ----------------

class ImageReq(BaseModel):
    # [{"text": ...} | {"inline_data": {"mime_type", "data"(b64)}}]
    parts: list[dict[str, Any]]


def _split_parts(parts: list[dict[str, Any]]) -> tuple[str, list[tuple[str, bytes, str]]]:
    texts: list[str] = []
    images: list[tuple[str, bytes, str]] = []
    for i, part in enumerate(parts):
        if part.get("text"):
            texts.append(str(part["text"]))
            continue
        inline = part.get("inline_data") or {}
        if not inline.get("data"):
            continue
        try:
            data = base64.b64decode(inline["data"])
        except (ValueError, TypeError):
            raise HTTPException(status_code=400, detail=f"part {i}: invalid base64")
        mime = inline.get("mime_type") or "image/jpeg"
        ext = mime.split("/")[-1].replace("jpeg", "jpg")
        images.append((f"ref_{i}.{ext}", data, mime))
    return "\n\n".join(texts), images


@app.post("/v1/image/generate")
def generate_image(req: ImageReq):
    """
    Пустой ответ модели (нет картинки / заблокировано) не ошибка:
    image_b64=None, решение о ретрае принимает вызывающий.
    """
    prompt, images = _split_parts(req.parts)
    if not prompt:
        raise HTTPException(status_code=400, detail="text part is required")

    client = _client()
    try:
        if images:
            resp = client.images.edit(model=_image_model(), image=images, prompt=prompt)
        else:
            resp = client.images.generate(model=_image_model(), prompt=prompt)
    except OpenAIError as e:
        # отказ модерации и т.п.: отдаём как "картинки нет"
        logger.warning("image generation returned no image: %s", e)
        return {"text": str(e), "image_b64": None, "mime_type": None}

    image_b64 = resp.data[0].b64_json if resp.data else None
    return {
        "text": getattr(resp.data[0], "revised_prompt", None) if resp.data else None,
        "image_b64": image_b64,
        "mime_type": "image/png" if image_b64 else None,
    }
