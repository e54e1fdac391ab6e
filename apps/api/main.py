import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import router as auth_router
from chat_routes import router as chat_router
from credits_routes import router as credits_router
from db import init_db
from looks_routes import router as looks_router
from looks_service import LookNotFound
from state_machine import InvalidStateTransition
from state_service import StateTransitionError
from storage import ensure_bucket
from try_on_routes import router as try_on_router
from try_ons import TryOnNotFound
from users_routes import router as users_router

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _parse_cors_origins() -> list[str]:
    raw = (os.getenv("CORS_ORIGINS") or "").strip()
    if not raw:
        return ["*"]
    origins = [x.strip() for x in raw.split(",") if x.strip()]
    return origins or ["*"]


app = FastAPI(title="Nima API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(chat_router)
app.include_router(looks_router)
app.include_router(try_on_router)
app.include_router(credits_router)


@app.on_event("startup")
def _startup():
    init_db()
    try:
        ensure_bucket()
    except Exception as e:
        logger.warning("ensure_bucket failed on startup (minio not ready?): %s", e)


# ---------------- Errors ----------------

@app.exception_handler(LookNotFound)
async def _look_not_found(request: Request, exc: LookNotFound):
    return JSONResponse(status_code=404, content={"detail": "look not found"})


@app.exception_handler(TryOnNotFound)
async def _try_on_not_found(request: Request, exc: TryOnNotFound):
    return JSONResponse(status_code=404, content={"detail": "try-on not found"})


@app.exception_handler(InvalidStateTransition)
async def _invalid_transition(request: Request, exc: InvalidStateTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StateTransitionError)
async def _state_error(request: Request, exc: StateTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.get("/health", operation_id="health")
def health():
    return {"status": "ok"}
