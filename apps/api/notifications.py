import logging
import os
from typing import Any

import requests
from sqlalchemy.orm import Session

from models import PushToken

logger = logging.getLogger(__name__)


def _expo_url() -> str:
    return (os.getenv("EXPO_PUSH_URL") or "https://exp.host/--/api/v2/push/send").strip()


def get_user_push_tokens(db: Session, user_id: str) -> list[str]:
    rows = db.query(PushToken).filter(PushToken.user_id == user_id).all()
    return [r.token for r in rows]


def send_expo_push(
    tokens: list[str],
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    channel_id: str = "default",
) -> bool:
    """Best-effort: ошибки доставки логируем и глотаем."""
    if not tokens:
        return False

    messages = [
        {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": data or {},
            "priority": "high",
            "channelId": channel_id,
        }
        for token in tokens
    ]

    try:
        resp = requests.post(
            _expo_url(),
            json=messages,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=(5, 15),
        )
        resp.raise_for_status()
        return True
    except Exception as e:
        logger.warning("expo push failed (%d tokens): %s", len(tokens), e)
        return False


def notify(
    db: Session,
    user_id: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    channel_id: str = "default",
) -> bool:
    tokens = get_user_push_tokens(db, user_id)
    if not tokens:
        logger.info("no push tokens for user %s, skipping %s", user_id, (data or {}).get("type"))
        return False
    return send_expo_push(tokens, title, body, data, channel_id)


# ---------------- Message texts ----------------

def low_credit_message(remaining: int) -> tuple[str, str]:
    title = "⚡ Running Low on Credits"
    if remaining == 0:
        body = "You're out of credits! Top up to keep discovering looks."
    else:
        body = f"Only {remaining} credit{'' if remaining == 1 else 's'} left. Top up to keep discovering looks."
    return title, body


def purchase_message(credits_added: int, new_balance: int) -> tuple[str, str]:
    return (
        "🎉 Credits Added!",
        f"{credits_added} credits added to your account. You now have {new_balance} credits.",
    )


def look_ready_message(look_name: str | None) -> tuple[str, str]:
    return (
        "✨ Your Look is Ready!",
        f'"{look_name or "Your look"}" has been generated. Tap to see yourself in this outfit!',
    )


def try_on_ready_message(item_name: str) -> tuple[str, str]:
    return (
        "👗 Try-On Ready!",
        f'Your virtual try-on for "{item_name}" is ready. Tap to see how it looks on you!',
    )


def onboarding_ready_message(success_count: int) -> tuple[str, str]:
    if success_count >= 3:
        body = "Your personalized outfits are ready. Tap to see yourself styled by Nima!"
    else:
        body = (
            f"We've created {success_count} personalized outfit{'' if success_count == 1 else 's'} "
            "for you. Tap to check them out!"
        )
    return "🎉 Your First Looks Are Ready!", body
