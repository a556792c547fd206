"""
Buyer identity from Telegram Mini App initData.

Clients send `Authorization: tma <initData>`. The signature is checked with the
bot token: secret = HMAC_SHA256(key="WebAppData", msg=bot_token),
hash = HMAC_SHA256(key=secret, msg=data_check_string), where data_check_string is
"key=value" pairs (without hash) sorted by key and joined with "\n".
"""
import hashlib
import hmac
import json
import logging
import time
from urllib.parse import parse_qsl

from fastapi import Header, HTTPException, status

from bookvault.core.config import settings

logger = logging.getLogger(__name__)

AUTH_SCHEME = "tma"


class InitDataInvalid(ValueError):
    pass


def extract_init_data(authorization: str | None) -> str | None:
    """`tma <initData>` -> initData; None for a missing header or another scheme."""
    if not authorization:
        return None
    scheme, _, payload = authorization.strip().partition(" ")
    if scheme.lower() != AUTH_SCHEME:
        return None
    payload = payload.strip()
    return payload or None


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Hash Telegram would put into initData for these fields."""
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(fields.items()))
    secret = hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(secret, data_check_string.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_init_data(
    raw: str,
    bot_token: str,
    max_age_seconds: int,
    now: float | None = None,
) -> dict:
    """
    Check signature and freshness, return the parsed `user` object.
    Raises InitDataInvalid.
    """
    fields = dict(parse_qsl(raw, keep_blank_values=True))
    received_hash = fields.pop("hash", None)
    if not received_hash:
        raise InitDataInvalid("hash is missing")
    if not hmac.compare_digest(sign_init_data(fields, bot_token), received_hash):
        raise InitDataInvalid("signature mismatch")

    try:
        auth_date = int(fields.get("auth_date", ""))
    except ValueError:
        raise InitDataInvalid("auth_date is missing")
    current = now if now is not None else time.time()
    if max_age_seconds > 0 and current - auth_date > max_age_seconds:
        raise InitDataInvalid("initData expired")

    try:
        user = json.loads(fields.get("user") or "")
    except ValueError:
        raise InitDataInvalid("user is missing")
    if not isinstance(user, dict) or user.get("id") is None:
        raise InitDataInvalid("user.id is missing")
    return user


def get_current_buyer(authorization: str | None = Header(None)) -> str:
    """FastAPI dependency: Telegram user id of the caller as a string."""
    raw = extract_init_data(authorization)
    if raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Telegram authorization required",
            headers={"WWW-Authenticate": "tma"},
        )
    try:
        user = verify_init_data(raw, settings.telegram_bot_token, settings.init_data_max_age_seconds)
    except InitDataInvalid as e:
        logger.warning("init_data_rejected", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Telegram authorization",
            headers={"WWW-Authenticate": "tma"},
        )
    return str(user["id"])
