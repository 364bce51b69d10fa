# access.py
# Password login, signed expiring session cookies and reCAPTCHA verification
# for the public API. Development mode bypasses all of it (see app.py).
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)

SESSION_COOKIE = "etf_auth"
RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"

CAPTCHA_MISSING = "Please complete the captcha."
CAPTCHA_FAILED = "Captcha verification failed. Please try again."
SESSION_EXPIRED = "Unauthorized. Session expired."
BAD_PASSWORD = "Incorrect password."


class AccessDenied(Exception):
    """Raised with the caller-facing message when a request is not allowed."""


def check_password(supplied: Optional[str], expected: Optional[str]) -> bool:
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def _sign(secret: str, payload: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_session_token(secret: str, minutes: int = 15, *, now: Optional[float] = None) -> str:
    """'<expiry epoch seconds>.<hmac-sha256 hex>'"""
    expires = int((time.time() if now is None else now) + minutes * 60)
    payload = str(expires)
    return f"{payload}.{_sign(secret, payload)}"


def validate_session_token(token: Optional[str], secret: Optional[str], *, now: Optional[float] = None) -> bool:
    if not token or not secret or "." not in token:
        return False
    payload, _, signature = token.partition(".")
    if not hmac.compare_digest(signature.encode("utf-8"), _sign(secret, payload).encode("utf-8")):
        return False
    try:
        expires = int(payload)
    except ValueError:
        return False
    return (time.time() if now is None else now) < expires


def verify_captcha(
    token: Optional[str],
    secret: str,
    *,
    remote_ip: Optional[str] = None,
    timeout: float = 10.0,
    session: Optional[requests.Session] = None,
) -> bool:
    """Pass/fail reCAPTCHA check. Transport errors count as a failure."""
    if not token:
        return False
    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip
    try:
        http = session or requests
        resp = http.post(RECAPTCHA_VERIFY_URL, data=data, timeout=timeout)
        resp.raise_for_status()
        body = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("[captcha] verification request failed: %s", e)
        return False
    ok = bool(body.get("success"))
    if not ok:
        logger.info("[captcha] rejected: %s", body.get("error-codes"))
    return ok


def require_access(
    *,
    captcha_token: Optional[str],
    session_token: Optional[str],
    captcha_secret: Optional[str],
    session_secret: Optional[str],
) -> None:
    """Raise AccessDenied unless both the captcha and the session cookie check out."""
    if not captcha_token:
        raise AccessDenied(CAPTCHA_MISSING)
    if not verify_captcha(captcha_token, captcha_secret or ""):
        raise AccessDenied(CAPTCHA_FAILED)
    if not validate_session_token(session_token, session_secret):
        raise AccessDenied(SESSION_EXPIRED)
