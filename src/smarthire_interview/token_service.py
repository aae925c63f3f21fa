from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

UTC = timezone.utc

# 32 random bytes -> 256 bits of entropy, URL-safe base64 without padding.
TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_hash: str
    expires_at: datetime


class SchedulerTokenService:
    """Issues one-time scheduling tokens.

    Only the SHA-256 of a token is persisted; the plain value travels in the
    scheduling link and is hashed again on lookup.
    """

    def __init__(self, ttl_hours: int = 72) -> None:
        self.ttl_hours = max(1, int(ttl_hours))

    def issue(self, now: Optional[datetime] = None) -> IssuedToken:
        ref_now = now or datetime.now(UTC)
        token = secrets.token_urlsafe(TOKEN_BYTES)
        return IssuedToken(
            token=token,
            token_hash=self.token_hash(token),
            expires_at=ref_now + timedelta(hours=self.ttl_hours),
        )

    @staticmethod
    def token_hash(token: str) -> str:
        return hashlib.sha256(str(token or "").encode("utf-8")).hexdigest()

    @staticmethod
    def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if expires_at is None:
            return False
        ref_now = now or datetime.now(UTC)
        return ref_now >= expires_at
