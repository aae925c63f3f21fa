from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog

SUPER_ADMIN = "super_admin"
COMPANY_ADMIN = "company_admin"
HR = "hr"

# Roles allowed to move a candidate through the interview pipeline.
ELEVATED_ROLES = frozenset({SUPER_ADMIN, COMPANY_ADMIN, HR})


def normalize_role(value: Any) -> str:
    return str(value or "").strip().lower().replace(" ", "_").replace("-", "_")


@dataclass
class OperatorPrincipal:
    user_id: str
    org_id: str
    role: str
    email: Optional[str] = None
    full_name: Optional[str] = None

    def can_manage_org(self, org_id: Any) -> bool:
        if self.role not in ELEVATED_ROLES:
            return False
        if self.role == SUPER_ADMIN:
            return True
        return bool(self.org_id) and str(self.org_id) == str(org_id or "")


@dataclass
class AuthDecision:
    allowed: bool
    status_code: int
    error: Optional[str] = None
    principal: Optional[OperatorPrincipal] = None


@dataclass
class OperatorAuthService:
    """Resolves operator bearer tokens to principals.

    Login and session handling live in the main application; this service
    only knows the operator API tokens it was configured with.
    """

    principals_by_hash: Dict[str, OperatorPrincipal] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[Dict[str, Any]]) -> "OperatorAuthService":
        principals: Dict[str, OperatorPrincipal] = {}
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            token = str(entry.get("token") or "").strip()
            if not token:
                continue
            principals[cls._token_hash(token)] = OperatorPrincipal(
                user_id=str(entry.get("user_id") or "").strip(),
                org_id=str(entry.get("org_id") or "").strip(),
                role=normalize_role(entry.get("role")),
                email=entry.get("email"),
                full_name=entry.get("full_name"),
            )
        return cls(principals_by_hash=principals)

    @classmethod
    def from_file(cls, path: str) -> "OperatorAuthService":
        file_path = Path(path) if path else None
        if file_path is None or not file_path.exists():
            structlog.get_logger(__name__).warning("auth.operator_tokens_missing", path=path)
            return cls()
        loaded = json.loads(file_path.read_text(encoding="utf-8"))
        entries: List[Dict[str, Any]] = loaded if isinstance(loaded, list) else list(loaded.get("operators") or [])
        return cls.from_entries(entries)

    def authorize_request(self, *, authorization_header: str) -> AuthDecision:
        token = self._extract_bearer_token(authorization_header)
        if not token:
            return AuthDecision(allowed=False, status_code=401, error="auth_required")

        principal = self.principals_by_hash.get(self._token_hash(token))
        if principal is None:
            return AuthDecision(allowed=False, status_code=401, error="invalid_auth_token")
        if principal.role not in ELEVATED_ROLES:
            return AuthDecision(allowed=False, status_code=403, error="role_forbidden", principal=principal)
        return AuthDecision(allowed=True, status_code=200, principal=principal)

    @staticmethod
    def _extract_bearer_token(header: str) -> str:
        text = str(header or "").strip()
        if not text.lower().startswith("bearer "):
            return ""
        return text[7:].strip()

    @staticmethod
    def _token_hash(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()


class CallbackKeyVerifier:
    """Checks the shared secret the interview agent sends in ``X-API-Key``."""

    def __init__(self, api_key: str) -> None:
        self._expected = str(api_key or "").strip().encode("utf-8")

    @property
    def configured(self) -> bool:
        return bool(self._expected)

    def verify(self, provided: Optional[str]) -> bool:
        if not self._expected:
            return False
        candidate = str(provided or "").strip().encode("utf-8")
        return hmac.compare_digest(self._expected, candidate)
