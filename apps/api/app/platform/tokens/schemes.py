from __future__ import annotations

import base64
import binascii
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Protocol

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.rbac import SPEAKER_ROLE


TokenKind = Literal["session", "portal_invite", "firm_offer_access", "contract_signing"]
SchemeName = Literal["signed", "opaque", "legacy"]

SIGNED_KINDS: frozenset[str] = frozenset({"session", "portal_invite"})
OPAQUE_KINDS: frozenset[str] = frozenset({"firm_offer_access", "contract_signing"})
OPAQUE_TOKEN_BYTES = 30


@dataclass(frozen=True, slots=True)
class TokenSubject:
    kind: str
    subject_id: str
    scheme: SchemeName
    roles: tuple[str, ...] = ()
    party: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class IssuedToken:
    value: str
    kind: str
    expires_at: datetime | None


OpaqueResolver = Callable[[Session, str, datetime], TokenSubject | None]


class TokenScheme(Protocol):
    name: SchemeName

    def accepts(self, token: str, kind: str) -> bool: ...

    def validate(self, token: str, kind: str, *, session: Session | None, now: datetime) -> TokenSubject | None: ...


class SignedTokenScheme:
    """JWTs for short-lived principals (admin, speaker and client sessions, portal invites)."""

    name: SchemeName = "signed"

    def accepts(self, token: str, kind: str) -> bool:
        return kind in SIGNED_KINDS and token.count(".") == 2

    def issue(
        self,
        kind: str,
        subject_id: str,
        ttl: timedelta,
        roles: list[str] | None,
        now: datetime,
    ) -> IssuedToken:
        settings = get_settings()
        expires_at = now + ttl
        claims: dict[str, Any] = {
            "sub": subject_id,
            "kind": kind,
            "roles": list(roles or []),
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        value = jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        return IssuedToken(value=value, kind=kind, expires_at=expires_at)

    def validate(self, token: str, kind: str, *, session: Session | None, now: datetime) -> TokenSubject | None:
        settings = get_settings()
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return None

        # tokens minted before kinds existed are sessions
        if payload.get("kind", "session") != kind:
            return None
        subject = payload.get("sub")
        if not subject:
            return None

        expires_at: datetime | None = None
        exp = payload.get("exp")
        if exp is not None:
            try:
                expires_at = datetime.fromtimestamp(int(exp), tz=timezone.utc)
            except (TypeError, ValueError):
                return None
            if now >= expires_at:
                return None

        roles = payload.get("roles", ["user"])
        if not isinstance(roles, list):
            roles = ["user"]
        return TokenSubject(
            kind=kind,
            subject_id=str(subject),
            scheme=self.name,
            roles=tuple(str(role) for role in roles),
            expires_at=expires_at,
        )


@dataclass
class OpaqueTokenScheme:
    """Random bearer values stored on the owning row and resolved through a per-kind lookup."""

    name: SchemeName = "opaque"
    resolvers: dict[str, OpaqueResolver] = field(default_factory=dict)

    def register(self, kind: str, resolver: OpaqueResolver) -> None:
        if kind not in OPAQUE_KINDS:
            raise ValueError(f"unsupported opaque token kind: {kind}")
        self.resolvers[kind] = resolver

    def generate(self) -> str:
        return secrets.token_urlsafe(OPAQUE_TOKEN_BYTES)

    def accepts(self, token: str, kind: str) -> bool:
        return kind in OPAQUE_KINDS

    def validate(self, token: str, kind: str, *, session: Session | None, now: datetime) -> TokenSubject | None:
        resolver = self.resolvers.get(kind)
        if resolver is None or session is None or not token:
            return None
        return resolver(session, token, now)


class LegacyBase64Scheme:
    """base64("role:subject") session tokens issued by the previous speaker portal login.

    The values are unsigned, so only the subject is trusted: the principal is
    always a speaker and the embedded role is ignored. Only ever resolves
    sessions and is off unless ``legacy_session_tokens_enabled`` is set.
    """

    name: SchemeName = "legacy"

    def accepts(self, token: str, kind: str) -> bool:
        return kind == "session" and "." not in token and get_settings().legacy_session_tokens_enabled

    def validate(self, token: str, kind: str, *, session: Session | None, now: datetime) -> TokenSubject | None:
        try:
            decoded = base64.b64decode(token, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None
        role, separator, subject = decoded.partition(":")
        if not separator or not role or not subject:
            return None
        return TokenSubject(kind=kind, subject_id=subject, scheme=self.name, roles=(SPEAKER_ROLE,))


def encode_legacy_token(role: str, subject_id: str) -> str:
    return base64.b64encode(f"{role}:{subject_id}".encode("utf-8")).decode("ascii")
