from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from opentelemetry import trace
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import InvalidTokenError
from app.platform.tokens.schemes import (
    OPAQUE_KINDS,
    SIGNED_KINDS,
    IssuedToken,
    LegacyBase64Scheme,
    OpaqueResolver,
    OpaqueTokenScheme,
    SignedTokenScheme,
    TokenScheme,
    TokenSubject,
)


logger = logging.getLogger("app.tokens")
tracer = trace.get_tracer("app.tokens")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    def __init__(self) -> None:
        self.signed = SignedTokenScheme()
        self.opaque = OpaqueTokenScheme()
        self.legacy = LegacyBase64Scheme()
        # first scheme that accepts a token decides; legacy stays last
        self._schemes: tuple[TokenScheme, ...] = (self.signed, self.opaque, self.legacy)

    def register_resolver(self, kind: str, resolver: OpaqueResolver) -> None:
        self.opaque.register(kind, resolver)

    def default_ttl(self, kind: str) -> timedelta | None:
        settings = get_settings()
        if kind == "session":
            return timedelta(minutes=settings.session_token_ttl_minutes)
        if kind == "portal_invite":
            return timedelta(days=settings.portal_invite_ttl_days)
        if kind == "contract_signing":
            return timedelta(days=settings.signing_token_ttl_days)
        # firm offer access is gated by the offer hold, not by a TTL
        return None

    def issue(
        self,
        kind: str,
        subject_id: str,
        ttl: timedelta | None = None,
        *,
        roles: list[str] | None = None,
        now: datetime | None = None,
    ) -> IssuedToken:
        current = now or utcnow()
        resolved_ttl = ttl if ttl is not None else self.default_ttl(kind)
        with tracer.start_as_current_span("tokens.issue") as span:
            span.set_attribute("token.kind", kind)
            if kind in SIGNED_KINDS:
                if resolved_ttl is None:
                    raise ValueError(f"{kind} tokens require a ttl")
                return self.signed.issue(kind, subject_id, resolved_ttl, roles, current)
            if kind in OPAQUE_KINDS:
                expires_at = current + resolved_ttl if resolved_ttl is not None else None
                return IssuedToken(value=self.opaque.generate(), kind=kind, expires_at=expires_at)
        raise ValueError(f"unknown token kind: {kind}")

    def validate(
        self,
        token: str | None,
        kind: str,
        *,
        session: Session | None = None,
        now: datetime | None = None,
    ) -> TokenSubject | None:
        if not token:
            return None
        current = now or utcnow()
        with tracer.start_as_current_span("tokens.validate") as span:
            span.set_attribute("token.kind", kind)
            for scheme in self._schemes:
                if not scheme.accepts(token, kind):
                    continue
                subject = scheme.validate(token, kind, session=session, now=current)
                span.set_attribute("token.scheme", scheme.name)
                span.set_attribute("token.valid", subject is not None)
                if subject is not None and subject.scheme == "legacy":
                    logger.info("legacy_session_token_used", extra={"status": "legacy"})
                return subject
            span.set_attribute("token.valid", False)
            return None

    def require(
        self,
        token: str | None,
        kind: str,
        *,
        session: Session | None = None,
        now: datetime | None = None,
    ) -> TokenSubject:
        subject = self.validate(token, kind, session=session, now=now)
        if subject is None:
            raise InvalidTokenError()
        return subject

    def refresh(self, token: str | None, *, now: datetime | None = None) -> IssuedToken:
        subject = self.require(token, "session", now=now)
        # unsigned legacy values never convert into signed sessions
        if subject.scheme == "legacy":
            raise InvalidTokenError()
        return self.issue("session", subject.subject_id, roles=list(subject.roles), now=now)


token_service = TokenService()
