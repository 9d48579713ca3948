"""Caller identity: provider token resolution and per-user session contexts."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from cofound import services
from cofound.config import get_settings
from cofound.db import session_generator
from cofound.errors import AuthError
from cofound.models import Profile

log = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"


@dataclass
class SessionContext:
    user_id: str
    email: str = ""
    access_token: str = ""
    profile: Profile | None = field(default=None, repr=False)
    expires_at: float | None = None

    @property
    def user_type(self) -> str | None:
        return self.profile.user_type if self.profile else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "profile": services.profile_detail(self.profile) if self.profile else None,
        }


class AuthClient:
    """Resolves access tokens against the identity provider's user endpoint."""

    def __init__(
        self, base_url: str, anon_key: str = "", *, timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._transport = transport

    async def get_user(self, access_token: str) -> dict[str, Any]:
        if not self.base_url:
            raise AuthError("Auth provider URL is not configured")
        headers = {"Authorization": f"Bearer {access_token}"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout), transport=self._transport,
            ) as client:
                resp = await client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            raise AuthError(f"Auth provider unreachable: {exc}") from exc
        if resp.status_code in (401, 403):
            raise AuthError("Invalid or expired session")
        if resp.status_code >= 400:
            raise AuthError(f"Auth provider error ({resp.status_code})")
        data = resp.json()
        if not isinstance(data, dict) or not data.get("id"):
            raise AuthError("Auth provider returned no user")
        return data


class SessionManager:
    """Keeps one SessionContext per access token, driven by provider events."""

    def __init__(self, client: AuthClient, *, ttl_seconds: float = 3600, clock=time.time):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._contexts: dict[str, SessionContext] = {}

    def cached(self, access_token: str) -> SessionContext | None:
        """Cached context for the token, or None once its expiry has passed."""
        with self._lock:
            ctx = self._contexts.get(access_token)
            if ctx is not None and ctx.expires_at is not None and ctx.expires_at <= self._clock():
                del self._contexts[access_token]
                log.info("Session expired for %s", ctx.user_id)
                return None
            return ctx

    def _store(self, ctx: SessionContext, *, replace_user: bool = False) -> None:
        with self._lock:
            if replace_user:
                stale = [
                    token for token, other in self._contexts.items()
                    if other.user_id == ctx.user_id and token != ctx.access_token
                ]
                for token in stale:
                    del self._contexts[token]
            self._contexts[ctx.access_token] = ctx

    async def load(
        self, session: Session, access_token: str, *, replace_user: bool = False,
    ) -> SessionContext:
        """Resolve the token, make sure a profile exists, and cache the context.

        With ``replace_user`` any other token cached for the same user is dropped,
        so a refreshed token retires the one it replaces.
        """
        user = await self.client.get_user(access_token)
        meta = user.get("user_metadata") or {}
        profile = services.ensure_profile(
            session, user["id"], email=user.get("email") or "",
            name=meta.get("name") or "", user_type=meta.get("user_type") or "founder",
        )
        session.commit()
        session.refresh(profile)
        ctx = SessionContext(
            user_id=user["id"], email=user.get("email") or "",
            access_token=access_token, profile=profile,
            expires_at=self._clock() + self.ttl_seconds if self.ttl_seconds > 0 else None,
        )
        self._store(ctx, replace_user=replace_user)
        log.info("Session loaded for %s", ctx.user_id)
        return ctx

    async def refresh(self, session: Session, access_token: str) -> SessionContext:
        ctx = self.cached(access_token)
        if ctx is None:
            return await self.load(session, access_token, replace_user=True)
        session.expire_all()
        ctx.profile = services.get_or_none(session, Profile, ctx.user_id)
        return ctx

    def teardown(self, access_token: str) -> None:
        with self._lock:
            ctx = self._contexts.pop(access_token, None)
        if ctx is not None:
            log.info("Session closed for %s", ctx.user_id)

    async def handle_event(
        self, session: Session, event: str, access_token: str,
    ) -> SessionContext | None:
        if event == SIGNED_IN:
            return await self.load(session, access_token)
        if event in (TOKEN_REFRESHED, USER_UPDATED):
            return await self.refresh(session, access_token)
        if event == SIGNED_OUT:
            self.teardown(access_token)
            return None
        log.warning("Ignoring unknown auth event %s", event)
        return None


_manager: SessionManager | None = None
_manager_lock = threading.Lock()


def get_session_manager() -> SessionManager:
    global _manager
    with _manager_lock:
        if _manager is None:
            settings = get_settings()
            _manager = SessionManager(AuthClient(
                settings.auth_url, settings.auth_anon_key, timeout=settings.auth_timeout_seconds,
            ), ttl_seconds=settings.session_ttl_seconds)
        return _manager


def set_session_manager(manager: SessionManager | None) -> None:
    global _manager
    with _manager_lock:
        _manager = manager


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Missing bearer token")
    return token.strip()


async def current_session(
    request: Request, session: Session = Depends(session_generator),
) -> SessionContext:
    """FastAPI dependency resolving the caller into a SessionContext."""
    if get_settings().auth_mode == "header":
        user_id = request.headers.get("X-User-Id", "").strip()
        if not user_id:
            raise AuthError("Missing X-User-Id header")
        profile = services.get_or_none(session, Profile, user_id)
        return SessionContext(user_id=user_id, email=profile.email if profile else "", profile=profile)

    token = bearer_token(request)
    manager = get_session_manager()
    ctx = manager.cached(token)
    if ctx is not None:
        return ctx
    return await manager.load(session, token)
