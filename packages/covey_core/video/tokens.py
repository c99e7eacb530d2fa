"""Video access tokens handed to players when they join a town.

The town core only needs an opaque token per (town, player). The local
provider signs a compact payload with a shared secret, which is enough
for a media relay that holds the same secret to verify room access.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import base64
import hashlib
import hmac
import json
import logging
import os
import secrets
import time

logger = logging.getLogger("covey_core.video.tokens")

DEFAULT_TOKEN_TTL_SECONDS = 3600


class TokenProviderError(RuntimeError):
    def __init__(self, message: str, *, error_code: str) -> None:
        super().__init__(message)
        self.error_code = error_code


class VideoTokenProvider(ABC):
    @abstractmethod
    async def get_token_for_town(self, town_id: str, player_id: str) -> str:
        raise NotImplementedError


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class LocalVideoTokenProvider(VideoTokenProvider):
    """Signs ``{town, identity, exp}`` with HMAC-SHA256."""

    def __init__(self, *, secret: str, ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS) -> None:
        if not secret:
            raise TokenProviderError("Missing signing secret", error_code="missing_secret")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = max(1, int(ttl_seconds))

    def _sign(self, body: str) -> str:
        return _b64(hmac.new(self._secret, body.encode("ascii"), hashlib.sha256).digest())

    async def get_token_for_town(self, town_id: str, player_id: str) -> str:
        if not town_id or not player_id:
            raise TokenProviderError("Town and player ids are required", error_code="missing_identity")
        claims = {
            "town": town_id,
            "identity": player_id,
            "exp": int(time.time()) + self.ttl_seconds,
        }
        body = _b64(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        logger.debug("[VIDEO] Issued token: town_id='%s', player_id='%s'", town_id, player_id)
        return f"{body}.{self._sign(body)}"

    def verify(self, token: str) -> dict | None:
        body, _, signature = str(token or "").partition(".")
        if not body or not signature:
            return None
        if not hmac.compare_digest(self._sign(body), signature):
            return None
        try:
            claims = json.loads(_unb64(body))
        except (ValueError, UnicodeDecodeError):
            return None
        if int(claims.get("exp") or 0) < int(time.time()):
            return None
        return claims


def video_token_provider_from_env() -> VideoTokenProvider:
    secret = str(os.environ.get("COVEY_VIDEO_SIGNING_SECRET") or "").strip()
    if not secret:
        secret = secrets.token_urlsafe(32)
        logger.warning("[VIDEO] COVEY_VIDEO_SIGNING_SECRET not set; using an ephemeral signing secret")
    raw_ttl = str(os.environ.get("COVEY_VIDEO_TOKEN_TTL_SECONDS") or "").strip()
    try:
        ttl = int(raw_ttl) if raw_ttl else DEFAULT_TOKEN_TTL_SECONDS
    except ValueError:
        ttl = DEFAULT_TOKEN_TTL_SECONDS
    return LocalVideoTokenProvider(secret=secret, ttl_seconds=ttl)
