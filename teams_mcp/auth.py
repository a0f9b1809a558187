"""Credential resolution and the process-wide persisted credential."""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional

import anyio
from mcp.server.fastmcp import Context
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

AUTHENTICATE_HINT = (
    "Not authenticated. Please run the authentication CLI tool first: teams-mcp authenticate"
)

GRAPH_AUDIENCES = {
    "https://graph.microsoft.com",
    "https://graph.microsoft.com/",
    "00000003-0000-0000-c000-000000000000",
}


class NotAuthenticatedError(RuntimeError):
    """No usable credential exists for the resolved identity."""

    def __init__(self, message: str = AUTHENTICATE_HINT):
        super().__init__(message)


# =============================================================================
# Credential identity
# =============================================================================

@dataclass(frozen=True)
class CredentialIdentity:
    """Cache key for a credential. ``token=None`` means the process-wide cached credential."""

    token: Optional[str] = None

    @property
    def is_cached(self) -> bool:
        return self.token is None

    def __repr__(self) -> str:
        if self.token is None:
            return "CredentialIdentity(<cached>)"
        return f"CredentialIdentity(<bearer …{self.token[-6:]}>)"


CACHED_CREDENTIAL = CredentialIdentity()


def resolve_identity(headers: Optional[Mapping[str, str]]) -> CredentialIdentity:
    """Pick the credential for a request. Never raises and never touches the network."""
    if not headers:
        return CACHED_CREDENTIAL
    value = headers.get("authorization") or headers.get("Authorization") or ""
    scheme, _, token = value.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return CACHED_CREDENTIAL
    return CredentialIdentity(token)


def identity_from_context(ctx: Optional[Context]) -> CredentialIdentity:
    """Resolve the identity of the HTTP request behind a tool call.

    stdio calls carry no HTTP request and always use the cached credential.
    """
    if ctx is None:
        return CACHED_CREDENTIAL
    try:
        request = ctx.request_context.request
    except (AttributeError, ValueError):
        return CACHED_CREDENTIAL
    headers = getattr(request, "headers", None)
    return resolve_identity(headers)


# =============================================================================
# Persisted credential
# =============================================================================

class StoredAuthInfo(BaseModel):
    """Contents of the auth-info file written by ``teams-mcp authenticate``."""

    clientId: str
    tenantId: Optional[str] = None
    authenticated: bool = False
    timestamp: Optional[str] = None
    expiresAt: Optional[datetime] = None
    account: Optional[str] = None
    token: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiresAt is None:
            return False
        expires = self.expiresAt
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= (now or datetime.now(timezone.utc))


def _b64url_json(segment: str) -> dict:
    padded = segment + "=" * (-len(segment) % 4)
    return json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))


def validate_access_token(token: str) -> Optional[datetime]:
    """Structural check of a JWT access token meant for Microsoft Graph.

    The signature is not verified. Returns the ``exp`` claim as a datetime (or None
    when absent); raises ``ValueError`` if the token is not a Graph JWT.
    """
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise ValueError("access token must have three dot-delimited segments")
    try:
        payload = _b64url_json(parts[1])
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise ValueError(f"access token payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("access token payload is not a JSON object")

    audience = payload.get("aud")
    audiences = audience if isinstance(audience, list) else [audience]
    if not GRAPH_AUDIENCES.intersection(a for a in audiences if isinstance(a, str)):
        raise ValueError(f"access token audience {audience!r} is not Microsoft Graph")

    exp = payload.get("exp")
    if isinstance(exp, (int, float)):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return None


class CredentialStore:
    """Read-only view of the process-wide credential.

    The trusted environment token wins over the auth-info file. The parsed file is
    kept in memory and reloaded when its modification time changes.
    """

    def __init__(self, auth_info_path: Path, access_token: Optional[str] = None):
        self.auth_info_path = Path(auth_info_path)
        self._env_info = self._load_env_token(access_token) if access_token else None
        self._info: Optional[StoredAuthInfo] = None
        self._mtime: Optional[float] = None

    @staticmethod
    def _load_env_token(token: str) -> Optional[StoredAuthInfo]:
        try:
            expires_at = validate_access_token(token)
        except ValueError as e:
            logger.warning("Ignoring TEAMS_MCP_ACCESS_TOKEN: %s", e)
            return None
        return StoredAuthInfo(
            clientId="environment",
            authenticated=True,
            expiresAt=expires_at,
            token=token,
        )

    async def load(self) -> Optional[StoredAuthInfo]:
        """Return the stored credential, or None when there is none (never an error)."""
        if self._env_info is not None:
            return self._env_info

        path = anyio.Path(self.auth_info_path)
        try:
            stat = await path.stat()
        except FileNotFoundError:
            self._info, self._mtime = None, None
            return None

        if self._mtime == stat.st_mtime and self._info is not None:
            return self._info

        try:
            self._info = StoredAuthInfo.model_validate_json(await path.read_text())
        except (OSError, ValidationError) as e:
            logger.error("Failed to read auth info from %s: %s", self.auth_info_path, e)
            self._info = None
        self._mtime = stat.st_mtime
        return self._info

    async def get_token(self) -> str:
        info = await self.load()
        if info is None or not info.authenticated or not info.token:
            raise NotAuthenticatedError()
        if info.is_expired():
            raise NotAuthenticatedError(
                f"Access token expired at {info.expiresAt.isoformat()}. {AUTHENTICATE_HINT}"
            )
        return info.token


class StaticTokenSource:
    """Token source for a bearer token supplied with the request."""

    def __init__(self, token: str):
        self._token = token

    async def get_token(self) -> str:
        return self._token
