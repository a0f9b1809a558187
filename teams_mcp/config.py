"""Runtime configuration read from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Public client id of "Microsoft Graph Command Line Tools"; works for device-code sign-in
# without an app registration of your own.
DEFAULT_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    return Path(raw).expanduser() if raw else default


@dataclass
class ServerSettings:
    """Settings shared by the HTTP and stdio server modes and the auth CLI."""

    host: str = "0.0.0.0"
    port: int = 3000
    session_cache_size: int = 100
    session_ttl: float = 30.0
    request_timeout: float = 25.0
    client_pool_size: int = 256
    client_ttl: float = 3600.0
    auth_info_path: Path = field(default_factory=lambda: Path.home() / ".msgraph-mcp-auth.json")
    token_cache_path: Path = field(default_factory=lambda: Path.home() / ".teams-mcp-token-cache.json")
    access_token: Optional[str] = None
    client_id: str = DEFAULT_CLIENT_ID
    tenant_id: str = "common"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerSettings":
        defaults = cls()
        return cls(
            host=os.environ.get("TEAMS_MCP_HOST", defaults.host),
            port=_env_int("PORT", defaults.port),
            session_cache_size=_env_int("TEAMS_MCP_SESSION_CACHE_SIZE", defaults.session_cache_size),
            session_ttl=_env_int("TEAMS_MCP_SESSION_TTL", int(defaults.session_ttl)),
            request_timeout=_env_int("TEAMS_MCP_REQUEST_TIMEOUT", int(defaults.request_timeout)),
            client_pool_size=_env_int("TEAMS_MCP_CLIENT_POOL_SIZE", defaults.client_pool_size),
            client_ttl=_env_int("TEAMS_MCP_CLIENT_TTL", int(defaults.client_ttl)),
            auth_info_path=_env_path("TEAMS_MCP_AUTH_FILE", defaults.auth_info_path),
            token_cache_path=_env_path("TEAMS_MCP_TOKEN_CACHE", defaults.token_cache_path),
            access_token=os.environ.get("TEAMS_MCP_ACCESS_TOKEN") or None,
            client_id=os.environ.get("TEAMS_MCP_CLIENT_ID", defaults.client_id),
            tenant_id=os.environ.get("TEAMS_MCP_TENANT_ID", defaults.tenant_id),
            log_level=os.environ.get("TEAMS_MCP_LOG_LEVEL", defaults.log_level).upper(),
        )

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"
