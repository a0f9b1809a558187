"""Microsoft Graph API client and the per-credential client pool."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
from cachetools import TTLCache

from .auth import (
    CACHED_CREDENTIAL,
    CredentialIdentity,
    CredentialStore,
    StaticTokenSource,
)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

logger = logging.getLogger(__name__)


class TokenSource(Protocol):
    async def get_token(self) -> str: ...


# =============================================================================
# Microsoft Graph API Client
# =============================================================================

class GraphClient:
    """Authenticated handle for the Graph API bound to one credential."""

    def __init__(self, token_source: TokenSource, http: httpx.AsyncClient):
        self.auth = token_source
        self._http = http

    async def request(self, method: str, endpoint: str, **kwargs) -> dict:
        """Make an authenticated request to the Graph API."""
        token = await self.auth.get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        response = await self._http.request(method, endpoint, headers=headers, **kwargs)
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return {"status": "success"}
        return response.json()

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, json_data: Optional[dict] = None) -> dict:
        return await self.request("POST", endpoint, json=json_data)

    async def patch(self, endpoint: str, json_data: Optional[dict] = None) -> dict:
        return await self.request("PATCH", endpoint, json=json_data)

    async def delete(self, endpoint: str) -> dict:
        return await self.request("DELETE", endpoint)

    async def download(self, url: str) -> httpx.Response:
        """Fetch an arbitrary URL (e.g. an image to attach) without the Graph token."""
        return await self._http.get(url, follow_redirects=True)


@dataclass
class AuthStatus:
    is_authenticated: bool
    user_principal_name: Optional[str] = None
    display_name: Optional[str] = None
    expires_at: Optional[str] = None


# =============================================================================
# Client pool
# =============================================================================

class GraphClientProvider:
    """Hands out one pooled GraphClient per credential identity.

    Bearer-token clients live in a bounded LRU/TTL cache. The cached-credential client
    is kept for the life of the provider and checks token expiry on every use. All
    clients share one ``httpx.AsyncClient`` so evicting a client never closes
    connections that an in-flight call still uses.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        pool_size: int = 256,
        client_ttl: float = 3600.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self._http = http or httpx.AsyncClient(base_url=GRAPH_BASE_URL, timeout=30.0)
        self._bearer_clients: TTLCache = TTLCache(maxsize=pool_size, ttl=client_ttl)
        self._cached_client: Optional[GraphClient] = None

    async def get_client(self, identity: CredentialIdentity = CACHED_CREDENTIAL) -> GraphClient:
        """Return the pooled client for ``identity``.

        Raises NotAuthenticatedError when the cached credential is missing or expired.
        Lookup and insertion happen with no await in between, so concurrent callers
        for one identity always share a single client.
        """
        if identity.is_cached:
            await self.store.get_token()
            if self._cached_client is None:
                self._cached_client = GraphClient(self.store, self._http)
                logger.info("Created Graph client for the cached credential")
            return self._cached_client

        client = self._bearer_clients.get(identity.token)
        if client is None:
            client = GraphClient(StaticTokenSource(identity.token), self._http)
            self._bearer_clients[identity.token] = client
            logger.info("Created Graph client for %r", identity)
        return client

    async def get_auth_status(self, identity: CredentialIdentity = CACHED_CREDENTIAL) -> AuthStatus:
        try:
            client = await self.get_client(identity)
            me: Dict[str, Any] = await client.get(
                "/me", params={"$select": "displayName,userPrincipalName"}
            )
        except Exception as e:
            logger.warning("Auth status check failed for %r: %s", identity, e)
            return AuthStatus(is_authenticated=False)

        expires_at = None
        if identity.is_cached:
            info = await self.store.load()
            if info is not None and info.expiresAt is not None:
                expires_at = info.expiresAt.isoformat()
        return AuthStatus(
            is_authenticated=True,
            user_principal_name=me.get("userPrincipalName"),
            display_name=me.get("displayName"),
            expires_at=expires_at,
        )

    @property
    def pooled_count(self) -> int:
        return len(self._bearer_clients) + (1 if self._cached_client else 0)

    async def aclose(self):
        self._bearer_clients.clear()
        self._cached_client = None
        if not self._http.is_closed:
            await self._http.aclose()
