import json

import anyio
import httpx
import pytest

from teams_mcp.auth import CACHED_CREDENTIAL, CredentialIdentity, CredentialStore, NotAuthenticatedError
from teams_mcp.graph import GRAPH_BASE_URL, GraphClientProvider


def graph_http(handler):
    return httpx.AsyncClient(base_url=GRAPH_BASE_URL, transport=httpx.MockTransport(handler))


def me_handler(request: httpx.Request) -> httpx.Response:
    token = request.headers["authorization"].removeprefix("Bearer ")
    return httpx.Response(200, json={"displayName": f"user-{token}", "userPrincipalName": f"{token}@contoso.com"})


@pytest.fixture
def provider(auth_file):
    return GraphClientProvider(CredentialStore(auth_file), pool_size=4, http=graph_http(me_handler))


@pytest.mark.asyncio
async def test_same_token_shares_one_client(provider):
    first = await provider.get_client(CredentialIdentity("tok-a"))
    second = await provider.get_client(CredentialIdentity("tok-a"))
    assert first is second
    assert provider.pooled_count == 1


@pytest.mark.asyncio
async def test_different_tokens_get_different_clients(provider):
    a = await provider.get_client(CredentialIdentity("tok-a"))
    b = await provider.get_client(CredentialIdentity("tok-b"))
    assert a is not b
    assert (await a.get("/me"))["displayName"] == "user-tok-a"
    assert (await b.get("/me"))["displayName"] == "user-tok-b"


@pytest.mark.asyncio
async def test_concurrent_first_use_creates_one_client(provider):
    clients = []

    async def grab():
        clients.append(await provider.get_client(CredentialIdentity("tok-c")))

    async with anyio.create_task_group() as tg:
        for _ in range(10):
            tg.start_soon(grab)

    assert len({id(c) for c in clients}) == 1


@pytest.mark.asyncio
async def test_pool_is_bounded(provider):
    for i in range(10):
        await provider.get_client(CredentialIdentity(f"tok-{i}"))
    assert provider.pooled_count == 4


@pytest.mark.asyncio
async def test_cached_credential_without_file_is_not_authenticated(provider):
    with pytest.raises(NotAuthenticatedError):
        await provider.get_client(CACHED_CREDENTIAL)


@pytest.mark.asyncio
async def test_cached_credential_uses_stored_token(provider, auth_file):
    auth_file.write_text(json.dumps({"clientId": "c", "authenticated": True, "token": "stored"}))
    client = await provider.get_client()
    assert (await client.get("/me"))["userPrincipalName"] == "stored@contoso.com"
    assert await provider.get_client() is client


@pytest.mark.asyncio
async def test_auth_status_reports_failure_instead_of_raising(provider):
    status = await provider.get_auth_status(CACHED_CREDENTIAL)
    assert status.is_authenticated is False


@pytest.mark.asyncio
async def test_auth_status_for_bearer_token(provider):
    status = await provider.get_auth_status(CredentialIdentity("tok-z"))
    assert status.is_authenticated
    assert status.display_name == "user-tok-z"
    assert status.expires_at is None


@pytest.mark.asyncio
async def test_empty_response_reads_as_success(auth_file):
    provider = GraphClientProvider(
        CredentialStore(auth_file), http=graph_http(lambda request: httpx.Response(204))
    )
    client = await provider.get_client(CredentialIdentity("tok"))
    assert await client.delete("/me/chats/1") == {"status": "success"}


@pytest.mark.asyncio
async def test_http_errors_propagate(auth_file):
    provider = GraphClientProvider(
        CredentialStore(auth_file), http=graph_http(lambda request: httpx.Response(403, json={}))
    )
    client = await provider.get_client(CredentialIdentity("tok"))
    with pytest.raises(httpx.HTTPStatusError):
        await client.get("/me")
