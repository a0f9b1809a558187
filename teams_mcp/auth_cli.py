"""
Teams MCP - authentication commands
===================================
``authenticate`` signs in with the device-code flow and stores the access token for
the server; ``check`` reports what is stored; ``logout`` removes it.

Environment variables (optional):
    TEAMS_MCP_CLIENT_ID   - Azure AD app (public client) id
    TEAMS_MCP_TENANT_ID   - tenant id, or 'common'
"""

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import msal
from pydantic import ValidationError

from .auth import StoredAuthInfo
from .config import ServerSettings

SCOPES = [
    "https://graph.microsoft.com/User.Read",
    "https://graph.microsoft.com/User.ReadBasic.All",
    "https://graph.microsoft.com/Team.ReadBasic.All",
    "https://graph.microsoft.com/Channel.ReadBasic.All",
    "https://graph.microsoft.com/ChannelMessage.Read.All",
    "https://graph.microsoft.com/ChannelMessage.Send",
    "https://graph.microsoft.com/TeamMember.Read.All",
    "https://graph.microsoft.com/Chat.ReadBasic",
    "https://graph.microsoft.com/Chat.ReadWrite",
]


def _write_private(path: Path, text: str) -> None:
    path.write_text(text)
    os.chmod(path, 0o600)


def authenticate(settings: ServerSettings) -> int:
    cache = msal.SerializableTokenCache()
    if settings.token_cache_path.exists():
        cache.deserialize(settings.token_cache_path.read_text())

    app = msal.PublicClientApplication(
        client_id=settings.client_id,
        authority=settings.authority,
        token_cache=cache,
    )

    print("🔐 Microsoft Graph Authentication for MCP Server")
    print("=" * 50)

    result = None
    accounts = app.get_accounts()
    if accounts:
        result = app.acquire_token_silent(SCOPES, account=accounts[0])

    if not result:
        flow = app.initiate_device_flow(scopes=SCOPES)
        if "user_code" not in flow:
            print("ERROR: Failed to start the device code flow.")
            print(json.dumps(flow, indent=2))
            return 1
        print()
        print(f"📱 {flow['message']}")
        print("\n⏳ Waiting for you to complete authentication...")
        result = app.acquire_token_by_device_flow(flow)

    if "access_token" not in result:
        print()
        print("❌ Authentication failed!")
        print(f"   Error: {result.get('error', 'unknown')}")
        print(f"   Description: {result.get('error_description', 'N/A')}")
        return 1

    now = datetime.now(timezone.utc)
    account = (result.get("id_token_claims") or {}).get("preferred_username")
    if not account and accounts:
        account = accounts[0].get("username")
    info = StoredAuthInfo(
        clientId=settings.client_id,
        tenantId=settings.tenant_id,
        authenticated=True,
        timestamp=now.isoformat(),
        expiresAt=now + timedelta(seconds=int(result.get("expires_in", 3600))),
        account=account,
        token=result["access_token"],
    )
    _write_private(settings.auth_info_path, info.model_dump_json(indent=2))
    if cache.has_state_changed:
        _write_private(settings.token_cache_path, cache.serialize())

    print()
    print("✅ Authentication successful!")
    print(f"👤 Signed in as: {account or 'Unknown'}")
    print(f"💾 Credentials saved to: {settings.auth_info_path}")
    print("\n🚀 You can now start the MCP server: teams-mcp")
    return 0


def check(settings: ServerSettings) -> int:
    try:
        info = StoredAuthInfo.model_validate_json(settings.auth_info_path.read_text())
    except FileNotFoundError:
        print("❌ No authentication found")
        return 1
    except ValidationError as e:
        print(f"❌ Auth file {settings.auth_info_path} is invalid: {e}")
        return 1

    if not info.authenticated:
        print("❌ No authentication found")
        return 1

    print("✅ Authentication found")
    print(f"👤 Account: {info.account or 'Unknown'}")
    print(f"📅 Authenticated on: {info.timestamp}")
    if info.expiresAt is not None:
        if info.is_expired():
            print(f"⏰ Access token expired at {info.expiresAt.isoformat()}")
            print("🔄 Run 'teams-mcp authenticate' to refresh it")
            return 1
        print(f"⏰ Access token expires: {info.expiresAt.isoformat()}")
    print("🎯 Ready to use with MCP server!")
    return 0


def logout(settings: ServerSettings) -> int:
    for path in (settings.auth_info_path, settings.token_cache_path):
        path.unlink(missing_ok=True)
    print("✅ Successfully logged out")
    print("🔄 Run 'teams-mcp authenticate' to re-authenticate")
    return 0
