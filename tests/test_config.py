import logging
from pathlib import Path

import anyio
import pytest

from teams_mcp.cli import build_parser
from teams_mcp.config import ServerSettings
from teams_mcp.session import SessionLogFilter, current_session, session_context


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("PORT", "TEAMS_MCP_HOST", "TEAMS_MCP_SESSION_TTL", "TEAMS_MCP_AUTH_FILE",
                 "TEAMS_MCP_ACCESS_TOKEN", "TEAMS_MCP_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = ServerSettings.from_env()
    assert settings.port == 3000
    assert settings.session_cache_size == 100
    assert settings.session_ttl == 30
    assert settings.request_timeout == 25
    assert settings.auth_info_path.name == ".msgraph-mcp-auth.json"
    assert settings.access_token is None


def test_environment_overrides(clean_env, tmp_path):
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("TEAMS_MCP_SESSION_TTL", "60")
    clean_env.setenv("TEAMS_MCP_AUTH_FILE", str(tmp_path / "a.json"))
    clean_env.setenv("TEAMS_MCP_LOG_LEVEL", "debug")

    settings = ServerSettings.from_env()
    assert settings.port == 8080
    assert settings.session_ttl == 60
    assert settings.auth_info_path == Path(tmp_path / "a.json")
    assert settings.log_level == "DEBUG"


def test_bad_integer_names_the_variable(clean_env):
    clean_env.setenv("PORT", "eighty")
    with pytest.raises(ValueError, match="PORT"):
        ServerSettings.from_env()


def test_parser_modes():
    assert build_parser().parse_args([]).http is False
    args = build_parser().parse_args(["--http", "--port", "9000"])
    assert args.http and args.port == 9000
    assert build_parser().parse_args(["authenticate"]).command == "authenticate"


# =============================================================================
# Session logging context
# =============================================================================

def _record():
    return logging.LogRecord("teams_mcp.test", logging.INFO, __file__, 1, "msg", None, None)


def test_log_records_carry_session_id():
    log_filter = SessionLogFilter()
    record = _record()
    log_filter.filter(record)
    assert record.session_id == "-"

    with session_context("abc"):
        record = _record()
        log_filter.filter(record)
        assert record.session_id == "abc"

    assert current_session() is None


@pytest.mark.asyncio
async def test_concurrent_tasks_keep_their_own_session():
    seen = {}

    async def handle(session_id):
        with session_context(session_id):
            await anyio.sleep(0.01)
            seen[session_id] = current_session().session_id

    async with anyio.create_task_group() as tg:
        for sid in ("one", "two", "three"):
            tg.start_soon(handle, sid)

    assert seen == {"one": "one", "two": "two", "three": "three"}
