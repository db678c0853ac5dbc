"""
Tests for configuration and the connection registry.

Covers:
- parse_value coercions
- ArdeaConfig defaults, merge, env prefix, .env files, overrides
- create_adapter URL schemes
- configure / get_config / registry lookups
"""

import pytest

from ardea.adapters import MemoryDocumentAdapter, SQLiteAdapter
from ardea.config import ArdeaConfig, parse_value
from ardea.db import (
    configure,
    create_adapter,
    get_adapter,
    get_all_adapters,
    get_config,
    get_query_log,
    has_adapter,
    register_adapter,
    register_provider,
    reset_connections,
    resolve_adapter,
)
from ardea.faults import ConfigFault, DatabaseConnectionFault


# ============================================================================
# Values
# ============================================================================


class TestParseValue:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("true", True),
            ("YES", True),
            ("false", False),
            ("no", False),
            ("42", 42),
            ("2.5", 2.5),
            ('{"a": 1}', {"a": 1}),
            ("[1, 2]", [1, 2]),
            ("{broken", "{broken"),
            ("plain", "plain"),
        ],
    )
    def test_coercions(self, raw, expected):
        assert parse_value(raw) == expected


# ============================================================================
# ArdeaConfig
# ============================================================================


class TestArdeaConfig:
    def test_defaults(self):
        config = ArdeaConfig()
        assert config.url == "sqlite:///:memory:"
        assert config.alias == "default"
        assert config.slow_query_ms == 1000.0
        assert config.query_log_enabled is True
        assert config.cache_ttl == 3600
        assert config.auto_create_indexes is True

    def test_merge_coerces_and_ignores_unknown(self):
        config = ArdeaConfig().merge({
            "slow_query_ms": "250",
            "auto_create_indexes": "false",
            "cache_ttl": "60",
            "url": "memory://42",
            "unrelated": "x",
        })
        assert config.slow_query_ms == 250.0
        assert isinstance(config.slow_query_ms, float)
        assert config.auto_create_indexes is False
        assert config.cache_ttl == 60
        assert config.url == "memory://42"

    def test_merge_returns_a_new_config(self):
        base = ArdeaConfig()
        merged = base.merge({"alias": "other"})
        assert base.alias == "default"
        assert merged.alias == "other"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ARDEA_URL", "memory://env")
        monkeypatch.setenv("ARDEA_QUERY_LOG_SIZE", "10")
        monkeypatch.setenv("OTHER_URL", "ignored")
        config = ArdeaConfig.from_env()
        assert config.url == "memory://env"
        assert config.query_log_size == 10

    def test_env_file_and_precedence(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("ARDEA_URL=sqlite:///from_file.db\nARDEA_CACHE_TTL=5\nARDEA_ALIAS=files\n")
        monkeypatch.setenv("ARDEA_CACHE_TTL", "7")
        config = ArdeaConfig.from_env(env_file=str(env_file), overrides={"alias": "explicit"})
        assert config.url == "sqlite:///from_file.db"
        assert config.cache_ttl == 7
        assert config.alias == "explicit"

    def test_missing_env_file_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ARDEA_URL", raising=False)
        config = ArdeaConfig.from_env(env_file=str(tmp_path / "absent.env"))
        assert config.url == "sqlite:///:memory:"

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("APP_DB_URL", "memory://app")
        assert ArdeaConfig.from_env(prefix="APP_DB_").url == "memory://app"

    def test_to_dict(self):
        data = ArdeaConfig(alias="x").to_dict()
        assert data["alias"] == "x"
        assert set(data) == {
            "url",
            "alias",
            "slow_query_ms",
            "query_log_enabled",
            "query_log_size",
            "cache_ttl",
            "auto_create_indexes",
        }


# ============================================================================
# Connections
# ============================================================================


class TestConnections:
    def test_create_adapter_schemes(self):
        assert isinstance(create_adapter("sqlite:///:memory:"), SQLiteAdapter)
        memory = create_adapter("memory://shop")
        assert isinstance(memory, MemoryDocumentAdapter)
        assert memory.database == "shop"
        with pytest.raises(ConfigFault):
            create_adapter("postgres://localhost/db")

    @pytest.mark.asyncio
    async def test_configure_registers_and_connects(self):
        config = ArdeaConfig(url="memory://app", alias="main", slow_query_ms=5, query_log_size=3)
        adapter = await configure(config)
        assert adapter.is_connected
        assert get_adapter("main") is adapter
        assert get_config("main") is config
        assert get_config() is None
        log = get_query_log()
        assert log.slow_threshold_ms == 5
        assert log.max_entries == 3

    def test_missing_adapter(self):
        assert not has_adapter("nowhere")
        with pytest.raises(DatabaseConnectionFault):
            get_adapter("nowhere")

    @pytest.mark.asyncio
    async def test_resolve_connects_registered_adapter(self):
        adapter = MemoryDocumentAdapter("reg")
        register_adapter(adapter)
        assert has_adapter()
        assert await resolve_adapter() is adapter
        assert adapter.is_connected

    @pytest.mark.asyncio
    async def test_async_provider_runs_once(self):
        calls = []

        async def provider():
            calls.append(1)
            return MemoryDocumentAdapter("lazy")

        register_provider(provider, alias="lazy")
        first = await resolve_adapter("lazy")
        second = await resolve_adapter("lazy")
        assert first is second
        assert calls == [1]

    def test_reset(self):
        register_adapter(MemoryDocumentAdapter("a"), alias="a")
        assert "a" in get_all_adapters()
        reset_connections()
        assert get_all_adapters() == {}
