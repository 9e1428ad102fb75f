import json
from pathlib import Path

from config import DEFAULT_AREAS, Settings, StoreBackend, get_settings

CONFIG_JSON = Path(__file__).resolve().parents[1] / "config.json"


def _settings():
    get_settings.cache_clear()
    return get_settings()


def test_defaults_from_config():
    settings = _settings()
    data = json.loads(CONFIG_JSON.read_text())
    assert settings.payos_api_base_url == data["payos_api_base_url"]
    assert [a.id for a in settings.table_areas] == [a["id"] for a in data["table_areas"]]
    assert sum(a.total_tables for a in settings.table_areas) == 30


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "sql")
    monkeypatch.setenv("REDIS_URL", "redis://override")
    try:
        settings = _settings()
        assert settings.store_backend == StoreBackend.SQL
        assert settings.redis_url == "redis://override"
    finally:
        monkeypatch.delenv("STORE_BACKEND")
        monkeypatch.delenv("REDIS_URL")
        get_settings.cache_clear()


def test_gateway_configured_needs_all_keys():
    assert not Settings(payos_client_id="c", payos_api_key="k").gateway_configured
    assert Settings(
        payos_client_id="c", payos_api_key="k", payos_checksum_key="s"
    ).gateway_configured
    assert Settings().table_areas == DEFAULT_AREAS
