from __future__ import annotations

import json

from quizarena.utils.config_manager import ConfigManager, get_config, set_config


def test_defaults_without_file(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "missing.json"), load_env=False)
    assert config.get("rating.unrated_floor") == 1000
    assert config.get("contest.auto_submit_grace_seconds") == 0
    assert config.get("no.such.key", "fallback") == "fallback"


def test_file_values_merge_over_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"rating": {"unrated_floor": 1200}, "server": {"port": 8080}}))

    config = ConfigManager(str(path), load_env=False)
    assert config.get("rating.unrated_floor") == 1200
    assert config.get("rating.initial_rating") == 300
    assert config.get_section("server") == {"host": "0.0.0.0", "port": 8080}


def test_environment_overrides_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"auth": {"admin_token": "from-file"}}))
    monkeypatch.setenv("QUIZARENA_ADMIN_TOKEN", "from-env")
    monkeypatch.setenv("QUIZARENA_AUTO_SUBMIT_GRACE", "15")

    config = ConfigManager(str(path))
    assert config.get("auth.admin_token") == "from-env"
    assert config.get("contest.auto_submit_grace_seconds") == 15


def test_set_and_save(tmp_path) -> None:
    config = ConfigManager(str(tmp_path / "config.json"), load_env=False)
    config.set("database.path", "elsewhere.duckdb")
    config.save()

    reloaded = ConfigManager(str(tmp_path / "config.json"), load_env=False)
    assert reloaded.get("database.path") == "elsewhere.duckdb"


def test_global_instance_can_be_replaced(tmp_path) -> None:
    custom = ConfigManager(str(tmp_path / "none.json"), load_env=False)
    set_config(custom)
    try:
        assert get_config() is custom
    finally:
        set_config(None)


def test_string_settings_are_not_coerced(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("QUIZARENA_ADMIN_TOKEN", "123456")
    monkeypatch.setenv("QUIZARENA_HOST", "true")
    monkeypatch.setenv("QUIZARENA_PORT", "8080")

    config = ConfigManager(str(tmp_path / "none.json"))
    assert config.get("auth.admin_token") == "123456"
    assert config.get("server.host") == "true"
    assert config.get("server.port") == 8080
