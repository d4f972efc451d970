from pathlib import Path

from digger.settings import DiggerConfig, load_digger_config


def test_defaults_match_documented_limits():
    cfg = DiggerConfig()
    assert cfg.cache_retention_s == 48 * 3600
    assert cfg.cache_max_entries == 50
    assert cfg.max_head_bytes == 512 * 1024
    assert cfg.min_head_bytes == 16 * 1024
    assert cfg.html_fetch_timeout_s > cfg.resource_fetch_timeout_s


def test_load_yaml_ignores_unknown_keys(tmp_path: Path):
    path = tmp_path / "digger_config.yaml"
    path.write_text("max_head_bytes: 4096\nnot_a_field: 1\n", encoding="utf-8")

    cfg = load_digger_config(path, environ={})

    assert cfg.max_head_bytes == 4096
    assert not hasattr(cfg, "not_a_field")


def test_missing_yaml_uses_defaults(tmp_path: Path):
    cfg = load_digger_config(tmp_path / "absent.yaml", environ={})
    assert cfg == DiggerConfig()


def test_non_mapping_yaml_uses_defaults(tmp_path: Path):
    path = tmp_path / "digger_config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_digger_config(path, environ={}) == DiggerConfig()


def test_environment_overrides_yaml(tmp_path: Path):
    path = tmp_path / "digger_config.yaml"
    path.write_text("cache_max_entries: 10\n", encoding="utf-8")
    env = {
        "DIGGER_CACHE_MAX_ENTRIES": "5",
        "DIGGER_WAYBACK_TIMEOUT_S": "2.5",
        "DIGGER_TLS_PORT": "not-a-number",
    }

    cfg = load_digger_config(path, environ=env)

    assert cfg.cache_max_entries == 5
    assert cfg.wayback_timeout_s == 2.5
    assert cfg.tls_port == 443


def test_relative_cache_path_resolves_under_project_root():
    cfg = DiggerConfig(cache_path="data/x.json")
    assert cfg.resolved_cache_path.is_absolute()
    assert cfg.resolved_cache_path.name == "x.json"
