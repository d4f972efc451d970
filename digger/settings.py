import logging
import os
from pathlib import Path
from dataclasses import dataclass, fields
import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]

ENV_PREFIX = "DIGGER_"


@dataclass
class DiggerConfig:
    """
    Central configuration for inspection behavior.

    Values can be overridden via digger_config.yaml at the project root and
    then by DIGGER_<FIELD> environment variables.
    """

    # General
    user_agent: str = "Mozilla/5.0 (compatible; Digger/1.0)"

    # Per-probe timeouts
    html_fetch_timeout_s: float = 10.0
    resource_fetch_timeout_s: float = 5.0
    host_meta_timeout_s: float = 5.0
    tls_timeout_s: float = 5.0
    dns_timeout_s: float = 5.0
    wayback_timeout_s: float = 10.0

    # Head capture
    max_head_bytes: int = 512 * 1024
    min_head_bytes: int = 16 * 1024
    max_resources: int = 50

    # Text resources
    soft_404_scan_bytes: int = 1024
    robots_body_max_bytes: int = 64 * 1024

    # TLS
    tls_port: int = 443

    # Report cache
    cache_path: str = "data/digger_cache.json"
    cache_retention_s: int = 48 * 3600
    cache_max_entries: int = 50

    @property
    def resolved_cache_path(self) -> Path:
        p = Path(self.cache_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p.resolve()


def _coerce(raw: str, kind: type):
    if kind is bool:
        return raw.strip().lower() not in {"0", "false", "no", "off", ""}
    return kind(raw)


def apply_env_overrides(config: DiggerConfig, environ=None) -> DiggerConfig:
    """
    Override individual fields from DIGGER_<FIELD> environment variables.

    Values that cannot be coerced to the field's type are ignored.
    """
    env = os.environ if environ is None else environ
    defaults = DiggerConfig()
    for f in fields(DiggerConfig):
        raw = env.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is None:
            continue
        kind = type(getattr(defaults, f.name))
        try:
            setattr(config, f.name, _coerce(raw, kind))
        except ValueError:
            logger.warning("[config] ignoring %s%s=%r (expected %s)", ENV_PREFIX, f.name.upper(), raw, kind.__name__)
    return config


def load_digger_config(path: str | Path | None = None, environ=None) -> DiggerConfig:
    """
    Load DiggerConfig from YAML if present; otherwise use defaults.

    By default, looks for `digger_config.yaml` at the project root.
    Environment overrides are applied in both cases.
    """

    if path is None:
        path = PROJECT_ROOT / "digger_config.yaml"

    path = Path(path)

    if not path.exists():
        logger.debug("[config] YAML not found at %s, using defaults", path)
        return apply_env_overrides(DiggerConfig(), environ)

    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}

    if not isinstance(data, dict):
        logger.warning("[config] Expected mapping in %s, got %s, using defaults", path, type(data))
        return apply_env_overrides(DiggerConfig(), environ)

    allowed_keys = {f.name for f in fields(DiggerConfig)}
    filtered = {k: v for k, v in data.items() if k in allowed_keys}

    return apply_env_overrides(DiggerConfig(**filtered), environ)


DEFAULT_DIGGER_CONFIG = load_digger_config()
