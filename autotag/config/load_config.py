from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str, min_value: int | None = None) -> int:
    try:
        out = int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e
    if min_value is not None and out < min_value:
        raise ConfigError(f"Invalid {key}: must be >= {min_value}, got {out}")
    return out


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    return str(value)


def _as_float(value: Any, *, key: str) -> float:
    try:
        out = float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e
    if out <= 0:
        raise ConfigError(f"Invalid {key}: must be > 0, got {out}")
    return out


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclass(frozen=True)
class WorkerConfig:
    poll_interval_s: float = 5.0


@dataclass(frozen=True)
class CatalogConfig:
    api_version: str = "2025-01"
    page_size: int = 100
    timeout_s: float = 30.0
    collections_per_product: int = 10
    variants_per_product: int = 100


@dataclass(frozen=True)
class LimitsConfig:
    max_active_rules_per_shop: int = 50
    recent_rules_snapshot: int = 5
    runs_list_default_limit: int = 20
    runs_list_max_limit: int = 200


@dataclass(frozen=True)
class AppConfig:
    worker: WorkerConfig
    catalog: CatalogConfig
    limits: LimitsConfig


def default_config_path() -> Path:
    raw = os.getenv("AUTOTAG_CONFIG_PATH", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    # `<repo>/config/default.toml`, next to the package.
    return (Path(__file__).resolve().parents[2] / "config" / "default.toml").resolve()


def default_db_path() -> str:
    return os.getenv("AUTOTAG_SQLITE_PATH", "data/app.db")


def load_app_config(path: Path | None = None) -> AppConfig:
    cfg_path = path or default_config_path()
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    try:
        raw = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e

    worker = raw.get("worker", {})
    catalog = raw.get("catalog", {})
    limits = raw.get("limits", {})

    defaults_worker = WorkerConfig()
    defaults_catalog = CatalogConfig()
    defaults_limits = LimitsConfig()

    poll_interval = os.getenv("AUTOTAG_POLL_INTERVAL_S") or worker.get("poll_interval_s", defaults_worker.poll_interval_s)
    api_version = os.getenv("AUTOTAG_SHOPIFY_API_VERSION") or catalog.get("api_version", defaults_catalog.api_version)

    return AppConfig(
        worker=WorkerConfig(
            poll_interval_s=_as_float(poll_interval, key="worker.poll_interval_s"),
        ),
        catalog=CatalogConfig(
            api_version=_as_str(api_version, key="catalog.api_version").strip(),
            page_size=_as_int(catalog.get("page_size", defaults_catalog.page_size), key="catalog.page_size", min_value=1),
            timeout_s=_as_float(catalog.get("timeout_s", defaults_catalog.timeout_s), key="catalog.timeout_s"),
            collections_per_product=_as_int(
                catalog.get("collections_per_product", defaults_catalog.collections_per_product),
                key="catalog.collections_per_product",
                min_value=1,
            ),
            variants_per_product=_as_int(
                catalog.get("variants_per_product", defaults_catalog.variants_per_product),
                key="catalog.variants_per_product",
                min_value=1,
            ),
        ),
        limits=LimitsConfig(
            max_active_rules_per_shop=_as_int(
                limits.get("max_active_rules_per_shop", defaults_limits.max_active_rules_per_shop),
                key="limits.max_active_rules_per_shop",
                min_value=1,
            ),
            recent_rules_snapshot=_as_int(
                limits.get("recent_rules_snapshot", defaults_limits.recent_rules_snapshot),
                key="limits.recent_rules_snapshot",
                min_value=0,
            ),
            runs_list_default_limit=_as_int(
                limits.get("runs_list_default_limit", defaults_limits.runs_list_default_limit),
                key="limits.runs_list_default_limit",
                min_value=1,
            ),
            runs_list_max_limit=_as_int(
                limits.get("runs_list_max_limit", defaults_limits.runs_list_max_limit),
                key="limits.runs_list_max_limit",
                min_value=1,
            ),
        ),
    )
