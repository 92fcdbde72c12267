"""Global configuration for Soirée."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "enable_scheduler": True,
    "sqlite_vacuum_hours": 12,
    "events_per_page": 25,
    "status_cache_max_entries": 500,
    "status_cache_ttl_hours": 24,
    "status_prune_minutes": 15,
    "fuzz_min_meters": 500.0,
    "fuzz_max_meters": 1000.0,
    "location_fuzz_salt": "",
    "admin_emails": (),
    "token_ttl_hours": 24,
    "allow_insecure_token_fallback": False,
    "seed_members": 20,
    "seed_events": 6,
    "seed_rsvps_per_event": 8,
}


def _emails(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value or [])
    return tuple(
        sorted({str(item).strip().lower() for item in items if str(item).strip()})
    )


TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "enable_scheduler": bool,
    "sqlite_vacuum_hours": int,
    "events_per_page": int,
    "status_cache_max_entries": int,
    "status_cache_ttl_hours": int,
    "status_prune_minutes": int,
    "fuzz_min_meters": float,
    "fuzz_max_meters": float,
    "location_fuzz_salt": str,
    "admin_emails": _emails,
    "token_ttl_hours": int,
    "allow_insecure_token_fallback": bool,
    "seed_members": int,
    "seed_events": int,
    "seed_rsvps_per_event": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    app_host: str
    app_port: int
    enable_scheduler: bool
    sqlite_vacuum_hours: int
    events_per_page: int
    status_cache_max_entries: int
    status_cache_ttl_hours: int
    status_prune_minutes: int
    fuzz_min_meters: float
    fuzz_max_meters: float
    location_fuzz_salt: str
    admin_emails: tuple[str, ...]
    token_ttl_hours: int
    allow_insecure_token_fallback: bool
    seed_members: int
    seed_events: int
    seed_rsvps_per_event: int
    signing_secret_key: str
    config_path: Path

    @property
    def vacuum_interval(self) -> timedelta:
        return timedelta(hours=self.sqlite_vacuum_hours)

    @property
    def status_cache_ttl(self) -> timedelta:
        return timedelta(hours=self.status_cache_ttl_hours)

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(hours=self.token_ttl_hours)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"SOIREE_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "soiree.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("SOIREE_BASE_DIR", Path.cwd()))
    env_config = os.getenv("SOIREE_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "soiree.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("SOIREE_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("SOIREE_DB", toml_config.get("database_path")),
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    if layered["fuzz_min_meters"] > layered["fuzz_max_meters"]:
        raise ValueError("fuzz_min_meters must not exceed fuzz_max_meters")

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        signing_secret_key="identity_signing_secret",
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        value = getattr(settings, key)
        payload[key] = list(value) if isinstance(value, tuple) else value
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_literal(item) for item in value) + "]"
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Soirée configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
