from __future__ import annotations

import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping, Optional, Type

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource

_EARTH_VOXELS_PREFIX = "EARTH_VOXELS_"

DEFAULT_TILES_ROOT_URL = "https://tile.googleapis.com/v1/3dtiles/root.json"
DEFAULT_ELEVATION_URL = "https://maps.googleapis.com/maps/api/elevation/json"


def _canonical_env(value: Optional[str]) -> str:
    if value is None or value.strip() == "":
        return "dev"

    normalized = value.strip().lower()
    aliases = {
        "dev": "dev",
        "development": "dev",
        "staging": "staging",
        "stage": "staging",
        "prod": "prod",
        "production": "prod",
    }
    if normalized in aliases:
        return aliases[normalized]
    raise ValueError(
        f"Invalid EARTH_VOXELS_ENV={value!r}; expected one of: dev, staging, prod"
    )


def _deep_update(base: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, Mapping):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _resolve_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = environ or os.environ
    explicit = environ.get(f"{_EARTH_VOXELS_PREFIX}CONFIG_DIR")
    if explicit:
        explicit_path = Path(explicit).expanduser()
        if not explicit_path.is_absolute():
            explicit_path = (Path.cwd() / explicit_path).resolve()
        return explicit_path

    cwd = Path.cwd()
    for candidate_root in (cwd, *cwd.parents):
        config_dir = candidate_root / "config"
        if all((config_dir / f"{env}.json").is_file() for env in ("dev", "staging", "prod")):
            return config_dir

    return cwd / "config"


def _validate_no_secrets_in_json(data: Any, *, source: Optional[Path] = None) -> None:
    if not isinstance(data, dict):
        raise ValueError(
            f"Config JSON must be an object at top-level{f' ({source})' if source else ''}"
        )

    forbidden_paths = {
        ("tiles", "api_key"),
    }

    present: list[str] = []
    for path in forbidden_paths:
        cursor: Any = data
        for key in path:
            if not isinstance(cursor, dict) or key not in cursor:
                cursor = None
                break
            cursor = cursor[key]
        if cursor is not None:
            present.append(".".join(path))

    if present:
        location = f" in {source}" if source else ""
        raise ValueError(
            "Secrets must not be stored in config JSON"
            f"{location}: {', '.join(sorted(present))}"
        )


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    category_to_section = {
        "API": "api",
        "TILES": "tiles",
    }

    result: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(_EARTH_VOXELS_PREFIX):
            continue
        suffix = key[len(_EARTH_VOXELS_PREFIX) :]
        if suffix in {"ENV", "CONFIG_DIR"}:
            continue

        if "_" not in suffix:
            continue
        category, rest = suffix.split("_", 1)
        section = category_to_section.get(category)
        if section is None:
            continue
        result.setdefault(section, {})[rest.lower()] = value

    return result


class ApiSettings(BaseModel):
    host: str
    port: int
    debug: bool = False
    cors_origins: list[str] = Field(default_factory=list)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped == "":
                return []
            if stripped.startswith("["):
                return json.loads(stripped)
            return [item.strip() for item in stripped.split(",") if item.strip()]
        return value


class TilesSettings(BaseModel):
    root_url: str = DEFAULT_TILES_ROOT_URL
    api_key: Optional[SecretStr] = Field(default=None, repr=False)
    elevation_url: str = DEFAULT_ELEVATION_URL
    use_elevation: bool = Field(
        default=True,
        description="Lift the query sphere onto the terrain height at the query point.",
    )
    timeout_s: float = Field(default=30.0, gt=0)
    user_agent: str = "earth-voxels/0.1"

    @model_validator(mode="after")
    def _reject_empty_api_key(self) -> "TilesSettings":
        if self.api_key is not None and self.api_key.get_secret_value().strip() == "":
            raise ValueError("EARTH_VOXELS_TILES_API_KEY must not be empty")
        return self


class _EarthVoxelsSettingsSource:
    def __call__(self) -> dict[str, Any]:
        environ = os.environ
        env = _canonical_env(environ.get(f"{_EARTH_VOXELS_PREFIX}ENV"))
        config_dir = _resolve_config_dir(environ)
        config_path = config_dir / f"{env}.json"
        if not config_path.is_file():
            raise FileNotFoundError(
                f"Config file not found: {config_path} (EARTH_VOXELS_ENV={env!r}, "
                f"EARTH_VOXELS_CONFIG_DIR={str(config_dir)!r})"
            )

        raw = json.loads(config_path.read_text(encoding="utf-8"))
        _validate_no_secrets_in_json(raw, source=config_path)

        merged = deepcopy(raw)
        _deep_update(merged, _env_overrides(environ))
        return merged


class Settings(BaseSettings):
    api: ApiSettings
    tiles: TilesSettings = Field(default_factory=TilesSettings)

    model_config = SettingsConfigDict(extra="forbid")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, _EarthVoxelsSettingsSource())
