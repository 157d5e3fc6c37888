"""Typed, layered configuration loader with precedence handling.

Layers (later wins):
    0. embedded defaults (``_DEFAULTS``)
    1. ``defaults.ini`` next to this module (optional)
    2. environment variables ``SIGNFLOW_<SECTION>__<KEY>``
    3. machine INI given by ``SIGNFLOW_CONFIG`` (optional)
"""
from __future__ import annotations

import os
import configparser
from dataclasses import dataclass, fields
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

# --------------------------------------------------------------------------- #
#  Paths & default definitions
# --------------------------------------------------------------------------- #

CONFIG_DIR = Path(__file__).resolve().parent
DEFAULTS_INI = CONFIG_DIR / "defaults.ini"
ENV_PREFIX = "SIGNFLOW_"
ENV_CONFIG_FILE = "SIGNFLOW_CONFIG"


_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "Database": {
        "path": "data/signflow.db",
    },
    "Storage": {
        "root": "data/storage",
    },
    "Signing": {
        "organization_name": "",
        "dispatch_inline": "true",
        "render_timeout_seconds": "60",
        "local_timezone": "UTC",
    },
    "Rendering": {
        "font_name": "Helvetica",
        "bold_font_name": "Helvetica-Bold",
        "max_font_size": "12",
        "text_inset": "4",
        "font_height_ratio": "0.6",
    },
    "Certificate": {
        "version": "1.0",
    },
    "Encryption": {
        "key_env": "SIGNFLOW_ENCRYPTION_KEY",
        "encrypt_on_completion": "false",
        "password_length": "24",
    },
    "Logging": {
        "level": "INFO",
        "format": "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    },
}


# --------------------------------------------------------------------------- #
#  Datamodels
# --------------------------------------------------------------------------- #

@dataclass
class DatabaseConfig:
    path: Path


@dataclass
class StorageConfig:
    root: Path


@dataclass
class SigningConfig:
    organization_name: str = ""
    dispatch_inline: bool = True
    render_timeout_seconds: float = 60.0
    local_timezone: str = "UTC"


@dataclass
class RenderingConfig:
    font_name: str = "Helvetica"
    bold_font_name: str = "Helvetica-Bold"
    max_font_size: float = 12.0
    text_inset: float = 4.0
    font_height_ratio: float = 0.6


@dataclass
class CertificateConfig:
    version: str = "1.0"


@dataclass
class EncryptionConfig:
    key_env: str = "SIGNFLOW_ENCRYPTION_KEY"
    encrypt_on_completion: bool = False
    password_length: int = 24


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


# --------------------------------------------------------------------------- #
#  Helpers
# --------------------------------------------------------------------------- #

def _cp_to_dict(cp: configparser.ConfigParser) -> Dict[str, Dict[str, Any]]:
    data: Dict[str, Dict[str, Any]] = {}
    for section in cp.sections():
        data[section] = {k: v for k, v in cp.items(section, raw=True)}
    return data


def _read_ini(path: Path) -> Dict[str, Dict[str, Any]]:
    cp = configparser.ConfigParser(interpolation=None)
    cp.read(path, encoding="utf-8")
    return _cp_to_dict(cp)


def _apply(target: Dict[str, Dict[str, Any]], source: Mapping[str, Mapping[str, Any]],
           layer: str, origin: str,
           sources: Dict[Tuple[str, str], Dict[str, str]]) -> None:
    for section, items in source.items():
        sec = target.setdefault(section, {})
        for key, value in items.items():
            sec[key] = value
            sources[(section, key)] = {"layer": layer, "source": origin}


def _cast(value: Any, typ: Any) -> Any:
    # dataclass field types are strings under postponed annotations
    name = typ if isinstance(typ, str) else getattr(typ, "__name__", str(typ))
    if name == "Path":
        return Path(str(value)).expanduser()
    if name == "bool":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in {"1", "true", "yes", "on"}
    if name == "int":
        return int(value)
    if name == "float":
        return float(value)
    return str(value)


def _build_dataclass(cls: type, data: Dict[str, Any]) -> Any:
    kwargs = {}
    for field in fields(cls):
        if field.name in data:
            kwargs[field.name] = _cast(data[field.name], field.type)
    return cls(**kwargs)


def _env_overlays(environ: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    result: Dict[str, Dict[str, Any]] = {}
    for env_key, value in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        remainder = env_key[len(ENV_PREFIX):]
        parts = remainder.split("__", 1)
        if len(parts) != 2:
            continue
        section, key = parts
        result.setdefault(section.title(), {})[key.lower()] = value
    return result


# --------------------------------------------------------------------------- #
#  ConfigService
# --------------------------------------------------------------------------- #


class ConfigService:
    """Facade merging layered configuration with type safety."""

    def __init__(self, *, environ: Optional[Mapping[str, str]] = None,
                 machine_ini: Optional[Path] = None) -> None:
        self._lock = RLock()
        self._environ = environ
        self._machine_ini = machine_ini
        self.reload()

    # ------------------------------------------------------------------ #
    def reload(self) -> None:
        with self._lock:
            environ = os.environ if self._environ is None else self._environ
            merged: Dict[str, Dict[str, Any]] = {}
            sources: Dict[Tuple[str, str], Dict[str, str]] = {}

            # Layer 0: embedded defaults
            _apply(merged, _DEFAULTS, "code", "embedded", sources)

            # Layer 1: defaults.ini
            if DEFAULTS_INI.exists():
                _apply(merged, _read_ini(DEFAULTS_INI), "defaults.ini", str(DEFAULTS_INI), sources)

            # Layer 2: environment variables
            _apply(merged, _env_overlays(environ), "env", "os.environ", sources)

            # Layer 3: machine config
            machine_ini = self._machine_ini
            if machine_ini is None and environ.get(ENV_CONFIG_FILE):
                machine_ini = Path(environ[ENV_CONFIG_FILE])
            if machine_ini is not None and machine_ini.exists():
                _apply(merged, _read_ini(machine_ini), "machine", str(machine_ini), sources)

            self._merged = merged
            self._sources = sources

            self.database = _build_dataclass(DatabaseConfig, merged.get("Database", {}))
            self.storage = _build_dataclass(StorageConfig, merged.get("Storage", {}))
            self.signing = _build_dataclass(SigningConfig, merged.get("Signing", {}))
            self.rendering = _build_dataclass(RenderingConfig, merged.get("Rendering", {}))
            self.certificate = _build_dataclass(CertificateConfig, merged.get("Certificate", {}))
            self.encryption = _build_dataclass(EncryptionConfig, merged.get("Encryption", {}))
            self.logging = _build_dataclass(LoggingConfig, merged.get("Logging", {}))

    # ------------------------------------------------------------------ #
    def get(self, section: str, key: str, *, cast: Callable[[Any], Any] | type = str) -> Any:
        val = self._merged.get(section, {}).get(key)
        if val is None:
            return None
        if isinstance(cast, type):
            return _cast(val, cast)
        return cast(val)

    def meta_source(self, section: str, key: str) -> Dict[str, str] | None:
        return self._sources.get((section, key))


_instance: Optional[ConfigService] = None
_instance_lock = RLock()


def get_config_service() -> ConfigService:
    """Process-wide configuration, built on first use."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = ConfigService()
        return _instance
