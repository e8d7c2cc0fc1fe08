"""
boxstore configuration loader.

Layered config with clear precedence:
    1) Explicit overrides passed to `load()` (highest)
    2) Environment variables (BOXSTORE_*)
    3) Config file (TOML or JSON)
    4) Built-in defaults (lowest)

Sections
--------
    [store]  uri, busy_timeout, pragmas
    [codec]  name            ("json" | "cbor" | "" for none)
    [log]    level, format, file

Environment
-----------
    BOXSTORE_DATA_DIR       directory for the default store file
    BOXSTORE_DB_URI         store URI (sqlite:///..., memory://, bare path)
    BOXSTORE_BUSY_TIMEOUT   seconds to wait on a locked database
    BOXSTORE_CODEC          codec name
    BOXSTORE_LOG_LEVEL      DEBUG | INFO | WARNING | ...
    BOXSTORE_LOG_FORMAT     json | text
    BOXSTORE_LOG_FILE       optional JSON log file
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .encoding.codec import Codec, codec_names, get_codec
from .errors import ConfigError

DEFAULT_DB_FILENAME = "boxstore.db"
DEFAULT_BUSY_TIMEOUT = 5.0
DEFAULT_CODEC = "json"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
_LOG_FORMATS = {"", "json", "text"}


def _expand(p: str | Path) -> Path:
    return Path(p).expanduser().resolve()


def _default_data_dir() -> Path:
    override = os.environ.get("BOXSTORE_DATA_DIR")
    if override:
        return _expand(override)
    xdg = os.environ.get("XDG_DATA_HOME")
    root = _expand(xdg) if xdg else _expand("~/.local/share")
    return root / "boxstore"


def _env_float(name: str, default: float) -> float:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {v!r}", env=name) from e


# ------------------------------
# Typed configuration model
# ------------------------------


@dataclass
class StoreConfig:
    uri: str
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    pragmas: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def default() -> "StoreConfig":
        return StoreConfig(uri=f"sqlite:///{_default_data_dir() / DEFAULT_DB_FILENAME}")


@dataclass
class CodecConfig:
    name: str = DEFAULT_CODEC


@dataclass
class LogConfig:
    level: str = "INFO"
    format: str = ""
    file: Optional[str] = None


@dataclass
class Config:
    store: StoreConfig
    codec: CodecConfig
    log: LogConfig

    def codec_instance(self) -> Optional[Codec]:
        """The configured codec, or None when `codec.name` is empty."""
        return get_codec(self.codec.name) if self.codec.name else None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ------------------------------
# File loader (TOML / JSON)
# ------------------------------


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError("config file not found", path=str(path))
    suffix = path.suffix.lower()
    try:
        with path.open("rb") as f:
            if suffix in {".toml", ".tml"}:
                return tomllib.load(f)
            if suffix == ".json":
                return json.load(f)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot parse config file: {e}", path=str(path)) from e
    raise ConfigError(f"unsupported config format {suffix!r}; use .toml or .json", path=str(path))


def _merge_dict(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dict merge: values in b override a."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def _env_layer() -> Dict[str, Any]:
    env: Dict[str, Any] = {"store": {}, "codec": {}, "log": {}}
    if "BOXSTORE_DB_URI" in os.environ:
        env["store"]["uri"] = os.environ["BOXSTORE_DB_URI"].strip()
    if "BOXSTORE_BUSY_TIMEOUT" in os.environ:
        env["store"]["busy_timeout"] = _env_float("BOXSTORE_BUSY_TIMEOUT", DEFAULT_BUSY_TIMEOUT)
    if "BOXSTORE_CODEC" in os.environ:
        env["codec"]["name"] = os.environ["BOXSTORE_CODEC"].strip()
    if "BOXSTORE_LOG_LEVEL" in os.environ:
        env["log"]["level"] = os.environ["BOXSTORE_LOG_LEVEL"].strip()
    if "BOXSTORE_LOG_FORMAT" in os.environ:
        env["log"]["format"] = os.environ["BOXSTORE_LOG_FORMAT"].strip()
    if "BOXSTORE_LOG_FILE" in os.environ:
        env["log"]["file"] = os.environ["BOXSTORE_LOG_FILE"].strip() or None
    return env


# ------------------------------
# Main loader
# ------------------------------


def load(config_file: Optional[str | Path] = None, **overrides: Any) -> Config:
    """
    Load configuration. Precedence: overrides > env > file > defaults.

    overrides use the section layout, e.g. load(store={"uri": "memory://"}, codec={"name": "cbor"}).
    """
    base: Dict[str, Any] = {
        "store": asdict(StoreConfig.default()),
        "codec": asdict(CodecConfig()),
        "log": asdict(LogConfig()),
    }
    if config_file:
        base = _merge_dict(base, _load_file(_expand(config_file)))
    base = _merge_dict(base, _env_layer())
    if overrides:
        base = _merge_dict(base, overrides)

    try:
        cfg = Config(
            store=StoreConfig(
                uri=str(base["store"]["uri"]),
                busy_timeout=float(base["store"]["busy_timeout"]),
                pragmas=dict(base["store"].get("pragmas") or {}),
            ),
            codec=CodecConfig(name=str(base["codec"]["name"] or "").strip().lower()),
            log=LogConfig(
                level=str(base["log"]["level"]).strip().upper(),
                format=str(base["log"]["format"] or "").strip().lower(),
                file=base["log"].get("file") or None,
            ),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"malformed configuration: {e}") from e

    _validate(cfg)
    return cfg


def _validate(cfg: Config) -> None:
    uri = cfg.store.uri.strip()
    if not uri:
        raise ConfigError("store.uri must be non-empty")
    if "://" in uri and not (uri.startswith("sqlite:///") or uri.startswith("memory://")):
        raise ConfigError(
            "unsupported store URI scheme; use sqlite:///path, memory:// or a bare path",
            uri=uri,
        )
    if cfg.store.busy_timeout < 0:
        raise ConfigError("store.busy_timeout must be >= 0", busy_timeout=cfg.store.busy_timeout)
    if cfg.codec.name and cfg.codec.name not in codec_names():
        raise ConfigError("unknown codec", codec=cfg.codec.name, known=codec_names())
    if cfg.log.level not in _LOG_LEVELS:
        raise ConfigError("unknown log level", level=cfg.log.level)
    if cfg.log.format not in _LOG_FORMATS:
        raise ConfigError("log.format must be json or text", format=cfg.log.format)


__all__ = ["Config", "StoreConfig", "CodecConfig", "LogConfig", "load"]
