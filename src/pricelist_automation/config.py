import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .pipeline.normalize import CompressionOptions

log = get_logger("config")


DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT_SECONDS = 120.0


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Running the CLI from a subdirectory (e.g. `src/`) still finds the
    repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs from the nearest `.env`; never mutates os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(key: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(key)
    if v is None:
        v = env.get(key)
    if v is None:
        return None
    v = v.strip()
    return v or None


def _as_float(key: str, raw: Optional[str], default: float) -> float:
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning(f"{key}={raw!r} is not a number; using default {default}")
        return default


def _as_int(key: str, raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"{key}={raw!r} is not an integer; using default {default}")
        return default


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration (env first, then `.env`)."""

    api_key: Optional[str]
    base_url: Optional[str]
    model: str = DEFAULT_MODEL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    quality: float = 0.95
    max_width: int = 1920
    max_height: int = 1920
    convert_size: int = 1_000_000
    convert_types: FrozenSet[str] = frozenset({"image/png"})

    def compression_options(self) -> CompressionOptions:
        return CompressionOptions(
            quality=self.quality,
            max_width=self.max_width,
            max_height=self.max_height,
            convert_size=self.convert_size,
            convert_types=self.convert_types,
        )


def load_settings(dotenv_dir: Optional[str] = None) -> Settings:
    env = _read_dotenv(dotenv_dir or os.getcwd())

    api_key = _lookup("OPENAI_API_KEY", env) or _lookup("openai_api_key", env)
    if api_key:
        log.debug("OPENAI_API_KEY resolved")
    else:
        log.debug("OPENAI_API_KEY not found in env or .env")

    types_raw = _lookup("PRICELIST_CONVERT_TYPES", env)
    if types_raw is not None:
        convert_types = frozenset(t.strip().lower() for t in types_raw.split(",") if t.strip())
    else:
        convert_types = Settings.convert_types

    return Settings(
        api_key=api_key,
        base_url=_lookup("OPENAI_BASE_URL", env),
        model=_lookup("PRICELIST_MODEL", env) or DEFAULT_MODEL,
        timeout_seconds=_as_float("PRICELIST_TIMEOUT", _lookup("PRICELIST_TIMEOUT", env), DEFAULT_TIMEOUT_SECONDS),
        quality=_as_float("PRICELIST_IMAGE_QUALITY", _lookup("PRICELIST_IMAGE_QUALITY", env), Settings.quality),
        max_width=_as_int("PRICELIST_MAX_WIDTH", _lookup("PRICELIST_MAX_WIDTH", env), Settings.max_width),
        max_height=_as_int("PRICELIST_MAX_HEIGHT", _lookup("PRICELIST_MAX_HEIGHT", env), Settings.max_height),
        convert_size=_as_int("PRICELIST_CONVERT_SIZE", _lookup("PRICELIST_CONVERT_SIZE", env), Settings.convert_size),
        convert_types=convert_types,
    )
