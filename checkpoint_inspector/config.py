"""Inspector configuration with environment-variable overrides."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional

ENV_PREFIX = "CKPTI_"

DEFAULT_MAX_BIN_COUNT = 64
# Tensors above these element counts need an explicit trigger before analysis.
DEFAULT_HISTOGRAM_AUTO_LIMIT = 16 * 1024 * 1024
DEFAULT_SPECTRUM_AUTO_LIMIT = 4 * 1024 * 1024


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _parse_positive_int(raw: str) -> int:
    value = int(raw.strip().replace("_", ""))
    if value < 1:
        raise ValueError(f"must be >= 1, got {value}")
    return value


def _parse_path(raw: str) -> Optional[str]:
    return raw.strip() or None


def _parse_delim(raw: str) -> str:
    if len(raw) != 1:
        raise ValueError(f"must be a single character, got {raw!r}")
    return raw


_ENV_FIELDS: dict[str, Callable[[str], Any]] = {
    "module_delim": _parse_delim,
    "max_bin_count": _parse_positive_int,
    "histogram_auto_limit": _parse_positive_int,
    "spectrum_auto_limit": _parse_positive_int,
    "flatten": _parse_bool,
    "debug": _parse_bool,
    "log_file": _parse_path,
}


@dataclass(frozen=True)
class InspectorConfig:
    """Settings shared by the CLI and library callers.

    Attributes:
        module_delim: Character separating modules in tensor names.
        max_bin_count: Upper bound on histogram / spectrum bins.
        histogram_auto_limit: Largest tensor (in elements) whose histogram is
            computed without an explicit trigger.
        spectrum_auto_limit: Same for the singular value spectrum.
        flatten: Collapse single-child module chains when building trees.
        debug: Verbose logging.
        log_file: Optional file that receives DEBUG records.
    """

    module_delim: str = "."
    max_bin_count: int = DEFAULT_MAX_BIN_COUNT
    histogram_auto_limit: int = DEFAULT_HISTOGRAM_AUTO_LIMIT
    spectrum_auto_limit: int = DEFAULT_SPECTRUM_AUTO_LIMIT
    flatten: bool = True
    debug: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "InspectorConfig":
        """Build a config from ``CKPTI_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, parse in _ENV_FIELDS.items():
            key = ENV_PREFIX + name.upper()
            raw = env.get(key)
            if raw is None:
                continue
            try:
                overrides[name] = parse(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for environment variable {key}: {e}") from e
        return cls(**overrides)

    def with_overrides(self, **changes: Any) -> "InspectorConfig":
        """Return a copy with every non-None keyword applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
