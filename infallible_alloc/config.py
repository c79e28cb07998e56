"""
infallible_alloc.config
=======================

Analysis configuration.

Values are resolved in three layers, later layers winning:

1. built-in defaults (``AnalysisConfig()``);
2. a JSON file, from ``--config`` or ``$INFALLIBLE_ALLOC_CONFIG``;
3. environment overrides:

   ==================================== =====================================
   ``INFALLIBLE_ALLOC_MARKER``           marker substring
   ``INFALLIBLE_ALLOC_MARKER_SCOPE``     ``callers`` or ``callees``
   ``INFALLIBLE_ALLOC_BOUNDARY_CRATES``  comma-separated crate names
   ``INFALLIBLE_ALLOC_PRIMITIVES``       comma-separated extra primitives
   ``INFALLIBLE_ALLOC_FAILURE_HANDLER``  handler named in the closing note
   ``INFALLIBLE_ALLOC_SEVERITY``         severity of emitted diagnostics
   ==================================== =====================================

Example file::

    {
      "marker": "assume_fallible",
      "boundary_crates": ["alloc", "my_alloc_shim"],
      "extra_primitives": ["my_alloc_shim::grow"],
      "severity": "error"
    }
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from infallible_alloc.errors import ConfigError, ErrorCodes
from infallible_alloc.seeds import MarkerScope, PrimitiveKind

logger = logging.getLogger(__name__)

ENV_PREFIX = "INFALLIBLE_ALLOC_"
CONFIG_ENV_VAR = ENV_PREFIX + "CONFIG"

DEFAULT_PRIMITIVES: Tuple[str, ...] = tuple(kind.identity for kind in PrimitiveKind)

_SEVERITIES = ("error", "warning")


@dataclass(frozen=True)
class AnalysisConfig:
    """Knobs of one analysis run.

    Attributes:
        marker: Identity substring of the assume-fallible escape hatch.
        marker_scope: Neighbours of a marker that are whitelisted with it.
        primitives: Identity strings of allocation primitives (taint seeds).
        extra_primitives: Additional seed identities, appended to *primitives*.
        boundary_crates: Crates whose leaf units are auto-seeded.
        failure_handler: Handler named in the closing note of a diagnostic.
        severity: Severity the diagnostic sink reports with.
    """

    marker: str = "assume_fallible"
    marker_scope: MarkerScope = MarkerScope.CALLERS
    primitives: Tuple[str, ...] = DEFAULT_PRIMITIVES
    extra_primitives: Tuple[str, ...] = ()
    boundary_crates: FrozenSet[str] = field(default_factory=lambda: frozenset({"alloc"}))
    failure_handler: str = "alloc_error_handler"
    severity: str = "warning"

    def __post_init__(self) -> None:
        if not self.marker:
            raise ConfigError("marker must be a non-empty string")
        if self.severity not in _SEVERITIES:
            raise ConfigError(
                f"unknown severity {self.severity!r}",
            ).with_hint("expected one of: " + ", ".join(_SEVERITIES))

    @property
    def all_primitives(self) -> Tuple[str, ...]:
        return self.primitives + tuple(
            p for p in self.extra_primitives if p not in self.primitives
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "marker": self.marker,
            "marker_scope": self.marker_scope.value,
            "primitives": list(self.primitives),
            "extra_primitives": list(self.extra_primitives),
            "boundary_crates": sorted(self.boundary_crates),
            "failure_handler": self.failure_handler,
            "severity": self.severity,
        }


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def _as_str_tuple(key: str, value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(
        f"{key} must be a list of strings, got {type(value).__name__}",
        code=ErrorCodes.INVALID_CONFIG_VALUE,
    )


def _coerce(key: str, value: Any) -> Any:
    if key == "marker_scope":
        try:
            return MarkerScope(value)
        except ValueError as exc:
            raise ConfigError(
                f"marker_scope must be 'callers' or 'callees', got {value!r}",
            ) from exc
    if key in ("primitives", "extra_primitives"):
        return _as_str_tuple(key, value)
    if key == "boundary_crates":
        return frozenset(_as_str_tuple(key, value))
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {type(value).__name__}")
    return value


def config_from_mapping(
    data: Mapping[str, Any],
    base: Optional[AnalysisConfig] = None,
) -> AnalysisConfig:
    """Apply *data* on top of *base* (defaults when ``None``)."""
    known = {f.name for f in fields(AnalysisConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(
            f"unknown configuration key(s): {', '.join(unknown)}",
            code=ErrorCodes.UNKNOWN_CONFIG_KEY,
        ).with_hint("valid keys: " + ", ".join(sorted(known)))
    updates = {key: _coerce(key, value) for key, value in data.items()}
    return replace(base or AnalysisConfig(), **updates)


def _read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"cannot read configuration file {path}: {exc.strerror}",
            code=ErrorCodes.UNREADABLE_CONFIG,
        ) from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            f"{path}:{exc.lineno}: invalid JSON: {exc.msg}",
            code=ErrorCodes.UNREADABLE_CONFIG,
        ) from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top-level value must be an object")
    return data


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    mapping = {
        "MARKER": "marker",
        "MARKER_SCOPE": "marker_scope",
        "BOUNDARY_CRATES": "boundary_crates",
        "PRIMITIVES": "extra_primitives",
        "FAILURE_HANDLER": "failure_handler",
        "SEVERITY": "severity",
    }
    overrides: Dict[str, Any] = {}
    for suffix, key in mapping.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value:
            overrides[key] = value
    return overrides


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AnalysisConfig:
    """Resolve the configuration from defaults, file and environment."""
    environ = os.environ if environ is None else environ
    config = AnalysisConfig()

    path = path or environ.get(CONFIG_ENV_VAR) or None
    if path:
        logger.debug("loading configuration from %s", path)
        config = config_from_mapping(_read_config_file(path), config)

    overrides = _env_overrides(environ)
    if overrides:
        logger.debug("environment overrides: %s", ", ".join(sorted(overrides)))
        config = config_from_mapping(overrides, config)
    return config


__all__ = [
    "MarkerScope",
    "DEFAULT_PRIMITIVES",
    "AnalysisConfig",
    "config_from_mapping",
    "load_config",
]
