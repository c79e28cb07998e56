# tests/test_config.py
"""
Tests for configuration defaults, files and environment overrides.
"""

import json

import pytest

from infallible_alloc.config import (
    DEFAULT_PRIMITIVES,
    AnalysisConfig,
    config_from_mapping,
    load_config,
)
from infallible_alloc.errors import ConfigError, ErrorCodes
from infallible_alloc.seeds import MarkerScope


class TestDefaults:

    def test_defaults(self):
        config = AnalysisConfig()
        assert config.marker == "assume_fallible"
        assert config.marker_scope is MarkerScope.CALLERS
        assert config.boundary_crates == frozenset({"alloc"})
        assert config.failure_handler == "alloc_error_handler"
        assert config.all_primitives == DEFAULT_PRIMITIVES

    def test_extra_primitives_are_appended_once(self):
        config = AnalysisConfig(extra_primitives=(DEFAULT_PRIMITIVES[0], "shim::grow"))
        assert config.all_primitives == DEFAULT_PRIMITIVES + ("shim::grow",)

    def test_empty_marker_rejected(self):
        with pytest.raises(ConfigError):
            AnalysisConfig(marker="")

    def test_unknown_severity_rejected(self):
        with pytest.raises(ConfigError) as info:
            AnalysisConfig(severity="fatal")
        assert "warning" in info.value.hint

    @pytest.mark.parametrize("severity", ["style", "information"])
    def test_non_lint_severities_rejected(self, severity):
        with pytest.raises(ConfigError):
            AnalysisConfig(severity=severity)

    def test_to_dict(self):
        data = AnalysisConfig().to_dict()
        assert data["marker_scope"] == "callers"
        assert data["boundary_crates"] == ["alloc"]


class TestMapping:

    def test_coercion(self):
        config = config_from_mapping({
            "marker_scope": "callees",
            "boundary_crates": ["alloc", "shim"],
            "extra_primitives": "a::b, c::d",
        })
        assert config.marker_scope is MarkerScope.CALLEES
        assert config.boundary_crates == frozenset({"alloc", "shim"})
        assert config.extra_primitives == ("a::b", "c::d")

    def test_unknown_key(self):
        with pytest.raises(ConfigError) as info:
            config_from_mapping({"markers": "x"})
        assert info.value.code == ErrorCodes.UNKNOWN_CONFIG_KEY

    def test_bad_scope(self):
        with pytest.raises(ConfigError):
            config_from_mapping({"marker_scope": "everyone"})

    def test_bad_list(self):
        with pytest.raises(ConfigError) as info:
            config_from_mapping({"boundary_crates": [1, 2]})
        assert info.value.code == ErrorCodes.INVALID_CONFIG_VALUE

    def test_base_is_kept(self):
        base = AnalysisConfig(marker="trust_me")
        assert config_from_mapping({"severity": "error"}, base).marker == "trust_me"


class TestLoadConfig:

    def test_no_sources(self):
        assert load_config(environ={}) == AnalysisConfig()

    def test_file(self, tmp_path):
        path = tmp_path / "lint.json"
        path.write_text(json.dumps({"severity": "error", "boundary_crates": ["shim"]}))
        config = load_config(path, environ={})
        assert config.severity == "error"
        assert config.boundary_crates == frozenset({"shim"})

    def test_file_from_environment(self, tmp_path):
        path = tmp_path / "lint.json"
        path.write_text(json.dumps({"marker": "trust_me"}))
        config = load_config(environ={"INFALLIBLE_ALLOC_CONFIG": str(path)})
        assert config.marker == "trust_me"

    def test_environment_beats_file(self, tmp_path):
        path = tmp_path / "lint.json"
        path.write_text(json.dumps({"marker": "trust_me"}))
        config = load_config(path, environ={
            "INFALLIBLE_ALLOC_MARKER": "really_trust_me",
            "INFALLIBLE_ALLOC_BOUNDARY_CRATES": "alloc,shim",
            "INFALLIBLE_ALLOC_PRIMITIVES": "shim::grow",
        })
        assert config.marker == "really_trust_me"
        assert config.boundary_crates == frozenset({"alloc", "shim"})
        assert "shim::grow" in config.all_primitives

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError) as info:
            load_config(tmp_path / "missing.json", environ={})
        assert info.value.code == ErrorCodes.UNREADABLE_CONFIG

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "lint.json"
        path.write_text("{marker")
        with pytest.raises(ConfigError) as info:
            load_config(path, environ={})
        assert info.value.code == ErrorCodes.UNREADABLE_CONFIG
