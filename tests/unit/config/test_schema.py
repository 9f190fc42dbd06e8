"""
prbatch — unit tests for config schema validation

Purpose
- Validate strict schema checks and structured issue paths.
"""

from __future__ import annotations

import pytest

from prbatch.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)


def _issue_paths(payload: object) -> list[str]:
    return [issue.path for issue in validate_config(payload).issues]


def test_default_config_validates_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config == default_config()


def test_default_config_is_a_deep_copy() -> None:
    config = default_config()
    config["build"]["args"].append("V=1")

    assert DEFAULT_CONFIG["build"]["args"] == []


def test_unknown_key_rejection_is_explicit() -> None:
    payload = merge_config(default_config(), {"build": {"colour": "blue"}, "extra": {}})

    assert _issue_paths(payload) == ["extra", "build.colour"]


def test_missing_sections_and_fields_are_reported() -> None:
    payload = default_config()
    del payload["merge"]  # type: ignore[misc]
    del payload["build"]["test_target"]  # type: ignore[misc]

    paths = _issue_paths(payload)

    assert "merge" in paths
    assert "build.test_target" in paths


@pytest.mark.parametrize(
    ("overlay", "path"),
    [
        ({"build": {"jobs": "4"}}, "build.jobs"),
        ({"build": {"jobs": -1}}, "build.jobs"),
        ({"build": {"jobs": True}}, "build.jobs"),
        ({"build": {"args": ["ok", 3]}}, "build.args[1]"),
        ({"build": {"command": "  "}}, "build.command"),
        ({"build": {"test_target": ""}}, "build.test_target"),
        ({"merge": {"ff_only": "yes"}}, "merge.ff_only"),
        ({"remote": {"ref_template": "refs/heads/main"}}, "remote.ref_template"),
        ({"observability": {"log_level": "TRACE"}}, "observability.log_level"),
        ({"meta": {"schema_version": 2}}, "meta.schema_version"),
    ],
)
def test_type_and_range_violations_report_exact_path(
    overlay: dict[str, object], path: str
) -> None:
    assert _issue_paths(merge_config(default_config(), overlay)) == [path]


def test_empty_optional_targets_mean_unset() -> None:
    payload = merge_config(
        default_config(),
        {"build": {"clean_target": " ", "install_target": "install"}},
    )

    config = assert_valid_config(payload)

    assert config["build"]["clean_target"] == ""
    assert config["build"]["install_target"] == "install"


def test_log_level_is_normalized_to_upper_case() -> None:
    payload = merge_config(default_config(), {"observability": {"log_level": " info "}})

    assert assert_valid_config(payload)["observability"]["log_level"] == "INFO"


def test_assert_valid_config_renders_every_issue() -> None:
    payload = merge_config(default_config(), {"build": {"jobs": -2, "command": ""}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(payload)

    assert len(excinfo.value.issues) == 2
    assert "- build.jobs: must be >= 0" in str(excinfo.value)


def test_validation_does_not_mutate_input() -> None:
    payload = merge_config(default_config(), {"observability": {"log_level": "debug"}})

    assert_valid_config(payload)

    assert payload["observability"]["log_level"] == "debug"


def test_non_mapping_root_is_rejected() -> None:
    result = validate_config(["not", "a", "mapping"])

    assert not result.is_valid
    assert result.issues[0].path == "<root>"
