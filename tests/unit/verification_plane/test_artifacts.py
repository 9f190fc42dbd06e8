"""Tests for per-key artifact storage."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from prbatch.constants import COMBINED_ARTIFACT_KEY
from prbatch.verification_plane.artifacts import ArtifactStore

if TYPE_CHECKING:
    from pathlib import Path


def test_change_keys_and_the_combined_key_have_separate_file_names(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)

    assert store.path_for("101") == tmp_path / "change-101.log"
    assert store.path_for(COMBINED_ARTIFACT_KEY) == tmp_path / "combined.log"
    assert store.path_for("combined") == tmp_path / "change-combined.log"


def test_identities_that_differ_only_in_punctuation_do_not_share_a_file(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    names = {store.path_for(key).name for key in ("a/b", "a_b", "a%2Fb", "a@b", "a+b")}

    assert len(names) == 5
    assert store.path_for("feature/login").parent == tmp_path


def test_empty_key_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        ArtifactStore(tmp_path).path_for("  ")


def test_begin_truncates_previous_content(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "artifacts")
    store.append("7", "first attempt")
    assert store.read("7") == "first attempt\n"

    store.begin("7")
    assert not store.has_content("7")

    store.append("7", "second attempt\n")
    assert store.read("7") == "second attempt\n"


def test_read_of_unknown_key_is_empty(tmp_path: Path) -> None:
    assert ArtifactStore(tmp_path).read("missing") == ""


def test_copy_duplicates_content_under_new_key(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    store.append(COMBINED_ARTIFACT_KEY, "boom")

    target = store.copy(COMBINED_ARTIFACT_KEY, "42")

    assert target == store.path_for("42")
    assert store.read("42") == "boom\n"
    assert store.read(COMBINED_ARTIFACT_KEY) == "boom\n"


def test_a_change_named_combined_gets_its_own_copy(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path)
    store.append(COMBINED_ARTIFACT_KEY, "combined output")

    target = store.copy(COMBINED_ARTIFACT_KEY, "combined")

    assert target.name == "change-combined.log"
    assert store.read("combined") == "combined output\n"
