"""Per-change validation output storage inside the run's ephemeral directory."""

from __future__ import annotations

import shutil
from pathlib import Path
from urllib.parse import quote

from prbatch.constants import (
    ARTIFACT_SUFFIX,
    CHANGE_ARTIFACT_PREFIX,
    COMBINED_ARTIFACT_KEY,
    COMBINED_ARTIFACT_STEM,
)


class ArtifactStore:
    """Map artifact keys to log files under ``root``.

    A key is a change identity or ``COMBINED_ARTIFACT_KEY``. Change logs are
    named ``change-<identity>.log`` with every character outside
    ``[A-Za-z0-9._~-]`` percent-encoded, so distinct identities never share a
    file and no identity can land on ``combined.log``. ``begin`` truncates, so
    a retry of the same key within a pass overwrites the previous output.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        if key == COMBINED_ARTIFACT_KEY:
            stem = COMBINED_ARTIFACT_STEM
        else:
            if not key.strip():
                raise ValueError("artifact key must not be empty")
            stem = CHANGE_ARTIFACT_PREFIX + quote(key.strip(), safe="")
        return self.root / f"{stem}{ARTIFACT_SUFFIX}"

    def begin(self, key: str) -> Path:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("", encoding="utf-8")
        return path

    def append(self, key: str, text: str) -> Path:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(text)
            if text and not text.endswith("\n"):
                handle.write("\n")
        return path

    def read(self, key: str) -> str:
        path = self.path_for(key)
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8", errors="replace")

    def has_content(self, key: str) -> bool:
        path = self.path_for(key)
        return path.exists() and path.stat().st_size > 0

    def copy(self, source_key: str, target_key: str) -> Path:
        source = self.path_for(source_key)
        target = self.path_for(target_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return target


__all__ = ["ArtifactStore"]
