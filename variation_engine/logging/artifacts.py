from __future__ import annotations

import json
import shutil
from datetime import UTC, datetime
from pathlib import Path

from variation_engine.core.metadata import WorkingArtifact


class ArtifactManager:
    """Stores inspection screenshots and committed artifacts on disk."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.screenshot_root = self.root / "screenshots"
        self.artifact_root = self.root / "artifacts"
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.screenshot_root.mkdir(parents=True, exist_ok=True)
        self.artifact_root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")

    def write_screenshots(self, iteration: int, before_png: bytes, after_png: bytes) -> tuple[Path, Path]:
        stamp = self.timestamp()
        before_path = self.screenshot_root / f"{stamp}_iter{iteration}_before.png"
        after_path = self.screenshot_root / f"{stamp}_iter{iteration}_after.png"
        before_path.write_bytes(before_png)
        after_path.write_bytes(after_png)
        return before_path, after_path

    def write_artifact(self, artifact: WorkingArtifact, label: str = "committed") -> Path:
        path = self.artifact_root / f"{self.timestamp()}_{label}.json"
        path.write_text(json.dumps(artifact.to_dict(), indent=2), encoding="utf-8")
        return path

    def reset(self) -> Path:
        self._ensure_structure()
        for directory in (self.screenshot_root, self.artifact_root):
            self._clear_directory(directory)
        return self.root

    @staticmethod
    def _clear_directory(directory: Path) -> None:
        for child in directory.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            elif child.is_file() and child.name != ".gitkeep":
                child.unlink()
