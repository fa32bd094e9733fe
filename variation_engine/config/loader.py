from __future__ import annotations

import json
from pathlib import Path

from variation_engine.config.schema import EngineConfig


class ConfigLoader:
    """Loads and validates the JSON engine configuration."""

    @staticmethod
    def load(path: str | Path | None = None) -> EngineConfig:
        if path is None:
            return EngineConfig()
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return EngineConfig.model_validate(payload)
