from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import build_page_context
from variation_engine.config.loader import ConfigLoader
from variation_engine.logging.artifacts import ArtifactManager
from variation_engine.logging.audit import SessionAuditLogger
from variation_engine.utils.scoring import SelectorConfidenceScorer


@pytest.fixture()
def engine_config():
    config_path = Path(__file__).resolve().parents[1] / "config" / "engine.json"
    return ConfigLoader.load(config_path)


@pytest.fixture()
def page_context():
    return build_page_context()


@pytest.fixture()
def known_selectors(page_context):
    return SelectorConfidenceScorer().known_selectors(page_context)


@pytest.fixture()
def audit_logger(tmp_path):
    return SessionAuditLogger(tmp_path / "audit")


@pytest.fixture()
def artifact_manager(tmp_path):
    return ArtifactManager(tmp_path / "artifacts")
