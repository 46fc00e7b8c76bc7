"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from netpolc.config import CompilerConfig
from netpolc.policy.builder import Catalog
from netpolc.policy.selectors import Pod, pod


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def cluster_catalog_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "cluster.yaml"


@pytest.fixture
def simple_catalog_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "simple.yaml"


@pytest.fixture
def invalid_catalog_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "invalid.yaml"


@pytest.fixture
def config(tmp_path: Path) -> CompilerConfig:
    return CompilerConfig(config_dir=tmp_path / "config")


@pytest.fixture
def catalog(config: CompilerConfig) -> Catalog:
    return Catalog(name="test", config=config)


@pytest.fixture
def api() -> Pod:
    return pod("api", "ns")


@pytest.fixture
def db() -> Pod:
    return pod("db", "ns")
