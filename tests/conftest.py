from __future__ import annotations

import pytest

from godot_bridge.godot_tools import CatalogIndex, build_registry


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def catalog(registry):
    return CatalogIndex(registry)


@pytest.fixture
def project_dir(tmp_path):
    """A minimal Godot project on disk."""
    project = tmp_path / "game"
    project.mkdir()
    (project / "project.godot").write_text('config_version=5\n[application]\nconfig/name="Game"\n')
    return project
