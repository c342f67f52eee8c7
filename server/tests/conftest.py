"""Shared fixtures: an isolated workspace/host-dir pair and a configured gateway."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tooltrace.app import create_app
from tooltrace.config import TraceConfig


def _write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def host_dir(tmp_path):
    hd = tmp_path / "host"
    hd.mkdir()
    return hd


@pytest.fixture
def make_config(workspace, host_dir):
    def _make(**overrides) -> TraceConfig:
        base = {"workspaceDir": str(workspace), "hostDir": str(host_dir)}
        base.update(overrides)
        return TraceConfig(overrides=base, environ={})

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def app(config):
    return create_app(config)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        yield c


@pytest.fixture
def write_json():
    return _write_json
