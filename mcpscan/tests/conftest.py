"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mcpscan.app.db import Base, create_db_engine, create_session_factory
from mcpscan.app.main import create_app
from mcpscan.app.store import CoordinatorStore
from mcpscan.config import AgentSettings, CoordinatorSettings
from mcpscan.protocol import AgentRegistration
from mcpscan.scanners.codescan import linters

from .fakes import StoreBackedClient


@pytest.fixture(autouse=True)
def no_external_linters(monkeypatch):
    """Scans see the same tools on every machine: none."""
    monkeypatch.setattr(linters, "find_tool", lambda name: None)


@pytest.fixture
def coordinator_settings():
    return CoordinatorSettings(database_url="sqlite://")


@pytest.fixture
def store(coordinator_settings):
    """Coordinator store over a fresh in-memory database."""
    engine = create_db_engine(coordinator_settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield CoordinatorStore(create_session_factory(engine), coordinator_settings)
    engine.dispose()


@pytest.fixture
def api(coordinator_settings):
    """TestClient over a coordinator app with its own in-memory database."""
    with TestClient(create_app(coordinator_settings)) as client:
        yield client


@pytest.fixture
def agent(store):
    return store.register_agent(
        AgentRegistration(name="scanner-1", ip_address="10.0.0.5:3000", capabilities="node,csharp")
    )


@pytest.fixture
def agent_settings(tmp_path):
    return AgentSettings(
        server_url="http://coordinator.test",
        temp_dir=str(tmp_path / "work"),
        batch_delay=0.0,
    )


@pytest.fixture
def store_client(store):
    return StoreBackedClient(store)


@pytest.fixture
def node_repo(tmp_path) -> Path:
    """Small Node.js project with two known issues."""
    repo = tmp_path / "node-app"
    (repo / "src").mkdir(parents=True)
    (repo / "package.json").write_text('{"name": "demo", "dependencies": {"express": "^4.18.0"}}')
    (repo / "src" / "index.js").write_text(
        "const express = require('express');\n"
        "const app = express();\n"
        "app.get('/run', (req, res) => {\n"
        "  const result = eval(req.query.code);\n"
        "  res.send(String(result));\n"
        "});\n"
        "const password = \"hunter2hunter2\";\n"
    )
    (repo / "node_modules" / "left-pad").mkdir(parents=True)
    (repo / "node_modules" / "left-pad" / "index.js").write_text("eval('1 + 1');\n")
    return repo


@pytest.fixture
def csharp_repo(tmp_path) -> Path:
    repo = tmp_path / "dotnet-app"
    repo.mkdir()
    (repo / "App.csproj").write_text("<Project Sdk=\"Microsoft.NET.Sdk\"></Project>\n")
    (repo / "UserRepository.cs").write_text(
        "public class UserRepository {\n"
        "    public void Find(string name) {\n"
        "        var cmd = new SqlCommand(\"SELECT * FROM Users WHERE Name = '\" + name + \"'\");\n"
        "        var hash = MD5.Create();\n"
        "    }\n"
        "}\n"
    )
    return repo
