import os
import tempfile

import pytest

# must be set before gateway_sandbox.repo creates its engine
os.environ.setdefault("SANDBOX_DATABASE_URL", f"sqlite:///{tempfile.mkdtemp()}/sandbox.db")


@pytest.fixture
def sandbox_client():
    from fastapi.testclient import TestClient

    from gateway_sandbox.app import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def callbacks(monkeypatch):
    from gateway_sandbox import app as sandbox_app

    sent = []
    monkeypatch.setattr(sandbox_app, "deliver_callback", lambda url, pid, rid: sent.append((url, pid, rid)))
    return sent
