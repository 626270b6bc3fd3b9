"""
Pytest configuration and fixtures for the markdown API tests.
"""

import os
import shutil
import tempfile
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["MARKDOWN_DIR"] = tempfile.mkdtemp(prefix="markdown_cms_test_")
os.environ["WATCH_ENABLED"] = "false"
for _name in ("NETLIFY_BUILD_HOOK_URL", "VERCEL_BUILD_HOOK_URL", "GITHUB_BUILD_HOOK_URL", "CUSTOM_BUILD_HOOK_URL"):
    os.environ.pop(_name, None)

from markdown_cms.configuration import load_settings
from markdown_cms.dispatcher import BuildDispatcher
from markdown_cms.errors import DispatchError
from markdown_cms.main import create_app


@pytest.fixture(scope="session", autouse=True)
def default_markdown_dir():
    """Cleanup the directory used by the module-level app."""
    yield os.environ["MARKDOWN_DIR"]
    shutil.rmtree(os.environ["MARKDOWN_DIR"], ignore_errors=True)


@pytest.fixture
def markdown_dir(tmp_path):
    path = tmp_path / "markdown-files"
    path.mkdir()
    return path


@pytest.fixture
def settings(markdown_dir):
    return load_settings(
        overrides={"markdown_dir": str(markdown_dir), "watcher.enabled": False},
        environ={},
    )


@pytest.fixture
def webhook_requests():
    """Requests captured by the mock webhook transport."""
    return []


@pytest.fixture
def webhook_transport(webhook_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(200, json={"ok": True})

    return httpx.MockTransport(handler)


@pytest.fixture
def webhooks():
    """Configured webhook URLs; tests override this to enable services."""
    return {}


@pytest.fixture
def fake_vcs():
    return FakeVersionControl()


@pytest.fixture
def dispatcher(markdown_dir, webhooks, webhook_transport, fake_vcs):
    return BuildDispatcher(
        webhooks=webhooks,
        store_root=markdown_dir,
        github_token="test-token",
        vcs=fake_vcs,
        transport=webhook_transport,
    )


@pytest.fixture
def app(settings, dispatcher):
    return create_app(settings, dispatcher=dispatcher)


@pytest.fixture
def client(app):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def write_markdown(markdown_dir):
    """Write a raw markdown file straight into the store directory."""

    def _write(name: str, text: str) -> Path:
        path = markdown_dir / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


class FakeVersionControl:
    """In-memory stand-in for the git capability; records every call."""

    def __init__(self, is_repo=True, dirty=True, push_error=None, upstream_error=None, stage_error=None):
        self.is_repo = is_repo
        self.dirty = dirty
        self.push_error = push_error
        self.upstream_error = upstream_error
        self.stage_error = stage_error
        self.calls = []

    async def probe_repo(self):
        self.calls.append(("probe",))
        return self.is_repo

    async def stage_file(self, path):
        self.calls.append(("stage", path))
        if self.stage_error:
            raise DispatchError(self.stage_error)

    async def has_changes(self, path):
        self.calls.append(("status", path))
        return self.dirty

    async def commit(self, message):
        self.calls.append(("commit", message))

    async def push(self):
        self.calls.append(("push",))
        if self.push_error:
            raise self.push_error

    async def current_branch(self):
        self.calls.append(("branch",))
        return "main"

    async def push_with_upstream(self, branch):
        self.calls.append(("push_upstream", branch))
        if self.upstream_error:
            raise self.upstream_error

    @property
    def call_names(self):
        return [call[0] for call in self.calls]
