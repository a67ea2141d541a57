import base64
import hashlib
import hmac
import json
import os
import sys
import time
import pytest
from rich.console import Console
from rich.table import Table
from unittest.mock import MagicMock
from replicate.webhook import WebhookSigningSecret

# Add the project root directory to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.auth import sign_token
from app.config import Settings
from app.errors import ProviderError
from app.job_store import MemoryKeyValueStore
from app.providers import AsyncProvider, InlineProvider
from app.services import build_services
from app.storage import LocalObjectStorage

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"test-webhook-signing-key").decode("ascii")
CATEGORIES = ["unit", "integration", "api"]

def pytest_configure(config):
    """Add custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")

class TestProgress:
    """Collects pass/fail counts per test category and prints them at the end."""
    __test__ = False

    def __init__(self):
        self.stats = {name: {"total": 0, "passed": 0, "failed": 0, "duration": 0.0} for name in CATEGORIES}

    def update_stats(self, category, passed, duration):
        stats = self.stats.setdefault(category, {"total": 0, "passed": 0, "failed": 0, "duration": 0.0})
        stats["total"] += 1
        stats["passed" if passed else "failed"] += 1
        stats["duration"] += duration

    def render(self) -> Table:
        table = Table(show_header=True, header_style="bold magenta")
        for column in ("Category", "Total", "Passed", "Failed", "Duration"):
            table.add_column(column)
        for category, stats in self.stats.items():
            table.add_row(
                category,
                str(stats["total"]),
                f"[green]{stats['passed']}[/]",
                f"[red]{stats['failed']}[/]",
                f"{stats['duration']:.2f}s"
            )
        return table

test_progress = TestProgress()

def pytest_runtest_logreport(report):
    """Update progress after each test"""
    if report.when != "call":
        return
    category = next((name for name in CATEGORIES if f"/{name}/" in f"/{report.nodeid}"), "unit")
    test_progress.update_stats(category, report.passed, report.duration)

def pytest_sessionfinish(session, exitstatus):
    Console().print(test_progress.render())


class FakeAsyncProvider(AsyncProvider):
    """Records submissions instead of calling the hosted provider."""

    def __init__(self, secret: str = WEBHOOK_SECRET):
        self.submissions = []
        self.secret = secret
        self.secret_fetches = 0
        self.fail_with = None
        # Called with each submission before submit returns, like a provider that answers fast
        self.on_submit = None

    def submit(self, model_id, input, webhook_url, events_filter):
        if self.fail_with:
            raise ProviderError(self.fail_with)
        self.submissions.append({
            "model_id": model_id,
            "input": input,
            "webhook_url": webhook_url,
            "events_filter": events_filter,
        })
        if self.on_submit:
            self.on_submit(self.submissions[-1])
        return f"prediction-{len(self.submissions)}"

    def signing_secret(self):
        self.secret_fetches += 1
        return WebhookSigningSecret(key=self.secret)


class FakeInlineProvider(InlineProvider):
    def __init__(self, description: str | None = None, error: str | None = None):
        self.description = description
        self.error = error
        self.calls = []

    def fetch_image(self, url, timeout=30):
        return b"fake-image-bytes"

    def run(self, model_id, image_bytes, prompt, max_tokens):
        self.calls.append({"model_id": model_id, "prompt": prompt, "max_tokens": max_tokens})
        if self.error:
            raise ProviderError(self.error)
        return self.description


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        PUBLIC_BASE_URL="https://api.example.test",
        JWT_SECRET=JWT_SECRET,
        STORAGE_DIR=str(tmp_path / "images"),
        KV_BACKEND="memory",
        STARTING_CREDITS=0,
        DETECTION_COST=1,
        OPENAI_API_KEY=None,
        REPLICATE_API_TOKEN="r8_test",
    )

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def async_provider():
    return FakeAsyncProvider()

@pytest.fixture
def inline_provider():
    return FakeInlineProvider(error="inline model unavailable")

@pytest.fixture
def services(test_settings, clock, async_provider, inline_provider, tmp_path):
    """Fully wired pipeline with fake providers and an in-memory store."""
    return build_services(
        test_settings,
        kv=MemoryKeyValueStore(timer=clock),
        storage=LocalObjectStorage(tmp_path / "images"),
        inline_provider=inline_provider,
        async_provider=async_provider,
    )

@pytest.fixture
def image(services):
    """An uploaded image owned by alice, with some existing metadata."""
    name = "alice-img1.jpg"
    services.storage.put(name, b"\xff\xd8jpeg-bytes", {"history": "Built around 1900"})
    services.credits.credit("alice", 10)
    return name

def auth_header(username: str = "alice", secret: str = JWT_SECRET) -> dict:
    return {"Authorization": f"Bearer {sign_token({'username': username}, secret, 3600)}"}

def sign_payload(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    key = base64.b64decode(secret.split("_", 1)[1])
    digest = hmac.new(key, f"{msg_id}.{timestamp}.".encode("utf-8") + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")

def signed_webhook(payload: dict, secret: str = WEBHOOK_SECRET, msg_id: str = "msg_1",
                   timestamp: int | None = None) -> tuple[bytes, dict]:
    """Body and headers of a webhook delivery signed like the provider does."""
    body = json.dumps(payload).encode("utf-8")
    timestamp = str(timestamp if timestamp is not None else int(time.time()))
    headers = {
        "webhook-id": msg_id,
        "webhook-timestamp": timestamp,
        "webhook-signature": f"v1,{sign_payload(secret, msg_id, timestamp, body)}",
    }
    return body, headers

def job_key_from(webhook_url: str) -> str:
    return webhook_url.split("job_key=", 1)[1]

@pytest.fixture
def mock_openai_client():
    """A stand-in for the OpenAI client used by the inline provider."""
    client = MagicMock()
    client.chat.completions.create.return_value = MagicMock(
        choices=[MagicMock(message=MagicMock(content=" stone, brick "))]
    )
    return client
