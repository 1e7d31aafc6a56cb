"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded, and points the app at the
in-memory counter store so no Redis server is needed.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("APP_ADMIN_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest
from fastapi.testclient import TestClient

from app.adapters.store.in_memory import InMemoryCounterStore
from app.core.app_factory import create_app
from app.services.policies import Policy, PolicyTable
from app.services.quota_service import QuotaEngine

SUBJECT = "+5511999999999"
OTHER_SUBJECT = "+5511888888888"


class FakeClock:
    """Controllable wall clock shared by the engine (ms) and the store (s)."""

    def __init__(self, now_ms: int = 1_000_040_000) -> None:
        self.now_ms = now_ms

    def millis(self) -> int:
        return self.now_ms

    def seconds(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    # 1_000_040_000 is 20s into the 60s window starting at 1_000_020_000
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock.seconds)


@pytest.fixture
def policies() -> PolicyTable:
    return PolicyTable(
        {
            "text": Policy(max=20, window_ms=60_000, message="Too many text messages"),
            "audio": Policy(max=5, window_ms=60_000, message="Too many audio messages"),
            "image": Policy(max=10, window_ms=60_000, message="Too many images"),
            "document": Policy(max=3, window_ms=60_000, message="Too many documents"),
        },
        Policy(max=50, window_ms=60_000, message="Global limit reached"),
    )


@pytest.fixture
def engine(policies: PolicyTable, store: InMemoryCounterStore, clock: FakeClock) -> QuotaEngine:
    return QuotaEngine(policies, store, clock_ms=clock.millis)


@pytest.fixture
def sink_calls() -> list:
    return []


@pytest.fixture
def client(engine: QuotaEngine, sink_calls: list) -> TestClient:
    async def recording_sink(payload, verdict) -> None:
        sink_calls.append((payload, verdict))

    return TestClient(create_app(engine, message_sink=recording_sink))


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": "test-admin-key-123"}


def _whatsapp_payload(subject: str = SUBJECT, message_type: str = "text") -> dict:
    """Minimal WhatsApp Cloud API webhook body carrying one message."""

    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "ENTRY_ID",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "PHONE_NUMBER_ID"},
                            "messages": [
                                {
                                    "id": "wamid.test",
                                    "from": subject,
                                    "timestamp": "1700000000",
                                    "type": message_type,
                                }
                            ],
                        },
                        "field": "messages",
                    }
                ],
            }
        ],
    }


@pytest.fixture
def make_payload():
    return _whatsapp_payload
