"""Tests for webhook admission: extraction, 429 translation and pass-through."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from app.core.admission import Admission, admit_message, extract_whatsapp_admission
from app.core.app_factory import create_app
from app.core.errors import ValidationAppError
from app.services.quota_service import QuotaEngine

from conftest import OTHER_SUBJECT, SUBJECT

SUBJECT_PATTERN = r"^\+?[1-9]\d{1,14}$"


class TestExtractWhatsAppAdmission:
    def test_extracts_sender_and_type(self, make_payload) -> None:
        admission = extract_whatsapp_admission(make_payload(SUBJECT, "audio"))

        assert admission == Admission(subject=SUBJECT, category="audio")

    def test_sender_without_plus_is_normalized(self, make_payload) -> None:
        admission = extract_whatsapp_admission(make_payload(SUBJECT.lstrip("+"), "text"))

        assert admission.subject == SUBJECT

    def test_missing_type_defaults_to_text(self, make_payload) -> None:
        payload = make_payload()
        del payload["entry"][0]["changes"][0]["value"]["messages"][0]["type"]

        assert extract_whatsapp_admission(payload).category == "text"

    def test_status_callback_has_no_admission(self) -> None:
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"value": {"statuses": [{"status": "read"}]}}]}],
        }

        assert extract_whatsapp_admission(payload) is None

    @pytest.mark.parametrize(
        "payload",
        [{}, {"entry": "oops"}, {"entry": [None, {"changes": [{"value": None}]}]}],
    )
    def test_malformed_shapes_have_no_admission(self, payload) -> None:
        assert extract_whatsapp_admission(payload) is None

    def test_missing_sender_is_empty_subject(self, make_payload) -> None:
        payload = make_payload()
        del payload["entry"][0]["changes"][0]["value"]["messages"][0]["from"]

        assert extract_whatsapp_admission(payload).subject == ""


class TestAdmitMessage:
    @pytest.mark.asyncio
    async def test_allowed_returns_verdict(self, engine: QuotaEngine, make_payload) -> None:
        verdict = await admit_message(engine, make_payload(SUBJECT, "image"))

        assert verdict.allowed is True
        assert verdict.remaining == 9

    @pytest.mark.asyncio
    async def test_invalid_subject_raises_before_engine(self, engine: QuotaEngine, make_payload) -> None:
        with patch.object(engine, "check_category", AsyncMock()) as check:
            with pytest.raises(ValidationAppError) as exc_info:
                await admit_message(engine, make_payload("not-a-number"))

        assert exc_info.value.code == "invalid_subject"
        check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_engine_failure_lets_message_through(self, engine: QuotaEngine, make_payload) -> None:
        with patch.object(engine, "check_category", AsyncMock(side_effect=RuntimeError("boom"))):
            assert await admit_message(engine, make_payload()) is None

    @pytest.mark.asyncio
    async def test_denial_raises_429(self, engine: QuotaEngine, make_payload) -> None:
        for _ in range(3):
            await admit_message(engine, make_payload(SUBJECT, "document"))

        with pytest.raises(HTTPException) as exc_info:
            await admit_message(engine, make_payload(SUBJECT, "document"))

        assert exc_info.value.status_code == 429
        assert exc_info.value.detail["category"] == "document"
        assert exc_info.value.detail["retry_after"] == 40
        assert exc_info.value.headers["Retry-After"] == "40"

    @pytest.mark.asyncio
    async def test_custom_extractor(self, engine: QuotaEngine) -> None:
        def extractor(payload):
            return Admission(subject=payload["sender"], category=payload["kind"])

        verdict = await admit_message(engine, {"sender": SUBJECT, "kind": "audio"}, extractor)

        assert verdict.category == "audio"
        assert verdict.remaining == 4


class TestWebhookRoute:
    def test_allowed_message_is_forwarded(self, client: TestClient, make_payload, sink_calls) -> None:
        response = client.post("/webhook", json=make_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "accepted"
        assert body["quota"]["allowed"] is True
        assert body["quota"]["remaining"] == 19
        assert body["quota"]["category"] == "text"
        assert len(sink_calls) == 1
        assert sink_calls[0][1].remaining == 19

    def test_exhausted_quota_returns_429(self, client: TestClient, make_payload, sink_calls) -> None:
        for _ in range(5):
            assert client.post("/webhook", json=make_payload(SUBJECT, "audio")).status_code == 200

        response = client.post("/webhook", json=make_payload(SUBJECT, "audio"))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "40"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Reset"] == "1000080000"
        detail = response.json()["detail"]
        assert detail["error"] == "Rate limit exceeded"
        assert detail["message"] == "Too many audio messages"
        assert detail["reset_time"] == 1_000_080_000
        assert len(sink_calls) == 5

    def test_other_subject_unaffected(self, client: TestClient, make_payload) -> None:
        for _ in range(6):
            client.post("/webhook", json=make_payload(SUBJECT, "audio"))

        response = client.post("/webhook", json=make_payload(OTHER_SUBJECT, "audio"))

        assert response.status_code == 200

    def test_whitelist_applies_to_sender_without_plus(
        self, client: TestClient, admin_headers, make_payload
    ) -> None:
        client.post(f"/rate-limit/whitelist/{SUBJECT}", headers=admin_headers)

        for _ in range(4):
            response = client.post("/webhook", json=make_payload(SUBJECT.lstrip("+"), "document"))
            assert response.status_code == 200
            assert response.json()["quota"]["remaining"] == "unbounded"

    def test_bare_and_plus_senders_share_quota(self, client: TestClient, make_payload) -> None:
        for _ in range(3):
            client.post("/webhook", json=make_payload(SUBJECT.lstrip("+"), "document"))

        response = client.post("/webhook", json=make_payload(SUBJECT, "document"))

        assert response.status_code == 429

    def test_invalid_sender_returns_400(self, client: TestClient, make_payload, sink_calls) -> None:
        response = client.post("/webhook", json=make_payload("abc"))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_subject"
        assert sink_calls == []

    def test_payload_without_message_is_forwarded(self, client: TestClient, sink_calls) -> None:
        response = client.post("/webhook", json={"object": "whatsapp_business_account", "entry": []})

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "quota": None}
        assert sink_calls[0][1] is None

    def test_store_outage_still_accepts(self, client: TestClient, store, make_payload) -> None:
        store.set_available(False)

        for _ in range(30):
            response = client.post("/webhook", json=make_payload())
            assert response.status_code == 200
            assert response.json()["quota"]["remaining"] == "unbounded"

    def test_engine_error_still_accepts(self, client: TestClient, engine, make_payload) -> None:
        with patch.object(engine, "check_category", AsyncMock(side_effect=RuntimeError("boom"))):
            response = client.post("/webhook", json=make_payload())

        assert response.status_code == 200
        assert response.json()["quota"] is None

    @patch("app.core.admission.settings")
    def test_admission_disabled(self, mock_settings, client: TestClient, store, make_payload) -> None:
        mock_settings.app.admission_enabled = False

        response = client.post("/webhook", json=make_payload())

        assert response.status_code == 200
        assert response.json()["quota"] is None
        assert store.ttl(f"ratelimit:{SUBJECT}:text:16667") is None

    @patch("app.core.admission.settings")
    def test_rate_limit_headers_can_be_disabled(self, mock_settings, client: TestClient, make_payload) -> None:
        mock_settings.app.admission_enabled = True
        mock_settings.app.rate_limit_include_headers = False
        mock_settings.app.subject_pattern = SUBJECT_PATTERN

        for _ in range(4):
            response = client.post("/webhook", json=make_payload(SUBJECT, "document"))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "40"
        assert "X-RateLimit-Limit" not in response.headers

    def test_custom_extractor_on_app(self, engine: QuotaEngine) -> None:
        app = create_app(
            engine,
            message_sink=AsyncMock(),
            admission_extractor=lambda p: Admission(subject=p["sender"], category="image"),
        )
        client = TestClient(app)

        response = client.post("/webhook", json={"sender": SUBJECT})

        assert response.json()["quota"]["category"] == "image"
