# =============================================================================
# Unit Tests — API Schemas, Places Client & Application Wiring
# =============================================================================
#
# Test groups:
#   1. Request model validation (pure Pydantic)
#   2. Route helpers (chat titles, audit endpoint names, streamed reply usage)
#   3. Google Places client against an httpx MockTransport
#   4. FastAPI app: health, authentication, the error envelope and metering
#
# No database, Redis or external API is contacted: dependencies are
# overridden and audit logging is switched off.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from grooshub.api.audit import endpoint_name
from grooshub.api.chat import STREAM_ERROR_MARKER, _stream_reply, chat_title
from grooshub.db.models import MemberRole
from grooshub.errors import QuotaExceededError
from grooshub.models.requests import (
    AskRequest,
    ChatRequest,
    InvitationCreateRequest,
    LcaLayerCreateRequest,
    MemberUpdateRequest,
    PlacesTextSearchRequest,
    RetrieveRequest,
)
from grooshub.services.llm import LLMResponse
from grooshub.services.places import (
    PlacesError,
    build_text_search_body,
    haversine_m,
    parse_place,
    text_search,
)


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# 1. Request Models
# ---------------------------------------------------------------------------


class TestChatRequest:
    def test_last_message_must_be_user(self):
        with pytest.raises(ValidationError):
            ChatRequest(messages=[
                {"role": "user", "content": "Hoi"},
                {"role": "assistant", "content": "Hallo"},
            ])

    def test_empty_messages_rejected(self):
        with pytest.raises(ValidationError):
            ChatRequest(messages=[])

    def test_temperature_bounds(self):
        with pytest.raises(ValidationError):
            ChatRequest(messages=[{"role": "user", "content": "x"}], temperature=2.5)

    def test_resolved_model_defaults(self):
        request = ChatRequest(messages=[{"role": "user", "content": "x"}])
        assert request.resolved_model_id("gpt-4o-mini") == "gpt-4o-mini"


class TestOtherRequests:
    def test_retrieve_defaults(self):
        request = RetrieveRequest(query="brandveiligheid")
        assert request.top_k == 5
        assert request.similarity_threshold == 0.7
        assert request.use_hybrid_search is True

    @pytest.mark.parametrize("top_k", [0, 21])
    def test_retrieve_top_k_bounds(self, top_k):
        with pytest.raises(ValidationError):
            RetrieveRequest(query="q", top_k=top_k)

    def test_ask_rejects_unknown_model(self):
        with pytest.raises(ValidationError, match="Invalid model ID"):
            AskRequest(question="q", model_id="gpt-99")

    def test_creator_role_not_assignable(self):
        with pytest.raises(ValidationError):
            MemberUpdateRequest(role="creator")
        with pytest.raises(ValidationError):
            InvitationCreateRequest(email="a@b.nl", role="creator")

    def test_invitation_defaults_to_member(self):
        assert InvitationCreateRequest(email="a@b.nl").role == MemberRole.MEMBER

    def test_invitation_email_pattern(self):
        with pytest.raises(ValidationError):
            InvitationCreateRequest(email="not-an-email")

    def test_layer_coverage_bounds(self):
        with pytest.raises(ValidationError):
            LcaLayerCreateRequest(material_id=1, thickness=0.1, coverage=1.5)

    def test_places_request_accepts_aliases(self):
        request = PlacesTextSearchRequest.model_validate({
            "textQuery": "supermarkt",
            "latitude": 52.37,
            "longitude": 4.89,
            "categoryId": "supermarkets",
        })
        assert request.text_query == "supermarkt"
        assert request.category_id == "supermarkets"
        assert request.radius == 5000


# ---------------------------------------------------------------------------
# 2. Route Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_chat_title_uses_first_line(self):
        assert chat_title("Bouwhoogte?\nMeer details volgen") == "Bouwhoogte?"

    def test_chat_title_truncates(self):
        title = chat_title("a" * 100)
        assert len(title) == 60
        assert title.endswith("...")

    def test_chat_title_blank(self):
        assert chat_title("   ") == "New chat"

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/api/projects/123/files", "projects"),
            ("/api/chat", "chat"),
            ("/api/location/text-search", "location"),
            ("/", ""),
        ],
    )
    def test_endpoint_name(self, path, expected):
        assert endpoint_name(path) == expected


class FakeStreamingLLM:
    provider = "anthropic"
    model_id = "claude-sonnet-4.5"

    def __init__(self, deltas: list[str], error: Exception | None = None):
        self.deltas = deltas
        self.error = error

    async def stream(self, messages, system=None, temperature=None, max_tokens=None, usage=None):
        for delta in self.deltas:
            yield delta
        usage.input_tokens = 40
        usage.output_tokens = 8
        if self.error:
            raise self.error


async def _collect(stream) -> str:
    return "".join([part async for part in stream])


class TestStreamReply:
    """Usage of a streamed chat reply is recorded once the stream ends."""

    def _stream(self, llm, chat_id=None) -> tuple[str, AsyncMock, AsyncMock]:
        with (
            patch("grooshub.api.chat.record_usage", new_callable=AsyncMock) as record,
            patch("grooshub.api.chat._save_assistant_message", new_callable=AsyncMock) as save,
        ):
            text = _run(_collect(_stream_reply(
                llm, [{"role": "user", "content": "Hoi"}], system="s",
                temperature=None, max_tokens=None, chat_id=chat_id, user_id=7,
            )))
        return text, record, save

    def test_success_records_tokens_under_provider(self):
        text, record, save = self._stream(FakeStreamingLLM(["Hal", "lo"]))

        assert text == "Hallo"
        assert record.await_args.args == ("anthropic", "chat", "success")
        assert record.await_args.kwargs["input_tokens"] == 40
        assert record.await_args.kwargs["output_tokens"] == 8
        assert record.await_args.kwargs["user_id"] == 7
        save.assert_not_awaited()

    def test_interrupted_stream_records_error_and_saves_partial_reply(self):
        chat_id = uuid.uuid4()
        text, record, save = self._stream(
            FakeStreamingLLM(["Half"], error=RuntimeError("connection reset")), chat_id=chat_id,
        )

        assert text == "Half" + STREAM_ERROR_MARKER
        assert record.await_args.args[2] == "error"
        assert record.await_args.kwargs["error_message"] == "connection reset"
        assert save.await_args.args[:3] == (chat_id, "Half", "claude-sonnet-4.5")


# ---------------------------------------------------------------------------
# 3. Google Places
# ---------------------------------------------------------------------------

RAW_PLACE = {
    "id": "ChIJ123",
    "displayName": {"text": "Albert Heijn"},
    "formattedAddress": "Damrak 1, Amsterdam",
    "location": {"latitude": 52.3740, "longitude": 4.8897},
    "types": ["supermarket", "store"],
    "rating": 4.1,
    "userRatingCount": 210,
    "priceLevel": "PRICE_LEVEL_MODERATE",
    "currentOpeningHours": {"openNow": True},
}


def _places_settings(api_key: str = "test-key") -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.google_places_api_key = api_key
    mock_settings.google_places_base_url = "https://places.test/v1"
    return mock_settings


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPlaces:
    def test_haversine_known_distance(self):
        # Amsterdam Centraal → Dam, roughly 800 m
        distance = haversine_m(52.3791, 4.9003, 52.3731, 4.8926)
        assert 700 < distance < 900

    def test_parse_place(self):
        place = parse_place(RAW_PLACE, origin=(52.3740, 4.8897))
        assert place.place_id == "ChIJ123"
        assert place.name == "Albert Heijn"
        assert place.user_ratings_total == 210
        assert place.open_now is True
        assert place.distance_m == 0.0

    def test_parse_place_minimal(self):
        place = parse_place({"id": "x"})
        assert place.name == "Unknown"
        assert place.distance_m is None
        assert place.types == []

    def test_body_has_location_bias(self):
        body = build_text_search_body("cafe", 52.0, 4.0, 1500, ["PRICE_LEVEL_MODERATE"])
        assert body["locationBias"]["circle"]["radius"] == 1500
        assert body["priceLevels"] == ["PRICE_LEVEL_MODERATE"]
        assert body["maxResultCount"] == 20

    def test_missing_api_key(self):
        with patch("grooshub.services.places.settings", _places_settings(api_key="")):
            with pytest.raises(ValueError, match="GOOGLE_PLACES_API_KEY"):
                _run(text_search("cafe", 52.0, 4.0))

    def test_results_sorted_by_distance(self):
        far = {**RAW_PLACE, "id": "far", "location": {"latitude": 52.40, "longitude": 4.90}}
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"places": [far, RAW_PLACE]})

        with patch("grooshub.services.places.settings", _places_settings()):
            places = _run(text_search("supermarkt", 52.3740, 4.8897, client=_client(handler)))

        assert [p.place_id for p in places] == ["ChIJ123", "far"]
        assert seen["headers"]["X-Goog-Api-Key"] == "test-key"
        assert "places.displayName" in seen["headers"]["X-Goog-FieldMask"]
        assert seen["body"]["textQuery"] == "supermarkt"

    def test_midrange_filters_locally(self):
        cheap = {**RAW_PLACE, "id": "cheap", "priceLevel": "PRICE_LEVEL_INEXPENSIVE"}
        unknown = {**RAW_PLACE, "id": "unknown", "priceLevel": None}
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"places": [RAW_PLACE, cheap, unknown]})

        with patch("grooshub.services.places.settings", _places_settings()):
            places = _run(text_search(
                "restaurant", 52.3740, 4.8897,
                category_id="restaurants_midrange",
                price_levels=["PRICE_LEVEL_MODERATE"],
                client=_client(handler),
            ))

        assert "priceLevels" not in seen["body"]
        assert {p.place_id for p in places} == {"ChIJ123", "unknown"}

    def test_google_error_maps_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": {"message": "denied"}})

        with patch("grooshub.services.places.settings", _places_settings()):
            with pytest.raises(PlacesError) as exc_info:
                _run(text_search("cafe", 52.0, 4.0, client=_client(handler)))
        assert exc_info.value.status_code == 403

    def test_google_server_error_is_502(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="oops")

        with patch("grooshub.services.places.settings", _places_settings()):
            with pytest.raises(PlacesError) as exc_info:
                _run(text_search("cafe", 52.0, 4.0, client=_client(handler)))
        assert exc_info.value.status_code == 502


# ---------------------------------------------------------------------------
# 4. Application
# ---------------------------------------------------------------------------


@dataclass
class FakeUser:
    id: int = 7
    email: str = "dev@example.com"
    org_id: int | None = None


class FakeClassifierLLM:
    provider = "openai"
    model_id = "gpt-4o-mini"

    def __init__(self, reply: str):
        self.reply = reply
        self.calls = 0

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls += 1
        return LLMResponse(content=self.reply, model=self.model_id, input_tokens=30, output_tokens=12)


@pytest.fixture
def client():
    from grooshub.api.deps import get_current_user
    from grooshub.config import settings
    from grooshub.db.engine import get_async_session
    from grooshub.main import app

    async def fake_session():
        yield AsyncMock()

    app.dependency_overrides[get_async_session] = fake_session
    with patch.object(settings, "audit_logging_enabled", False):
        with TestClient(app) as test_client:
            yield test_client, app, get_current_user
    app.dependency_overrides.clear()


class TestApplication:
    def test_health(self, client):
        test_client, _, _ = client
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_api_key_is_401(self, client):
        test_client, _, _ = client
        response = test_client.get("/api/projects")
        assert response.status_code == 401

    def test_unknown_model_uses_error_envelope(self, client):
        test_client, app, get_current_user = client
        app.dependency_overrides[get_current_user] = lambda: FakeUser()

        with patch("grooshub.api.deps.check_rate_limit", new_callable=AsyncMock) as limiter:
            limiter.return_value = MagicMock(headers=lambda: {})
            response = test_client.post(
                "/api/chat",
                json={"messages": [{"role": "user", "content": "Hoi"}], "model_id": "gpt-99"},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "invalid_model", "message": "Invalid model ID: gpt-99"}

    def test_invalid_body_is_422(self, client):
        test_client, app, get_current_user = client
        app.dependency_overrides[get_current_user] = lambda: FakeUser()

        response = test_client.post("/api/rag/classify-query", json={"query": ""})
        assert response.status_code == 422

    def test_classify_query_is_metered(self, client):
        test_client, app, get_current_user = client
        app.dependency_overrides[get_current_user] = lambda: FakeUser()
        llm = FakeClassifierLLM('{"isDocumentRelated": true, "confidence": 0.8, "reasoning": "norm"}')

        with (
            patch("grooshub.rag.classifier.create_provider", return_value=llm),
            patch("grooshub.services.quota.enforce_quota", new_callable=AsyncMock) as enforce,
            patch("grooshub.services.quota.record_usage", new_callable=AsyncMock) as record,
        ):
            response = test_client.post("/api/rag/classify-query", json={"query": "Vrije hoogte?"})

        assert response.status_code == 200
        assert response.json()["isDocumentRelated"] is True
        assert enforce.await_args.args[1:] == ("openai", "rag_classify")
        record.assert_awaited_once()
        assert record.await_args.args == ("openai", "rag_classify", "success")
        assert record.await_args.kwargs["user_id"] == 7

    def test_classify_query_exhausted_quota_is_429(self, client):
        test_client, app, get_current_user = client
        app.dependency_overrides[get_current_user] = lambda: FakeUser()
        llm = FakeClassifierLLM("{}")

        with (
            patch("grooshub.rag.classifier.create_provider", return_value=llm),
            patch(
                "grooshub.services.quota.enforce_quota",
                AsyncMock(side_effect=QuotaExceededError("openai", 100)),
            ),
        ):
            response = test_client.post("/api/rag/classify-query", json={"query": "Vrije hoogte?"})

        assert response.status_code == 429
        assert response.json()["error"] == "quota_exceeded"
        assert llm.calls == 0
