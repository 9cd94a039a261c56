"""
HTTP API Tests.

Routes are exercised through FastAPI's TestClient with the generation
service swapped for one built on scripted providers.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.api.v1 import ai
from app.core.exceptions import FailureKind, ProviderError
from app.main import app
from app.schemas.generation import GenerationFailure, GenerationSuccess

from app.tests.stubs import EXPLANATION_JSON, StubProvider, questions_json

USER = {"X-User-Id": "user-42"}


@pytest.fixture
def client_for(make_service):
    """Build a TestClient whose generation service runs over the given providers."""
    def factory(providers, **limits):
        service = make_service(providers, **limits)
        app.dependency_overrides[deps.get_generation_service] = lambda: service
        return TestClient(app)

    yield factory
    app.dependency_overrides.clear()


class TestGenerateQuestions:

    def test_success(self, client_for, question_payload):
        client = client_for([StubProvider(name="groq", responses=[questions_json(5)], models=("llama",))])
        response = client.post("/api/v1/ai/generate-questions", json=question_payload, headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["provider"] == "groq/llama"
        assert len(body["data"]) == 5
        assert set(body["data"][0]) == {"question", "answer"}

    def test_requires_identity(self, client_for, question_payload):
        provider = StubProvider(responses=[questions_json(5)])
        response = client_for([provider]).post("/api/v1/ai/generate-questions", json=question_payload)

        assert response.status_code == 401
        assert provider.calls == []

    def test_missing_field(self, client_for, question_payload):
        del question_payload["role"]
        response = client_for([StubProvider()]).post(
            "/api/v1/ai/generate-questions", json=question_payload, headers=USER
        )

        assert response.status_code == 400
        body = response.json()
        assert body == {
            "success": False,
            "message": "Missing required fields: role",
            "error": "VALIDATION_ERROR",
            "retry_after": None,
        }

    def test_malformed_json(self, client_for):
        response = client_for([StubProvider()]).post(
            "/api/v1/ai/generate-questions",
            content=b'{"role": ',
            headers={**USER, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_rate_limited(self, client_for, question_payload):
        client = client_for([StubProvider(responses=[questions_json(5)])], question_limit=1)
        client.post("/api/v1/ai/generate-questions", json=question_payload, headers=USER)
        response = client.post("/api/v1/ai/generate-questions", json=question_payload, headers=USER)

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["Retry-After"] == str(body["retry_after"])

    def test_rejected_credentials(self, client_for, question_payload):
        provider = StubProvider(responses=[ProviderError("API key not valid", FailureKind.AUTH_ERROR)])
        response = client_for([provider]).post(
            "/api/v1/ai/generate-questions", json=question_payload, headers=USER
        )

        assert response.status_code == 502
        assert response.json()["error"] == "INVALID_API_KEY"
        # Provider details stay in the logs
        assert "API key not valid" not in response.text

    def test_no_provider_configured(self, client_for, question_payload):
        response = client_for([]).post("/api/v1/ai/generate-questions", json=question_payload, headers=USER)
        assert response.status_code == 503
        assert response.json()["error"] == "NO_PROVIDER_CONFIGURED"


class TestGenerateExplanation:

    def test_success(self, client_for):
        client = client_for([StubProvider(responses=[EXPLANATION_JSON])])
        response = client.post("/api/v1/ai/generate-explanation", json={"question": "What are hooks?"},
                               headers=USER)

        assert response.status_code == 200
        assert response.json()["data"]["title"] == "React Hooks"

    def test_unparseable_output(self, client_for):
        client = client_for([StubProvider(responses=["no json here"])])
        response = client.post("/api/v1/ai/generate-explanation", json={"question": "What are hooks?"},
                               headers=USER)

        assert response.status_code == 502
        assert response.json()["error"] == "PARSE_ERROR"


class TestAppSurface:

    def test_lists_provider_chain(self, client_for):
        client = client_for([
            StubProvider(name="groq", models=("llama-a", "llama-b")),
            StubProvider(name="gemini", models=("flash",)),
        ])
        response = client.get("/api/v1/ai/providers")
        assert response.json() == {"providers": [
            {"name": "groq", "models": ["llama-a", "llama-b"]},
            {"name": "gemini", "models": ["flash"]},
        ]}

    def test_request_id_is_echoed(self, client_for):
        response = client_for([]).get("/health", headers={"X-Request-ID": "req-123"})
        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client_for):
        response = client_for([]).get("/health")
        assert response.headers["X-Request-ID"]

    def test_lifespan_owns_rate_limiter(self):
        with TestClient(app) as client:
            limiter = app.state.rate_limiter
            assert limiter.running
            assert client.get("/api/v1/ai/providers").json() == {"providers": []}
        assert not limiter.running


class TestOutcomeResponse:

    def test_failure_status_and_header(self):
        response = ai.outcome_response(GenerationFailure(message="slow down", error="API_RATE_LIMIT",
                                                         retry_after=60))
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "60"

    def test_success(self):
        response = ai.outcome_response(GenerationSuccess(data=[], provider="groq/llama"))
        assert response.status_code == 200
        assert "retry-after" not in response.headers


class FakeRequest:
    def __init__(self, disconnected: bool):
        self.disconnected = disconnected

    async def is_disconnected(self) -> bool:
        return self.disconnected


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_cancels_work_when_client_leaves(self, monkeypatch):
        monkeypatch.setattr(ai.settings, "DISCONNECT_POLL_INTERVAL", 0.01)
        cancelled = asyncio.Event()

        async def slow_generation():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        result = await ai.run_until_disconnect(FakeRequest(disconnected=True), slow_generation())

        assert result is None
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_returns_outcome_while_connected(self, monkeypatch):
        monkeypatch.setattr(ai.settings, "DISCONNECT_POLL_INTERVAL", 0.01)
        outcome = GenerationSuccess(data={"title": "t", "explanation": "e"}, provider="gemini/flash")

        async def quick_generation():
            await asyncio.sleep(0.03)
            return outcome

        assert await ai.run_until_disconnect(FakeRequest(disconnected=False), quick_generation()) is outcome
