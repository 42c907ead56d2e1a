"""
Unit tests for the remote card store client.
"""

import pytest
import pytest_asyncio
from httpx import ConnectError, Request, Response, TimeoutException

from voxdeck.errors import CardNotFoundError, StoreError
from voxdeck.integrations import CardApiClient
from voxdeck.review.ports import DueFilters
from voxdeck.scheduling.models import CardState, Grade, MemoryState


@pytest.fixture
def due_payload(now):
    """Sample /api/cards/next response."""
    return {
        "deckName": "Spanish",
        "cards": [
            {
                "id": "card-1",
                "note_id": "note-1",
                "deck_id": "deck-1",
                "card_type": "basic",
                "fields": '[{"name": "Front", "value": "uno"}, {"name": "Back", "value": "one"}]',
                "tags": ["numbers"],
                "memory": MemoryState.new(now).to_dict(),
            }
        ],
    }


@pytest_asyncio.fixture
async def client():
    """Card store client with instant retries."""
    client = CardApiClient(
        api_url="http://localhost:8080/",
        token="secret",
        retry_attempts=3,
        backoff_seconds=0,
    )
    yield client
    await client.close()


class Recorder:
    """Stands in for AsyncClient.request, answering from a list of responses."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    async def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        status, body = answer
        return Response(status, json=body, request=Request(method, url))


class TestClientSetup:
    def test_base_url_and_auth_header(self, client):
        assert client.api_url == "http://localhost:8080"
        assert client.client.headers["Authorization"] == "Bearer secret"


class TestFetchDue:
    """Tests for loading a session's cards."""

    @pytest.mark.asyncio
    async def test_cards_and_settings(self, client, due_payload, monkeypatch):
        recorder = Recorder((200, due_payload))
        recorder.answers.append((200, {"settings": {"desired_retention": 0.85, "learning_steps": "2, 20"}}))
        monkeypatch.setattr(client.client, "request", recorder)

        batch = await client.fetch_due("deck-1", 20, DueFilters())

        assert batch.deck_name == "Spanish"
        assert [card.id for card in batch.cards] == ["card-1"]
        assert batch.cards[0].front == "uno"
        assert batch.cards[0].memory.state is CardState.NEW
        assert batch.settings.desired_retention == 0.85
        assert batch.settings.learning_steps == (2.0, 20.0)
        method, url, kwargs = recorder.calls[0]
        assert (method, url) == ("GET", "http://localhost:8080/api/cards/next")
        assert kwargs["params"] == {"deckId": "deck-1", "limit": 20}
        assert recorder.calls[1][1] == "http://localhost:8080/api/decks/deck-1/settings"

    @pytest.mark.asyncio
    async def test_cram_and_tag_parameters(self, client, monkeypatch):
        recorder = Recorder((200, {"cards": []}))
        monkeypatch.setattr(client.client, "request", recorder)

        batch = await client.fetch_due("deck-1", 5, DueFilters(tags=("a", "b"), cram=True, cram_state="new"))

        params = recorder.calls[0][2]["params"]
        assert params["tags"] == "a,b"
        assert params["mode"] == "cram"
        assert params["cramState"] == "new"
        assert batch.deck_name == "deck-1"
        assert batch.settings == client.default_settings


class TestGradeCalls:
    @pytest.mark.asyncio
    async def test_persist_grade_payload(self, client, now, monkeypatch):
        recorder = Recorder((200, {"ok": True}))
        monkeypatch.setattr(client.client, "request", recorder)
        previous = MemoryState.new(now)
        memory = previous.evolve(state=CardState.LEARNING, reps=1)

        await client.persist_grade("card-1", memory, grade=Grade.HARD, previous=previous, duration_ms=1500)

        method, url, kwargs = recorder.calls[0]
        assert (method, url) == ("POST", "http://localhost:8080/api/cards/card-1/review")
        assert kwargs["json"]["rating"] == "hard"
        assert kwargs["json"]["durationMs"] == 1500
        assert kwargs["json"]["memory"]["state"] == 1
        assert kwargs["json"]["previous"]["state"] == 0

    @pytest.mark.asyncio
    async def test_revert_and_suspend(self, client, now, monkeypatch):
        recorder = Recorder((204, None))
        monkeypatch.setattr(client.client, "request", recorder)

        await client.revert_grade("card-1", MemoryState.new(now))
        await client.set_suspended("card-1", True)

        assert recorder.calls[0][1].endswith("/api/cards/card-1/review/undo")
        assert recorder.calls[1][2]["json"] == {"suspended": True}


class TestRetries:
    """Tests for retry behaviour."""

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, client, monkeypatch):
        recorder = Recorder(TimeoutException("Timeout"), (200, {"ok": True}))
        monkeypatch.setattr(client.client, "request", recorder)

        await client.set_suspended("card-1", True)

        assert len(recorder.calls) == 2

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, client, monkeypatch):
        recorder = Recorder((500, {"error": "boom"}), (200, {"ok": True}))
        monkeypatch.setattr(client.client, "request", recorder)

        await client.set_suspended("card-1", True)

        assert len(recorder.calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, client, monkeypatch):
        recorder = Recorder((400, {"error": "bad"}))
        monkeypatch.setattr(client.client, "request", recorder)

        with pytest.raises(StoreError):
            await client.set_suspended("card-1", True)

        assert len(recorder.calls) == 1

    @pytest.mark.asyncio
    async def test_not_found(self, client, monkeypatch):
        monkeypatch.setattr(client.client, "request", Recorder((404, {"error": "missing"})))

        with pytest.raises(CardNotFoundError):
            await client.set_suspended("card-1", True)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, monkeypatch):
        recorder = Recorder(ConnectError("refused"))
        monkeypatch.setattr(client.client, "request", recorder)

        with pytest.raises(StoreError):
            await client.set_suspended("card-1", True)

        assert len(recorder.calls) == 3


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, client, monkeypatch):
        async def mock_get(url, **kwargs):
            return Response(200, json={"status": "ok"}, request=Request("GET", url))

        monkeypatch.setattr(client.client, "get", mock_get)

        assert await client.health_check()

    @pytest.mark.asyncio
    async def test_unreachable(self, client, monkeypatch):
        async def mock_get(url, **kwargs):
            raise ConnectError("refused")

        monkeypatch.setattr(client.client, "get", mock_get)

        assert not await client.health_check()
