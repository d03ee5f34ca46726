import json
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from loganalyzer.api.main import build_services, create_app
from loganalyzer.config import AppConfig

from conftest import completion

QUERY_111 = (
    "SELECT id, timestamp, log_level, message FROM log_entries "
    "WHERE message LIKE '%id=111%' ORDER BY timestamp DESC"
)


class FakeCompletions:
    """Serves queued chat-completion replies to the app's text-generation clients."""

    def __init__(self):
        self.replies = []
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        status, content = self.replies.pop(0)
        if status != 200:
            return httpx.Response(status, json={"error": {"message": "upstream failure"}})
        return httpx.Response(200, json=completion(content))


@pytest.fixture
def completions():
    return FakeCompletions()


@pytest.fixture
def app(tmp_path, message_log, secrets, completions):
    config = AppConfig(sqlite_path=str(tmp_path / "logs.db"), seed_sample_data=False)
    services = build_services(
        config, gateway=message_log, secrets=secrets,
        transport=httpx.MockTransport(completions.handler),
    )
    return create_app(services=services)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health_endpoint(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["backend"] == "sqlite"


class TestQuery:
    @pytest.mark.asyncio
    async def test_without_api_key(self, client, completions):
        response = await client.post("/api/query", json={"query": "Was id 111 sent?"})
        assert response.status_code == 400
        assert response.json() == {
            "analysis": "Error processing query: DeepSeek API key not configured. Please set it in Settings.",
            "logs": None,
        }
        assert completions.requests == []

    @pytest.mark.asyncio
    async def test_blank_query(self, client):
        response = await client.post("/api/query", json={"query": "   "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_answers_question(self, client, completions):
        await client.post("/api/settings/deepseek_api_key", json={"apiKey": "sk-1234567890abcd"})
        completions.replies = [
            (200, f"```sql\n{QUERY_111}\n```"),
            (200, '{"analysis": "Delivered.", "relevant_logs": []}'),
        ]

        response = await client.post("/api/query", json={"query": "Was the message for user with id 111 sent?"})

        assert response.status_code == 200
        data = response.json()
        assert data["analysis"] == "Delivered."
        assert data["sqlQuery"] == QUERY_111
        assert [log["message"] for log in data["logs"]] == [
            "message send completed for id=111",
            "start send message for userName=bob and id=111",
        ]
        assert data["logs"][0]["logLevel"] == "INFO"
        assert len(completions.requests) == 2

    @pytest.mark.asyncio
    async def test_generation_failure_is_bad_gateway(self, client, completions):
        await client.post("/api/settings/deepseek_api_key", json={"apiKey": "sk-1234567890abcd"})
        completions.replies = [(500, None)]

        response = await client.post("/api/query", json={"query": "errors?"})

        assert response.status_code == 502
        data = response.json()
        assert data["logs"] is None
        assert data["analysis"].startswith("Error processing query: Failed to generate SQL query")

    @pytest.mark.asyncio
    async def test_unsafe_query_is_rejected(self, client, completions):
        await client.post("/api/settings/deepseek_api_key", json={"apiKey": "sk-1234567890abcd"})
        completions.replies = [(200, "```sql\nDELETE FROM log_entries\n```")]

        response = await client.post("/api/query", json={"query": "remove all logs"})

        assert response.status_code == 422
        assert len((await client.get("/api/logs")).json()) == 4


class TestSettings:
    @pytest.mark.asyncio
    async def test_not_configured(self, client):
        response = await client.get("/api/settings/deepseek_api_key")
        assert response.json() == {"apiKey": "Not configured"}

    @pytest.mark.asyncio
    async def test_save_and_mask(self, client):
        response = await client.post("/api/settings/deepseek_api_key", json={"apiKey": "sk-1234567890abcd"})
        assert response.status_code == 200
        response = await client.get("/api/settings/deepseek_api_key")
        assert response.json() == {"apiKey": "sk-1****abcd"}

    @pytest.mark.asyncio
    async def test_blank_key_rejected(self, client):
        response = await client.post("/api/settings/deepseek_api_key", json={"apiKey": "  "})
        assert response.status_code == 400
        assert response.json() == {"error": "API key cannot be empty"}


class TestPatterns:
    @pytest.mark.asyncio
    async def test_crud(self, client):
        response = await client.post("/api/patterns", json={"logLevel": "INFO", "logTemplate": "User {} logged in"})
        assert response.status_code == 200
        created = response.json()
        assert created["logLevel"] == "INFO"
        assert created["logTemplate"] == "User {} logged in"

        response = await client.put(
            f"/api/patterns/{created['id']}", json={"logLevel": "WARN", "logTemplate": "User {} locked out"},
        )
        assert response.json() == {"id": created["id"], "logLevel": "WARN", "logTemplate": "User {} locked out"}

        assert (await client.get("/api/patterns")).json() == [response.json()]

        await client.delete(f"/api/patterns/{created['id']}")
        assert (await client.get("/api/patterns")).json() == []

    @pytest.mark.asyncio
    async def test_validation(self, client):
        response = await client.post("/api/patterns", json={"logLevel": "INFO", "logTemplate": ""})
        assert response.status_code == 422


class TestLogs:
    @pytest.mark.asyncio
    async def test_list_newest_first(self, client):
        logs = (await client.get("/api/logs")).json()
        assert len(logs) == 4
        assert logs[0]["message"] == "message send failed for id=222"

    @pytest.mark.asyncio
    async def test_crud(self, client):
        response = await client.post("/api/logs", json={
            "timestamp": "2024-06-01T08:00:00", "logLevel": "WARN", "message": "High memory usage detected: 91%",
        })
        created = response.json()
        assert created["id"] is not None
        assert created["logLevel"] == "WARN"

        response = await client.put(f"/api/logs/{created['id']}", json={
            "timestamp": "2024-06-01T08:00:00", "logLevel": "ERROR", "message": "Out of memory",
        })
        assert response.json()["message"] == "Out of memory"

        await client.delete(f"/api/logs/{created['id']}")
        assert len((await client.get("/api/logs")).json()) == 4

    @pytest.mark.asyncio
    async def test_timestamp_defaults_to_now(self, client):
        response = await client.post("/api/logs", json={"logLevel": "INFO", "message": "just now"})
        assert response.status_code == 200
        assert response.json()["timestamp"]

    @pytest.mark.asyncio
    async def test_offset_timestamp_is_stored_as_utc(self, client):
        response = await client.post("/api/logs", json={
            "timestamp": "2024-06-01T10:00:00+02:00", "logLevel": "INFO", "message": "offset",
        })
        assert response.json()["timestamp"] == "2024-06-01T08:00:00"

    @pytest.mark.asyncio
    async def test_default_timestamp_is_utc(self, client):
        before = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)
        response = await client.post("/api/logs", json={"logLevel": "INFO", "message": "just now"})
        after = datetime.now(timezone.utc).replace(tzinfo=None)
        stamp = datetime.fromisoformat(response.json()["timestamp"])
        assert before <= stamp <= after
