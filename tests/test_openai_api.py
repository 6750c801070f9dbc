"""Tests for the OpenAI-compatible surface under /v1."""

from __future__ import annotations

import json

from httpx import AsyncClient

from conftest import FakeOllama

CHAT = {"model": "llama3.2", "messages": [{"role": "user", "content": "Hi"}]}


def sse_events(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.split("\n\n") if line.startswith("data: ")]


async def test_chat_completion(client: AsyncClient, fake_ollama: FakeOllama):
    response = await client.post("/v1/chat/completions", json={**CHAT, "temperature": 0.2, "max_tokens": 32})
    assert response.status_code == 200
    data = response.json()
    assert data["object"] == "chat.completion"
    assert data["id"].startswith("chatcmpl-")
    assert data["model"] == "llama3.2"
    assert data["choices"] == [{
        "index": 0,
        "message": {"role": "assistant", "content": "Hello! How can I help?"},
        "finish_reason": "stop",
    }]
    assert data["usage"] == {"prompt_tokens": 1, "completion_tokens": 6, "total_tokens": 7}
    assert fake_ollama.chat_requests[-1]["options"] == {"temperature": 0.2, "num_predict": 32}


async def test_chat_completion_is_stateless(client: AsyncClient):
    await client.post("/v1/chat/completions", json=CHAT)
    assert (await client.get("/api/sessions")).json()["total"] == 0


async def test_content_parts_are_flattened(client: AsyncClient, fake_ollama: FakeOllama):
    body = {
        "model": "llama3.2",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": [{"type": "text", "text": "Hello"}, {"type": "text", "text": "there"}]},
        ],
    }
    response = await client.post("/v1/chat/completions", json=body)
    assert response.status_code == 200
    assert fake_ollama.chat_requests[-1]["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hello there"},
    ]


async def test_missing_model(client: AsyncClient):
    response = await client.post("/v1/chat/completions", json={"messages": CHAT["messages"]})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "invalid_request_error"
    assert error["code"] == "missing_required_parameter"
    assert error["param"] == "model"


async def test_empty_messages(client: AsyncClient):
    response = await client.post("/v1/chat/completions", json={"model": "llama3.2", "messages": []})
    assert response.status_code == 400
    assert response.json()["error"]["param"] == "messages"


async def test_invalid_role(client: AsyncClient):
    body = {"model": "llama3.2", "messages": [{"role": "tool", "content": "x"}]}
    response = await client.post("/v1/chat/completions", json=body)
    assert response.status_code == 400
    assert response.json()["error"]["param"] == "messages[0]"


async def test_malformed_body_uses_openai_shape(client: AsyncClient):
    response = await client.post("/v1/chat/completions", json={"model": "llama3.2", "messages": "nope"})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "invalid_request_error"
    assert "status" not in error


async def test_unknown_model(client: AsyncClient, fake_ollama: FakeOllama):
    """An unknown model is rejected before any completion call."""
    response = await client.post("/v1/chat/completions", json={**CHAT, "model": "mistral"})
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["type"] == "invalid_request_error"
    assert error["code"] == "model_not_found"
    assert fake_ollama.chat_requests == []


async def test_backend_failure(client: AsyncClient, fake_ollama: FakeOllama):
    fake_ollama.chat_status = 500
    response = await client.post("/v1/chat/completions", json=CHAT)
    assert response.status_code == 500
    assert response.json()["error"]["type"] == "server_error"


async def test_streaming_completion(client: AsyncClient):
    response = await client.post("/v1/chat/completions", json={**CHAT, "stream": True})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = sse_events(response.text)
    assert events[-1] == "[DONE]"
    chunks = [json.loads(e) for e in events[:-1]]
    assert all(c["object"] == "chat.completion.chunk" for c in chunks)
    assert len({c["id"] for c in chunks}) == 1
    assert chunks[0]["choices"][0]["delta"] == {"role": "assistant"}
    assert [c["choices"][0]["delta"].get("content") for c in chunks[1:-1]] == ["Hel", "lo"]
    assert chunks[-1]["choices"][0] == {"index": 0, "delta": {}, "finish_reason": "stop"}


async def test_streaming_failure(client: AsyncClient, fake_ollama: FakeOllama):
    fake_ollama.chat_status = 500
    response = await client.post("/v1/chat/completions", json={**CHAT, "stream": True})
    events = sse_events(response.text)
    assert "[DONE]" not in events
    assert json.loads(events[-1])["error"]["type"] == "server_error"


async def test_list_models(client: AsyncClient):
    response = await client.get("/v1/models")
    assert response.status_code == 200
    data = response.json()
    assert data["object"] == "list"
    assert [m["id"] for m in data["data"]] == ["llama3.2", "qwen2.5:7b"]
    assert data["data"][0]["owned_by"] == "ollama"
    assert data["data"][0]["object"] == "model"
    assert data["data"][0]["created"] > 0


async def test_get_model(client: AsyncClient):
    response = await client.get("/v1/models/qwen2.5:7b")
    assert response.status_code == 200
    assert response.json()["id"] == "qwen2.5:7b"

    missing = await client.get("/v1/models/mistral")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "model_not_found"


async def test_models_backend_down(client: AsyncClient, fake_ollama: FakeOllama):
    fake_ollama.tags_status = 500
    response = await client.get("/v1/models")
    assert response.status_code == 503
    assert response.json()["error"]["type"] == "server_error"


class TestAuthentication:
    async def test_no_header_is_allowed(self, client: AsyncClient):
        assert (await client.get("/v1/models")).status_code == 200

    async def test_valid_key(self, client: AsyncClient):
        api_key = (await client.post("/api/settings/api-key/generate")).json()["apiKey"]
        response = await client.get("/v1/models", headers={"Authorization": f"Bearer {api_key}"})
        assert response.status_code == 200

    async def test_non_bearer_header(self, client: AsyncClient):
        response = await client.get("/v1/models", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "missing_api_key"

    async def test_malformed_key(self, client: AsyncClient):
        response = await client.get("/v1/models", headers={"Authorization": "Bearer sk-nope"})
        assert response.status_code == 401
        error = response.json()["error"]
        assert error["type"] == "invalid_request_error"
        assert error["code"] == "invalid_api_key"

    async def test_no_key_configured(self, client: AsyncClient):
        token = "my-chat-ui_sk-" + "0" * 32
        response = await client.get("/v1/models", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "no_api_key_configured"

    async def test_wrong_key(self, client: AsyncClient):
        await client.post("/api/settings/api-key/generate")
        token = "my-chat-ui_sk-" + "0" * 32
        response = await client.post(
            "/v1/chat/completions", json=CHAT, headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_api_key"

    async def test_revoked_key_no_longer_works(self, client: AsyncClient):
        api_key = (await client.post("/api/settings/api-key/generate")).json()["apiKey"]
        await client.delete("/api/settings/api-key")
        response = await client.get("/v1/models", headers={"Authorization": f"Bearer {api_key}"})
        assert response.status_code == 401


async def test_malformed_model_list_means_model_not_found(client: AsyncClient, fake_ollama: FakeOllama):
    fake_ollama.models = ["junk", {"name": "llama3.2", "size": "big"}]
    response = await client.post("/v1/chat/completions", json=CHAT)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "model_not_found"
    assert fake_ollama.chat_requests == []
