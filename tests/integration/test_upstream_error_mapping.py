QUESTION = {"role": "user", "content": "What is the capital of Peru?"}


def test_upstream_rate_limit_maps_to_429(client, upstream) -> None:
    upstream.chat_statuses = [429]
    response = client.post(
        "/v1/chat/completions", json={"model": "gpt-5.2", "messages": [QUESTION]}
    )

    assert response.status_code == 429
    body = response.json()
    assert body["error"]["code"] == "upstream_rate_limited"
    assert body["error"]["type"] == "rate_limit"
    assert body["error"]["message"] == "Rate limited"


def test_stream_upstream_error_is_json_not_sse(client, upstream) -> None:
    upstream.chat_statuses = [502]
    response = client.post(
        "/v1/messages",
        json={"model": "claude-opus-4.5", "stream": True, "messages": [QUESTION]},
    )

    assert response.status_code == 502
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["error"]["message"] == "Upstream returned 502"


def test_evicted_identity_is_replaced_on_next_request(client, upstream) -> None:
    upstream.chat_statuses = [429]
    first = client.post("/v1/chat/completions", json={"model": "gpt-5.2", "messages": [QUESTION]})
    second = client.post("/v1/chat/completions", json={"model": "gpt-5.2", "messages": [QUESTION]})

    assert first.status_code == 429
    assert second.status_code == 200
    assert upstream.paths() == ["/", "/api/chat", "/", "/api/chat"]


def test_identity_unavailable_maps_to_503(client, upstream) -> None:
    upstream.guest_status = 429
    response = client.post(
        "/v1/chat/completions", json={"model": "gpt-5.2", "messages": [QUESTION]}
    )

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "identity_unavailable"
    assert upstream.paths() == ["/", "/", "/"]
