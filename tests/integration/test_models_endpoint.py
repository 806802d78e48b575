def test_models_endpoint_lists_aliases(client) -> None:
    response = client.get("/v1/models")

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "list"
    ids = [item["id"] for item in body["data"]]
    assert ids == ["gpt-5.2", "claude-opus-4.5", "claude-sonnet-4.5", "gemini-3-pro-preview"]
    assert all(item["object"] == "model" for item in body["data"])
    assert all(item["owned_by"] == "chat-sdk" for item in body["data"])


def test_health_is_plain_text(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.text == "OK"
    assert response.headers["content-type"].startswith("text/plain")


def test_metrics_endpoint_reports_requests(client) -> None:
    client.post(
        "/v1/chat/completions",
        json={"model": "gpt-5.2", "messages": [{"role": "user", "content": "ping"}]},
    )
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "csg_requests_total" in response.text
    assert 'outcome="canned"' in response.text
