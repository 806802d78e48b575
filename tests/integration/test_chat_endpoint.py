def test_chat_completion_success(client, upstream) -> None:
    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "claude-opus-4.5",
            "messages": [
                {"role": "system", "content": "You are terse."},
                {"role": "user", "content": "Name a prime number"},
            ],
            "temperature": 0.2,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "chat.completion"
    assert body["id"].startswith("chatcmpl-")
    assert body["model"] == "anthropic/claude-opus-4.5"
    assert body["choices"] == [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hello"},
            "finish_reason": "stop",
        }
    ]
    assert body["usage"] == {"prompt_tokens": 0, "completion_tokens": 5, "total_tokens": 5}

    payload = upstream.chat_payloads[0]
    assert payload["selectedChatModel"] == "anthropic/claude-opus-4.5"
    assert payload["selectedVisibilityType"] == "private"
    text = payload["message"]["parts"][0]["text"]
    assert text.startswith("[System]\nYou are terse.\n\n")
    assert text.endswith("[User]\nName a prime number")


def test_guest_session_is_reused_across_requests(client, upstream) -> None:
    for question in ("Name a prime number", "Name another one"):
        response = client.post(
            "/v1/chat/completions",
            json={"model": "gpt-5.2", "messages": [{"role": "user", "content": question}]},
        )
        assert response.status_code == 200

    assert upstream.paths() == ["/", "/api/chat", "/api/chat"]


def test_unknown_model_is_forwarded_verbatim(client, upstream) -> None:
    response = client.post(
        "/v1/chat/completions",
        json={"model": "xai/grok-4", "messages": [{"role": "user", "content": "Who are you?"}]},
    )

    assert response.status_code == 200
    assert upstream.chat_payloads[0]["selectedChatModel"] == "xai/grok-4"
    assert response.json()["model"] == "xai/grok-4"


def test_trivial_greeting_gets_canned_reply(client, upstream) -> None:
    response = client.post(
        "/v1/chat/completions",
        json={"model": "gpt-5.2", "messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["model"] == "baka"
    assert body["choices"][0]["message"]["content"] == "BAKA!"
    assert body["choices"][0]["finish_reason"] == "stop"
    assert upstream.requests == []


def test_invalid_body_is_a_parse_error(client) -> None:
    response = client.post(
        "/v1/chat/completions",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"]["code"] == "request_parse_failed"
    assert body["error"]["type"] == "validation"


def test_empty_messages_is_a_parse_error(client, upstream) -> None:
    response = client.post("/v1/chat/completions", json={"model": "gpt-5.2", "messages": []})

    assert response.status_code == 400
    assert upstream.requests == []
