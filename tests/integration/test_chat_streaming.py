import json


def test_chat_completions_stream(client, upstream) -> None:
    with client.stream(
        "POST",
        "/v1/chat/completions",
        json={
            "model": "claude-opus-4.5",
            "stream": True,
            "messages": [{"role": "user", "content": "stream this response"}],
        },
    ) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        lines = [line for line in response.iter_lines() if line]

    assert lines[-1] == "data: [DONE]"
    chunks = [json.loads(line.removeprefix("data: ")) for line in lines[:-1]]
    assert [chunk["choices"][0]["delta"]["content"] for chunk in chunks] == ["Hel", "lo"]
    assert {chunk["object"] for chunk in chunks} == {"chat.completion.chunk"}
    assert {chunk["model"] for chunk in chunks} == {"anthropic/claude-opus-4.5"}
    assert len({chunk["id"] for chunk in chunks}) == 1
    assert upstream.chat_payloads[0]["selectedChatModel"] == "anthropic/claude-opus-4.5"


def test_messages_stream(client) -> None:
    with client.stream(
        "POST",
        "/v1/messages",
        json={
            "model": "claude-opus-4.5",
            "stream": True,
            "messages": [{"role": "user", "content": "stream this response"}],
        },
    ) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        lines = [line for line in response.iter_lines() if line]

    assert lines == [
        "event: content_block_delta",
        'data: {"type":"content_block_delta","index":0,'
        '"delta":{"type":"text_delta","text":"Hel"}}',
        "event: content_block_delta",
        'data: {"type":"content_block_delta","index":0,'
        '"delta":{"type":"text_delta","text":"lo"}}',
        "event: message_stop",
        'data: {"type":"message_stop"}',
    ]


def test_stream_trivial_greeting(client, upstream) -> None:
    with client.stream(
        "POST",
        "/v1/chat/completions",
        json={"model": "gpt-5.2", "stream": True, "messages": [{"role": "user", "content": "hey"}]},
    ) as response:
        lines = [line for line in response.iter_lines() if line]

    first = json.loads(lines[0].removeprefix("data: "))
    assert first["model"] == "baka"
    assert first["choices"][0]["delta"]["content"] == "BAKA!"
    assert lines[-1] == "data: [DONE]"
    assert upstream.requests == []
