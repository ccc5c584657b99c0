import pytest

from chat_gateway.normalizer import InvalidChatRequest, normalize_messages, normalize_request


def test_unknown_role_is_coerced_to_user_and_content_trimmed():
    messages = normalize_messages([{"role": "bogus", "content": " hi "}])

    assert [m.model_dump() for m in messages] == [{"role": "user", "content": "hi"}]


def test_context_window_keeps_last_twelve_in_order():
    raw = [{"role": "user", "content": f"m{i}"} for i in range(15)]

    messages = normalize_messages(raw)

    assert [m.content for m in messages] == [f"m{i}" for i in range(3, 15)]


def test_blank_and_malformed_entries_are_dropped_before_windowing():
    raw = [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "   "},
        "not-a-message",
        {"role": "assistant", "content": None},
        {"role": "assistant", "content": ["list", "content"]},
        {"role": "assistant", "content": " ok "},
    ]

    messages = normalize_messages(raw, limit=12)

    assert [(m.role, m.content) for m in messages] == [
        ("system", "be brief"),
        ("assistant", "ok"),
    ]


@pytest.mark.parametrize("raw", [None, [], "hello", {"role": "user"}])
def test_missing_or_empty_message_array_is_rejected(raw):
    with pytest.raises(InvalidChatRequest):
        normalize_messages(raw)


def test_all_blank_messages_are_rejected():
    with pytest.raises(InvalidChatRequest, match="non-empty message"):
        normalize_messages([{"role": "user", "content": "  "}, {"role": "user", "content": ""}])


def test_normalize_request_reads_optional_fields():
    body = {
        "messages": [{"role": "user", "content": "draft a caption"}],
        "model": " gpt-4o ",
        "temperature": 0.2,
        "maxTokens": 300,
        "agent": "Jake",
        "stream": False,
        "userId": "u-1",
        "chatId": "c-9",
    }

    req = normalize_request(body, correlation_id="req-1")

    assert req.model == "gpt-4o"
    assert req.temperature == 0.2
    assert req.max_tokens == 300
    assert req.agent == "Jake"
    assert req.stream is False
    assert req.user_id == "u-1"
    assert req.chat_id == "c-9"
    assert req.correlation_id == "req-1"


def test_normalize_request_defaults_to_streaming():
    req = normalize_request({"messages": [{"role": "user", "content": "hi"}]}, correlation_id="r")

    assert req.stream is True
    assert req.model is None
    assert req.temperature is None


def test_normalize_request_honours_context_limit():
    body = {"messages": [{"role": "user", "content": str(i)} for i in range(5)]}

    req = normalize_request(body, correlation_id="r", context_limit=2)

    assert [m.content for m in req.messages] == ["3", "4"]


@pytest.mark.parametrize(
    "field,value",
    [
        ("temperature", "hot"),
        ("temperature", 3.5),
        ("temperature", True),
        ("maxTokens", 0),
        ("maxTokens", 12.5),
        ("maxTokens", "100"),
        ("maxTokens", float("inf")),
        ("maxTokens", float("nan")),
        ("temperature", float("nan")),
        ("temperature", float("-inf")),
        ("temperature", 10**400),
    ],
)
def test_normalize_request_rejects_bad_numeric_fields(field, value):
    body = {"messages": [{"role": "user", "content": "hi"}], field: value}

    with pytest.raises(InvalidChatRequest):
        normalize_request(body, correlation_id="r")


def test_normalize_request_rejects_non_object_body():
    with pytest.raises(InvalidChatRequest):
        normalize_request(["not", "an", "object"], correlation_id="r")
