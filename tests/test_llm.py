import asyncio
import json

import httpx
import pytest

from daybook.infra.llm import (
    IntentClassifier,
    LLMAPIError,
    OpenAIAPIError,
    OpenAIClient,
    parse_classification,
    strip_code_fences,
)


class CaptureLLMClient:
    def __init__(self, content: str) -> None:
        self.api_key = "fake-key"
        self.content = content
        self.calls: list[dict] = []

    async def create_chat_completion(self, *, model=None, messages, max_tokens=None, temperature=None):
        self.calls.append({"messages": messages, "max_tokens": max_tokens, "temperature": temperature})
        return {"content": self.content}


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"intent": "journal"}\n```') == '{"intent": "journal"}'
    assert strip_code_fences("```JSON {} ```") == "{}"


def test_parse_schedule_event_with_details() -> None:
    content = json.dumps(
        {
            "intent": "schedule_event",
            "scheduleDetails": {
                "date": "2024-05-10",
                "startTime": "15:00",
                "endTime": None,
                "description": " Созвон с Петей ",
            },
        }
    )

    result = parse_classification(content)

    assert result.intent == "schedule_event"
    assert result.schedule_details.date == "2024-05-10"
    assert result.schedule_details.start_time == "15:00"
    assert result.schedule_details.end_time is None
    assert result.schedule_details.description == "Созвон с Петей"
    assert result.reschedule_details is None


def test_parse_reschedule_details() -> None:
    content = (
        '```{"intent": "reschedule_event", "rescheduleDetails": '
        '{"searchDate": "2024-05-10", "targetDate": "2024-05-11", "targetTime": "", "description": "бег"}}```'
    )

    result = parse_classification(content)

    assert result.intent == "reschedule_event"
    assert result.reschedule_details.search_date == "2024-05-10"
    assert result.reschedule_details.target_date == "2024-05-11"
    assert result.reschedule_details.target_time is None


def test_parse_empty_reply_is_journal() -> None:
    assert parse_classification("").intent == "journal"
    assert parse_classification("```\n```").intent == "journal"


def test_parse_unknown_intent_becomes_other() -> None:
    assert parse_classification('{"intent": "order_pizza"}').intent == "other"


@pytest.mark.parametrize("content", ["not json", "[1, 2]", '"journal"'])
def test_parse_invalid_payload_raises(content) -> None:
    with pytest.raises(LLMAPIError):
        parse_classification(content)


def test_classifier_sends_prompt_with_today_and_limits() -> None:
    client = CaptureLLMClient('{"intent": "get_events"}')
    classifier = IntentClassifier(client, max_tokens=256, temperature=0.0)

    result = asyncio.run(classifier.classify('что у меня "завтра"?', "2024-05-10"))

    assert result.intent == "get_events"
    call = client.calls[0]
    assert call["max_tokens"] == 256
    assert call["temperature"] == 0.0
    prompt = call["messages"][0]["content"]
    assert "2024-05-10" in prompt
    assert "что у меня 'завтра'?" in prompt


def test_openai_client_posts_chat_completion() -> None:
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

    client = OpenAIClient(api_key="k", base_url="https://llm.example/v1/", transport=httpx.MockTransport(_handler))

    result = asyncio.run(client.create_chat_completion(messages=[{"role": "user", "content": "hi"}], max_tokens=5))

    assert result == {"content": "hello"}
    request = captured[0]
    assert str(request.url) == "https://llm.example/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer k"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 5
    assert "temperature" not in body


def test_openai_client_raises_api_error_with_status() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="bad key")

    client = OpenAIClient(api_key="k", transport=httpx.MockTransport(_handler))

    with pytest.raises(OpenAIAPIError) as excinfo:
        asyncio.run(client.create_chat_completion(messages=[]))
    assert excinfo.value.status_code == 401
    assert "bad key" in str(excinfo.value)
