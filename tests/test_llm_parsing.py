"""Tests for LLM preference interpretation with mocked client."""

import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from slot_matcher.llm import LLMClient
from slot_matcher.schema import PreferenceModel, RecurringPattern


@pytest.fixture
def valid_json_response():
    """Weekday-evening preferences wrapped in a markdown block."""
    return """
```json
{
  "days_of_week": [1, 2, 3, 4, 5],
  "time_ranges": [{"start": "17:00", "end": "23:59", "timezone": "America/Los_Angeles"}],
  "date_constraints": null,
  "specific_dates": [],
  "recurring_pattern": "weekdays"
}
```
"""


@pytest.fixture
def raw_json_response():
    """Raw JSON without markdown."""
    return '{"days_of_week":[],"time_ranges":[{"start":"14:00","end":"23:59","timezone":"America/New_York"}],"date_constraints":{"start_date":"2025-10-20","end_date":"2025-10-26","relative":"next_week"},"specific_dates":null,"recurring_pattern":"none"}'


def test_extract_json_from_markdown():
    """LLMClient extracts JSON from markdown code block."""
    text = 'Some text\n```json\n{"foo": "bar"}\n```\nmore'
    assert LLMClient._extract_json(text) == '{"foo": "bar"}'


def test_extract_json_raw_brace():
    """LLMClient extracts JSON from raw { } in text."""
    text = 'Here is the result: {"a": 1} hope that helps'
    assert LLMClient._extract_json(text) == '{"a": 1}'


def test_user_prompt_carries_local_date():
    # 03:00 UTC on the 14th is still the 13th in Los Angeles
    now = datetime(2025, 10, 14, 3, 0, tzinfo=timezone.utc)
    prompt = LLMClient._user_prompt("weekday evenings", "America/Los_Angeles", now)
    assert "Current date: 2025-10-13" in prompt
    assert "Current time: 20:00" in prompt
    assert "User timezone: America/Los_Angeles" in prompt
    assert '"weekday evenings"' in prompt


@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_interpret_preferences_success(valid_json_response):
    """interpret_preferences returns a PreferenceModel for valid JSON."""
    client = LLMClient()
    client._chat = MagicMock(return_value=valid_json_response)

    result = client.interpret_preferences("I'm free weekdays after 5pm", "America/Los_Angeles")

    assert isinstance(result, PreferenceModel)
    assert result.days_of_week == [1, 2, 3, 4, 5]
    assert result.time_ranges[0].start == "17:00"
    assert result.time_ranges[0].timezone == "America/Los_Angeles"
    assert result.recurring_pattern == RecurringPattern.WEEKDAYS
    assert result.date_constraints is None

    messages = client._chat.call_args.args[0]
    assert messages[0]["role"] == "system"
    assert "0=Sunday" in messages[0]["content"]


@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_interpret_preferences_raw_json(raw_json_response):
    """interpret_preferences handles raw JSON and null lists."""
    client = LLMClient()
    client._chat = MagicMock(return_value=raw_json_response)

    result = client.interpret_preferences("Next week, any day after 2pm", "America/New_York")

    assert result.specific_dates == []
    assert result.date_constraints.start_date == date(2025, 10, 20)
    assert result.date_constraints.relative == "next_week"
    assert result.recurring_pattern == RecurringPattern.NONE


@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_interpret_preferences_retry_on_invalid(raw_json_response):
    """A malformed first answer gets one repair round."""
    client = LLMClient()
    client._chat = MagicMock(side_effect=["{ invalid json", raw_json_response])

    result = client.interpret_preferences("Next week, any day after 2pm", "America/New_York")

    assert isinstance(result, PreferenceModel)
    assert client._chat.call_count == 2
    repair_messages = client._chat.call_args.args[0]
    assert repair_messages[-2] == {"role": "assistant", "content": "{ invalid json"}
    assert "previous JSON was invalid" in repair_messages[-1]["content"]


@patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"})
def test_interpret_preferences_schema_violation_twice_raises():
    client = LLMClient()
    bad = json.dumps({"days_of_week": [9], "recurring_pattern": "sometimes"})
    client._chat = MagicMock(return_value=bad)

    with pytest.raises(ValidationError):
        client.interpret_preferences("whenever works for you", "UTC")
    assert client._chat.call_count == 2


@patch.dict("os.environ", {"OPENAI_API_KEY": ""})
def test_missing_api_key_raises_value_error():
    client = LLMClient()
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        client.interpret_preferences("weekday evenings please", "UTC")
