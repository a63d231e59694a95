"""LLM client that turns free-text availability into a PreferenceModel."""

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
from pydantic import ValidationError

from slot_matcher.schema import PreferenceModel

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a scheduling assistant that interprets natural language availability preferences and extracts structured scheduling information.

Return a JSON object with exactly these fields:
- days_of_week: [0-6] (0=Sunday, 1=Monday, ..., 6=Saturday)
- time_ranges: [{"start": "HH:MM", "end": "HH:MM", "timezone": "IANA timezone"}] (24-hour clock)
- date_constraints: {"start_date": "YYYY-MM-DD" or null, "end_date": "YYYY-MM-DD" or null, "relative": string or null} or null
- specific_dates: ["YYYY-MM-DD", ...]
- recurring_pattern: one of "weekdays", "weekends", "daily", "none"

Rules:
- Convert relative dates ("next Tuesday", "next week") to actual dates using the current date provided.
- If time is ambiguous (no AM/PM), infer from context (morning = AM, evening = PM).
- "After 5pm" means start 17:00, end 23:59.
- Overnight ranges may end before they start, e.g. "late nights" -> start 22:00, end 02:00.
- "Weekends" means days 0 and 6; "weekdays" means days 1-5.
- Always include the user's timezone on every time range.
- Never ask for clarification; return the best interpretation possible.
- If no specific dates are mentioned, return an empty specific_dates list.
- If no date constraints are mentioned, set date_constraints to null.

Examples:
- "I'm free weekdays after 5pm" -> days_of_week: [1,2,3,4,5], time_ranges: [{"start": "17:00", "end": "23:59", "timezone": "America/Los_Angeles"}], recurring_pattern: "weekdays"
- "Weekends in the morning" -> days_of_week: [0,6], time_ranges: [{"start": "06:00", "end": "12:00", "timezone": "America/Los_Angeles"}], recurring_pattern: "weekends"
- "Next week, any day after 2pm" -> date_constraints: {"start_date": "2025-10-20", "end_date": "2025-10-26", "relative": "next_week"}, time_ranges: [{"start": "14:00", "end": "23:59", "timezone": "America/Los_Angeles"}], recurring_pattern: "none"
"""


class LLMClient:
    """OpenAI-compatible chat completion client."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.base_url = (base_url or os.environ.get(
            "OPENAI_BASE_URL", "https://api.openai.com/v1"
        )).rstrip("/")
        self.model = model or os.environ.get("OPENAI_MODEL", "gpt-4o-mini")

    def _chat(self, messages: list[dict[str, str]]) -> str:
        """Call chat completion and return content."""
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY is required")
        with httpx.Client(timeout=30.0) as client:
            resp = client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": 0.3,
                    "response_format": {"type": "json_object"},
                },
            )
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]["content"]

    @staticmethod
    def _extract_json(text: str) -> str:
        """Extract JSON from model output (handles markdown code blocks)."""
        text = text.strip()
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
        if match:
            return match.group(1).strip()
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            return match.group(0)
        return text

    @staticmethod
    def _user_prompt(text: str, user_timezone: str, now: datetime) -> str:
        local = now.astimezone(ZoneInfo(user_timezone))
        return f"""User input: "{text}"

Current date: {local:%Y-%m-%d} (YYYY-MM-DD)
Current time: {local:%H:%M} (HH:MM in the user's timezone)
User timezone: {user_timezone}

Extract the scheduling preferences from the user input. Return ONLY valid JSON."""

    def interpret_preferences(
        self,
        text: str,
        user_timezone: str,
        now: Optional[datetime] = None,
    ) -> PreferenceModel:
        """
        Convert free-text availability into a PreferenceModel.
        Invalid JSON or schema violations get one repair attempt.
        """
        now = now or datetime.now(timezone.utc)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self._user_prompt(text, user_timezone, now)},
        ]
        raw = self._chat(messages)

        try:
            return PreferenceModel.model_validate(json.loads(self._extract_json(raw)))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Preference JSON rejected, asking for a repair: %s", e)
            repair_prompt = f"""The previous JSON was invalid. Error: {e}

Fix the JSON to match the required fields. Return ONLY valid JSON."""
            messages.append({"role": "assistant", "content": raw})
            messages.append({"role": "user", "content": repair_prompt})
            raw2 = self._chat(messages)
            return PreferenceModel.model_validate(json.loads(self._extract_json(raw2)))
