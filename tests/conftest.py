"""Shared fixtures for the autoresponder test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from autoresponder.clock import FixedClock
from autoresponder.config import Config
from autoresponder.errors import ProviderError
from autoresponder.llm_service import ProviderRegistry, TextGenerationProvider
from autoresponder.orchestrator import AutoresponderEngine
from autoresponder.response_generator import ResponseGenerator
from autoresponder.rule_store import InMemoryRuleStore

# Wednesday 2026-10-14 10:00 UTC (JS weekday 3)
WEDNESDAY_10AM = datetime(2026, 10, 14, 10, 0, tzinfo=timezone.utc)


class FakeProvider(TextGenerationProvider):
    """Deterministic provider; raises ProviderError when `error` is set."""

    name = "anthropic"

    def __init__(self, reply: str = "Thanks for the note, happy to help.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.model = "fake-model"
        self.calls: list[dict] = []

    def generate(self, system_prompt, user_message, *, model=None, max_tokens=None, temperature=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_message": user_message,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture(autouse=True)
def _server_timezone(monkeypatch):
    """Tests run against the clock's own timezone unless they set one."""
    monkeypatch.setattr(Config, "TIMEZONE", "")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(WEDNESDAY_10AM)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def failing_provider() -> FakeProvider:
    return FakeProvider(error=ProviderError("upstream 529", provider="anthropic"))


@pytest.fixture
def generator(provider) -> ResponseGenerator:
    return ResponseGenerator(providers=ProviderRegistry({"anthropic": provider}, default="anthropic"), timeout=5)


@pytest.fixture
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def engine(store, generator, clock) -> AutoresponderEngine:
    return AutoresponderEngine(store=store, generator=generator, clock=clock)


def template_rule_payload(name="Pricing", keyword="pricing", priority=1, template=None, **extra):
    payload = {
        "name": name,
        "priority": priority,
        "triggers": {"keywords": [keyword]},
        "response": {
            "type": "template",
            "template": template or "Hi {firstName}, here's our pricing page.",
        },
    }
    payload.update(extra)
    return payload


def ai_rule_payload(name="Pricing AI", keyword="pricing", priority=1, **extra):
    payload = {
        "name": name,
        "priority": priority,
        "triggers": {"keywords": [keyword]},
        "response": {"type": "ai_generated", "aiPrompt": "Answer pricing questions briefly."},
    }
    payload.update(extra)
    return payload
