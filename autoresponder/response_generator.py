"""
Response generator: template substitution or delegated generation with a
single fallback point.

resolve() is the only place that decides between the declared strategy and
the generic fallback template, so every caller (the engine and test mode)
gets identical text for identical input.
"""

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from autoresponder.config import Config
from autoresponder.errors import ProviderError
from autoresponder.io_models import ResponseConfig, SenderProfile
from autoresponder.llm_service import ProviderRegistry

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\{(\w+)\}")

# Shared by all messages; a slow provider call only ties up its own worker.
_generation_pool = ThreadPoolExecutor(max_workers=8, thread_name_prefix="ai-generate")


@dataclass
class GeneratedResponse:
    text: str
    used_fallback: bool = False
    elapsed_ms: float = 0.0


def _clean(value: Optional[str]) -> str:
    return str(value).strip() if value is not None else ""


def template_values(profile: Optional[SenderProfile]) -> Dict[str, str]:
    """Placeholder values with their documented defaults."""
    profile = profile or SenderProfile()
    first_name = _clean(profile.first_name)
    return {
        "firstName": first_name or "there",
        "lastName": _clean(profile.last_name),
        "fullName": _clean(profile.full_name) or first_name or "there",
        "company": _clean(profile.company) or "your company",
        "jobTitle": _clean(profile.job_title) or "your role",
    }


def render_template(template: Optional[str], profile: Optional[SenderProfile]) -> str:
    """Substitute {token} placeholders. Unknown tokens render as empty strings. Never raises."""
    values = template_values(profile)
    return TOKEN_PATTERN.sub(lambda match: values.get(match.group(1), ""), template or "")


def _display_name(profile: Optional[SenderProfile]) -> str:
    if profile is None:
        return "there"
    if _clean(profile.full_name):
        return _clean(profile.full_name)
    parts = [_clean(profile.first_name), _clean(profile.last_name)]
    return " ".join(part for part in parts if part) or "there"


def build_system_prompt(
    response: ResponseConfig,
    message_text: str,
    profile: Optional[SenderProfile],
    now: Optional[datetime] = None,
) -> str:
    """System instruction: the rule's prompt with context variables, sender profile, style rules."""
    instruction = response.ai_prompt or ""
    context = {
        "{{userMessage}}": message_text,
        "{{userName}}": _display_name(profile),
        "{{currentTime}}": (now or datetime.now().astimezone()).isoformat(),
    }
    for placeholder, value in context.items():
        instruction = instruction.replace(placeholder, value)

    profile_lines = []
    if profile is not None:
        for label, value in (
            ("Name", _display_name(profile)),
            ("Job title", profile.job_title),
            ("Company", profile.company),
            ("Industry", profile.industry),
            ("Connection degree", profile.connection_degree),
            ("First message", profile.is_first_message),
        ):
            if value not in (None, ""):
                profile_lines.append(f"- {label}: {value}")

    prompt = (
        "You are replying to an incoming LinkedIn message on behalf of the account owner.\n\n"
        f"{instruction.strip()}\n\n"
    )
    if profile_lines:
        prompt += "=== SENDER PROFILE ===\n" + "\n".join(profile_lines) + "\n\n"
    prompt += (
        "STYLE GUIDELINES:\n"
        "- Reply with the message text only\n"
        "- Keep it short and conversational, like a text message\n"
        "- NO EMOJIS. NO MARKDOWN. Just plain text\n"
    )
    return prompt


class ResponseGenerator:
    """Produces reply text for a rule's response config."""

    def __init__(self, providers: Optional[ProviderRegistry] = None,
                 timeout: Optional[float] = None,
                 fallback_template: Optional[str] = None):
        self.providers = providers or ProviderRegistry()
        self.timeout = timeout if timeout is not None else Config.AI_TIMEOUT_SECONDS
        self.fallback_template = fallback_template or Config.FALLBACK_TEMPLATE

    def _call_provider(self, response: ResponseConfig, system_prompt: str, message_text: str) -> str:
        provider = self.providers.get(response.ai_provider)
        future = _generation_pool.submit(
            provider.generate,
            system_prompt,
            message_text,
            model=response.ai_model,
            max_tokens=response.max_tokens,
            temperature=response.temperature,
        )
        try:
            text = future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise ProviderError(
                f"generation timed out after {self.timeout}s", provider=provider.name
            ) from e
        text = (text or "").strip().strip('"').strip("'").strip()
        if not text:
            raise ProviderError("generation returned no text", provider=provider.name)
        return text

    def resolve(
        self,
        response: ResponseConfig,
        message_text: str,
        profile: Optional[SenderProfile] = None,
        now: Optional[datetime] = None,
    ) -> GeneratedResponse:
        """Run the declared strategy; any generation failure falls back to the generic template."""
        start = time.monotonic()

        if response.type == "ai_generated":
            system_prompt = build_system_prompt(response, message_text, profile, now)
            try:
                text = self._call_provider(response, system_prompt, message_text)
                return GeneratedResponse(text=text, elapsed_ms=(time.monotonic() - start) * 1000)
            except Exception as e:
                logger.warning(
                    "[Generator] AI generation failed (provider=%s): %s: %s - using fallback template",
                    getattr(e, "provider", None) or response.ai_provider or self.providers.default,
                    type(e).__name__,
                    e,
                )
            text = render_template(self.fallback_template, profile).strip()
            return GeneratedResponse(
                text=text, used_fallback=True, elapsed_ms=(time.monotonic() - start) * 1000
            )

        text = render_template(response.template, profile).strip()
        return GeneratedResponse(text=text, elapsed_ms=(time.monotonic() - start) * 1000)

    def generate(
        self,
        response: ResponseConfig,
        message_text: str,
        profile: Optional[SenderProfile] = None,
    ) -> str:
        return self.resolve(response, message_text, profile).text
