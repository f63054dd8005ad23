"""
Data models for autoresponder rules, incoming messages and match outcomes.
Attributes are snake_case; ingest.py maps them to the camelCase JSON payloads.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional


ResponseType = Literal["template", "ai_generated"]
AnalyticsKind = Literal["trigger", "response"]

RESPONSE_TYPES = ("template", "ai_generated")
AI_PROVIDERS = ("anthropic", "openai")

# LinkedIn reports 1st/2nd/3rd degree; 3 means "not connected".
DEFAULT_CONNECTION_DEGREE = 3


@dataclass
class SenderProfile:
    """Free-form sender attributes scraped alongside a message."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    industry: Optional[str] = None
    connection_degree: Optional[int] = None
    is_first_message: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IncomingMessage:
    """Message received by an account owner (transient, never persisted)."""
    text: str
    recipient_owner_id: str
    sender_profile: Optional[SenderProfile] = None


@dataclass
class LengthRange:
    """Inclusive character-length bounds; an unset bound is unconstrained."""
    min: Optional[int] = None
    max: Optional[int] = None


@dataclass
class Triggers:
    """Conjunction of optional criteria. None or empty means "don't care"."""
    keywords: List[str] = field(default_factory=list)
    job_titles: List[str] = field(default_factory=list)
    companies: List[str] = field(default_factory=list)
    industries: List[str] = field(default_factory=list)
    connection_degree: List[int] = field(default_factory=list)
    is_first_message: Optional[bool] = None
    contains_links: Optional[bool] = None
    message_length: Optional[LengthRange] = None


@dataclass
class HourRange:
    """Hour-of-day window, start inclusive, end exclusive."""
    start: int
    end: int


@dataclass
class TimeRestrictions:
    days_of_week: List[int] = field(default_factory=list)  # 0 = Sunday
    hours_of_day: Optional[HourRange] = None
    timezone: Optional[str] = None


@dataclass
class RateLimiting:
    max_responses_per_day: Optional[int] = None
    cooldown_hours: Optional[float] = None


@dataclass
class Conditions:
    """Temporal and throughput gates evaluated before the triggers."""
    time_restrictions: Optional[TimeRestrictions] = None
    rate_limiting: Optional[RateLimiting] = None


@dataclass
class FollowUpAction:
    """Declared follow-up. Stored with the rule but not executed by the engine."""
    type: str
    delay_hours: float = 0
    message: Optional[str] = None


@dataclass
class ResponseConfig:
    """Tagged response strategy: a template or a generation prompt."""
    type: ResponseType = "template"
    template: Optional[str] = None
    ai_prompt: Optional[str] = None
    ai_provider: Optional[str] = None
    ai_model: Optional[str] = None
    max_tokens: int = 150
    temperature: float = 0.7
    # Seconds the sender should wait before delivering; stored, not executed.
    delay_seconds: float = 0
    follow_up_actions: List[FollowUpAction] = field(default_factory=list)


@dataclass
class RuleAnalytics:
    """Per-rule counters. Only the store's atomic increment mutates them."""
    total_triggers: int = 0
    total_responses: int = 0
    last_triggered: Optional[datetime] = None
    last_responded_at: Optional[datetime] = None
    responses_today: int = 0
    responses_today_date: Optional[str] = None  # ISO date in the configured timezone
    avg_response_time_ms: Optional[float] = None

    @property
    def success_rate(self) -> float:
        if not self.total_triggers:
            return 0.0
        return self.total_responses / self.total_triggers


@dataclass
class AutoresponderRule:
    """One automation policy, owned by exactly one account."""
    id: str
    owner_id: str
    name: str
    response: ResponseConfig
    description: Optional[str] = None
    is_active: bool = True
    priority: int = 1
    triggers: Triggers = field(default_factory=Triggers)
    conditions: Conditions = field(default_factory=Conditions)
    analytics: RuleAnalytics = field(default_factory=RuleAnalytics)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MatchOutcome:
    """Result of processing a message or previewing a rule."""
    matched: bool
    reasoning: str
    response: Optional[str] = None
    rule: Optional[AutoresponderRule] = None
    used_fallback: bool = False

    @property
    def should_respond(self) -> bool:
        return self.matched and bool(self.response)
