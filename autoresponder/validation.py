"""
Rule definition checks, run on create and update before anything is stored.
"""

from typing import Any, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autoresponder.config import Config
from autoresponder.errors import ValidationError
from autoresponder.io_models import AI_PROVIDERS, RESPONSE_TYPES, AutoresponderRule


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(values: List[Any], field: str) -> None:
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"'{field}' entries must be non-empty strings", field=field)


def _int_list(values: List[Any], field: str, low: int, high: int) -> None:
    for value in values:
        if not _is_int(value) or not low <= value <= high:
            raise ValidationError(f"'{field}' entries must be integers {low}-{high}", field=field)


def validate_rule(rule: AutoresponderRule) -> None:
    """Raise ValidationError describing the first problem found."""
    if not isinstance(rule.name, str) or not rule.name.strip():
        raise ValidationError("'name' is required", field="name")
    if not isinstance(rule.is_active, bool):
        raise ValidationError("'isActive' must be a boolean", field="isActive")
    if not _is_int(rule.priority) or not Config.MIN_PRIORITY <= rule.priority <= Config.MAX_PRIORITY:
        raise ValidationError(
            f"'priority' must be an integer {Config.MIN_PRIORITY}-{Config.MAX_PRIORITY}",
            field="priority",
        )

    triggers = rule.triggers
    _string_list(triggers.keywords, "triggers.keywords")
    _string_list(triggers.job_titles, "triggers.jobTitles")
    _string_list(triggers.companies, "triggers.companies")
    _string_list(triggers.industries, "triggers.industries")
    _int_list(triggers.connection_degree, "triggers.connectionDegree", 1, 3)
    for field, value in (
        ("triggers.isFirstMessage", triggers.is_first_message),
        ("triggers.containsLinks", triggers.contains_links),
    ):
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"'{field}' must be a boolean", field=field)
    length = triggers.message_length
    if length is not None:
        for bound in (length.min, length.max):
            if bound is not None and (not _is_int(bound) or bound < 0):
                raise ValidationError(
                    "'triggers.messageLength' bounds must be non-negative integers",
                    field="triggers.messageLength",
                )
        if length.min is not None and length.max is not None and length.min > length.max:
            raise ValidationError(
                "'triggers.messageLength.min' cannot exceed 'max'", field="triggers.messageLength"
            )

    restrictions = rule.conditions.time_restrictions
    if restrictions is not None:
        _int_list(restrictions.days_of_week, "conditions.timeRestrictions.daysOfWeek", 0, 6)
        hours = restrictions.hours_of_day
        if hours is not None:
            _int_list([hours.start, hours.end], "conditions.timeRestrictions.hoursOfDay", 0, 23)
            if hours.start == hours.end:
                raise ValidationError(
                    "'hoursOfDay' start and end must differ",
                    field="conditions.timeRestrictions.hoursOfDay",
                )
        if restrictions.timezone is not None:
            _check_timezone(restrictions.timezone)

    limits = rule.conditions.rate_limiting
    if limits is not None:
        cap = limits.max_responses_per_day
        if cap is not None and (not _is_int(cap) or cap < 1):
            raise ValidationError(
                "'maxResponsesPerDay' must be a positive integer",
                field="conditions.rateLimiting.maxResponsesPerDay",
            )
        cooldown = limits.cooldown_hours
        if cooldown is not None and (not _is_number(cooldown) or cooldown < 0):
            raise ValidationError(
                "'cooldownHours' must be a non-negative number",
                field="conditions.rateLimiting.cooldownHours",
            )

    response = rule.response
    if response.type not in RESPONSE_TYPES:
        raise ValidationError(
            f"'response.type' must be one of {', '.join(RESPONSE_TYPES)}", field="response.type"
        )
    if response.type == "template":
        if not isinstance(response.template, str) or not response.template.strip():
            raise ValidationError(
                "Template text is required for template responses", field="response.template"
            )
    else:
        if not isinstance(response.ai_prompt, str) or not response.ai_prompt.strip():
            raise ValidationError(
                "AI prompt is required for AI-generated responses", field="response.aiPrompt"
            )
        if response.ai_provider is not None and response.ai_provider not in AI_PROVIDERS:
            raise ValidationError(
                f"Unsupported AI provider: {response.ai_provider}", field="response.aiProvider"
            )
    if not _is_int(response.max_tokens) or not 1 <= response.max_tokens <= 4000:
        raise ValidationError("'maxTokens' must be an integer 1-4000", field="response.maxTokens")
    if not _is_number(response.temperature) or not 0 <= response.temperature <= 2:
        raise ValidationError("'temperature' must be between 0 and 2", field="response.temperature")
    if not _is_number(response.delay_seconds) or response.delay_seconds < 0:
        raise ValidationError("'delay' must be a non-negative number of seconds", field="response.delay")


def _check_timezone(name: Any) -> None:
    try:
        ZoneInfo(str(name))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(
            f"Unknown timezone: {name}", field="conditions.timeRestrictions.timezone"
        ) from e
