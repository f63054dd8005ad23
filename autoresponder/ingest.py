"""
Normalize camelCase JSON payloads (API bodies, Supabase rows) to models and back.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from autoresponder.errors import ValidationError
from autoresponder.io_models import (
    AutoresponderRule,
    Conditions,
    FollowUpAction,
    HourRange,
    IncomingMessage,
    LengthRange,
    MatchOutcome,
    RateLimiting,
    ResponseConfig,
    RuleAnalytics,
    SenderProfile,
    TimeRestrictions,
    Triggers,
)

_PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "fullName": "full_name",
    "jobTitle": "job_title",
    "company": "company",
    "industry": "industry",
    "connectionDegree": "connection_degree",
    "isFirstMessage": "is_first_message",
}


def _object(data: Any, name: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"'{name}' must be an object", field=name)
    return data


def _list(data: Any, name: str) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValidationError(f"'{name}' must be a list", field=name)
    return list(data)


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def normalize_sender_profile(data: Optional[Dict[str, Any]]) -> Optional[SenderProfile]:
    """
    Normalize a scraped sender profile dict.

    Known keys (firstName, lastName, fullName, jobTitle, company, industry,
    connectionDegree, isFirstMessage) map to attributes; anything else is
    kept in `extra`.
    """
    if data is None:
        return None
    data = _object(data, "senderProfile")
    kwargs: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in data.items():
        if key in _PROFILE_FIELDS:
            kwargs[_PROFILE_FIELDS[key]] = value
        else:
            extra[key] = value
    degree = kwargs.get("connection_degree")
    if degree is not None:
        try:
            kwargs["connection_degree"] = int(degree)
        except (TypeError, ValueError):
            kwargs["connection_degree"] = None
    return SenderProfile(extra=extra, **kwargs)


def build_incoming_message(data: Dict[str, Any]) -> IncomingMessage:
    """Build an IncomingMessage from {text, senderProfile?, recipientOwnerId}."""
    data = _object(data, "message")
    text = data.get("text")
    if not isinstance(text, str):
        raise ValidationError("'text' must be a string", field="text")
    owner_id = data.get("recipientOwnerId")
    if not owner_id:
        raise ValidationError("'recipientOwnerId' is required", field="recipientOwnerId")
    return IncomingMessage(
        text=text,
        recipient_owner_id=str(owner_id),
        sender_profile=normalize_sender_profile(data.get("senderProfile")),
    )


def normalize_triggers(data: Optional[Dict[str, Any]]) -> Triggers:
    data = _object(data, "triggers")
    length = data.get("messageLength")
    message_length = None
    if length is not None:
        length = _object(length, "triggers.messageLength")
        message_length = LengthRange(min=length.get("min"), max=length.get("max"))
    return Triggers(
        keywords=_list(data.get("keywords"), "triggers.keywords"),
        job_titles=_list(data.get("jobTitles"), "triggers.jobTitles"),
        companies=_list(data.get("companies"), "triggers.companies"),
        industries=_list(data.get("industries"), "triggers.industries"),
        connection_degree=_list(data.get("connectionDegree"), "triggers.connectionDegree"),
        is_first_message=data.get("isFirstMessage"),
        contains_links=data.get("containsLinks"),
        message_length=message_length,
    )


def normalize_conditions(data: Optional[Dict[str, Any]]) -> Conditions:
    data = _object(data, "conditions")
    time_restrictions = None
    raw_time = data.get("timeRestrictions")
    if raw_time is not None:
        raw_time = _object(raw_time, "conditions.timeRestrictions")
        hours = None
        if raw_time.get("hoursOfDay") is not None:
            raw_hours = _object(raw_time["hoursOfDay"], "conditions.timeRestrictions.hoursOfDay")
            if "start" not in raw_hours or "end" not in raw_hours:
                raise ValidationError(
                    "'hoursOfDay' requires both 'start' and 'end'",
                    field="conditions.timeRestrictions.hoursOfDay",
                )
            hours = HourRange(start=raw_hours["start"], end=raw_hours["end"])
        time_restrictions = TimeRestrictions(
            days_of_week=_list(raw_time.get("daysOfWeek"), "conditions.timeRestrictions.daysOfWeek"),
            hours_of_day=hours,
            timezone=raw_time.get("timezone"),
        )
    rate_limiting = None
    raw_rate = data.get("rateLimiting")
    if raw_rate is not None:
        raw_rate = _object(raw_rate, "conditions.rateLimiting")
        rate_limiting = RateLimiting(
            max_responses_per_day=raw_rate.get("maxResponsesPerDay"),
            cooldown_hours=raw_rate.get("cooldownHours"),
        )
    return Conditions(time_restrictions=time_restrictions, rate_limiting=rate_limiting)


def normalize_response(data: Optional[Dict[str, Any]]) -> ResponseConfig:
    data = _object(data, "response")
    follow_ups = []
    for item in _list(data.get("followUpActions"), "response.followUpActions"):
        item = _object(item, "response.followUpActions[]")
        follow_ups.append(
            FollowUpAction(
                type=item.get("type", "message"),
                delay_hours=item.get("delayHours", 0),
                message=item.get("message"),
            )
        )
    return ResponseConfig(
        type=data.get("type", "template"),
        template=data.get("template"),
        ai_prompt=data.get("aiPrompt"),
        ai_provider=data.get("aiProvider"),
        ai_model=data.get("aiModel"),
        max_tokens=data.get("maxTokens", 150),
        temperature=data.get("temperature", 0.7),
        delay_seconds=data.get("delay", 0),
        follow_up_actions=follow_ups,
    )


def normalize_analytics(data: Optional[Dict[str, Any]]) -> RuleAnalytics:
    data = _object(data, "analytics")
    return RuleAnalytics(
        total_triggers=int(data.get("totalTriggers", 0)),
        total_responses=int(data.get("totalResponses", 0)),
        last_triggered=parse_datetime(data.get("lastTriggered")),
        last_responded_at=parse_datetime(data.get("lastRespondedAt")),
        responses_today=int(data.get("responsesToday", 0)),
        responses_today_date=data.get("responsesTodayDate"),
        avg_response_time_ms=data.get("avgResponseTimeMs"),
    )


def build_rule(data: Dict[str, Any]) -> AutoresponderRule:
    """Build a stored rule (all fields present) from its camelCase dict."""
    return AutoresponderRule(
        id=str(data["id"]),
        owner_id=str(data["ownerId"]),
        name=data["name"],
        description=data.get("description"),
        is_active=data.get("isActive", True),
        priority=data.get("priority", 1),
        triggers=normalize_triggers(data.get("triggers")),
        conditions=normalize_conditions(data.get("conditions")),
        response=normalize_response(data.get("response")),
        analytics=normalize_analytics(data.get("analytics")),
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
    )


def triggers_to_dict(triggers: Triggers) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    if triggers.keywords:
        result["keywords"] = list(triggers.keywords)
    if triggers.job_titles:
        result["jobTitles"] = list(triggers.job_titles)
    if triggers.companies:
        result["companies"] = list(triggers.companies)
    if triggers.industries:
        result["industries"] = list(triggers.industries)
    if triggers.connection_degree:
        result["connectionDegree"] = list(triggers.connection_degree)
    if triggers.is_first_message is not None:
        result["isFirstMessage"] = triggers.is_first_message
    if triggers.contains_links is not None:
        result["containsLinks"] = triggers.contains_links
    if triggers.message_length is not None:
        result["messageLength"] = {
            key: value
            for key, value in (("min", triggers.message_length.min), ("max", triggers.message_length.max))
            if value is not None
        }
    return result


def conditions_to_dict(conditions: Conditions) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    restrictions = conditions.time_restrictions
    if restrictions is not None:
        time_dict: Dict[str, Any] = {}
        if restrictions.days_of_week:
            time_dict["daysOfWeek"] = list(restrictions.days_of_week)
        if restrictions.hours_of_day is not None:
            time_dict["hoursOfDay"] = {
                "start": restrictions.hours_of_day.start,
                "end": restrictions.hours_of_day.end,
            }
        if restrictions.timezone:
            time_dict["timezone"] = restrictions.timezone
        result["timeRestrictions"] = time_dict
    if conditions.rate_limiting is not None:
        rate_dict: Dict[str, Any] = {}
        if conditions.rate_limiting.max_responses_per_day is not None:
            rate_dict["maxResponsesPerDay"] = conditions.rate_limiting.max_responses_per_day
        if conditions.rate_limiting.cooldown_hours is not None:
            rate_dict["cooldownHours"] = conditions.rate_limiting.cooldown_hours
        result["rateLimiting"] = rate_dict
    return result


def response_to_dict(response: ResponseConfig) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "type": response.type,
        "maxTokens": response.max_tokens,
        "temperature": response.temperature,
        "delay": response.delay_seconds,
        "followUpActions": [
            {"type": action.type, "delayHours": action.delay_hours, "message": action.message}
            for action in response.follow_up_actions
        ],
    }
    for key, value in (
        ("template", response.template),
        ("aiPrompt", response.ai_prompt),
        ("aiProvider", response.ai_provider),
        ("aiModel", response.ai_model),
    ):
        if value is not None:
            result[key] = value
    return result


def analytics_to_dict(analytics: RuleAnalytics) -> Dict[str, Any]:
    return {
        "totalTriggers": analytics.total_triggers,
        "totalResponses": analytics.total_responses,
        "successRate": analytics.success_rate,
        "lastTriggered": _iso(analytics.last_triggered),
        "lastRespondedAt": _iso(analytics.last_responded_at),
        "responsesToday": analytics.responses_today,
        "responsesTodayDate": analytics.responses_today_date,
        "avgResponseTimeMs": analytics.avg_response_time_ms,
    }


def rule_to_dict(rule: AutoresponderRule) -> Dict[str, Any]:
    """Serialize a rule to its camelCase JSON form (API responses and storage)."""
    return {
        "id": rule.id,
        "ownerId": rule.owner_id,
        "name": rule.name,
        "description": rule.description,
        "isActive": rule.is_active,
        "priority": rule.priority,
        "triggers": triggers_to_dict(rule.triggers),
        "conditions": conditions_to_dict(rule.conditions),
        "response": response_to_dict(rule.response),
        "analytics": analytics_to_dict(rule.analytics),
        "createdAt": _iso(rule.created_at),
        "updatedAt": _iso(rule.updated_at),
    }


def outcome_to_dict(outcome: MatchOutcome) -> Dict[str, Any]:
    """Shape returned by message processing: {shouldRespond, response, rule, reasoning}."""
    result: Dict[str, Any] = {
        "shouldRespond": outcome.should_respond,
        "reasoning": outcome.reasoning,
    }
    if outcome.should_respond:
        result["response"] = outcome.response
        result["rule"] = rule_to_dict(outcome.rule) if outcome.rule else None
    return result


def preview_to_dict(outcome: MatchOutcome) -> Dict[str, Any]:
    """Shape returned by test mode: {matches, response?, reasoning}."""
    result: Dict[str, Any] = {
        "matches": outcome.matched,
        "reasoning": outcome.reasoning,
        "usedFallback": outcome.used_fallback,
    }
    if outcome.response is not None:
        result["response"] = outcome.response
    return result
