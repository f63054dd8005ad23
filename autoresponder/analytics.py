"""
Analytics recorder: per-rule counters after a trigger and after a response,
plus the owner-level summary shown on the dashboard.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from autoresponder.config import Config
from autoresponder.io_models import AutoresponderRule, RuleAnalytics
from autoresponder.policies.conditions import day_key
from autoresponder.rule_store import RuleStore

logger = logging.getLogger(__name__)


def rule_timezone(rule: AutoresponderRule) -> Optional[str]:
    """Timezone that buckets a rule's daily counter."""
    restrictions = rule.conditions.time_restrictions
    if restrictions is not None and restrictions.timezone:
        return restrictions.timezone
    return Config.TIMEZONE or None


def daily_cap(rule: AutoresponderRule) -> Optional[int]:
    limits = rule.conditions.rate_limiting
    return limits.max_responses_per_day if limits is not None else None


class AnalyticsRecorder:
    def __init__(self, store: RuleStore):
        self.store = store

    def reserve_response(self, rule: AutoresponderRule, now: datetime) -> bool:
        """Claim a slot under the rule's daily cap. Always True for uncapped rules."""
        cap = daily_cap(rule)
        if cap is None:
            return True
        reserved = self.store.reserve_response(rule.id, day_key(now, rule_timezone(rule)), cap)
        if not reserved:
            logger.debug("[Analytics] Daily cap %s already used for rule %s", cap, rule.id)
        return reserved

    def release_response(self, rule: AutoresponderRule, now: datetime) -> None:
        if daily_cap(rule) is None:
            return
        self.store.release_response(rule.id, day_key(now, rule_timezone(rule)))
        logger.debug("[Analytics] Released reserved response slot for rule %s", rule.id)

    def record_trigger(self, rule: AutoresponderRule, now: datetime) -> Optional[RuleAnalytics]:
        analytics = self.store.increment_analytics(
            rule.id, "trigger", now, day_key(now, rule_timezone(rule))
        )
        logger.debug("[Analytics] Trigger recorded for rule %s", rule.id)
        return analytics

    def record_response(
        self, rule: AutoresponderRule, now: datetime, response_time_ms: Optional[float] = None
    ) -> Optional[RuleAnalytics]:
        """Count a sent response. Capped rules already hold today's slot from reserve_response."""
        analytics = self.store.increment_analytics(
            rule.id,
            "response",
            now,
            day_key(now, rule_timezone(rule)),
            response_time_ms=response_time_ms,
            reserved=daily_cap(rule) is not None,
        )
        logger.debug("[Analytics] Response recorded for rule %s", rule.id)
        return analytics


def summarize(rules: List[AutoresponderRule], top: int = 5) -> Dict[str, Any]:
    """Owner-level totals across rules."""
    total_triggers = sum(rule.analytics.total_triggers for rule in rules)
    total_responses = sum(rule.analytics.total_responses for rule in rules)
    ranked = sorted(rules, key=lambda r: (-r.analytics.total_responses, r.name))
    return {
        "totalRules": len(rules),
        "activeRules": sum(1 for rule in rules if rule.is_active),
        "totalTriggers": total_triggers,
        "totalResponses": total_responses,
        "successRate": round(total_responses / total_triggers, 4) if total_triggers else 0.0,
        "topRules": [
            {
                "id": rule.id,
                "name": rule.name,
                "totalTriggers": rule.analytics.total_triggers,
                "totalResponses": rule.analytics.total_responses,
                "successRate": round(rule.analytics.success_rate, 4),
            }
            for rule in ranked[:top]
        ],
    }
