"""
Engine orchestrator: routes an incoming message through the owner's active
rules in priority order and returns the first rule that fires.

Per rule: RATE_CHECK -> TIME_CHECK -> TRIGGER_CHECK -> RESPOND | SKIP.
A matched trigger is counted before generation; the response counter only
moves when generation yields text. First match wins.

A rule with a daily cap claims its slot through the store (reserve_response)
once its trigger matches, and gives the slot back when no text is produced.
The rate check above only reads a snapshot and is a fast path.
"""

import copy
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from autoresponder.analytics import AnalyticsRecorder, rule_timezone, summarize
from autoresponder.clock import SystemClock
from autoresponder.errors import NotFoundError, ValidationError
from autoresponder.ingest import (
    build_rule,
    normalize_conditions,
    normalize_response,
    normalize_triggers,
    rule_to_dict,
)
from autoresponder.io_models import (
    AutoresponderRule,
    IncomingMessage,
    MatchOutcome,
    RuleAnalytics,
    SenderProfile,
)
from autoresponder.policies import conditions as condition_gate
from autoresponder.policies import triggers as trigger_evaluator
from autoresponder.response_generator import ResponseGenerator
from autoresponder.rule_store import RuleStore, build_rule_store
from autoresponder.validation import validate_rule

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("name", "description", "isActive", "priority", "triggers", "conditions", "response")
SORTABLE_FIELDS = {
    "name": lambda rule: rule.name.lower(),
    "priority": lambda rule: rule.priority,
    "createdAt": lambda rule: _timestamp(rule.created_at),
    "updatedAt": lambda rule: _timestamp(rule.updated_at),
}


def _timestamp(moment) -> float:
    return moment.timestamp() if moment is not None else 0.0


def rule_order_key(rule: AutoresponderRule):
    """Priority descending; ties go to the older rule, then the lower id."""
    return (-rule.priority, _timestamp(rule.created_at), rule.id)


def order_rules(rules: List[AutoresponderRule]) -> List[AutoresponderRule]:
    return sorted((rule for rule in rules if rule.is_active), key=rule_order_key)


class AutoresponderEngine:
    """Engine API: message processing, rule preview and rule management."""

    def __init__(
        self,
        store: RuleStore,
        generator: Optional[ResponseGenerator] = None,
        clock=None,
    ):
        self.store = store
        self.generator = generator or ResponseGenerator()
        self.clock = clock or SystemClock()
        self.recorder = AnalyticsRecorder(store)

    # ------------------------------------------------------------------ #
    # Message processing
    # ------------------------------------------------------------------ #

    def process(self, message: IncomingMessage) -> MatchOutcome:
        return self.process_incoming_message(
            message.text, message.sender_profile, message.recipient_owner_id
        )

    def process_incoming_message(
        self,
        text: str,
        sender_profile: Optional[SenderProfile],
        owner_id: str,
    ) -> MatchOutcome:
        """
        Pick and run the first rule that fires for this message.

        Store errors propagate to the caller. "No rule matched" is a normal
        outcome with matched=False.
        """
        pipeline_start = time.monotonic()
        now = self.clock.now()
        rules = order_rules(self.store.list_active(owner_id))
        logger.debug("[Engine] Routing message for owner %s across %d active rules", owner_id, len(rules))

        notes: List[str] = []
        for rule in rules:
            history = condition_gate.send_history(rule.analytics, now, rule_timezone(rule))

            denial = condition_gate.rate_denial(rule.conditions, now, history)
            if denial:
                logger.debug("[Engine] Skip rule %s (%s): rate limit, %s", rule.id, rule.name, denial)
                notes.append(f"'{rule.name}' skipped: rate limit, {denial}")
                continue

            denial = condition_gate.time_denial(rule.conditions.time_restrictions, now)
            if denial:
                logger.debug("[Engine] Skip rule %s (%s): %s", rule.id, rule.name, denial)
                notes.append(f"'{rule.name}' skipped: {denial}")
                continue

            if not trigger_evaluator.evaluate(rule.triggers, text, sender_profile):
                notes.append(f"'{rule.name}' did not match")
                continue

            if not self.recorder.reserve_response(rule, now):
                logger.debug("[Engine] Skip rule %s (%s): daily cap taken by a concurrent message", rule.id, rule.name)
                notes.append(f"'{rule.name}' skipped: rate limit, daily cap reached")
                continue

            try:
                self.recorder.record_trigger(rule, now)
            except Exception:
                self.recorder.release_response(rule, now)
                raise

            try:
                generated = self.generator.resolve(rule.response, text, sender_profile, now)
            except Exception:
                self.recorder.release_response(rule, now)
                logger.exception("[Engine] Response generation raised for rule %s - trying next rule", rule.id)
                notes.append(f"'{rule.name}' matched but response generation failed")
                continue

            if not generated.text:
                self.recorder.release_response(rule, now)
                logger.warning(
                    "[Engine] Rule %s (%s) matched but produced no response text - check its template",
                    rule.id,
                    rule.name,
                )
                notes.append(f"'{rule.name}' matched but produced no response")
                continue

            analytics = self.recorder.record_response(rule, now, generated.elapsed_ms)
            if analytics is not None:
                rule.analytics = analytics

            elapsed = (time.monotonic() - pipeline_start) * 1000
            logger.info(
                "[Engine] Rule %s (%s) fired for owner %s in %.0fms%s",
                rule.id,
                rule.name,
                owner_id,
                elapsed,
                " (fallback template)" if generated.used_fallback else "",
            )
            notes.append(f"'{rule.name}' (priority {rule.priority}) matched and responded")
            return MatchOutcome(
                matched=True,
                response=generated.text,
                rule=rule,
                reasoning="; ".join(notes),
                used_fallback=generated.used_fallback,
            )

        if not rules:
            reasoning = "No active autoresponders for this account"
        else:
            reasoning = "No rule fired: " + "; ".join(notes)
        return MatchOutcome(matched=False, reasoning=reasoning)

    def test_rule(
        self,
        rule_id: str,
        text: str,
        sender_profile: Optional[SenderProfile] = None,
    ) -> MatchOutcome:
        """
        Preview a single rule against a hypothetical message.

        Uses the same trigger evaluator and response generator as message
        processing but never records analytics and ignores rate limits.
        """
        rule = self.get_rule(rule_id)
        now = self.clock.now()

        criteria = trigger_evaluator.explain(rule.triggers, text, sender_profile)
        matches = trigger_evaluator.evaluate(rule.triggers, text, sender_profile)

        reasons: List[str] = []
        if not criteria:
            reasons.append("No trigger criteria configured - every message matches")
        else:
            passed = [name for name, ok in criteria.items() if ok]
            failed = [name for name, ok in criteria.items() if not ok]
            if passed:
                reasons.append("Criteria met: " + ", ".join(passed))
            if failed:
                reasons.append("Criteria not met: " + ", ".join(failed))
        if not rule.is_active:
            reasons.append("Rule is inactive and would not run in production")

        history = condition_gate.send_history(rule.analytics, now, rule_timezone(rule))
        gate_note = condition_gate.explain(rule.conditions, now, history)
        if gate_note:
            reasons.append(f"Conditions would currently skip this rule ({gate_note})")

        response_text = None
        used_fallback = False
        if matches:
            try:
                generated = self.generator.resolve(rule.response, text, sender_profile, now)
            except Exception:
                logger.exception("[Engine] Response generation raised while testing rule %s", rule.id)
                reasons.append("Response generation failed")
            else:
                response_text = generated.text or None
                used_fallback = generated.used_fallback
                if used_fallback:
                    reasons.append("AI generation failed - fallback template used")
                if not response_text:
                    reasons.append("Response template rendered empty text")

        return MatchOutcome(
            matched=matches,
            response=response_text,
            rule=rule,
            reasoning=". ".join(reasons),
            used_fallback=used_fallback,
        )

    # ------------------------------------------------------------------ #
    # Rule management
    # ------------------------------------------------------------------ #

    def create_rule(self, owner_id: str, payload: Dict[str, Any]) -> AutoresponderRule:
        if not owner_id:
            raise ValidationError("'ownerId' is required", field="ownerId")
        if not isinstance(payload, dict):
            raise ValidationError("Rule payload must be an object")
        if payload.get("response") is None:
            raise ValidationError("'response' is required", field="response")
        now = self.clock.now()
        rule = AutoresponderRule(
            id=uuid.uuid4().hex,
            owner_id=str(owner_id),
            name=payload.get("name"),
            description=payload.get("description"),
            is_active=payload.get("isActive", True),
            priority=payload.get("priority", 1),
            triggers=normalize_triggers(payload.get("triggers")),
            conditions=normalize_conditions(payload.get("conditions")),
            response=normalize_response(payload.get("response")),
            analytics=RuleAnalytics(),
            created_at=now,
            updated_at=now,
        )
        validate_rule(rule)
        created = self.store.create(rule)
        logger.info("[Engine] Created rule %s (%s) for owner %s", created.id, created.name, owner_id)
        return created

    def get_rule(self, rule_id: str) -> AutoresponderRule:
        rule = self.store.get(rule_id)
        if rule is None:
            raise NotFoundError(rule_id)
        return rule

    def update_rule(self, rule_id: str, payload: Dict[str, Any]) -> AutoresponderRule:
        """Shallow update of mutable fields; id, ownerId, createdAt and analytics never change."""
        if not isinstance(payload, dict):
            raise ValidationError("Rule payload must be an object")
        existing = self.get_rule(rule_id)
        merged = rule_to_dict(existing)
        for key in MUTABLE_FIELDS:
            if key in payload:
                merged[key] = payload[key]
        if merged.get("response") is None:
            raise ValidationError("'response' is required", field="response")
        rule = build_rule(merged)
        rule.analytics = existing.analytics
        rule.updated_at = self.clock.now()
        validate_rule(rule)
        return self._save(rule)

    def set_active(self, rule_id: str, is_active: bool) -> AutoresponderRule:
        rule = self.get_rule(rule_id)
        rule.is_active = bool(is_active)
        rule.updated_at = self.clock.now()
        return self._save(rule)

    def delete_rule(self, rule_id: str) -> None:
        if not self.store.delete(rule_id):
            raise NotFoundError(rule_id)
        logger.info("[Engine] Deleted rule %s", rule_id)

    def duplicate_rule(self, rule_id: str) -> AutoresponderRule:
        """Copy a rule as an inactive draft with fresh analytics."""
        original = self.get_rule(rule_id)
        taken = {rule.name.strip().lower() for rule in self.store.list_by_owner(original.owner_id)}
        name = f"{original.name} (Copy)"
        counter = 2
        while name.lower() in taken:
            name = f"{original.name} (Copy {counter})"
            counter += 1
        now = self.clock.now()
        duplicate = copy.deepcopy(original)
        duplicate.id = uuid.uuid4().hex
        duplicate.name = name
        duplicate.is_active = False
        duplicate.analytics = RuleAnalytics()
        duplicate.created_at = now
        duplicate.updated_at = now
        return self.store.create(duplicate)

    def list_rules(
        self,
        owner_id: str,
        *,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        response_type: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        if sort_by is not None and sort_by not in SORTABLE_FIELDS:
            raise ValidationError(
                f"'sortBy' must be one of {', '.join(SORTABLE_FIELDS)}", field="sortBy"
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError("'sortOrder' must be 'asc' or 'desc'", field="sortOrder")
        if page < 1:
            raise ValidationError("'page' must be >= 1", field="page")
        if not 1 <= limit <= 100:
            raise ValidationError("'limit' must be between 1 and 100", field="limit")

        rules = self.store.list_by_owner(owner_id)
        if search:
            needle = search.lower()
            rules = [
                rule for rule in rules
                if needle in rule.name.lower()
                or needle in (rule.description or "").lower()
                or any(needle in keyword.lower() for keyword in rule.triggers.keywords)
            ]
        if is_active is not None:
            rules = [rule for rule in rules if rule.is_active == is_active]
        if response_type:
            rules = [rule for rule in rules if rule.response.type == response_type]

        if sort_by:
            rules = sorted(rules, key=SORTABLE_FIELDS[sort_by], reverse=sort_order == "desc")
        else:
            rules = sorted(rules, key=rule_order_key)

        start = (page - 1) * limit
        return {
            "data": rules[start:start + limit],
            "total": len(rules),
            "page": page,
            "limit": limit,
        }

    def get_stats(self, owner_id: str) -> Dict[str, Any]:
        return summarize(self.store.list_by_owner(owner_id))

    def _save(self, rule: AutoresponderRule) -> AutoresponderRule:
        saved = self.store.update(rule)
        if saved is None:
            raise NotFoundError(rule.id)
        return saved


def build_engine() -> AutoresponderEngine:
    """Engine wired from Config: Supabase store when configured, default providers."""
    return AutoresponderEngine(store=build_rule_store())
