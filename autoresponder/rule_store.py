"""
Rule store implementations: in-memory (tests, local development) and
Supabase-backed (production).

Every store guarantees that increment_analytics and reserve_response are
atomic per rule, since concurrent message-processing calls may match the
same rule. reserve_response is the only place the daily cap is enforced
under concurrency.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from autoresponder.config import Config
from autoresponder.errors import ConflictError, StoreError
from autoresponder.ingest import (
    build_rule,
    conditions_to_dict,
    normalize_analytics,
    response_to_dict,
    rule_to_dict,
    triggers_to_dict,
)
from autoresponder.io_models import AnalyticsKind, AutoresponderRule, RuleAnalytics

logger = logging.getLogger(__name__)


def apply_increment(
    analytics: RuleAnalytics,
    kind: AnalyticsKind,
    at: datetime,
    day: str,
    response_time_ms: Optional[float] = None,
    reserved: bool = False,
) -> RuleAnalytics:
    """
    Return a new analytics block with one trigger or one response counted.

    A reserved response was already added to today's counter by
    apply_reservation, so only the totals move.
    """
    updated = copy.copy(analytics)
    if kind == "trigger":
        updated.total_triggers += 1
        updated.last_triggered = at
    elif kind == "response":
        updated.total_responses += 1
        updated.last_responded_at = at
        if not reserved:
            if updated.responses_today_date == day:
                updated.responses_today += 1
            else:
                updated.responses_today = 1
                updated.responses_today_date = day
        if response_time_ms is not None:
            previous = updated.avg_response_time_ms or 0.0
            count = updated.total_responses
            updated.avg_response_time_ms = previous + (response_time_ms - previous) / count
    else:
        raise ValueError(f"Unknown analytics kind: {kind}")
    return updated


def apply_reservation(analytics: RuleAnalytics, day: str, cap: int) -> Optional[RuleAnalytics]:
    """Claim one of today's `cap` response slots; None when the cap is already reached."""
    used = analytics.responses_today if analytics.responses_today_date == day else 0
    if used >= cap:
        return None
    updated = copy.copy(analytics)
    updated.responses_today = used + 1
    updated.responses_today_date = day
    return updated


def apply_release(analytics: RuleAnalytics, day: str) -> RuleAnalytics:
    """Give back a slot claimed by apply_reservation that produced no response."""
    updated = copy.copy(analytics)
    if updated.responses_today_date == day and updated.responses_today > 0:
        updated.responses_today -= 1
    return updated


class RuleStore:
    """Keyed record store for autoresponder rules."""

    def list_active(self, owner_id: str) -> List[AutoresponderRule]:
        raise NotImplementedError

    def list_by_owner(self, owner_id: str) -> List[AutoresponderRule]:
        raise NotImplementedError

    def get(self, rule_id: str) -> Optional[AutoresponderRule]:
        raise NotImplementedError

    def create(self, rule: AutoresponderRule) -> AutoresponderRule:
        raise NotImplementedError

    def update(self, rule: AutoresponderRule) -> Optional[AutoresponderRule]:
        raise NotImplementedError

    def delete(self, rule_id: str) -> bool:
        raise NotImplementedError

    def increment_analytics(
        self,
        rule_id: str,
        kind: AnalyticsKind,
        at: datetime,
        day: str,
        response_time_ms: Optional[float] = None,
        reserved: bool = False,
    ) -> Optional[RuleAnalytics]:
        raise NotImplementedError

    def reserve_response(self, rule_id: str, day: str, cap: int) -> bool:
        """Atomically check the daily cap and claim a slot. False when the cap is reached."""
        raise NotImplementedError

    def release_response(self, rule_id: str, day: str) -> None:
        raise NotImplementedError


class InMemoryRuleStore(RuleStore):
    """Dict-backed store. Returns copies so callers never mutate stored state."""

    def __init__(self, rules: Optional[List[AutoresponderRule]] = None):
        self._rules: Dict[str, AutoresponderRule] = {}
        self._guard = threading.Lock()
        self._rule_locks: Dict[str, threading.Lock] = {}
        for rule in rules or []:
            self.create(rule)

    def _lock_for(self, rule_id: str) -> threading.Lock:
        with self._guard:
            return self._rule_locks.setdefault(rule_id, threading.Lock())

    def _name_taken(self, rule: AutoresponderRule) -> bool:
        name = rule.name.strip().lower()
        return any(
            other.id != rule.id and other.owner_id == rule.owner_id
            and other.name.strip().lower() == name
            for other in self._rules.values()
        )

    def _owned(self, owner_id: str) -> List[AutoresponderRule]:
        with self._guard:
            return [copy.deepcopy(r) for r in self._rules.values() if r.owner_id == owner_id]

    def list_active(self, owner_id):
        return [rule for rule in self._owned(owner_id) if rule.is_active]

    def list_by_owner(self, owner_id):
        return self._owned(owner_id)

    def get(self, rule_id):
        with self._guard:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule is not None else None

    def create(self, rule):
        with self._guard:
            if rule.id in self._rules:
                raise ConflictError(f"Autoresponder id already exists: {rule.id}")
            if self._name_taken(rule):
                raise ConflictError(f"An autoresponder named '{rule.name}' already exists")
            self._rules[rule.id] = copy.deepcopy(rule)
        return copy.deepcopy(rule)

    def update(self, rule):
        with self._lock_for(rule.id):
            with self._guard:
                existing = self._rules.get(rule.id)
                if existing is None:
                    return None
                if self._name_taken(rule):
                    raise ConflictError(f"An autoresponder named '{rule.name}' already exists")
                stored = copy.deepcopy(rule)
                # Analytics belong to increment_analytics; an update never rewinds them.
                stored.analytics = existing.analytics
                self._rules[rule.id] = stored
                return copy.deepcopy(stored)

    def delete(self, rule_id):
        with self._guard:
            removed = self._rules.pop(rule_id, None)
            self._rule_locks.pop(rule_id, None)
        return removed is not None

    def increment_analytics(self, rule_id, kind, at, day, response_time_ms=None, reserved=False):
        with self._lock_for(rule_id):
            with self._guard:
                rule = self._rules.get(rule_id)
                if rule is None:
                    return None
                rule.analytics = apply_increment(
                    rule.analytics, kind, at, day, response_time_ms, reserved=reserved
                )
                return copy.copy(rule.analytics)

    def reserve_response(self, rule_id, day, cap):
        with self._lock_for(rule_id):
            with self._guard:
                rule = self._rules.get(rule_id)
                if rule is None:
                    return False
                reserved = apply_reservation(rule.analytics, day, cap)
                if reserved is None:
                    return False
                rule.analytics = reserved
                return True

    def release_response(self, rule_id, day):
        with self._lock_for(rule_id):
            with self._guard:
                rule = self._rules.get(rule_id)
                if rule is not None:
                    rule.analytics = apply_release(rule.analytics, day)


_ROW_COLUMNS = (
    "id, owner_id, name, description, is_active, priority, triggers, conditions, "
    "response, analytics, created_at, updated_at"
)


def _rule_to_row(rule: AutoresponderRule) -> Dict[str, Any]:
    data = rule_to_dict(rule)
    return {
        "id": rule.id,
        "owner_id": rule.owner_id,
        "name": rule.name,
        "description": rule.description,
        "is_active": rule.is_active,
        "priority": rule.priority,
        "triggers": triggers_to_dict(rule.triggers),
        "conditions": conditions_to_dict(rule.conditions),
        "response": response_to_dict(rule.response),
        "analytics": data["analytics"],
        "created_at": data["createdAt"],
        "updated_at": data["updatedAt"],
    }


def _row_to_rule(row: Dict[str, Any]) -> AutoresponderRule:
    return build_rule(
        {
            "id": row.get("id"),
            "ownerId": row.get("owner_id"),
            "name": row.get("name"),
            "description": row.get("description"),
            "isActive": row.get("is_active", True),
            "priority": row.get("priority", 1),
            "triggers": row.get("triggers"),
            "conditions": row.get("conditions"),
            "response": row.get("response"),
            "analytics": row.get("analytics"),
            "createdAt": row.get("created_at"),
            "updatedAt": row.get("updated_at"),
        }
    )


def _is_unique_violation(error: Exception) -> bool:
    return str(getattr(error, "code", "")) == "23505"


class SupabaseRuleStore(RuleStore):
    """
    Supabase table store. Analytics increments go through the
    increment_autoresponder_analytics Postgres function so each one is a
    single atomic UPDATE. Daily-cap reservations use a conditional UPDATE
    in reserve_autoresponder_response (see supabase/autoresponder_rules.sql).
    """

    def __init__(self, client: Optional[Client] = None, table: Optional[str] = None):
        self._client = client
        self.table = table or Config.RULES_TABLE

    def _get_supabase(self) -> Client:
        """Create or reuse a Supabase client."""
        if self._client is None:
            if not Config.SUPABASE_URL or not Config.SUPABASE_SERVICE_KEY:
                raise StoreError(
                    "Supabase configuration missing. Set SUPABASE_URL and SUPABASE_SERVICE_KEY."
                )
            try:
                self._client = create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_KEY)
            except Exception as e:
                raise StoreError(f"Failed to create Supabase client: {e}") from e
        return self._client

    def _execute(self, action: str, build):
        try:
            return build(self._get_supabase()).execute()
        except StoreError:
            raise
        except Exception as e:
            if _is_unique_violation(e):
                raise ConflictError(f"An autoresponder with this name already exists ({action})") from e
            logger.error("[Store] Supabase %s failed: %s", action, e)
            raise StoreError(f"Rule store {action} failed: {e}") from e

    def _select(self, owner_id: str, active_only: bool) -> List[AutoresponderRule]:
        def build(client):
            query = client.table(self.table).select(_ROW_COLUMNS).eq("owner_id", owner_id)
            if active_only:
                query = query.eq("is_active", True)
            return query.order("priority", desc=True).order("created_at").order("id")

        response = self._execute("list", build)
        return [_row_to_rule(row) for row in response.data or []]

    def list_active(self, owner_id):
        return self._select(owner_id, active_only=True)

    def list_by_owner(self, owner_id):
        return self._select(owner_id, active_only=False)

    def get(self, rule_id):
        response = self._execute(
            "get",
            lambda client: client.table(self.table).select(_ROW_COLUMNS).eq("id", rule_id).limit(1),
        )
        rows = response.data or []
        return _row_to_rule(rows[0]) if rows else None

    def create(self, rule):
        row = _rule_to_row(rule)
        response = self._execute("insert", lambda client: client.table(self.table).insert(row))
        if not response.data:
            raise StoreError("Failed to insert autoresponder rule.")
        return _row_to_rule(response.data[0])

    def update(self, rule):
        row = _rule_to_row(rule)
        for column in ("id", "owner_id", "created_at", "analytics"):
            row.pop(column)
        response = self._execute(
            "update", lambda client: client.table(self.table).update(row).eq("id", rule.id)
        )
        rows = response.data or []
        return _row_to_rule(rows[0]) if rows else None

    def delete(self, rule_id):
        response = self._execute(
            "delete", lambda client: client.table(self.table).delete().eq("id", rule_id)
        )
        return bool(response.data)

    def increment_analytics(self, rule_id, kind, at, day, response_time_ms=None, reserved=False):
        params = {
            "p_rule_id": rule_id,
            "p_kind": kind,
            "p_at": at.isoformat(),
            "p_day": day,
            "p_response_time_ms": response_time_ms,
            "p_reserved": reserved,
        }
        response = self._execute(
            "increment", lambda client: client.rpc("increment_autoresponder_analytics", params)
        )
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return normalize_analytics(data)

    def reserve_response(self, rule_id, day, cap):
        params = {"p_rule_id": rule_id, "p_day": day, "p_cap": cap}
        response = self._execute(
            "reserve", lambda client: client.rpc("reserve_autoresponder_response", params)
        )
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else False
        return data is True

    def release_response(self, rule_id, day):
        params = {"p_rule_id": rule_id, "p_day": day}
        self._execute(
            "release", lambda client: client.rpc("release_autoresponder_response", params)
        )


def build_rule_store() -> RuleStore:
    """Supabase when configured, otherwise an in-memory store."""
    if Config.SUPABASE_URL and Config.SUPABASE_SERVICE_KEY:
        return SupabaseRuleStore()
    logger.warning("[Store] Supabase not configured - using in-memory rule store (data is not persisted)")
    return InMemoryRuleStore()
