import threading
from types import SimpleNamespace

import pytest

from autoresponder.errors import ConflictError, StoreError
from autoresponder.ingest import build_rule
from autoresponder.io_models import RuleAnalytics
from autoresponder.rule_store import InMemoryRuleStore, SupabaseRuleStore, apply_increment

from tests.conftest import WEDNESDAY_10AM


def _rule(rule_id="r1", owner_id="U1", name="Pricing", priority=1):
    return build_rule(
        {
            "id": rule_id,
            "ownerId": owner_id,
            "name": name,
            "priority": priority,
            "triggers": {"keywords": ["pricing"]},
            "response": {"type": "template", "template": "Hi {firstName}"},
            "createdAt": "2026-10-01T09:00:00Z",
            "updatedAt": "2026-10-01T09:00:00Z",
        }
    )


def test_apply_increment_counts_and_averages():
    analytics = RuleAnalytics()
    analytics = apply_increment(analytics, "trigger", WEDNESDAY_10AM, "2026-10-14")
    analytics = apply_increment(analytics, "response", WEDNESDAY_10AM, "2026-10-14", 100.0)
    analytics = apply_increment(analytics, "response", WEDNESDAY_10AM, "2026-10-14", 300.0)
    assert analytics.total_triggers == 1
    assert analytics.total_responses == 2
    assert analytics.responses_today == 2
    assert analytics.last_responded_at == WEDNESDAY_10AM
    assert analytics.avg_response_time_ms == pytest.approx(200.0)

    next_day = apply_increment(analytics, "response", WEDNESDAY_10AM, "2026-10-15")
    assert next_day.responses_today == 1
    assert next_day.responses_today_date == "2026-10-15"
    assert analytics.responses_today == 2


def test_apply_increment_rejects_unknown_kind():
    with pytest.raises(ValueError):
        apply_increment(RuleAnalytics(), "click", WEDNESDAY_10AM, "2026-10-14")


def test_in_memory_store_returns_copies():
    store = InMemoryRuleStore([_rule()])
    fetched = store.get("r1")
    fetched.name = "Mutated"
    assert store.get("r1").name == "Pricing"


def test_in_memory_store_lists_by_owner_and_active():
    inactive = _rule("r2", name="Jobs")
    inactive.is_active = False
    store = InMemoryRuleStore([_rule(), inactive, _rule("r3", owner_id="U2")])
    assert {r.id for r in store.list_by_owner("U1")} == {"r1", "r2"}
    assert [r.id for r in store.list_active("U1")] == ["r1"]


def test_in_memory_store_name_conflict():
    store = InMemoryRuleStore([_rule()])
    with pytest.raises(ConflictError):
        store.create(_rule("r2", name="PRICING"))
    other = _rule("r2", name="Jobs")
    store.create(other)
    other.name = "pricing"
    with pytest.raises(ConflictError):
        store.update(other)


def test_update_missing_rule_returns_none():
    assert InMemoryRuleStore().update(_rule()) is None


def test_concurrent_increments_are_not_lost():
    store = InMemoryRuleStore([_rule()])
    workers, per_worker = 8, 250
    barrier = threading.Barrier(workers)

    def work():
        barrier.wait()
        for _ in range(per_worker):
            store.increment_analytics("r1", "trigger", WEDNESDAY_10AM, "2026-10-14")
            store.increment_analytics("r1", "response", WEDNESDAY_10AM, "2026-10-14")

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    analytics = store.get("r1").analytics
    assert analytics.total_triggers == workers * per_worker
    assert analytics.total_responses == workers * per_worker
    assert analytics.responses_today == workers * per_worker


def test_increment_missing_rule_returns_none():
    assert InMemoryRuleStore().increment_analytics("nope", "trigger", WEDNESDAY_10AM, "2026-10-14") is None


class FakeQuery:
    """Records the PostgREST builder chain and returns canned rows."""

    def __init__(self, client, table):
        self.client = client
        self.calls = [("table", table)]

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return record

    def execute(self):
        self.client.queries.append(self.calls)
        if self.client.error is not None:
            raise self.client.error
        return SimpleNamespace(data=self.client.rows)


class FakeSupabase:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.queries = []

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        query = FakeQuery(self, "rpc")
        query.calls.append(("rpc", name, params))
        return query


def _row():
    return {
        "id": "r1",
        "owner_id": "U1",
        "name": "Pricing",
        "description": None,
        "is_active": True,
        "priority": 5,
        "triggers": {"keywords": ["pricing"]},
        "conditions": {},
        "response": {"type": "template", "template": "Hi {firstName}"},
        "analytics": {"totalTriggers": 2, "totalResponses": 1},
        "created_at": "2026-10-01T09:00:00+00:00",
        "updated_at": "2026-10-01T09:00:00+00:00",
    }


def test_supabase_store_lists_in_priority_order():
    client = FakeSupabase(rows=[_row()])
    rules = SupabaseRuleStore(client=client, table="rules").list_active("U1")

    assert rules[0].priority == 5
    assert rules[0].analytics.total_triggers == 2
    calls = client.queries[0]
    assert ("eq", ("owner_id", "U1"), {}) in calls
    assert ("eq", ("is_active", True), {}) in calls
    assert ("order", ("priority",), {"desc": True}) in calls


def test_supabase_update_never_writes_analytics():
    client = FakeSupabase(rows=[_row()])
    SupabaseRuleStore(client=client).update(_rule())
    update_call = next(call for call in client.queries[0] if call[0] == "update")
    row = update_call[1][0]
    assert "analytics" not in row
    assert "owner_id" not in row
    assert row["priority"] == 1


def test_supabase_increment_uses_rpc():
    client = FakeSupabase(rows=[{"totalTriggers": 3, "totalResponses": 1}])
    analytics = SupabaseRuleStore(client=client).increment_analytics(
        "r1", "trigger", WEDNESDAY_10AM, "2026-10-14"
    )
    assert analytics.total_triggers == 3
    rpc_call = client.queries[0][1]
    assert rpc_call[1] == "increment_autoresponder_analytics"
    assert rpc_call[2]["p_kind"] == "trigger"
    assert rpc_call[2]["p_day"] == "2026-10-14"


def test_supabase_unique_violation_maps_to_conflict():
    error = Exception("duplicate key value violates unique constraint")
    error.code = "23505"
    store = SupabaseRuleStore(client=FakeSupabase(error=error))
    with pytest.raises(ConflictError):
        store.create(_rule())


def test_supabase_failures_map_to_store_error():
    store = SupabaseRuleStore(client=FakeSupabase(error=RuntimeError("connection reset")))
    with pytest.raises(StoreError):
        store.list_active("U1")


def test_reservation_enforces_the_daily_cap():
    store = InMemoryRuleStore([_rule()])
    assert store.reserve_response("r1", "2026-10-14", 2)
    assert store.reserve_response("r1", "2026-10-14", 2)
    assert not store.reserve_response("r1", "2026-10-14", 2)

    store.release_response("r1", "2026-10-14")
    assert store.reserve_response("r1", "2026-10-14", 2)

    assert store.reserve_response("r1", "2026-10-15", 2)
    assert store.get("r1").analytics.responses_today == 1
    assert not store.reserve_response("missing", "2026-10-14", 2)


def test_reserved_response_is_not_counted_twice():
    store = InMemoryRuleStore([_rule()])
    store.reserve_response("r1", "2026-10-14", 3)
    analytics = store.increment_analytics("r1", "response", WEDNESDAY_10AM, "2026-10-14", reserved=True)
    assert analytics.responses_today == 1
    assert analytics.total_responses == 1


def test_concurrent_reservations_never_exceed_the_cap():
    store = InMemoryRuleStore([_rule()])
    workers = 16
    barrier = threading.Barrier(workers)
    granted = []

    def work():
        barrier.wait()
        granted.append(store.reserve_response("r1", "2026-10-14", 5))

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert granted.count(True) == 5
    assert store.get("r1").analytics.responses_today == 5


def test_supabase_reservation_uses_rpc():
    client = FakeSupabase(rows=True)
    assert SupabaseRuleStore(client=client).reserve_response("r1", "2026-10-14", 3)
    rpc_call = client.queries[0][1]
    assert rpc_call[1] == "reserve_autoresponder_response"
    assert rpc_call[2] == {"p_rule_id": "r1", "p_day": "2026-10-14", "p_cap": 3}

    assert not SupabaseRuleStore(client=FakeSupabase(rows=False)).reserve_response("r1", "2026-10-14", 3)
