import pytest

from autoresponder.errors import ConflictError, NotFoundError, ValidationError
from autoresponder.ingest import rule_to_dict
from autoresponder.io_models import SenderProfile

from tests.conftest import ai_rule_payload, template_rule_payload


def test_create_assigns_identity_and_defaults(engine, clock):
    rule = engine.create_rule("U1", template_rule_payload())
    assert rule.id
    assert rule.owner_id == "U1"
    assert rule.is_active is True
    assert rule.created_at == clock.now()
    assert rule.analytics.total_triggers == 0
    assert rule.response.max_tokens == 150
    assert rule.response.temperature == 0.7


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"name": "  "}, "name"),
        ({"priority": 0}, "priority"),
        ({"priority": 11}, "priority"),
        ({"priority": "high"}, "priority"),
        ({"isActive": "yes"}, "isActive"),
        ({"triggers": {"keywords": [""]}}, "triggers.keywords"),
        ({"triggers": {"connectionDegree": [4]}}, "triggers.connectionDegree"),
        ({"triggers": {"messageLength": {"min": 10, "max": 5}}}, "triggers.messageLength"),
        ({"conditions": {"timeRestrictions": {"daysOfWeek": [7]}}}, "conditions.timeRestrictions.daysOfWeek"),
        (
            {"conditions": {"timeRestrictions": {"hoursOfDay": {"start": 9, "end": 9}}}},
            "conditions.timeRestrictions.hoursOfDay",
        ),
        (
            {"conditions": {"timeRestrictions": {"timezone": "Mars/Olympus"}}},
            "conditions.timeRestrictions.timezone",
        ),
        (
            {"conditions": {"rateLimiting": {"maxResponsesPerDay": 0}}},
            "conditions.rateLimiting.maxResponsesPerDay",
        ),
        ({"conditions": {"rateLimiting": {"cooldownHours": -1}}}, "conditions.rateLimiting.cooldownHours"),
        ({"response": {"type": "template", "template": ""}}, "response.template"),
        ({"response": {"type": "carrier_pigeon"}}, "response.type"),
        ({"response": {"type": "ai_generated"}}, "response.aiPrompt"),
        ({"response": {"type": "ai_generated", "aiPrompt": "x", "aiProvider": "mistral"}}, "response.aiProvider"),
        ({"response": {"type": "template", "template": "x", "maxTokens": 5000}}, "response.maxTokens"),
        ({"response": {"type": "template", "template": "x", "temperature": 3}}, "response.temperature"),
        ({"response": {"type": "template", "template": "x", "delay": -5}}, "response.delay"),
    ],
)
def test_create_rejects_invalid_rules(engine, overrides, field):
    payload = template_rule_payload()
    payload.update(overrides)
    with pytest.raises(ValidationError) as excinfo:
        engine.create_rule("U1", payload)
    assert excinfo.value.field == field


def test_create_requires_owner_and_response(engine):
    with pytest.raises(ValidationError):
        engine.create_rule("", template_rule_payload())
    with pytest.raises(ValidationError):
        engine.create_rule("U1", {"name": "No response"})
    with pytest.raises(ValidationError):
        engine.create_rule("U1", template_rule_payload(triggers={"keywords": "pricing"}))


def test_duplicate_names_conflict_per_owner(engine):
    engine.create_rule("U1", template_rule_payload(name="Pricing"))
    with pytest.raises(ConflictError):
        engine.create_rule("U1", template_rule_payload(name="pricing"))
    engine.create_rule("U2", template_rule_payload(name="Pricing"))


def test_get_missing_rule(engine):
    with pytest.raises(NotFoundError):
        engine.get_rule("missing")


def test_update_merges_mutable_fields(engine, clock):
    rule = engine.create_rule("U1", template_rule_payload())
    engine.process_incoming_message("pricing", SenderProfile(first_name="Sam"), "U1")
    clock.advance(hours=1)

    updated = engine.update_rule(
        rule.id,
        {"priority": 7, "ownerId": "U9", "id": "hijack", "analytics": {"totalTriggers": 0}},
    )

    assert updated.id == rule.id
    assert updated.owner_id == "U1"
    assert updated.priority == 7
    assert updated.name == rule.name
    assert updated.created_at == rule.created_at
    assert updated.updated_at == clock.now()
    assert updated.analytics.total_triggers == 1


def test_update_validates_result(engine):
    rule = engine.create_rule("U1", template_rule_payload())
    with pytest.raises(ValidationError):
        engine.update_rule(rule.id, {"priority": 42})
    assert engine.get_rule(rule.id).priority == 1


def test_update_missing_rule(engine):
    with pytest.raises(NotFoundError):
        engine.update_rule("missing", {"priority": 2})


def test_activate_and_deactivate(engine):
    rule = engine.create_rule("U1", template_rule_payload())
    assert engine.set_active(rule.id, False).is_active is False
    assert not engine.process_incoming_message("pricing", None, "U1").matched
    assert engine.set_active(rule.id, True).is_active is True
    assert engine.process_incoming_message("pricing", None, "U1").matched


def test_delete(engine):
    rule = engine.create_rule("U1", template_rule_payload())
    engine.delete_rule(rule.id)
    with pytest.raises(NotFoundError):
        engine.get_rule(rule.id)
    with pytest.raises(NotFoundError):
        engine.delete_rule(rule.id)


def test_duplicate_creates_inactive_copy(engine):
    rule = engine.create_rule("U1", template_rule_payload(name="Pricing"))
    engine.process_incoming_message("pricing", None, "U1")

    first = engine.duplicate_rule(rule.id)
    second = engine.duplicate_rule(rule.id)

    assert first.name == "Pricing (Copy)"
    assert second.name == "Pricing (Copy 2)"
    assert first.id != rule.id
    assert first.is_active is False
    assert first.analytics.total_triggers == 0
    assert first.triggers.keywords == rule.triggers.keywords


def test_list_filters_sorts_and_paginates(engine, clock):
    engine.create_rule("U1", template_rule_payload(name="Pricing", priority=3))
    clock.advance(minutes=1)
    engine.create_rule("U1", ai_rule_payload(name="Demo requests", keyword="demo", priority=8))
    clock.advance(minutes=1)
    engine.create_rule("U1", template_rule_payload(name="Jobs", keyword="hiring", priority=5, isActive=False))
    engine.create_rule("U2", template_rule_payload(name="Other owner"))

    result = engine.list_rules("U1")
    assert result["total"] == 3
    assert [rule.name for rule in result["data"]] == ["Demo requests", "Jobs", "Pricing"]

    assert [r.name for r in engine.list_rules("U1", is_active=False)["data"]] == ["Jobs"]
    assert [r.name for r in engine.list_rules("U1", response_type="ai_generated")["data"]] == ["Demo requests"]
    assert [r.name for r in engine.list_rules("U1", search="HIRING")["data"]] == ["Jobs"]

    by_name = engine.list_rules("U1", sort_by="name", sort_order="desc", page=2, limit=2)
    assert by_name["total"] == 3
    assert [r.name for r in by_name["data"]] == ["Demo requests"]


def test_list_rejects_bad_arguments(engine):
    with pytest.raises(ValidationError):
        engine.list_rules("U1", sort_by="color")
    with pytest.raises(ValidationError):
        engine.list_rules("U1", sort_order="sideways")
    with pytest.raises(ValidationError):
        engine.list_rules("U1", limit=0)


def test_stats(engine):
    pricing = engine.create_rule("U1", template_rule_payload(name="Pricing", priority=5))
    engine.create_rule("U1", template_rule_payload(name="Jobs", keyword="hiring", isActive=False))
    engine.process_incoming_message("pricing", None, "U1")
    engine.process_incoming_message("pricing again", None, "U1")

    stats = engine.get_stats("U1")
    assert stats["totalRules"] == 2
    assert stats["activeRules"] == 1
    assert stats["totalTriggers"] == 2
    assert stats["totalResponses"] == 2
    assert stats["successRate"] == 1.0
    assert stats["topRules"][0]["id"] == pricing.id


def test_known_timezone_is_accepted(engine):
    rule = engine.create_rule(
        "U1", template_rule_payload(conditions={"timeRestrictions": {"timezone": "Europe/Berlin"}})
    )
    assert rule.conditions.time_restrictions.timezone == "Europe/Berlin"


def test_reply_delay_round_trips(engine):
    assert engine.create_rule("U1", template_rule_payload(name="Instant")).response.delay_seconds == 0

    payload = template_rule_payload()
    payload["response"]["delay"] = 30
    rule = engine.create_rule("U1", payload)
    assert rule_to_dict(rule)["response"]["delay"] == 30

    updated = engine.update_rule(rule.id, {"priority": 2})
    assert updated.response.delay_seconds == 30
    assert engine.duplicate_rule(rule.id).response.delay_seconds == 30
