from autoresponder.io_models import LengthRange, SenderProfile, Triggers
from autoresponder.policies import triggers as trigger_evaluator


def test_empty_triggers_match_any_message():
    assert trigger_evaluator.evaluate(Triggers(), "anything at all")
    assert trigger_evaluator.evaluate(Triggers(), "")
    assert trigger_evaluator.explain(Triggers(), "hello") == {}


def test_keywords_are_case_insensitive_substrings():
    triggers = Triggers(keywords=["pricing", "demo"])
    assert trigger_evaluator.evaluate(triggers, "What's your PRICING like?")
    assert trigger_evaluator.evaluate(triggers, "can I get a demonstration")
    assert not trigger_evaluator.evaluate(triggers, "hello there")


def test_sender_criteria_need_a_profile():
    triggers = Triggers(job_titles=["CTO"])
    assert not trigger_evaluator.evaluate(triggers, "hi", None)
    assert not trigger_evaluator.evaluate(triggers, "hi", SenderProfile(first_name="Sam"))
    assert trigger_evaluator.evaluate(triggers, "hi", SenderProfile(job_title="Co-founder & cto"))


def test_companies_and_industries():
    profile = SenderProfile(company="Acme Robotics", industry="Manufacturing")
    assert trigger_evaluator.evaluate(Triggers(companies=["acme"]), "hi", profile)
    assert not trigger_evaluator.evaluate(Triggers(companies=["globex"]), "hi", profile)
    assert trigger_evaluator.evaluate(Triggers(industries=["manufact"]), "hi", profile)


def test_connection_degree_defaults_to_third():
    triggers = Triggers(connection_degree=[3])
    assert trigger_evaluator.evaluate(triggers, "hi", SenderProfile(first_name="Sam"))
    assert not trigger_evaluator.evaluate(triggers, "hi", SenderProfile(connection_degree=1))
    assert not trigger_evaluator.evaluate(triggers, "hi", None)


def test_first_message_flag():
    first_only = Triggers(is_first_message=True)
    assert trigger_evaluator.evaluate(first_only, "hi", SenderProfile(is_first_message=True))
    assert not trigger_evaluator.evaluate(first_only, "hi", SenderProfile(is_first_message=False))
    assert not trigger_evaluator.evaluate(first_only, "hi", None)

    follow_ups_only = Triggers(is_first_message=False)
    assert trigger_evaluator.evaluate(follow_ups_only, "hi", SenderProfile())


def test_contains_links():
    assert trigger_evaluator.contains_links("see https://example.com/x")
    assert trigger_evaluator.contains_links("HTTP://EXAMPLE.COM")
    assert not trigger_evaluator.contains_links("example.com without scheme")

    assert trigger_evaluator.evaluate(Triggers(contains_links=True), "read http://a.io")
    assert not trigger_evaluator.evaluate(Triggers(contains_links=True), "no link")
    assert trigger_evaluator.evaluate(Triggers(contains_links=False), "no link")


def test_message_length_bounds_are_inclusive():
    triggers = Triggers(message_length=LengthRange(min=3, max=5))
    assert not trigger_evaluator.evaluate(triggers, "ab")
    assert trigger_evaluator.evaluate(triggers, "abc")
    assert trigger_evaluator.evaluate(triggers, "abcde")
    assert not trigger_evaluator.evaluate(triggers, "abcdef")
    assert trigger_evaluator.evaluate(Triggers(message_length=LengthRange(min=2)), "a long message")


def test_all_configured_criteria_must_hold():
    triggers = Triggers(keywords=["pricing"], job_titles=["CTO"])
    cto = SenderProfile(job_title="CTO")
    assert trigger_evaluator.evaluate(triggers, "pricing?", cto)
    assert not trigger_evaluator.evaluate(triggers, "pricing?", SenderProfile(job_title="Intern"))
    assert trigger_evaluator.explain(triggers, "hello", cto) == {"keywords": False, "job_titles": True}
