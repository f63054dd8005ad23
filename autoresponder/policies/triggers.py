"""
Deterministic trigger evaluation: a fold over the rule's optional predicates.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

from autoresponder.io_models import DEFAULT_CONNECTION_DEGREE, SenderProfile, Triggers

URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)

Predicate = Callable[[], bool]


def contains_links(text: str) -> bool:
    return bool(URL_PATTERN.search(text or ""))


def _contains_any(value: Optional[str], candidates: List[str]) -> bool:
    """Case-insensitive substring match of any candidate inside value."""
    if not value:
        return False
    haystack = str(value).lower()
    return any(str(candidate).lower() in haystack for candidate in candidates)


def _sender_check(
    profile: Optional[SenderProfile], attribute: str, candidates: List[str]
) -> Predicate:
    # A sender criterion without a profile is unmet.
    return lambda: profile is not None and _contains_any(getattr(profile, attribute), candidates)


def _criteria(
    triggers: Triggers, text: str, profile: Optional[SenderProfile]
) -> List[Tuple[str, Predicate]]:
    """Build (name, predicate) pairs for configured criteria only; absent ones are vacuously true."""
    text = text or ""
    lowered = text.lower()
    criteria: List[Tuple[str, Predicate]] = []

    if triggers.keywords:
        keywords = triggers.keywords
        criteria.append(
            ("keywords", lambda: any(str(k).lower() in lowered for k in keywords))
        )
    if triggers.job_titles:
        criteria.append(("job_titles", _sender_check(profile, "job_title", triggers.job_titles)))
    if triggers.companies:
        criteria.append(("companies", _sender_check(profile, "company", triggers.companies)))
    if triggers.industries:
        criteria.append(("industries", _sender_check(profile, "industry", triggers.industries)))
    if triggers.connection_degree:
        degrees = triggers.connection_degree

        def degree_matches() -> bool:
            if profile is None:
                return False
            degree = profile.connection_degree
            if degree is None:
                degree = DEFAULT_CONNECTION_DEGREE
            return degree in degrees

        criteria.append(("connection_degree", degree_matches))
    if triggers.is_first_message is not None:
        expected_first = triggers.is_first_message

        def first_message_matches() -> bool:
            actual = bool(profile.is_first_message) if profile is not None else False
            return actual == expected_first

        criteria.append(("is_first_message", first_message_matches))
    if triggers.contains_links is not None:
        expected_links = triggers.contains_links
        criteria.append(("contains_links", lambda: contains_links(text) == expected_links))
    if triggers.message_length is not None:
        bounds = triggers.message_length

        def length_matches() -> bool:
            length = len(text)
            if bounds.min is not None and length < bounds.min:
                return False
            if bounds.max is not None and length > bounds.max:
                return False
            return True

        criteria.append(("message_length", length_matches))

    return criteria


def evaluate(triggers: Triggers, text: str, profile: Optional[SenderProfile] = None) -> bool:
    """True when every configured criterion holds. Stops at the first failure."""
    return all(check() for _, check in _criteria(triggers, text, profile))


def explain(
    triggers: Triggers, text: str, profile: Optional[SenderProfile] = None
) -> Dict[str, bool]:
    """Evaluate every configured criterion and report each result by name."""
    return {name: check() for name, check in _criteria(triggers, text, profile)}
