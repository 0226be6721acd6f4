"""
Deterministic keyword fallback used whenever the classifier cannot answer.

The table is evaluated in a fixed order and the first category with any keyword
present wins. The order is a tie-break policy: on ambiguous text, earlier
categories preempt later ones (e.g. "team meeting invitation" is business,
not eventsInvitations). Personal is the default.
"""

from __future__ import annotations

from collections.abc import Sequence

from sbox.classification.categories import Category
from sbox.classification.models import Classification, ContentRecord
from sbox.observability.confidence import FALLBACK_DEFAULT_CONFIDENCE, FALLBACK_MATCH_CONFIDENCE

FALLBACK_RULES: tuple[tuple[Category, tuple[str, ...]], ...] = (
    (
        Category.BUSINESS,
        ("meeting", "quarterly", "team", "conference", "project", "business", "office"),
    ),
    (
        Category.CUSTOMER_SUPPORT,
        ("support", "help", "assistance", "issue", "problem", "ticket", "customer service"),
    ),
    (
        Category.EVENTS_INVITATIONS,
        ("invitation", "event", "party", "celebration", "rsvp", "wedding", "birthday"),
    ),
    (
        Category.FINANCE_BILLS,
        ("invoice", "bill", "payment", "finance", "account", "statement", "bank"),
    ),
    (
        Category.JOB_APPLICATION,
        ("job", "application", "position", "career", "employment", "interview", "hiring"),
    ),
    (
        Category.NEWSLETTERS,
        ("newsletter", "digest", "weekly", "monthly", "subscription", "mailing list"),
    ),
    (
        Category.PROMOTIONS,
        ("sale", "discount", "offer", "promotion", "deal", "coupon", "special"),
    ),
    (
        Category.REMINDERS,
        ("reminder", "dont forget", "remember", "upcoming", "due", "deadline"),
    ),
    (
        Category.TRAVEL_BOOKINGS,
        ("travel", "booking", "flight", "hotel", "reservation", "trip", "vacation"),
    ),
)

DEFAULT_CATEGORY = Category.PERSONAL


def keywords_for(category: Category) -> Sequence[str]:
    for rule_category, keywords in FALLBACK_RULES:
        if rule_category is category:
            return keywords
    return ()


def fallback_classify(record: ContentRecord) -> Classification:
    """
    Classify by substring match over lower-cased ``subject + " " + excerpt``.

    Side Effects:
        None (pure function)
    """
    text = record.text.lower()

    for category, keywords in FALLBACK_RULES:
        if any(keyword in text for keyword in keywords):
            return Classification(
                category=category, confidence=FALLBACK_MATCH_CONFIDENCE, source="fallback"
            )

    return Classification(
        category=DEFAULT_CATEGORY, confidence=FALLBACK_DEFAULT_CONFIDENCE, source="fallback"
    )
