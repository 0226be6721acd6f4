"""The ten fixed annotation categories, with display names and colours."""

from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    BUSINESS = "business"
    CUSTOMER_SUPPORT = "customerSupport"
    EVENTS_INVITATIONS = "eventsInvitations"
    FINANCE_BILLS = "financeBills"
    JOB_APPLICATION = "jobApplication"
    NEWSLETTERS = "newsletters"
    PERSONAL = "personal"
    PROMOTIONS = "promotions"
    REMINDERS = "reminders"
    TRAVEL_BOOKINGS = "travelBookings"

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES[self]

    @property
    def color(self) -> str:
        return COLORS[self]

    @property
    def css_suffix(self) -> str:
        """Class suffix used on the annotation node, e.g. ``sbox-label-travelbookings``."""
        return self.value.lower()

    @classmethod
    def parse(cls, value: str | Category | None) -> Category | None:
        """Return the matching category, or None for unknown names."""
        if isinstance(value, Category):
            return value
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


DISPLAY_NAMES: dict[Category, str] = {
    Category.BUSINESS: "Business",
    Category.CUSTOMER_SUPPORT: "Customer Support",
    Category.EVENTS_INVITATIONS: "Events & Invitations",
    Category.FINANCE_BILLS: "Finance & Bills",
    Category.JOB_APPLICATION: "Job Application",
    Category.NEWSLETTERS: "Newsletters",
    Category.PERSONAL: "Personal",
    Category.PROMOTIONS: "Promotions",
    Category.REMINDERS: "Reminders",
    Category.TRAVEL_BOOKINGS: "Travel & Bookings",
}

COLORS: dict[Category, str] = {
    Category.BUSINESS: "#2c3e50",
    Category.CUSTOMER_SUPPORT: "#3498db",
    Category.EVENTS_INVITATIONS: "#e67e22",
    Category.FINANCE_BILLS: "#9b59b6",
    Category.JOB_APPLICATION: "#27ae60",
    Category.NEWSLETTERS: "#34495e",
    Category.PERSONAL: "#96ceb4",
    Category.PROMOTIONS: "#ff6b35",
    Category.REMINDERS: "#e74c3c",
    Category.TRAVEL_BOOKINGS: "#1abc9c",
}

ALL_CATEGORIES: tuple[Category, ...] = tuple(Category)
