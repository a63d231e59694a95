"""IANA timezone validation and display labels."""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = "America/Los_Angeles"

TIMEZONE_NAMES = {
    "America/Los_Angeles": "Pacific Time",
    "America/Denver": "Mountain Time",
    "America/Chicago": "Central Time",
    "America/New_York": "Eastern Time",
    "America/Phoenix": "Mountain Time (Arizona)",
    "America/Anchorage": "Alaska Time",
    "Pacific/Honolulu": "Hawaii Time",
}

# Substring of the city part -> label, checked in order for America/* zones
_AMERICA_CITY_LABELS = (
    (("Los Angeles", "Vancouver", "Tijuana"), "Pacific Time"),
    (("Denver", "Phoenix"), "Mountain Time"),
    (("Chicago", "Dallas"), "Central Time"),
    (("New York", "Miami", "Toronto"), "Eastern Time"),
)


def is_valid_timezone(name: str | None) -> bool:
    """Check that name is a known IANA zone."""
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(name: str | None, default: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    """Return ZoneInfo for name, or for default when name is empty.

    Raises ZoneInfoNotFoundError for a non-empty unknown zone so callers can
    decide whether to skip the offending record.
    """
    return ZoneInfo(name or default)


def timezone_label(name: str | None) -> str:
    """Human-friendly label, e.g. America/Los_Angeles -> Pacific Time."""
    if not name or not isinstance(name, str):
        return TIMEZONE_NAMES[DEFAULT_TIMEZONE]
    if name in TIMEZONE_NAMES:
        return TIMEZONE_NAMES[name]

    parts = name.split("/")
    if len(parts) >= 2 and parts[0] == "America":
        city = parts[1].replace("_", " ")
        for cities, label in _AMERICA_CITY_LABELS:
            if any(c in city for c in cities):
                return label

    return name.replace("_", " ")
