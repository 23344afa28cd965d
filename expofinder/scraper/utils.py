import re
from datetime import datetime, UTC
from typing import Optional

from dateutil import parser as dateparse

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
YEAR_FIRST_RE = re.compile(r"^\d{4}\D")

# two fill-in dates that differ in day, month and year
_FILL_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def norm_space(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").strip())

def country_from_address(formatted_address: Optional[str]) -> str:
    # "Leopold De Waelplaats 2, 2000 Antwerpen, Belgium" -> "Belgium"
    if not formatted_address: return ""
    return formatted_address.split(",")[-1].strip()

def to_iso_date(value: Optional[str]) -> Optional[str]:
    """Coerce a model-supplied date to YYYY-MM-DD, or None when it can't be read.

    Only complete dates are accepted: "October 2025" or "2026" give None rather
    than a day filled in from today. Day-first unless the string leads with the year.
    """
    if not value: return None
    value = value.strip()
    if ISO_DATE_RE.match(value):
        return value

    dayfirst = not YEAR_FIRST_RE.match(value)
    try:
        parsed = [dateparse.parse(value, dayfirst=dayfirst, default=d) for d in _FILL_DEFAULTS]
    except (ValueError, OverflowError):
        return None
    if parsed[0].date() != parsed[1].date():
        # some part came from the default, not the text
        return None
    return parsed[0].strftime("%Y-%m-%d")

def utcnow() -> datetime:
    return datetime.now(UTC)

def parse_timestamp(value) -> Optional[datetime]:
    if value is None: return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts
