"""Term and date helpers shared by the sync job and the read APIs."""
from datetime import date, datetime, timezone
from typing import List, Optional

from bs4 import BeautifulSoup

# Fixed English month names so formatting does not depend on the process locale
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# Terms open on the first Monday in October
TERM_START_MONTH = 10


def current_term(today: Optional[date] = None) -> str:
    """Return the term in session on ``today``.

    October through December belong to the term named for the current year,
    January through September to the term that opened the previous October.
    """
    today = today or date.today()
    year = today.year if today.month >= TERM_START_MONTH else today.year - 1
    return str(year)


def previous_term(term: str) -> str:
    return str(int(term) - 1)


def available_terms(count: int = 6, today: Optional[date] = None) -> List[str]:
    """Most recent ``count`` terms, newest first"""
    latest = int(current_term(today))
    return [str(year) for year in range(latest, latest - count, -1)]


def format_timestamp(ts: int) -> str:
    """Format an epoch-second timestamp as e.g. 'June 30, 2023' (UTC)"""
    d = datetime.fromtimestamp(int(ts), tz=timezone.utc)
    return f"{MONTH_NAMES[d.month - 1]} {d.day}, {d.year}"


def strip_html(text: Optional[str]) -> str:
    """Remove markup from upstream rich-text fields"""
    if not text:
        return ""
    plain = BeautifulSoup(text, "html.parser").get_text()
    return plain.replace("\xa0", " ").strip()
