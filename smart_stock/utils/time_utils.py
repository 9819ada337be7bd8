# time_utils.py
# Description: UTC timestamp helpers shared by the local store and the sync engine.
#
# Imports
from datetime import datetime, timezone
from typing import Optional, Union
#
# Third-Party Imports
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

EPOCH_ISO = "1970-01-01T00:00:00.000000Z"


def utc_now_iso() -> str:
    """
    Current UTC time in ISO 8601 with microsecond precision and a 'Z' suffix.

    Example: "2023-10-27T10:30:00.123456Z"
    """
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec='microseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Union[str, datetime, None]) -> datetime:
    """
    Parses an ISO 8601 timestamp into an aware UTC datetime.

    Accepts the 'Z' suffix, '+00:00' offsets, naive values (assumed UTC) and
    the space-separated form SQLite produces for CURRENT_TIMESTAMP.

    Raises:
        ValueError: If the value is empty or not a recognisable timestamp.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if value is None or not str(value).strip():
            raise ValueError("Timestamp is empty.")
        text = str(value).strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Union[str, datetime, None], default: Optional[str] = None) -> Optional[str]:
    """
    Normalises a timestamp to the canonical stored form (see `utc_now_iso`).

    Stored timestamps share one fixed-width format so SQL range queries on
    `updated_at` order the same way the parsed datetimes do.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    return format_timestamp(parse_timestamp(value))

#
# End of time_utils.py
#######################################################################################################################
