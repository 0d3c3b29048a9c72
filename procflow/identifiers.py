"""Content-addressed identifiers.

Template ids are a truncated SHA-256 of ``"{name}_{created_at_ms}"``. Two
templates created with the same name in the same millisecond collide; this
is accepted and not checked here.
"""

import hashlib
from datetime import datetime, timezone
from typing import Optional, Union

DEFAULT_ID_LENGTH = 12


def to_epoch_ms(moment: Union[datetime, int, float]) -> int:
    """Milliseconds since the epoch for a datetime (naive means UTC) or a number."""
    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return int(moment.timestamp() * 1000)
    return int(moment)


def content_id(
    name: str,
    created_at: Optional[Union[datetime, int, float]] = None,
    length: int = DEFAULT_ID_LENGTH,
) -> str:
    """Derive a short hex id from a name and a creation time."""
    if length < 1 or length > 64:
        raise ValueError(f"length must be between 1 and 64, got {length}")
    if created_at is None:
        created_at = datetime.now(timezone.utc)
    digest = hashlib.sha256(f"{name}_{to_epoch_ms(created_at)}".encode("utf-8"))
    return digest.hexdigest()[:length]
