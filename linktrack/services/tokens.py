"""
Identity generation for tracking links.

Every value comes from the ``secrets`` CSPRNG. Uniqueness is ultimately
enforced by database constraints; callers retry on collision.
"""
import secrets
import string
from datetime import datetime
from typing import NamedTuple, Optional

from linktrack.services.clock import epoch_ms, utcnow

_BASE36 = string.digits + string.ascii_lowercase


class LinkIdentity(NamedTuple):
    tracking_id: str
    token: str
    short_code: str


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return '0'

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return ''.join(reversed(digits))


def generate_token() -> str:
    """128-bit random hex token."""
    return secrets.token_hex(16)


def generate_short_code() -> str:
    """32-bit random code, upper-case hex."""
    return secrets.token_hex(4).upper()


def generate_identity(prefix: str, now: Optional[datetime] = None) -> LinkIdentity:
    """
    Allocate a fresh identity for a tracking link.

    The tracking id has the form ``PREFIX-SHORTCODE-<base36 epoch ms>``.

    Args:
        prefix: Human readable prefix (e.g. ``LINK``)
        now: Creation time as naive UTC; defaults to the current time

    Returns:
        LinkIdentity with tracking id, token and short code
    """
    if not prefix:
        raise ValueError("prefix is required")

    created_ms = epoch_ms(now if now is not None else utcnow())
    short_code = generate_short_code()
    tracking_id = f"{prefix.upper()}-{short_code}-{to_base36(created_ms)}"

    return LinkIdentity(tracking_id=tracking_id, token=generate_token(), short_code=short_code)


def generate_batch_id(now: Optional[datetime] = None) -> str:
    """Identifier shared by links generated in one bulk request."""
    created_ms = epoch_ms(now if now is not None else utcnow())
    return f"BATCH-{to_base36(created_ms).upper()}-{secrets.token_hex(2).upper()}"
