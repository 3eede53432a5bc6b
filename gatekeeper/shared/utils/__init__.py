"""Shared utilities: datetime, generators, hashing."""

from gatekeeper.shared.utils.datetime import (
    Clock,
    ensure_utc,
    from_timestamp_ms_utc,
    from_timestamp_utc,
    to_epoch_ms,
    utc_now,
)
from gatekeeper.shared.utils.generators import generate_cuid, random_hex
from gatekeeper.shared.utils.hashing import (
    constant_time_equals,
    hmac_sha256_hex,
    sha256_hex,
)

__all__ = [
    "Clock",
    "constant_time_equals",
    "ensure_utc",
    "from_timestamp_ms_utc",
    "from_timestamp_utc",
    "generate_cuid",
    "hmac_sha256_hex",
    "random_hex",
    "sha256_hex",
    "to_epoch_ms",
    "utc_now",
]
