"""ID and value generators (CUID for records, random hex for secrets)."""

import secrets

from cuid2 import cuid_wrapper

cuid_generator = cuid_wrapper()


def generate_cuid() -> str:
    """Generate a collision-resistant unique identifier (CUID2).

    Returns:
        A new CUID string.
    """
    result = cuid_generator()
    if not isinstance(result, str):
        raise TypeError(
            f"Expected str from cuid_generator, got {type(result).__name__}"
        )
    return result


def random_hex(num_bytes: int) -> str:
    """Return num_bytes of CSPRNG output as lowercase hex."""
    return secrets.token_hex(num_bytes)
