"""Process-wide logging setup.

Log lines go to stdout for the serverless runtime to collect. Credentials
that slip into a message (session handles, bearer tokens) are masked by
RedactCredentialsFilter before any handler formats them.
"""

import logging
import re
import sys

from gatekeeper.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_CREDENTIAL_PATTERNS = (
    re.compile(r"sess_[0-9a-f]+(?:\.[0-9a-f]+)*"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+"),
)


def redact(text: str) -> str:
    """Mask session handles and bearer tokens in a log message."""
    text = _CREDENTIAL_PATTERNS[0].sub("sess_[redacted]", text)
    return _CREDENTIAL_PATTERNS[1].sub(r"\1[redacted]", text)


class RedactCredentialsFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg, record.args = cleaned, None
        return True


def setup_logging() -> None:
    """Configure the root logger.

    DEBUG when settings.debug is set, INFO otherwise. httpx is held at
    WARNING because it logs Firestore document paths on every request.
    """
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RedactCredentialsFilter())
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=[handler],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
