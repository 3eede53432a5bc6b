"""Application use cases: one entry point per workflow."""

from gatekeeper.application.use_cases.cross_domain_auth import (
    AuthActionResult,
    CrossDomainAuth,
)

__all__ = ["AuthActionResult", "CrossDomainAuth"]
