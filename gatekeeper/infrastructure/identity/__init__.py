"""Identity provider adapters."""

from gatekeeper.infrastructure.identity.firebase_identity import FirebaseIdentityProvider

__all__ = ["FirebaseIdentityProvider"]
