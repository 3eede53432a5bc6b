"""Application interfaces (ports): store and identity provider protocols.

Define contracts for infrastructure implementations (DIP).
No runtime imports from gatekeeper.infrastructure.
"""

from gatekeeper.application.interfaces.identity import IIdentityProvider
from gatekeeper.application.interfaces.store import (
    Filter,
    IDocumentSnapshot,
    IDocumentStore,
    ITransaction,
    WriteOp,
)

__all__ = [
    "Filter",
    "IDocumentSnapshot",
    "IDocumentStore",
    "IIdentityProvider",
    "ITransaction",
    "WriteOp",
]
