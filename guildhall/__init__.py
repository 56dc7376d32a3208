"""Guildhall - team governance for gaming communities.

Owns who is on a team, in which role, who asked to join, who was invited,
and who holds the keys.
"""

__version__ = "0.1.0"

from guildhall.config import GuildhallConfig
from guildhall.governance import (
    MembershipService,
    TeamRole,
    Team,
    TeamEvent,
)

__all__ = [
    "__version__",
    "GuildhallConfig",
    "MembershipService",
    "TeamRole",
    "Team",
    "TeamEvent",
]
