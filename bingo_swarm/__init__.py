"""
Bingo Swarm: a concurrent load-test client for a real-time bingo backend.

Simulates a crowd of independent players that register, log in, listen
for push events, claim unique cards, mark announced numbers on a
staggered schedule and report wins, while checking the invariants a
healthy backend must keep under load.
"""

from .config import SwarmSettings, get_config
from .metrics import Counter, Metrics
from .participant import VirtualParticipant
from .registry import ClaimRegistry
from .spawner import SpawnController, SwarmReport

__version__ = "1.0.0"

__all__ = [
    "ClaimRegistry",
    "Counter",
    "Metrics",
    "SpawnController",
    "SwarmReport",
    "SwarmSettings",
    "VirtualParticipant",
    "get_config",
]
