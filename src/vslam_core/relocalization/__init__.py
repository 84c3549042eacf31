"""Relocalization: place recognition and loop closure verification.

Key components:
- PlaceDatabase: Incremental index of landmark descriptors per local map
- Relocalizer: Closure candidate detection, vote-based correspondence
  resolution and point-to-point verification
"""

from .closure import Candidate, Closure, Correspondence, VerificationResult
from .place_database import Match, Matchable, Merge, PlaceDatabase, hamming_distances
from .relocalizer import Relocalizer

__all__ = [
    # Place database
    "PlaceDatabase",
    "Match",
    "Matchable",
    "Merge",
    "hamming_distances",
    # Closures
    "Candidate",
    "Correspondence",
    "Closure",
    "VerificationResult",
    # Relocalizer
    "Relocalizer",
]
