"""Gauss-Newton aligners.

- UVDAligner: frame pose against the local map (image + depth residual)
- XYZAligner: relative transform between two local maps (3D-3D residual)
"""

from .base import BaseAligner
from .uvd_aligner import UVDAligner
from .xyz_aligner import XYZAligner

__all__ = [
    "BaseAligner",
    "UVDAligner",
    "XYZAligner",
]
