"""vslam-core - Pose alignment and loop-closure relocalization for visual SLAM."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .geometry import SE3
from .config import (
    AlignerConfig,
    RelocalizerConfig,
    SLAMConfig,
    UVDAlignerConfig,
    WorldMapConfig,
    XYZAlignerConfig,
)
from .log import configure_logging, get_logger
from .map import (
    Appearance,
    Camera,
    CameraIntrinsics,
    Frame,
    FramePoint,
    Landmark,
    LocalMap,
    LocalMapClosure,
    WorldMap,
)
from .aligners import BaseAligner, UVDAligner, XYZAligner
from .relocalization import (
    Closure,
    Correspondence,
    PlaceDatabase,
    Relocalizer,
    VerificationResult,
)
from .slam_system import SLAMFrame, SLAMStats, SLAMSystem

__all__ = [
    "__version__",
    # Geometry
    "SE3",
    # Configuration / logging
    "SLAMConfig",
    "AlignerConfig",
    "UVDAlignerConfig",
    "XYZAlignerConfig",
    "RelocalizerConfig",
    "WorldMapConfig",
    "configure_logging",
    "get_logger",
    # Map
    "Camera",
    "CameraIntrinsics",
    "Frame",
    "FramePoint",
    "Landmark",
    "Appearance",
    "LocalMap",
    "LocalMapClosure",
    "WorldMap",
    # Aligners
    "BaseAligner",
    "UVDAligner",
    "XYZAligner",
    # Relocalization
    "PlaceDatabase",
    "Relocalizer",
    "Closure",
    "Correspondence",
    "VerificationResult",
    # SLAM System
    "SLAMSystem",
    "SLAMFrame",
    "SLAMStats",
]
