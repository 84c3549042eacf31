"""Map entities shared by the aligners and the relocalizer."""

from .camera import Camera, CameraIntrinsics
from .frame import Frame, FramePoint
from .landmark import Appearance, Landmark
from .local_map import LocalMap, LocalMapClosure
from .world_map import WorldMap

__all__ = [
    # Camera
    "Camera",
    "CameraIntrinsics",
    # Frames
    "Frame",
    "FramePoint",
    # Landmarks
    "Landmark",
    "Appearance",
    # Local maps
    "LocalMap",
    "LocalMapClosure",
    # World map
    "WorldMap",
]
