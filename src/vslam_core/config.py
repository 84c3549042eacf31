"""Configuration for the alignment and relocalization components.

Each component takes its own dataclass. ``SLAMConfig`` groups them and can
be loaded from a YAML file with one section per component:

    log_level: info
    uvd_aligner:
      maximum_number_of_iterations: 50
    relocalizer:
      minimum_interspace_queries: 10
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


@dataclass
class AlignerConfig:
    """Settings shared by all Gauss-Newton aligners."""

    maximum_number_of_iterations: int = 100
    error_delta_for_convergence: float = 1e-5
    maximum_error_kernel: float = 9.0  # Chi-square outlier threshold
    damping: float = 1.0
    minimum_number_of_inliers: int = 20
    minimum_inlier_ratio: float = 0.5


@dataclass
class UVDAlignerConfig(AlignerConfig):
    """Settings for frame-to-map alignment in image + depth space."""

    maximum_depth_near_meters: float = 5.0  # Translation is observable below this
    maximum_depth_far_meters: float = 20.0  # Points beyond this are ignored
    weight_framepoint: float = 1e-3  # Weight of points without a validated landmark
    weight_depth: float = 10.0  # Extra weight of the depth residual


@dataclass
class XYZAlignerConfig(AlignerConfig):
    """Settings for point-to-point closure alignment."""

    maximum_error_kernel: float = 0.5
    minimum_number_of_inliers: int = 5


@dataclass
class RelocalizerConfig:
    """Settings for place recognition and closure candidate generation."""

    minimum_interspace_queries: int = 5  # Local maps indexed before querying
    minimum_matching_ratio: float = 0.1
    minimum_number_of_matched_landmarks: int = 5
    minimum_matches_per_correspondence: int = 0  # Votes must exceed this
    maximum_descriptor_distance: int = 25  # Hamming distance, exclusive
    merge_distance: int | None = None  # Enables descriptor merging when set


@dataclass
class WorldMapConfig:
    """Thresholds that trigger the creation of a new local map."""

    minimum_distance_traveled_for_local_map: float = 0.5  # meters
    minimum_degrees_rotated_for_local_map: float = 0.5  # degrees
    minimum_number_of_frames_for_local_map: int = 4


@dataclass
class SLAMConfig:
    """Configuration of the complete estimation core."""

    uvd_aligner: UVDAlignerConfig = field(default_factory=UVDAlignerConfig)
    xyz_aligner: XYZAlignerConfig = field(default_factory=XYZAlignerConfig)
    relocalizer: RelocalizerConfig = field(default_factory=RelocalizerConfig)
    world_map: WorldMapConfig = field(default_factory=WorldMapConfig)
    log_level: str = "info"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SLAMConfig:
        """Build a configuration from nested dictionaries.

        Args:
            data: Mapping of section name to option values

        Returns:
            SLAMConfig with defaults for every missing option

        Raises:
            ValueError: If a section or option is unknown
        """
        sections = {
            "uvd_aligner": UVDAlignerConfig,
            "xyz_aligner": XYZAlignerConfig,
            "relocalizer": RelocalizerConfig,
            "world_map": WorldMapConfig,
        }
        kwargs: dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key == "log_level":
                kwargs[key] = str(value)
            elif key in sections:
                kwargs[key] = _build_section(sections[key], key, value or {})
            else:
                raise ValueError(f"Unknown configuration section: {key}")
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> SLAMConfig:
        """Load a configuration from a YAML file.

        Args:
            path: Path to the YAML file

        Returns:
            Loaded SLAMConfig

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file content is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping in {path}")
        return cls.from_dict(data)


def _build_section(section_cls: type, name: str, values: dict[str, Any]) -> Any:
    """Instantiate one configuration section, rejecting unknown options."""
    if not isinstance(values, dict):
        raise ValueError(f"Section {name} must be a mapping")

    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown options in {name}: {', '.join(unknown)}")
    return section_cls(**values)
