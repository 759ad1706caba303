"""
Project configuration: detector thresholds, feature cache settings and
CLI output options, stored as ``.meshfeatures.json``.

One file is used per run, the first found of:
1. the path given with ``--config``
2. ``.meshfeatures.json`` next to the model
3. ``.meshfeatures.json`` in the working directory
4. ``~/.meshfeatures.json``

Missing keys keep their built-in defaults; CLI flags are applied on top.

Example .meshfeatures.json:
{
    "detector": {
        "angle_tolerance": 0.1,
        "min_plane_triangles": 3,
        "radius_tolerance": 0.01
    },
    "pool": {
        "max_cache_size": 100,
        "batch_size": 5
    },
    "output": {
        "format": "json"
    }
}

Keys may also be given in camelCase (``angleTolerance``, ``maxCacheSize``).
"""

import json
import logging
import math
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".meshfeatures.json"


@dataclass
class DetectorConfig:
    """Thresholds for plane growing and cylinder fitting.

    Angles are in radians unless the name says otherwise. Distance
    tolerances are relative: plane distance to the mesh bounding box
    diagonal, plane flatness to the region width, radius deviation to
    the fitted radius.
    """
    angle_tolerance: float = 0.1
    plane_distance_tolerance: float = 0.01
    plane_flatness_tolerance: float = 1e-4  # fraction of region width
    min_plane_triangles: int = 3
    min_feature_area: float = 1e-9  # fraction of diagonal squared
    radius_tolerance: float = 0.01
    axis_angle_tolerance: float = 0.15
    min_cylinder_triangles: int = 6
    min_cylinder_confidence: float = 0.7
    max_facet_angle_deg: float = 50.0
    max_triangles_per_feature: int = 10000
    weld_tolerance: float = 1e-6  # fraction of diagonal
    resplit_failed_components: bool = True

    @property
    def max_facet_angle(self) -> float:
        return math.radians(self.max_facet_angle_deg)

    def validate(self) -> None:
        """Raise ValueError for settings the detector cannot work with."""
        if not 0.0 < self.angle_tolerance < math.pi / 2:
            raise ValueError(f"angle_tolerance out of range: {self.angle_tolerance}")
        if not 0.0 < self.axis_angle_tolerance < math.pi / 2:
            raise ValueError(f"axis_angle_tolerance out of range: {self.axis_angle_tolerance}")
        if min(self.radius_tolerance, self.plane_distance_tolerance,
               self.plane_flatness_tolerance) <= 0:
            raise ValueError("Distance tolerances must be positive")
        if self.min_plane_triangles < 1 or self.min_cylinder_triangles < 1:
            raise ValueError("Minimum triangle counts must be at least 1")
        if self.max_triangles_per_feature < max(self.min_plane_triangles,
                                                self.min_cylinder_triangles):
            raise ValueError("max_triangles_per_feature is below a minimum triangle count")
        if not 0.0 <= self.min_cylinder_confidence <= 1.0:
            raise ValueError(f"min_cylinder_confidence must be in [0, 1]: "
                             f"{self.min_cylinder_confidence}")
        if not 0.0 < self.max_facet_angle_deg <= 180.0:
            raise ValueError(f"max_facet_angle_deg out of range: {self.max_facet_angle_deg}")
        if self.weld_tolerance < 0:
            raise ValueError("weld_tolerance must be non-negative")


@dataclass
class PoolConfig:
    """Feature cache and background detection settings."""
    max_cache_size: int = 100
    enable_lru: bool = True
    auto_preprocess: bool = True
    batch_size: int = 5
    max_workers: Optional[int] = None  # None = executor default
    time_budget_seconds: Optional[float] = 10.0  # per mesh, None = unbounded

    def validate(self) -> None:
        """Raise ValueError for unusable cache settings."""
        if self.max_cache_size < 1:
            raise ValueError(f"max_cache_size must be at least 1: {self.max_cache_size}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1: {self.batch_size}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1: {self.max_workers}")
        if self.time_budget_seconds is not None and self.time_budget_seconds <= 0:
            raise ValueError("time_budget_seconds must be positive")


@dataclass
class OutputConfig:
    """CLI report configuration."""
    format: str = "text"  # "text" or "json"
    indent: int = 2
    include_triangles: bool = False


# camelCase spellings accepted in config files
_ALIASES: Dict[str, Dict[str, str]] = {
    "detector": {
        "angleTolerance": "angle_tolerance",
        "planeAngleTolerance": "angle_tolerance",
        "planeDistanceTolerance": "plane_distance_tolerance",
        "planeFlatnessTolerance": "plane_flatness_tolerance",
        "minPlaneTriangles": "min_plane_triangles",
        "minFeatureArea": "min_feature_area",
        "radiusTolerance": "radius_tolerance",
        "cylinderRadiusTolerance": "radius_tolerance",
        "axisAngleTolerance": "axis_angle_tolerance",
        "cylinderAngleTolerance": "axis_angle_tolerance",
        "minCylinderTriangles": "min_cylinder_triangles",
        "minCylinderConfidence": "min_cylinder_confidence",
        "maxFacetAngleDeg": "max_facet_angle_deg",
        "maxTrianglesPerFeature": "max_triangles_per_feature",
        "weldTolerance": "weld_tolerance",
    },
    "pool": {
        "maxCacheSize": "max_cache_size",
        "enableLRU": "enable_lru",
        "autoPreprocess": "auto_preprocess",
        "preprocessingBatchSize": "batch_size",
        "batchSize": "batch_size",
        "maxWorkers": "max_workers",
        "timeBudgetSeconds": "time_budget_seconds",
    },
    "output": {
        "includeTriangles": "include_triangles",
    },
}

_SECTIONS = ("detector", "pool", "output")


def _apply_section(target: Any, section: str, values: Dict[str, Any]) -> None:
    aliases = _ALIASES.get(section, {})
    for key, value in values.items():
        if key.startswith("_"):
            continue
        name = aliases.get(key, key)
        if hasattr(target, name) and not isinstance(
                getattr(type(target), name, None), property):
            setattr(target, name, value)
        else:
            logger.warning("Unknown %s config key ignored: %s", section, key)


@dataclass
class ProjectConfig:
    """All configuration sections of a run."""
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def save(self, path: Union[str, Path]) -> None:
        """Write the configuration as JSON."""
        path = Path(path)
        path.write_text(self.to_json(), encoding='utf-8')
        logger.info("Configuration saved to %s", path)

    def validate(self) -> None:
        """Range-check the detector and pool sections.

        Raises:
            ValueError: On the first value out of range
        """
        self.detector.validate()
        self.pool.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProjectConfig':
        """Build a configuration from parsed JSON.

        Keys starting with ``_`` are comments. Unknown sections and keys are
        logged at WARNING and skipped, so a config written for a newer
        version still loads.
        """
        config = cls()
        for section, values in data.items():
            if section.startswith("_"):
                continue
            if section not in _SECTIONS or not isinstance(values, dict):
                logger.warning("Unknown config section ignored: %s", section)
                continue
            _apply_section(getattr(config, section), section, values)
        return config

    @classmethod
    def from_json(cls, json_str: str) -> 'ProjectConfig':
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'ProjectConfig':
        """Read a configuration file.

        Raises:
            OSError: If the file cannot be read
            json.JSONDecodeError: If it is not valid JSON
        """
        path = Path(path)
        config = cls.from_json(path.read_text(encoding='utf-8'))
        logger.info("Configuration loaded from %s", path)
        return config


def find_config_file(
    model_path: Optional[Union[str, Path]] = None,
    explicit_config: Optional[Union[str, Path]] = None,
) -> Optional[Path]:
    """Locate the configuration file for a run.

    An explicit path that does not exist is reported and the normal search
    continues: model directory, working directory, home directory.

    Args:
        model_path: Mesh file being processed (its folder is searched)
        explicit_config: Path given on the command line

    Returns:
        First existing candidate, or None
    """
    if explicit_config:
        explicit = Path(explicit_config)
        if explicit.exists():
            return explicit
        logger.warning("Explicit config not found: %s", explicit)

    search_dirs = [Path(model_path).parent] if model_path else []
    search_dirs += [Path.cwd(), Path.home()]

    for directory in search_dirs:
        candidate = directory / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(
    model_path: Optional[Union[str, Path]] = None,
    explicit_config: Optional[Union[str, Path]] = None,
) -> ProjectConfig:
    """Load the configuration for a run, or the defaults.

    A file that exists but cannot be read or parsed is logged at ERROR and
    the defaults are used.
    """
    config_path = find_config_file(model_path, explicit_config)
    if config_path is None:
        return ProjectConfig()

    try:
        return ProjectConfig.load(config_path)
    except (json.JSONDecodeError, OSError) as e:
        logger.error("Failed to load config %s: %s", config_path, e)
        return ProjectConfig()


def merge_configs(base: ProjectConfig, override: ProjectConfig) -> ProjectConfig:
    """Overlay ``override`` onto a copy of ``base``.

    A field of ``override`` is applied only when it differs from the
    built-in default, so an override built from a partial file does not
    reset values ``base`` has set.
    """
    merged = ProjectConfig.from_dict(base.to_dict())
    defaults = ProjectConfig()

    for section in _SECTIONS:
        source = getattr(override, section)
        target = getattr(merged, section)
        default_section = getattr(defaults, section)
        for f in fields(source):
            value = getattr(source, f.name)
            if value != getattr(default_section, f.name):
                setattr(target, f.name, value)

    return merged


def create_sample_config(path: Union[str, Path] = CONFIG_FILENAME) -> None:
    """Write the defaults as a commented configuration file."""
    defaults = ProjectConfig()
    sample = {
        "_comment": "Mesh feature recognition configuration",
        "_version": "1.0",
        "detector": {
            "_comment": "Angles in radians, distances relative to the model size",
            **asdict(defaults.detector),
        },
        "pool": {
            "_comment": "Feature cache and background detection",
            **asdict(defaults.pool),
        },
        "output": {
            "_comment": "CLI report settings",
            **asdict(defaults.output),
        },
    }

    path = Path(path)
    path.write_text(json.dumps(sample, indent=2, ensure_ascii=False), encoding='utf-8')
    logger.info("Sample configuration created: %s", path)
