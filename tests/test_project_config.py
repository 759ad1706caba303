"""
Unit tests for mesh_features.project_config module.

Tests:
- Section defaults and validation
- ProjectConfig serialization
- camelCase key aliases
- Config file discovery and loading
- Config merging
"""

import json
import math
from pathlib import Path

import pytest

from mesh_features.project_config import (
    CONFIG_FILENAME,
    DetectorConfig,
    OutputConfig,
    PoolConfig,
    ProjectConfig,
    create_sample_config,
    find_config_file,
    load_config,
    merge_configs,
)


@pytest.fixture
def isolated_dirs(tmp_path, monkeypatch):
    """Run with an empty working directory and home directory."""
    work = tmp_path / "work"
    home = tmp_path / "home"
    work.mkdir()
    home.mkdir()
    monkeypatch.chdir(work)
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    return work, home


class TestDetectorConfig:
    """Tests for DetectorConfig dataclass."""

    def test_default_values(self):
        """Test documented defaults."""
        config = DetectorConfig()
        assert config.angle_tolerance == 0.1
        assert config.radius_tolerance == 0.01
        assert config.min_plane_triangles == 3
        assert config.min_cylinder_triangles == 6
        assert config.min_cylinder_confidence == 0.7
        assert config.max_triangles_per_feature == 10000

    def test_facet_angle_radians(self):
        """Test the facet limit is exposed in radians."""
        assert DetectorConfig(max_facet_angle_deg=90.0).max_facet_angle == pytest.approx(math.pi / 2)

    def test_defaults_validate(self):
        """Test the defaults are usable."""
        DetectorConfig().validate()

    @pytest.mark.parametrize("changes", [
        {"angle_tolerance": 0.0},
        {"angle_tolerance": 2.0},
        {"axis_angle_tolerance": -0.1},
        {"radius_tolerance": 0.0},
        {"plane_distance_tolerance": -1.0},
        {"plane_flatness_tolerance": 0.0},
        {"min_plane_triangles": 0},
        {"max_triangles_per_feature": 2},
        {"min_cylinder_confidence": 1.5},
        {"max_facet_angle_deg": 0.0},
        {"weld_tolerance": -1e-6},
    ])
    def test_invalid_values(self, changes):
        """Test each range check."""
        with pytest.raises(ValueError):
            DetectorConfig(**changes).validate()


class TestPoolConfig:
    """Tests for PoolConfig dataclass."""

    def test_default_values(self):
        """Test documented defaults."""
        config = PoolConfig()
        assert config.max_cache_size == 100
        assert config.enable_lru
        assert config.auto_preprocess
        assert config.batch_size == 5
        assert config.max_workers is None
        assert config.time_budget_seconds == 10.0

    @pytest.mark.parametrize("changes", [
        {"max_cache_size": 0},
        {"batch_size": 0},
        {"max_workers": 0},
        {"time_budget_seconds": 0.0},
    ])
    def test_invalid_values(self, changes):
        """Test each range check."""
        with pytest.raises(ValueError):
            PoolConfig(**changes).validate()

    def test_unbounded_budget(self):
        """Test None disables the time budget."""
        PoolConfig(time_budget_seconds=None).validate()


class TestProjectConfig:
    """Tests for ProjectConfig class."""

    def test_default_config(self):
        """Test default sections."""
        config = ProjectConfig()
        assert isinstance(config.detector, DetectorConfig)
        assert isinstance(config.pool, PoolConfig)
        assert isinstance(config.output, OutputConfig)
        assert config.output.format == "text"

    def test_to_dict(self):
        """Test conversion to nested dictionary."""
        data = ProjectConfig().to_dict()
        assert set(data) == {"detector", "pool", "output"}
        assert data["detector"]["angle_tolerance"] == 0.1

    def test_to_json(self):
        """Test conversion to JSON string."""
        data = json.loads(ProjectConfig().to_json())
        assert data["pool"]["max_cache_size"] == 100

    def test_from_dict(self):
        """Test creation from dictionary."""
        config = ProjectConfig.from_dict({
            "detector": {"angle_tolerance": 0.05, "min_plane_triangles": 4},
            "pool": {"max_cache_size": 10},
            "output": {"format": "json"},
        })
        assert config.detector.angle_tolerance == 0.05
        assert config.detector.min_plane_triangles == 4
        assert config.pool.max_cache_size == 10
        assert config.output.format == "json"
        assert config.detector.radius_tolerance == 0.01

    def test_camel_case_keys(self):
        """Test the camelCase spellings map onto the fields."""
        config = ProjectConfig.from_dict({
            "detector": {
                "angleTolerance": 0.2,
                "radiusTolerance": 0.02,
                "minPlaneTriangles": 5,
                "minCylinderTriangles": 8,
                "maxTrianglesPerFeature": 500,
                "minCylinderConfidence": 0.6,
            },
            "pool": {"maxCacheSize": 7, "enableLRU": False, "preprocessingBatchSize": 3},
        })
        detector = config.detector
        assert detector.angle_tolerance == 0.2
        assert detector.radius_tolerance == 0.02
        assert detector.min_plane_triangles == 5
        assert detector.min_cylinder_triangles == 8
        assert detector.max_triangles_per_feature == 500
        assert detector.min_cylinder_confidence == 0.6
        assert config.pool.max_cache_size == 7
        assert config.pool.enable_lru is False
        assert config.pool.batch_size == 3

    def test_unknown_keys_ignored(self, caplog):
        """Test unknown sections and keys are logged, comments skipped."""
        config = ProjectConfig.from_dict({
            "_comment": "ignored",
            "renderer": {"dpi": 300},
            "detector": {"_comment": "ignored", "no_such_key": 1, "max_facet_angle": 1.0},
        })
        assert config.detector == DetectorConfig()
        assert "Unknown config section ignored: renderer" in caplog.text
        assert "no_such_key" in caplog.text
        assert "max_facet_angle" in caplog.text

    def test_from_json(self):
        """Test creation from JSON string."""
        config = ProjectConfig.from_json('{"pool": {"batch_size": 2}}')
        assert config.pool.batch_size == 2

    def test_save_and_load(self, tmp_path):
        """Test saving and loading from file."""
        path = tmp_path / "config.json"
        original = ProjectConfig()
        original.detector.radius_tolerance = 0.02
        original.pool.time_budget_seconds = None
        original.save(path)

        loaded = ProjectConfig.load(path)
        assert loaded.detector.radius_tolerance == 0.02
        assert loaded.pool.time_budget_seconds is None

    def test_validate(self):
        """Test validate checks both sections."""
        config = ProjectConfig()
        config.pool.max_cache_size = 0
        with pytest.raises(ValueError):
            config.validate()


class TestFindConfigFile:
    """Tests for find_config_file function."""

    def test_explicit_config_found(self, tmp_path, isolated_dirs):
        """Test explicit config path is used."""
        path = tmp_path / "custom.json"
        path.write_text("{}")
        assert find_config_file(explicit_config=path) == path

    def test_model_directory(self, tmp_path, isolated_dirs):
        """Test the model's directory is searched before cwd."""
        work, _ = isolated_dirs
        models = tmp_path / "models"
        models.mkdir()
        (models / CONFIG_FILENAME).write_text("{}")
        (work / CONFIG_FILENAME).write_text("{}")
        assert find_config_file(model_path=models / "part.stl") == models / CONFIG_FILENAME

    def test_cwd_then_home(self, isolated_dirs):
        """Test cwd wins over home."""
        work, home = isolated_dirs
        (home / CONFIG_FILENAME).write_text("{}")
        assert find_config_file() == home / CONFIG_FILENAME
        (work / CONFIG_FILENAME).write_text("{}")
        assert find_config_file() == work / CONFIG_FILENAME

    def test_explicit_config_not_found(self, isolated_dirs):
        """Test a missing explicit config falls through to the search."""
        assert find_config_file(explicit_config="/nonexistent/config.json") is None

    def test_no_config_returns_none(self, isolated_dirs):
        """Test None when nothing is found."""
        assert find_config_file() is None


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults_when_no_file(self, isolated_dirs):
        """Test defaults are returned when no file exists."""
        config = load_config()
        assert config.detector.angle_tolerance == 0.1

    def test_load_from_explicit_file(self, tmp_path, isolated_dirs):
        """Test loading from an explicit file."""
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"detector": {"minCylinderConfidence": 0.8}}))
        assert load_config(explicit_config=path).detector.min_cylinder_confidence == 0.8

    def test_invalid_json_returns_defaults(self, tmp_path, isolated_dirs, caplog):
        """Test invalid JSON is logged and defaults are used."""
        path = tmp_path / "broken.json"
        path.write_text("{ not json")
        config = load_config(explicit_config=path)
        assert config.detector == DetectorConfig()
        assert "Failed to load config" in caplog.text


class TestMergeConfigs:
    """Tests for merge_configs function."""

    def test_override_non_default_values(self):
        """Test that non-default override values win."""
        base = ProjectConfig()
        base.detector.angle_tolerance = 0.05
        override = ProjectConfig()
        override.pool.max_cache_size = 3

        merged = merge_configs(base, override)
        assert merged.detector.angle_tolerance == 0.05
        assert merged.pool.max_cache_size == 3

    def test_default_values_not_overridden(self):
        """Test that default override values keep the base."""
        base = ProjectConfig()
        base.detector.min_plane_triangles = 2
        merged = merge_configs(base, ProjectConfig())
        assert merged.detector.min_plane_triangles == 2

    def test_base_unchanged(self):
        """Test merge returns a new object."""
        base = ProjectConfig()
        override = ProjectConfig()
        override.output.format = "json"
        merge_configs(base, override)
        assert base.output.format == "text"


class TestCreateSampleConfig:
    """Tests for create_sample_config function."""

    def test_creates_loadable_json(self, tmp_path):
        """Test the sample file loads back to the defaults."""
        path = tmp_path / CONFIG_FILENAME
        create_sample_config(path)
        data = json.loads(path.read_text(encoding='utf-8'))
        assert "_comment" in data
        assert "_comment" in data["detector"]
        assert ProjectConfig.load(path).to_dict() == ProjectConfig().to_dict()
