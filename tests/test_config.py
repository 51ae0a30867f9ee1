"""Tests for configuration loading."""

from pathlib import Path

import yaml

from facepass.config import DEFAULT_THRESHOLD, Settings, load_config, valid_threshold


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:
    """Test cases for load_config()."""

    def test_later_files_override(self, tmp_path):
        system = write_yaml(tmp_path / "system.yaml", {"camera": {"device": "/dev/video1", "fps": 15}})
        user = write_yaml(tmp_path / "user.yaml", {"camera": {"device": "/dev/video2"}})

        config = load_config(search_paths=[system, user])

        assert config["camera"] == {"device": "/dev/video2", "fps": 15}

    def test_missing_files_skipped(self, tmp_path):
        user = write_yaml(tmp_path / "user.yaml", {"service": {"port": 9000}})
        config = load_config(search_paths=[tmp_path / "absent.yaml", user])
        assert config == {"service": {"port": 9000}}

    def test_explicit_path_only(self, tmp_path):
        explicit = write_yaml(tmp_path / "explicit.yaml", {"verification": {"profile": "bob"}})
        assert load_config(explicit) == {"verification": {"profile": "bob"}}

    def test_missing_explicit_path(self, tmp_path):
        assert load_config(tmp_path / "nope.yaml") == {}

    def test_invalid_yaml_ignored(self, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("camera: [unclosed\n")
        good = write_yaml(tmp_path / "good.yaml", {"camera": {"fps": 10}})

        assert load_config(search_paths=[broken, good]) == {"camera": {"fps": 10}}

    def test_non_mapping_ignored(self, tmp_path):
        listing = tmp_path / "list.yaml"
        listing.write_text("- a\n- b\n")
        assert load_config(listing) == {}


class TestSettings:
    """Test cases for typed settings."""

    def test_defaults(self):
        settings = Settings.from_config({})

        assert settings.verification.threshold == DEFAULT_THRESHOLD
        assert settings.verification.allow_all is False
        assert settings.camera.device == "/dev/video0"
        assert settings.capture.warmup_delay == 1.0
        assert settings.capture.capture_duration == 2.0
        assert settings.capture.frame_interval == 0.1
        assert settings.model.input_size == (224, 224)
        assert settings.service.port == 8765

    def test_overrides(self):
        settings = Settings.from_config({
            "camera": {"device": 2, "width": 1280},
            "capture": {"capture_duration": 0, "max_read_failures": 10},
            "verification": {"threshold": 0.95, "profile": "alice", "allow_all": "yes"},
            "model": {"input_size": [112, 112]},
        })

        assert settings.camera.device == "2"
        assert settings.camera.width == 1280
        assert settings.capture.capture_duration == 0.0
        assert settings.capture.max_read_failures == 10
        assert settings.verification.threshold == 0.95
        assert settings.verification.profile == "alice"
        assert settings.verification.allow_all is True
        assert settings.model.input_size == (112, 112)

    def test_bad_values_fall_back(self):
        settings = Settings.from_config({
            "camera": {"fps": "fast", "width": -5},
            "detection": {"scale_factor": 0.5, "min_size": [30]},
            "service": {"port": 70000},
        })

        assert settings.camera.fps == 30
        assert settings.camera.width == 640
        assert settings.detection.scale_factor == 1.1
        assert settings.detection.min_size == (30, 30)
        assert settings.service.port == 8765

    def test_threshold_out_of_range(self):
        for value in (0, 1.2, -1, "high"):
            settings = Settings.from_config({"verification": {"threshold": value}})
            assert settings.verification.threshold == DEFAULT_THRESHOLD

    def test_section_not_mapping(self):
        settings = Settings.from_config({"camera": "usb"})
        assert settings.camera.device == "/dev/video0"

    def test_paths_expand_user(self):
        settings = Settings.from_config({
            "storage": {"path": "~/faces"},
            "model": {"path": "~/models/net.onnx"},
        })

        assert settings.storage.path == Path.home() / "faces"
        assert settings.model.path == Path.home() / "models" / "net.onnx"

    def test_load_from_file(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {"storage": {"path": str(tmp_path / "db")}})
        assert Settings.load(path).storage.path == tmp_path / "db"

    def test_valid_threshold(self):
        assert valid_threshold(1.0)
        assert valid_threshold(0.01)
        assert not valid_threshold(0.0)
        assert not valid_threshold(1.0001)
