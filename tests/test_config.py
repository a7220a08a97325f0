import pytest

from facescan import config as config_module
from facescan.config import (
    PipelineConfig,
    config_from_dict,
    find_config_file,
    get_config,
    load_config,
    validate_config,
)
from facescan.errors import ConfigError

SAMPLE = """
camera:
  index: 1
  mirror: false
stabilizer:
  streak_on: 6
  streak_off: 2
  tick_interval_ms: 50
capture:
  angles: [center, right]
  required_ticks: 10
lighting:
  good_min: 30
  brightness_bands:
    - [90, 190, 100]
    - [0, 255, 50]
log_level: debug
"""


def test_defaults_are_valid():
    config = PipelineConfig()

    assert validate_config(config) == []
    assert config.capture.angles == ["center", "left", "right"]
    assert config.tick_interval == pytest.approx(0.1)


def test_load_yaml(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text(SAMPLE)

    config = load_config(str(path))

    assert config.camera.index == 1 and config.camera.mirror is False
    assert config.camera.frame_width == 1280
    assert config.stabilizer.streak_on == 6
    assert config.tick_interval == pytest.approx(0.05)
    assert config.capture.angles == ["center", "right"]
    assert config.lighting.brightness_bands == [(90, 190, 100), (0, 255, 50)]
    assert config.lighting.cheek_radius == 25
    assert get_config() is config


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text("")

    assert load_config(str(path)) == PipelineConfig()


def test_no_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("FACESCAN_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))

    assert find_config_file() is None
    assert load_config() == PipelineConfig()


def test_env_var_wins(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("output_dir: /tmp/faces\n")
    monkeypatch.setenv("FACESCAN_CONFIG", str(path))

    assert find_config_file() == str(path)
    assert load_config().output_dir == "/tmp/faces"


def test_get_config_loads_once(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(config_module, "find_config_file", lambda: None)

    first = get_config()
    assert get_config() is first


def test_broken_yaml_raises_config_error(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text("camera: [unclosed\n")

    with pytest.raises(ConfigError):
        load_config(str(path))


def test_unknown_keys_are_ignored():
    config = config_from_dict({"camera": {"index": 2, "zoom": 3}, "extra": True})
    assert config.camera.index == 2


def test_section_must_be_mapping():
    with pytest.raises(ConfigError):
        config_from_dict({"camera": [1, 2]})


@pytest.mark.parametrize("raw,fragment", [
    ({"stabilizer": {"streak_on": 2, "streak_off": 3}}, "streak_on"),
    ({"stabilizer": {"tick_interval_ms": 0}}, "tick_interval_ms"),
    ({"capture": {"angles": ["center", "up"]}}, "Unknown capture angle"),
    ({"capture": {"angles": ["left", "left"]}}, "unique"),
    ({"capture": {"angles": []}}, "At least one"),
    ({"capture": {"required_ticks": 0}}, "required_ticks"),
    ({"capture": {"forgiveness_ticks": -1}}, "forgiveness_ticks"),
    ({"pose": {"left_line": 0.6}}, "Nose lines"),
    ({"pose": {"center_tolerance": 0}}, "center_tolerance"),
    ({"lighting": {"good_min": 240}}, "good_min"),
    ({"lighting": {"cheek_radius": 0}}, "radii"),
    ({"camera": {"jpeg_quality": 101}}, "jpeg_quality"),
    ({"log_level": "chatty"}, "log level"),
])
def test_invalid_values_raise(raw, fragment):
    with pytest.raises(ConfigError, match=fragment):
        config_from_dict(raw)


def test_validate_collects_every_error():
    config = PipelineConfig()
    config.capture.required_ticks = 0
    config.camera.frame_width = 0

    errors = validate_config(config)

    assert len(errors) == 2


def test_numeric_strings_are_coerced(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text('stabilizer:\n  streak_on: "6"\npose:\n  left_line: "0.35"\n')

    config = load_config(str(path))

    assert config.stabilizer.streak_on == 6
    assert config.pose.left_line == pytest.approx(0.35)


@pytest.mark.parametrize("raw", [
    {"stabilizer": {"streak_on": "five"}},
    {"stabilizer": {"streak_on": None}},
    {"stabilizer": {"streak_on": 2.5}},
    {"pose": {"yaw_max": [80]}},
    {"camera": {"mirror": "yes"}},
    {"capture": {"angles": "center"}},
    {"lighting": {"brightness_bands": 5}},
    {"lighting": {"brightness_bands": [5]}},
    {"lighting": {"brightness_bands": [[100, 180]]}},
    {"lighting": {"evenness_bands": [["low", 100]]}},
])
def test_wrongly_typed_values_raise_config_error(raw):
    with pytest.raises(ConfigError):
        config_from_dict(raw)


def test_wrongly_typed_file_raises_config_error(tmp_path):
    path = tmp_path / "facescan.yaml"
    path.write_text("lighting:\n  brightness_bands: [7, 8]\n")

    with pytest.raises(ConfigError):
        load_config(str(path))
