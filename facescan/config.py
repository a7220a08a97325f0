"""
config.py

Configuration for the face capture pipeline.
All thresholds and settings in one place, loadable from facescan.yaml.
"""

import os
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

from facescan.errors import ConfigError

logger = logging.getLogger(__name__)

CAPTURE_ANGLES = ("center", "left", "right")

# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class CameraSettings:
    """Video source settings."""
    index: int = 0
    frame_width: int = 1280
    frame_height: int = 720
    mirror: bool = True             # selfie view, the guide lines assume it
    max_read_failures: int = 30     # consecutive failed reads before giving up
    jpeg_quality: int = 92


@dataclass
class LandmarkerSettings:
    """MediaPipe FaceLandmarker settings."""
    model_path: str = "face_landmarker.task"
    min_detection_confidence: float = 0.8
    min_tracking_confidence: float = 0.8
    min_presence_confidence: float = 0.8


@dataclass
class PoseSettings:
    """Head pose gate and per-angle nose target zones (normalized x)."""
    yaw_max: float = 80.0
    pitch_max: float = 80.0
    roll_max: float = 80.0
    center_tolerance: float = 0.05
    left_line: float = 0.40
    right_line: float = 0.60


@dataclass
class LightingSettings:
    """Brightness sampling and scoring.

    `good_min`/`good_max` form the loose is_good gate, the band tables
    drive the numeric score. They are tuned independently.
    """
    forehead_radius: int = 30
    cheek_radius: int = 25
    good_min: float = 20.0
    good_max: float = 240.0
    # (low, high, score) checked in order, first match wins
    brightness_bands: List[Tuple[float, float, int]] = field(default_factory=lambda: [
        (100.0, 180.0, 100),
        (80.0, 200.0, 80),
        (60.0, 220.0, 60),
        (40.0, 240.0, 40),
    ])
    brightness_floor_score: int = 20
    # (max_std_dev, score)
    evenness_bands: List[Tuple[float, int]] = field(default_factory=lambda: [
        (10.0, 100),
        (20.0, 80),
        (30.0, 60),
        (40.0, 40),
    ])
    evenness_floor_score: int = 20


@dataclass
class StabilizerSettings:
    """Hysteresis thresholds and the tick period."""
    streak_on: int = 5      # consecutive good ticks to turn a signal ON
    streak_off: int = 3     # consecutive bad ticks to turn it OFF
    tick_interval_ms: int = 100


@dataclass
class CaptureSettings:
    """Capture sequence and stability streak."""
    angles: List[str] = field(default_factory=lambda: list(CAPTURE_ANGLES))
    required_ticks: int = 15        # ~1.5 s at 100 ms ticks
    forgiveness_ticks: int = 2      # bad ticks tolerated before the streak decays
    hint_after_seconds: float = 15.0


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""
    camera: CameraSettings = field(default_factory=CameraSettings)
    landmarker: LandmarkerSettings = field(default_factory=LandmarkerSettings)
    pose: PoseSettings = field(default_factory=PoseSettings)
    lighting: LightingSettings = field(default_factory=LightingSettings)
    stabilizer: StabilizerSettings = field(default_factory=StabilizerSettings)
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    output_dir: str = "captured_sessions"
    log_level: str = "INFO"

    @property
    def tick_interval(self) -> float:
        """Tick period in seconds."""
        return self.stabilizer.tick_interval_ms / 1000.0


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

_config: Optional[PipelineConfig] = None


def find_config_file() -> Optional[str]:
    """Find facescan.yaml, or None to run on defaults."""
    env_path = os.environ.get("FACESCAN_CONFIG")
    search_paths = [
        env_path,
        os.path.join(os.getcwd(), "facescan.yaml"),
        os.path.expanduser("~/.facescan.yaml"),
    ]

    for path in search_paths:
        if path and os.path.exists(path):
            return path

    return None


def _coerce(cls, name, value, default):
    """Convert a YAML scalar to the type of the field's default."""
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{cls.__name__}.{name} must be true or false, got {value!r}")
        return value

    try:
        if isinstance(default, int):
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                raise ValueError(value)
            return int(value)
        if isinstance(default, float):
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
        if isinstance(default, str):
            if not isinstance(value, (str, int, float)) or isinstance(value, bool):
                raise ValueError(value)
            return str(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"{cls.__name__}.{name} must be {type(default).__name__}, got {value!r}"
        ) from None

    return value


def _bands(cls, name, value, width):
    """Band table: a list of `width`-long numeric rows."""
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{cls.__name__}.{name} must be a list of bands, got {value!r}")

    bands = []
    for band in value:
        if not isinstance(band, (list, tuple)) or len(band) != width:
            raise ConfigError(f"{cls.__name__}.{name} entries need {width} values, got {band!r}")
        try:
            bands.append(tuple(float(v) for v in band[:-1]) + (int(band[-1]),))
        except (TypeError, ValueError):
            raise ConfigError(f"{cls.__name__}.{name} entries must be numeric, got {band!r}") from None
    return bands


def _build(cls, data: Dict[str, Any]):
    """Build a settings dataclass from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"Section for {cls.__name__} must be a mapping, got {type(data).__name__}")

    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        default = f.default_factory() if callable(f.default_factory) else f.default
        if is_dataclass(default):
            value = _build(type(default), value)
        elif f.name == "brightness_bands":
            value = _bands(cls, f.name, value, 3)
        elif f.name == "evenness_bands":
            value = _bands(cls, f.name, value, 2)
        elif isinstance(default, list):
            if not isinstance(value, list):
                raise ConfigError(f"{cls.__name__}.{f.name} must be a list, got {value!r}")
            value = [_coerce(cls, f.name, v, default[0]) for v in value] if default else value
        else:
            value = _coerce(cls, f.name, value, default)
        kwargs[f.name] = value

    unknown = set(data) - {f.name for f in fields(cls)}
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")

    return cls(**kwargs)


def config_from_dict(raw: Optional[Dict[str, Any]]) -> PipelineConfig:
    """Build and validate a PipelineConfig from parsed YAML."""
    config = _build(PipelineConfig, raw or {})

    errors = validate_config(config)
    if errors:
        raise ConfigError("Invalid configuration: " + "; ".join(errors))

    return config


def load_config(config_path: Optional[str] = None) -> PipelineConfig:
    """
    Load configuration from YAML.

    Args:
        config_path: Optional path to config file. If None, searches default
            locations and falls back to built-in defaults.

    Returns:
        PipelineConfig object with all settings
    """
    global _config

    if config_path is None:
        config_path = find_config_file()

    if config_path is None:
        logger.info("No facescan.yaml found, using defaults")
        _config = PipelineConfig()
        return _config

    logger.info(f"Loading configuration from: {config_path}")

    try:
        with open(config_path, "r") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parsing error in {config_path}: {e}") from e

    _config = config_from_dict(raw)

    logger.info(
        f"Capture sequence: {_config.capture.angles}, "
        f"tick {_config.stabilizer.tick_interval_ms} ms, "
        f"streak {_config.capture.required_ticks} ticks"
    )
    return _config


def get_config() -> PipelineConfig:
    """Get the loaded configuration (loads if not already loaded)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    stab = config.stabilizer
    if stab.streak_on < 1 or stab.streak_off < 1:
        errors.append("Stabilizer streaks must be at least 1")
    if stab.streak_on <= stab.streak_off:
        errors.append("streak_on must be larger than streak_off")
    if stab.tick_interval_ms <= 0:
        errors.append("tick_interval_ms must be positive")

    cap = config.capture
    if not cap.angles:
        errors.append("At least one capture angle is required")
    for angle in cap.angles:
        if angle not in CAPTURE_ANGLES:
            errors.append(f"Unknown capture angle '{angle}'")
    if len(set(cap.angles)) != len(cap.angles):
        errors.append("Capture angles must be unique")
    if cap.required_ticks < 1:
        errors.append("required_ticks must be at least 1")
    if cap.forgiveness_ticks < 0:
        errors.append("forgiveness_ticks cannot be negative")

    pose = config.pose
    if not 0.0 < pose.left_line < 0.5 < pose.right_line < 1.0:
        errors.append("Nose lines must satisfy 0 < left_line < 0.5 < right_line < 1")
    if pose.center_tolerance <= 0:
        errors.append("center_tolerance must be positive")

    light = config.lighting
    if light.good_min >= light.good_max:
        errors.append("Lighting good_min must be below good_max")
    if light.forehead_radius <= 0 or light.cheek_radius <= 0:
        errors.append("Lighting sample radii must be positive")

    if config.camera.frame_width <= 0 or config.camera.frame_height <= 0:
        errors.append("Camera frame size must be positive")
    if not 0 <= config.camera.jpeg_quality <= 100:
        errors.append("jpeg_quality must be within 0-100")

    if not isinstance(logging.getLevelName(str(config.log_level).upper()), int):
        errors.append(f"Unknown log level '{config.log_level}'")

    return errors
