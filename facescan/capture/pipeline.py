"""
pipeline.py

Pipeline controller
-------------------
Owns every piece of mutable pipeline state and runs two loops:

1. Frame loop (best effort): read frame -> landmarks -> pose + lighting ->
   publish one FaceAnalysis / NoFace with FrameStats (fps, processing
   time). One frame at a time, the next frame is not submitted until the
   landmark source returns.
2. Tick loop (fixed period): latest analysis -> stabilizer -> capture
   state machine -> events + ReadinessSnapshot. The only path that
   touches the stabilizer, streaks and the capture lock.

The UI gets a read-only snapshot and two control signals, confirm_ready()
and reset(), which are queued and applied on the next tick.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import cv2
import numpy as np

from facescan.capture.state_machine import CaptureState, CaptureStateMachine
from facescan.config import PipelineConfig
from facescan.errors import CaptureError, FrameGrabError, PipelineError
from facescan.landmarks import MEDIAPIPE_FACE_MESH, LandmarkIndexMap, nose_x
from facescan.quality.pose_gatekeeper import (
    NEUTRAL_POSE,
    HeadPose,
    estimate_head_pose,
    is_pose_valid,
    mode_instruction,
)
from facescan.quality.quality_gatekeeper import LightingQuality, estimate_lighting
from facescan.quality.stability_gatekeeper import SignalStabilizer, StabilizedSignals

logger = logging.getLogger(__name__)

CONFIRM_READY = "confirm_ready"
RESET = "reset"


# Frame counter window for the reported fps
FPS_WINDOW_S = 1.0

# =============================================================================
# PER-FRAME ANALYSIS (tagged result)
# =============================================================================

@dataclass(frozen=True)
class NoFace:
    timestamp: float


@dataclass(frozen=True)
class FaceAnalysis:
    landmarks: np.ndarray
    pose: HeadPose
    lighting: LightingQuality
    nose_x: Optional[float]
    frame_size: Tuple[int, int]     # (w, h)
    timestamp: float


FrameAnalysis = Union[FaceAnalysis, NoFace]


@dataclass(frozen=True)
class FrameStats:
    """Landmark source health, published with every analysis."""
    fps: int = 0                 # frames processed in the last full window
    processing_ms: float = 0.0   # detect + analysis time of the latest frame


def analyze_frame(frame, landmarks, config: PipelineConfig, timestamp,
                  index_map: LandmarkIndexMap = MEDIAPIPE_FACE_MESH) -> FrameAnalysis:
    """Run both estimators on one frame."""
    if landmarks is None:
        return NoFace(timestamp=timestamp)

    h, w = frame.shape[:2]
    return FaceAnalysis(
        landmarks=landmarks,
        pose=estimate_head_pose(landmarks, w, h, index_map),
        lighting=estimate_lighting(frame, landmarks, w, h, config.lighting, index_map),
        nose_x=nose_x(landmarks, index_map),
        frame_size=(w, h),
        timestamp=timestamp,
    )


# =============================================================================
# READINESS SNAPSHOT
# =============================================================================

class PipelineStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineFailed:
    error: PipelineError


@dataclass(frozen=True)
class ReadinessSnapshot:
    status: PipelineStatus
    state: CaptureState
    angle: Optional[str]
    step_index: int
    total_steps: int
    face: bool
    aligned: bool
    lighting: bool
    yaw: float
    pitch: float
    roll: float
    brightness: float
    std_dev: float
    nose_x: Optional[float]
    progress: int
    captured_angles: Tuple[str, ...]
    show_hint: bool
    instruction: str
    guidance: str
    fps: int = 0
    processing_ms: float = 0.0
    error: Optional[str] = None

    @property
    def is_ready(self):
        return self.face and self.aligned and self.lighting


# =============================================================================
# CONTROLLER
# =============================================================================

class PipelineController:
    """
    Args:
        video_source: object with read() -> BGR frame (raises FrameGrabError) and release()
        landmark_source: object with detect(frame, timestamp_ms) -> [N, 3] array or None, and close()
    """

    def __init__(self, video_source, landmark_source, config: PipelineConfig = None,
                 index_map: LandmarkIndexMap = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or PipelineConfig()
        self.video = video_source
        self.landmarks = landmark_source
        self.index_map = index_map or getattr(landmark_source, "index_map", MEDIAPIPE_FACE_MESH)
        self._clock = clock

        self.stabilizer = SignalStabilizer(self.config.stabilizer)
        self.machine = CaptureStateMachine(self.config.capture, self.stabilizer, clock)

        # run flag of the current run, replaced on every start()
        self._running = threading.Event()
        self._wake = threading.Event()

        self._publish_lock = threading.Lock()
        self._latest_frame: Optional[np.ndarray] = None
        self._analysis: FrameAnalysis = NoFace(timestamp=0.0)
        self._stats = FrameStats()

        self._controls: "queue.Queue[str]" = queue.Queue()
        self._listeners: List[Callable[[object], None]] = []
        self._threads: List[threading.Thread] = []
        self._read_failures = 0
        self._closed = False
        self._reset_frame_counter()

        self.status = PipelineStatus.IDLE
        self.error: Optional[PipelineError] = None
        self._snapshot = self._build_snapshot(self._analysis, self.stabilizer.signals)

    # -------------------------------------------------
    # Public surface
    # -------------------------------------------------
    def add_listener(self, listener: Callable[[object], None]):
        """Receive StepCaptured / SessionComplete / CaptureFailed / PipelineFailed."""
        self._listeners.append(listener)

    def confirm_ready(self):
        self._controls.put(CONFIRM_READY)

    def reset(self):
        self._controls.put(RESET)

    def snapshot(self) -> ReadinessSnapshot:
        return self._snapshot

    def latest_frame(self) -> Optional[np.ndarray]:
        with self._publish_lock:
            return self._latest_frame

    def latest_analysis(self) -> FrameAnalysis:
        with self._publish_lock:
            return self._analysis

    def latest_stats(self) -> FrameStats:
        with self._publish_lock:
            return self._stats

    @property
    def is_running(self):
        return self._running.is_set()

    @property
    def busy_threads(self) -> List[threading.Thread]:
        """Loop threads of this or an earlier run that have not exited yet."""
        return [t for t in self._threads if t.is_alive()]

    # -------------------------------------------------
    # Lifecycle
    # -------------------------------------------------
    def start(self):
        """
        Start the frame and tick loops.

        Raises:
            PipelineError if the controller is closed, or a loop from the
            previous run is still inside the camera or the landmark source
        """
        if self._closed:
            raise PipelineError("Pipeline is closed")
        if self._running.is_set():
            logger.warning("Pipeline already running")
            return

        self._threads = self.busy_threads
        if self._threads:
            names = ", ".join(t.name for t in self._threads)
            raise PipelineError(f"Previous run has not shut down yet: {names}")

        self.error = None
        self._read_failures = 0
        self._reset_frame_counter()

        run, wake = threading.Event(), threading.Event()
        run.set()
        self._running, self._wake = run, wake
        self.status = PipelineStatus.RUNNING

        self._threads = [
            threading.Thread(target=self._frame_loop, args=(run,), name="facescan-frames", daemon=True),
            threading.Thread(target=self._tick_loop, args=(run, wake), name="facescan-ticks", daemon=True),
        ]
        for t in self._threads:
            t.start()

        logger.info(f"Pipeline started (tick {self.config.stabilizer.tick_interval_ms} ms)")

    def stop(self, timeout: float = 2.0):
        """Halt both loops and drop streaks and the capture lock.

        Threads that do not exit within `timeout` stay tracked; start() and
        close() refuse to proceed until they have.
        """
        self._running.clear()
        self._wake.set()

        current = threading.current_thread()
        for t in self._threads:
            if t is not current and t.is_alive():
                t.join(timeout)
        self._threads = [t for t in self.busy_threads if t is not current]
        if self._threads:
            logger.warning(f"{len(self._threads)} loop thread(s) still busy after {timeout}s")

        # stale streaks must not leak into the next session
        self._drain_controls()
        self.machine.reset()

        if self.status != PipelineStatus.FAILED:
            self.status = PipelineStatus.STOPPED
        self._snapshot = self._build_snapshot(self.latest_analysis(), self.stabilizer.signals)
        logger.info("Pipeline stopped")

    def close(self, timeout: float = 2.0) -> bool:
        """
        Stop and release the landmark and video sources.

        Returns:
            True once the sources are released. False when a loop thread is
            still inside one of them; the sources stay open and close() can be
            called again later.
        """
        if self._closed:
            return True

        self.stop(timeout)
        if self._threads:
            logger.error("Sources left open: a loop thread is still using them")
            return False

        self.landmarks.close()
        self.video.release()
        self._closed = True
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # -------------------------------------------------
    # Frame loop
    # -------------------------------------------------
    def process_frame(self) -> bool:
        """
        One frame-loop iteration.

        Returns:
            True if a frame was analyzed and published, False on a tolerated
            failed read.

        Raises:
            PipelineError when the camera or the landmark source is dead
        """
        try:
            frame = self.video.read()
        except FrameGrabError as e:
            self._read_failures += 1
            if self._read_failures >= self.config.camera.max_read_failures:
                raise PipelineError(f"Video source failed {self._read_failures} times in a row: {e}") from e
            logger.debug(f"Dropped frame ({self._read_failures}): {e}")
            return False

        self._read_failures = 0
        started = self._clock()
        landmarks = self.landmarks.detect(frame, int(started * 1000))
        analysis = analyze_frame(frame, landmarks, self.config, started, self.index_map)
        stats = self._count_frame(started, self._clock())

        with self._publish_lock:
            self._latest_frame = frame
            self._analysis = analysis
            self._stats = stats
        return True

    def _reset_frame_counter(self):
        self._fps = 0
        self._fps_frames = 0
        self._fps_window_start: Optional[float] = None

    def _count_frame(self, started, finished) -> FrameStats:
        if self._fps_window_start is None:
            self._fps_window_start = started
        self._fps_frames += 1

        if finished - self._fps_window_start >= FPS_WINDOW_S:
            self._fps = self._fps_frames
            self._fps_frames = 0
            self._fps_window_start = finished

        return FrameStats(fps=self._fps, processing_ms=(finished - started) * 1000.0)

    def _frame_loop(self, run: threading.Event):
        while run.is_set():
            try:
                self.process_frame()
            except PipelineError as e:
                self._fail(e, run)
                return
            except Exception as e:
                self._fail(PipelineError(f"Frame processing crashed: {e}"), run)
                return

    # -------------------------------------------------
    # Tick loop
    # -------------------------------------------------
    def tick(self) -> List[object]:
        """One stabilizer / state machine tick. Returns emitted events."""
        self._apply_controls()

        analysis = self.latest_analysis()
        angle = self.machine.current_angle

        if isinstance(analysis, FaceAnalysis):
            aligned = angle is not None and is_pose_valid(
                analysis.pose, analysis.nose_x, angle, self.config.pose
            )["valid"]
            signals = self.stabilizer.update(True, aligned, analysis.lighting.is_good)
        else:
            signals = self.stabilizer.update(False, False, False)

        events = self.machine.tick(signals, self._grab)

        self._snapshot = self._build_snapshot(analysis, self.stabilizer.signals)
        self._dispatch(events)
        return events

    def _tick_loop(self, run: threading.Event, wake: threading.Event):
        interval = self.config.tick_interval
        while run.is_set():
            started = self._clock()
            try:
                self.tick()
            except Exception as e:
                self._fail(PipelineError(f"Tick crashed: {e}"), run)
                return
            remaining = interval - (self._clock() - started)
            if remaining > 0:
                wake.wait(remaining)

    def _apply_controls(self):
        for control in self._drain_controls():
            if control == RESET:
                logger.info("Session reset")
                self.machine.reset()
            elif control == CONFIRM_READY:
                self.machine.confirm_ready()

    def _drain_controls(self):
        controls = []
        while True:
            try:
                controls.append(self._controls.get_nowait())
            except queue.Empty:
                return controls

    def _grab(self) -> Tuple[np.ndarray, bytes]:
        frame = self.latest_frame()
        if frame is None:
            raise CaptureError("No frame available")

        ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(self.config.camera.jpeg_quality)])
        if not ok:
            raise CaptureError("JPEG encoding failed")

        return frame.copy(), buf.tobytes()

    # -------------------------------------------------
    # Failure + events
    # -------------------------------------------------
    def _fail(self, error: PipelineError, run: threading.Event):
        if not run.is_set():
            # the run was already stopped, its failure no longer owns the controller
            logger.warning(f"Ignoring failure from a stopped run: {error}")
            return

        logger.error(f"Pipeline failed: {error}")
        self.error = error
        self.status = PipelineStatus.FAILED
        run.clear()
        self._wake.set()
        self._snapshot = self._build_snapshot(self.latest_analysis(), self.stabilizer.signals)
        self._dispatch([PipelineFailed(error=error)])

    def _dispatch(self, events):
        for event in events:
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Listener failed on {type(event).__name__}")

    def _build_snapshot(self, analysis: FrameAnalysis, signals: StabilizedSignals) -> ReadinessSnapshot:
        machine = self.machine
        angle = machine.current_angle
        stats = self.latest_stats()

        if machine.state == CaptureState.AWAITING_READY:
            instruction = "Press confirm when you are ready"
        elif machine.state == CaptureState.COMPLETE:
            instruction = "All captures complete"
        else:
            instruction = mode_instruction(angle)

        if isinstance(analysis, FaceAnalysis):
            pose, lighting = analysis.pose, analysis.lighting
            guidance = is_pose_valid(pose, analysis.nose_x, angle or "center", self.config.pose)["reason"]
            face_nose_x = analysis.nose_x
        else:
            pose, lighting = NEUTRAL_POSE, None
            guidance = "Face not detected"
            face_nose_x = None

        return ReadinessSnapshot(
            status=self.status,
            state=machine.state,
            angle=angle,
            step_index=machine.session.step_index,
            total_steps=len(machine.session.angles),
            face=signals.face,
            aligned=signals.aligned,
            lighting=signals.lighting,
            yaw=pose.yaw,
            pitch=pose.pitch,
            roll=pose.roll,
            brightness=float(lighting.brightness) if lighting else 0.0,
            std_dev=float(lighting.standard_deviation) if lighting else 0.0,
            nose_x=face_nose_x,
            progress=machine.progress,
            captured_angles=tuple(machine.session.captured_angles),
            show_hint=machine.show_hint,
            instruction=instruction,
            guidance=guidance,
            fps=stats.fps,
            processing_ms=round(stats.processing_ms, 1),
            error=str(self.error) if self.error else None,
        )
