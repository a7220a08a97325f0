"""
state_machine.py

LAYER 4: Capture State Machine
-----------------------------
AWAITING_READY -> ALIGNMENT(step) -> CAPTURE(step) -> ... -> COMPLETE

Driven once per stabilizer tick. A stability streak accumulates while the
stabilized face, alignment and lighting signals all hold; short bad runs
are forgiven. When the streak reaches `required_ticks` the step is ready,
and the next good tick takes the capture lock and grabs exactly one frame.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np

from facescan.capture.session import CaptureSession, CapturedImage
from facescan.config import CaptureSettings
from facescan.errors import CaptureError
from facescan.quality.stability_gatekeeper import SignalStabilizer, StabilizedSignals

logger = logging.getLogger(__name__)

# grab() -> (BGR frame, JPEG bytes); raises CaptureError
GrabFn = Callable[[], Tuple[np.ndarray, bytes]]


class CaptureState(str, Enum):
    AWAITING_READY = "awaiting_ready"
    ALIGNMENT = "alignment"
    CAPTURE = "capture"
    COMPLETE = "complete"


# -------------------------------------------------
# Events
# -------------------------------------------------

@dataclass(frozen=True)
class StepCaptured:
    angle: str
    step_index: int
    image: CapturedImage


@dataclass(frozen=True)
class SessionComplete:
    images: Tuple[CapturedImage, ...]   # in capture order (center, left, right)


@dataclass(frozen=True)
class CaptureFailed:
    angle: str
    error: CaptureError


class CaptureStateMachine:
    def __init__(
        self,
        settings: CaptureSettings = None,
        stabilizer: Optional[SignalStabilizer] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or CaptureSettings()
        self.stabilizer = stabilizer
        self._clock = clock
        self.reset()

    # -------------------------------------------------
    # Control signals
    # -------------------------------------------------
    def reset(self):
        """Discard the session and go back to AWAITING_READY."""
        self.session = CaptureSession(angles=list(self.settings.angles))
        self.state = CaptureState.AWAITING_READY
        self._clear_step()

    def confirm_ready(self) -> bool:
        if self.state != CaptureState.AWAITING_READY:
            logger.debug(f"confirm_ready ignored in state {self.state.value}")
            return False

        self.state = CaptureState.ALIGNMENT
        self._clear_step()
        logger.info(f"Session {self.session.session_id} started: {self.session.angles}")
        return True

    def _clear_step(self):
        self.streak = 0
        self.bad_run = 0
        self.capture_lock = False
        self.step_ticks = 0
        self.step_started = self._clock()
        if self.stabilizer is not None:
            self.stabilizer.reset()

    # -------------------------------------------------
    # Read-only views
    # -------------------------------------------------
    @property
    def current_angle(self) -> Optional[str]:
        return self.session.current_angle

    @property
    def progress(self) -> int:
        """Stability progress for the current step, 0-100."""
        if self.state in (CaptureState.AWAITING_READY, CaptureState.COMPLETE):
            return 100 if self.state == CaptureState.COMPLETE else 0
        return int(round(100.0 * self.streak / self.settings.required_ticks))

    @property
    def is_ready(self) -> bool:
        return self.streak >= self.settings.required_ticks

    @property
    def show_hint(self) -> bool:
        if self.state not in (CaptureState.ALIGNMENT, CaptureState.CAPTURE):
            return False
        return self._clock() - self.step_started >= self.settings.hint_after_seconds

    # -------------------------------------------------
    # Main update per tick
    # -------------------------------------------------
    def tick(self, signals: StabilizedSignals, grab: GrabFn) -> List[object]:
        """
        Advance one tick.

        Returns:
            list of events (StepCaptured, SessionComplete, CaptureFailed)
        """
        if self.state in (CaptureState.AWAITING_READY, CaptureState.COMPLETE):
            return []

        self.step_ticks += 1
        good = signals.all_good
        self._update_streak(good)

        if self.state == CaptureState.ALIGNMENT:
            if self.is_ready:
                self.state = CaptureState.CAPTURE
                logger.debug(f"{self.current_angle}: stable, capturing")
            return []

        # CAPTURE
        if not self.is_ready:
            # stability lost before the lock was taken
            self.state = CaptureState.ALIGNMENT
            self.capture_lock = False
            logger.debug(f"{self.current_angle}: stability lost, back to alignment")
            return []

        if not good or self.capture_lock:
            return []

        return self._capture(grab)

    def _update_streak(self, good):
        if good:
            self.streak = min(self.settings.required_ticks, self.streak + 1)
            self.bad_run = 0
        else:
            self.bad_run += 1
            if self.bad_run > self.settings.forgiveness_ticks:
                self.streak = max(0, self.streak - 1)

    def _capture(self, grab: GrabFn) -> List[object]:
        self.capture_lock = True
        angle = self.current_angle

        try:
            pixels, encoded = grab()
        except CaptureError as e:
            logger.warning(f"Capture failed for {angle}, will retry: {e}")
            self.capture_lock = False
            self.state = CaptureState.ALIGNMENT
            return [CaptureFailed(angle=angle, error=e)]

        image = CapturedImage(angle=angle, pixels=pixels, encoded=encoded, timestamp=time.time())
        step_index = self.session.step_index
        self.session.add_image(image)
        events = [StepCaptured(angle=angle, step_index=step_index, image=image)]

        if self.session.is_complete:
            # lock stays taken, COMPLETE ignores further ticks
            self.state = CaptureState.COMPLETE
            events.append(SessionComplete(images=tuple(self.session.ordered_images())))
            logger.info(f"Session {self.session.session_id} complete")
        else:
            self.state = CaptureState.ALIGNMENT
            self._clear_step()
            logger.info(f"Next angle: {self.current_angle}")

        return events
