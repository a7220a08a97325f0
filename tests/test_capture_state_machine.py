import numpy as np
import pytest

from conftest import FakeClock
from facescan.capture.session import CaptureSession, CapturedImage
from facescan.capture.state_machine import (
    CaptureFailed,
    CaptureState,
    CaptureStateMachine,
    SessionComplete,
    StepCaptured,
)
from facescan.config import CaptureSettings, StabilizerSettings
from facescan.errors import CaptureError
from facescan.quality.stability_gatekeeper import SignalStabilizer, StabilizedSignals

GOOD = StabilizedSignals(face=True, aligned=True, lighting=True)
BAD = StabilizedSignals(face=True, aligned=False, lighting=True)


class Grabber:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise CaptureError("encode failed")
        return np.zeros((4, 4, 3), dtype=np.uint8), b"jpeg"


@pytest.fixture
def machine():
    return CaptureStateMachine(CaptureSettings(required_ticks=3, forgiveness_ticks=1))


def run(machine, signals, grab, n):
    events = []
    for _ in range(n):
        events.extend(machine.tick(signals, grab))
    return events


def test_nothing_happens_before_confirm(machine):
    grab = Grabber()

    assert run(machine, GOOD, grab, 20) == []
    assert machine.state == CaptureState.AWAITING_READY
    assert machine.step_ticks == 0
    assert grab.calls == 0


def test_confirm_only_from_awaiting_ready(machine):
    assert machine.confirm_ready()
    assert machine.state == CaptureState.ALIGNMENT
    assert machine.current_angle == "center"
    assert not machine.confirm_ready()


def test_streak_reaches_capture_then_grabs_on_next_good_tick(machine):
    grab = Grabber()
    machine.confirm_ready()

    assert run(machine, GOOD, grab, 3) == []
    assert machine.state == CaptureState.CAPTURE
    assert machine.progress == 100
    assert grab.calls == 0

    events = machine.tick(GOOD, grab)

    assert [type(e) for e in events] == [StepCaptured]
    assert events[0].angle == "center" and events[0].step_index == 0
    assert machine.state == CaptureState.ALIGNMENT
    assert machine.current_angle == "left"
    assert machine.streak == 0
    assert machine.progress == 0


def test_one_capture_per_step_under_sustained_ready(machine):
    grab = Grabber()
    machine.confirm_ready()

    events = run(machine, GOOD, grab, 100)
    captured = [e.angle for e in events if isinstance(e, StepCaptured)]

    assert captured == ["center", "left", "right"]
    assert grab.calls == 3
    assert sum(isinstance(e, SessionComplete) for e in events) == 1


def test_full_session_in_order(machine):
    grab = Grabber()
    machine.confirm_ready()

    events = run(machine, GOOD, grab, 12)

    assert isinstance(events[-1], SessionComplete)
    assert [img.angle for img in events[-1].images] == ["center", "left", "right"]
    assert machine.state == CaptureState.COMPLETE
    assert machine.progress == 100
    assert machine.session.is_complete


def test_complete_is_terminal_until_reset(machine):
    grab = Grabber()
    machine.confirm_ready()
    run(machine, GOOD, grab, 12)

    assert run(machine, GOOD, grab, 10) == []
    assert not machine.confirm_ready()
    assert grab.calls == 3

    machine.reset()

    assert machine.state == CaptureState.AWAITING_READY
    assert machine.session.images == {}
    assert machine.current_angle == "center"
    assert machine.streak == 0 and not machine.capture_lock


def test_short_bad_run_is_forgiven(machine):
    machine.confirm_ready()
    grab = Grabber()

    run(machine, GOOD, grab, 2)
    machine.tick(BAD, grab)
    assert machine.streak == 2

    machine.tick(GOOD, grab)
    assert machine.state == CaptureState.CAPTURE


def test_long_bad_run_decays_streak(machine):
    machine.confirm_ready()
    grab = Grabber()

    run(machine, GOOD, grab, 2)
    run(machine, BAD, grab, 3)

    assert machine.streak == 0
    assert machine.state == CaptureState.ALIGNMENT


def test_losing_stability_in_capture_reverts_to_alignment(machine):
    machine.confirm_ready()
    grab = Grabber()
    run(machine, GOOD, grab, 3)

    # forgiven bad tick: still ready but no grab on a bad tick
    assert machine.tick(BAD, grab) == []
    assert machine.state == CaptureState.CAPTURE

    assert machine.tick(BAD, grab) == []
    assert machine.state == CaptureState.ALIGNMENT
    assert not machine.capture_lock
    assert grab.calls == 0


def test_capture_failure_does_not_advance_and_retries(machine):
    machine.confirm_ready()
    grab = Grabber(failures=1)
    run(machine, GOOD, grab, 3)

    events = machine.tick(GOOD, grab)

    assert len(events) == 1 and isinstance(events[0], CaptureFailed)
    assert events[0].angle == "center"
    assert machine.current_angle == "center"
    assert machine.session.images == {}
    assert not machine.capture_lock
    assert machine.is_ready

    events = run(machine, GOOD, grab, 2)

    assert [e.angle for e in events if isinstance(e, StepCaptured)] == ["center"]
    assert grab.calls == 2


def test_hint_follows_wall_clock_not_tick_count():
    clock = FakeClock()
    settings = CaptureSettings(required_ticks=3, hint_after_seconds=15.0)
    machine = CaptureStateMachine(settings, clock=clock)
    machine.confirm_ready()

    # three slow ticks already cover the whole timeout
    for _ in range(3):
        clock.advance(5.0)
        machine.tick(BAD, Grabber())

    assert machine.show_hint


def test_hint_waits_for_elapsed_time():
    clock = FakeClock()
    machine = CaptureStateMachine(CaptureSettings(hint_after_seconds=15.0), clock=clock)
    machine.confirm_ready()

    run(machine, BAD, Grabber(), 500)
    clock.advance(14.9)
    assert not machine.show_hint

    clock.advance(0.1)
    assert machine.show_hint


def test_no_hint_before_confirm():
    clock = FakeClock()
    machine = CaptureStateMachine(CaptureSettings(hint_after_seconds=1.0), clock=clock)

    clock.advance(60.0)
    assert not machine.show_hint

    machine.confirm_ready()
    assert not machine.show_hint


def test_hint_clears_on_next_step():
    clock = FakeClock()
    settings = CaptureSettings(required_ticks=1, hint_after_seconds=0.5)
    machine = CaptureStateMachine(settings, clock=clock)
    machine.confirm_ready()
    grab = Grabber()

    clock.advance(1.0)
    run(machine, BAD, grab, 5)
    assert machine.show_hint

    run(machine, GOOD, grab, 2)
    assert machine.current_angle == "left"
    assert not machine.show_hint


def test_step_change_resets_stabilizer():
    stab = SignalStabilizer(StabilizerSettings(streak_on=2, streak_off=1))
    machine = CaptureStateMachine(CaptureSettings(required_ticks=1), stabilizer=stab)
    machine.confirm_ready()
    grab = Grabber()

    signals = None
    for _ in range(2):
        signals = stab.update(True, True, True)
    assert signals.all_good

    machine.tick(signals, grab)
    machine.tick(signals, grab)

    assert machine.current_angle == "left"
    assert stab.signals == StabilizedSignals()


def test_custom_angle_order():
    machine = CaptureStateMachine(CaptureSettings(angles=["left", "right"], required_ticks=1))
    machine.confirm_ready()

    events = run(machine, GOOD, Grabber(), 4)

    assert [e.angle for e in events if isinstance(e, StepCaptured)] == ["left", "right"]
    assert isinstance(events[-1], SessionComplete)


# -------------------------------------------------
# Session
# -------------------------------------------------

def _image(angle):
    return CapturedImage(angle=angle, pixels=np.zeros((2, 3, 3), np.uint8), encoded=b"x", timestamp=0.0)


def test_session_rejects_out_of_order_image():
    session = CaptureSession()

    with pytest.raises(ValueError):
        session.add_image(_image("left"))

    session.add_image(_image("center"))
    assert session.current_angle == "left"
    assert session.captured_angles == ["center"]


def test_image_metadata():
    meta = _image("center").to_dict()

    assert meta["width"] == 3 and meta["height"] == 2
    assert meta["bytes"] == 1


def test_back_to_back_sessions_get_distinct_ids():
    ids = [CaptureSession().session_id for _ in range(50)]

    assert len(set(ids)) == 50


def test_retake_starts_a_new_session_directory(machine):
    first = machine.session.session_id
    machine.reset()

    assert machine.session.session_id != first
