"""
stability_gatekeeper.py

LAYER 3B: Stability Gatekeeper (Hysteresis)
------------------------------------------
Purpose:
- Debounce the raw per-frame booleans so one dropped frame or a twitch
  does not flip the UI or the capture trigger

Inputs (per tick):
- face_detected (bool)
- aligned (bool, target-aware pose check)
- lighting_good (bool)

Output:
- StabilizedSignals (face, aligned, lighting)

ON needs `streak_on` consecutive good ticks, OFF needs `streak_off`
consecutive bad ticks. ON > OFF, so signals are slow to appear and quick
to drop.
"""

import logging
from dataclasses import dataclass

from facescan.config import StabilizerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilizedSignals:
    face: bool = False
    aligned: bool = False
    lighting: bool = False

    @property
    def all_good(self):
        return self.face and self.aligned and self.lighting


class HysteresisSignal:
    """One debounced boolean."""

    def __init__(self, name, streak_on, streak_off):
        self.name = name
        self.streak_on = streak_on
        self.streak_off = streak_off
        self.reset()

    def reset(self):
        self.good_streak = 0
        self.bad_streak = 0
        self.stable = False

    def update(self, raw):
        if raw:
            self.good_streak = min(self.streak_on, self.good_streak + 1)
            self.bad_streak = 0
        else:
            self.bad_streak = min(self.streak_off, self.bad_streak + 1)
            self.good_streak = 0

        if self.good_streak >= self.streak_on:
            self.stable = True
        if self.bad_streak >= self.streak_off:
            self.stable = False

        return self.stable

    def force_off(self):
        self.stable = False

    @property
    def lost(self):
        """Bad streak has reached the OFF threshold."""
        return self.bad_streak >= self.streak_off


class SignalStabilizer:
    def __init__(self, settings: StabilizerSettings = None):
        settings = settings or StabilizerSettings()
        self.settings = settings

        self.face = HysteresisSignal("face", settings.streak_on, settings.streak_off)
        self.aligned = HysteresisSignal("aligned", settings.streak_on, settings.streak_off)
        self.lighting = HysteresisSignal("lighting", settings.streak_on, settings.streak_off)

    # -------------------------------------------------
    # Reset logic (hard reset)
    # -------------------------------------------------
    def reset(self):
        self.face.reset()
        self.aligned.reset()
        self.lighting.reset()

    # -------------------------------------------------
    # Main update per tick
    # -------------------------------------------------
    def update(self, face_detected, aligned, lighting_good) -> StabilizedSignals:
        """
        Call this once per tick with the latest raw readings.

        Returns:
            StabilizedSignals
        """
        was_face = self.face.stable
        self.face.update(bool(face_detected))

        # pose and lighting are meaningless without a face
        if face_detected:
            self.aligned.update(bool(aligned))
            self.lighting.update(bool(lighting_good))
        else:
            self.aligned.update(False)
            self.lighting.update(False)

        if self.face.lost:
            self.aligned.force_off()
            self.lighting.force_off()

        if was_face != self.face.stable:
            logger.debug(f"Face {'acquired' if self.face.stable else 'lost'}")

        return self.signals

    @property
    def signals(self) -> StabilizedSignals:
        return StabilizedSignals(
            face=self.face.stable,
            aligned=self.aligned.stable,
            lighting=self.lighting.stable,
        )
