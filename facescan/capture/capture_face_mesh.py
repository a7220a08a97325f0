"""
capture_face_mesh.py

Guided face capture window (center -> left -> right).

Keys:
    c    confirm ready and start the sequence
    r    retake (reset the session)
    ESC  quit
"""

import argparse
import json
import logging
import os
import sys

import cv2

from facescan.capture.pipeline import PipelineController, PipelineFailed, PipelineStatus
from facescan.capture.state_machine import CaptureFailed, CaptureState, SessionComplete, StepCaptured
from facescan.config import load_config
from facescan.errors import FaceScanError

logger = logging.getLogger(__name__)

WINDOW = "Face Capture"

# =========================
# UI VISUAL CONSTANTS
# =========================
COLOR_OK = (50, 125, 46)         # clinical green (BGR)
COLOR_WAIT = (117, 164, 197)     # bronze
COLOR_ERROR = (60, 60, 220)
COLOR_TEXT = (255, 255, 255)
COLOR_GUIDE = (117, 164, 197)

# -------------------------------------------------
# Saving
# -------------------------------------------------

def session_dirs(output_dir, session_id):
    base = os.path.join(output_dir, f"session_{session_id}")
    image_dir = os.path.join(base, "images")
    os.makedirs(image_dir, exist_ok=True)
    return base, image_dir


def save_face_image(image, image_dir):
    path = os.path.join(image_dir, f"{image.angle.upper()}.jpg")
    with open(path, "wb") as f:
        f.write(image.encoded)
    print(f"📸 Image saved: {path}")
    return path


def save_manifest(base_dir, session_id, images, paths):
    manifest = {
        "session_id": session_id,
        "images": [dict(img.to_dict(), path=paths.get(img.angle)) for img in images],
    }
    path = os.path.join(base_dir, "session.json")
    with open(path, "w") as f:
        json.dump(manifest, f, indent=2)
    print(f"✅ Session saved: {path}")
    return path

# -------------------------------------------------
# Overlay
# -------------------------------------------------

def guide_x(angle, pose_settings, w):
    return int({
        "center": 0.5,
        "left": pose_settings.left_line,
        "right": pose_settings.right_line,
    }.get(angle, 0.5) * w)


def draw_overlay(frame, snap, pose_settings):
    h, w = frame.shape[:2]
    ready_color = COLOR_OK if snap.is_ready else COLOR_WAIT

    if snap.state in (CaptureState.ALIGNMENT, CaptureState.CAPTURE):
        gx = guide_x(snap.angle, pose_settings, w)
        cv2.line(frame, (gx, int(h * 0.15)), (gx, int(h * 0.85)), COLOR_GUIDE, 3, cv2.LINE_AA)

    if snap.nose_x is not None:
        nx = int(snap.nose_x * w)
        cv2.line(frame, (nx, int(h * 0.25)), (nx, int(h * 0.75)), ready_color, 2, cv2.LINE_AA)

    cv2.putText(frame, f"Step {min(snap.step_index + 1, snap.total_steps)} of {snap.total_steps}",
                (40, 50), cv2.FONT_HERSHEY_SIMPLEX, 0.9, COLOR_TEXT, 2)
    cv2.putText(frame, snap.instruction, (40, 95), cv2.FONT_HERSHEY_SIMPLEX, 1.0, ready_color, 2)

    indicators = [("Face", snap.face), ("Position", snap.aligned), ("Lighting", snap.lighting)]
    for i, (label, ok) in enumerate(indicators):
        cv2.putText(frame, f"{label}: {'OK' if ok else '--'}", (40, 140 + i * 32),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.7, COLOR_OK if ok else COLOR_WAIT, 2)

    if snap.state in (CaptureState.ALIGNMENT, CaptureState.CAPTURE):
        bar_w = int((w - 80) * snap.progress / 100.0)
        cv2.rectangle(frame, (40, h - 40), (w - 40, h - 25), COLOR_TEXT, 1)
        cv2.rectangle(frame, (40, h - 40), (40 + bar_w, h - 25), ready_color, -1)
        cv2.putText(frame, snap.guidance, (40, h - 55), cv2.FONT_HERSHEY_SIMPLEX, 0.7, COLOR_TEXT, 2)

    if snap.show_hint:
        cv2.putText(frame, "Having trouble? Center your face, move closer, avoid backlight",
                    (40, h - 90), cv2.FONT_HERSHEY_SIMPLEX, 0.7, COLOR_WAIT, 2)

    debug = f"yaw {snap.yaw:.1f}  pitch {snap.pitch:.1f}  roll {snap.roll:.1f}  " \
            f"bright {snap.brightness:.0f}  std {snap.std_dev:.1f}"
    cv2.putText(frame, debug, (w - 620, 50), cv2.FONT_HERSHEY_SIMPLEX, 0.6, COLOR_TEXT, 1)
    cv2.putText(frame, f"{snap.fps} fps  {snap.processing_ms:.0f} ms/frame", (w - 620, 80),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, COLOR_TEXT, 1)

    if snap.status == PipelineStatus.FAILED:
        cv2.putText(frame, f"ERROR: {snap.error}", (40, h // 2), cv2.FONT_HERSHEY_SIMPLEX, 0.9, COLOR_ERROR, 2)

    return frame

# -------------------------------------------------
# Main
# -------------------------------------------------

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Guided multi-angle face capture")
    parser.add_argument("--config", help="Path to facescan.yaml")
    parser.add_argument("--output", help="Directory for captured sessions")
    parser.add_argument("--camera", type=int, help="Camera index")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except (FaceScanError, FileNotFoundError) as e:
        print(f"Configuration error: {e}")
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format='%(asctime)s [%(levelname)s] %(message)s'
    )

    if args.camera is not None:
        config.camera.index = args.camera
    output_dir = args.output or config.output_dir

    # imported here so --help works without the model stack
    from facescan.capture.camera import CameraSource
    from facescan.capture.landmark_source import MediaPipeLandmarkSource

    try:
        camera = CameraSource(config.camera)
    except FaceScanError as e:
        print(f"Camera error: {e}")
        return 1

    try:
        landmarker = MediaPipeLandmarkSource(config.landmarker)
    except FaceScanError as e:
        camera.release()
        print(f"Landmarker error: {e}")
        return 1

    saved_paths = {}

    def on_event(event):
        if isinstance(event, StepCaptured):
            print(f"✓ {event.angle.upper()} CAPTURED")
            if event.step_index == 0:
                saved_paths.clear()
            session_id = controller.machine.session.session_id
            _, image_dir = session_dirs(output_dir, session_id)
            saved_paths[event.angle] = save_face_image(event.image, image_dir)
        elif isinstance(event, SessionComplete):
            session_id = controller.machine.session.session_id
            base_dir, _ = session_dirs(output_dir, session_id)
            save_manifest(base_dir, session_id, event.images, saved_paths)
        elif isinstance(event, CaptureFailed):
            print(f"⚠️ Capture failed for {event.angle}, retrying: {event.error}")
        elif isinstance(event, PipelineFailed):
            print(f"❌ Pipeline stopped: {event.error}")

    controller = PipelineController(camera, landmarker, config)
    controller.add_listener(on_event)

    cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)
    print("Press 'c' when ready | 'r' to retake | ESC to exit")

    with controller:
        controller.start()

        while True:
            frame = controller.latest_frame()
            snap = controller.snapshot()

            if frame is not None:
                cv2.imshow(WINDOW, draw_overlay(frame.copy(), snap, config.pose))

            key = cv2.waitKey(15) & 0xFF
            if key == 27:
                break
            if key == ord('c'):
                controller.confirm_ready()
            elif key == ord('r'):
                print("↺ Retake")
                controller.reset()

        failed = controller.status == PipelineStatus.FAILED

    cv2.destroyAllWindows()
    print("[DONE]")
    return 2 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
