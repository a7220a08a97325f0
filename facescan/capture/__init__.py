from .pipeline import PipelineController, PipelineFailed, ReadinessSnapshot
from .session import CaptureSession, CapturedImage
from .state_machine import CaptureFailed, CaptureState, CaptureStateMachine, SessionComplete, StepCaptured

__all__ = [
    'PipelineController',
    'PipelineFailed',
    'ReadinessSnapshot',
    'CaptureSession',
    'CapturedImage',
    'CaptureFailed',
    'CaptureState',
    'CaptureStateMachine',
    'SessionComplete',
    'StepCaptured',
]
