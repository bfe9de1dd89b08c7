"""Assembly package: frame-sequence and burned-subtitle video renderers."""
from lyricreel.assembly.burn import assemble_burned_video
from lyricreel.assembly.pipeline import PipelineState, ProgressReporter, assemble_video

__all__ = [
    "PipelineState",
    "ProgressReporter",
    "assemble_burned_video",
    "assemble_video",
]
