"""
Narration-to-video storyboarding.

An audio narration is segmented into timed scenes by Gemini, each scene is
rendered by Veo, and the resulting clips are played back over the original
audio track.
"""

from .errors import (
    DownloadFailed,
    GenerationFailed,
    GenerationNoResult,
    GenerationPollFailed,
    GenerationStartFailed,
    GenerationTimedOut,
    MissingCredential,
    SegmentationFailed,
    StoryClipError,
)
from .models import (
    AudioAsset,
    Character,
    GeneratedClip,
    PipelineState,
    Progress,
    ReferenceImage,
    VideoSegment,
)
from .pipeline.orchestrator import StoryPipeline
from .playback.sequencer import PlaybackSequencer

__all__ = [
    "AudioAsset",
    "Character",
    "DownloadFailed",
    "GeneratedClip",
    "GenerationFailed",
    "GenerationNoResult",
    "GenerationPollFailed",
    "GenerationStartFailed",
    "GenerationTimedOut",
    "MissingCredential",
    "PipelineState",
    "PlaybackSequencer",
    "Progress",
    "ReferenceImage",
    "SegmentationFailed",
    "StoryClipError",
    "StoryPipeline",
    "VideoSegment",
]
