import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Clip lengths the video model accepts, in whole seconds
MIN_CLIP_SECONDS = 5
MAX_CLIP_SECONDS = 8

# mimetypes misses some of these depending on the platform
AUDIO_MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".flac": "audio/flac",
    ".webm": "audio/webm",
}


class PipelineState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class VideoSegment(BaseModel):
    """A timed slice of the narration plus the visual description to render for it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    topic_summary: str = Field(alias="topicSummary")
    video_prompt: str = Field(alias="videoPrompt")
    character_id: Optional[str] = Field(default=None, alias="characterId")
    start_time: float = Field(alias="startTime", allow_inf_nan=False)
    end_time: float = Field(alias="endTime", allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_window(self) -> "VideoSegment":
        if self.end_time <= self.start_time:
            raise ValueError(f"endTime must be greater than startTime, got {self.start_time} -> {self.end_time}")
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class ReferenceImage:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class AudioAsset:
    data: bytes
    mime_type: str
    name: str = ""

    @classmethod
    def from_path(cls, path, mime_type: Optional[str] = None) -> "AudioAsset":
        p = Path(path)
        guessed = (
            mime_type
            or AUDIO_MIME_TYPES.get(p.suffix.lower())
            or mimetypes.guess_type(p.name)[0]
            or "application/octet-stream"
        )
        return cls(data=p.read_bytes(), mime_type=guessed, name=p.name)


@dataclass
class Character:
    id: str
    name: str = ""
    description: str = ""
    photo: Optional[ReferenceImage] = None
    # Blob handle of the local photo preview
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class GeneratedClip:
    segment: VideoSegment
    blob_url: str


@dataclass(frozen=True)
class Progress:
    stage: str
    current: int = 0
    total: int = 1
    message: str = ""

    def __post_init__(self):
        if self.total < 0:
            raise ValueError(f"total must be >= 0, got {self.total}")
        if not 0 <= self.current <= self.total:
            raise ValueError(f"current must be within [0, {self.total}], got {self.current}")

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return self.current / self.total * 100


INITIAL_PROGRESS = Progress(stage="Starting", current=0, total=1, message="")
