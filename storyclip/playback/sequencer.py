from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from storyclip.models import GeneratedClip
from storyclip.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


class MediaElement(Protocol):
    src: str
    current_time: float

    def play(self) -> None: ...

    def pause(self) -> None: ...


class PlaybackSequencer:
    """
    Plays clips back to back over one continuous audio track.

    Audio is the timeline: it is started once and only paused after the last
    clip ends. Video sources are swapped each time the current clip finishes.
    """

    def __init__(self, audio: MediaElement, video: MediaElement, clips: Sequence[GeneratedClip] = ()):
        self.audio = audio
        self.video = video
        self._clips: List[GeneratedClip] = list(clips)
        self._index = 0
        self._playing = False

    def load(self, clips: Sequence[GeneratedClip]) -> None:
        self._clips = list(clips)
        self._index = 0
        self._playing = False

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_clip_url(self) -> Optional[str]:
        if 0 <= self._index < len(self._clips):
            return self._clips[self._index].blob_url
        return None

    @property
    def is_playing(self) -> bool:
        return self._playing

    def play(self) -> bool:
        if not self._clips:
            logger.warning("play() called with no clips loaded")
            return False
        self._index = 0
        self.video.src = self._clips[0].blob_url
        self.audio.current_time = 0
        self.audio.play()
        self.video.play()
        self._playing = True
        logger.info(f"Playback started with {len(self._clips)} clips")
        return True

    def on_clip_ended(self) -> bool:
        """Advance to the next clip; returns False once the story has finished."""
        if not self._playing:
            return False
        next_index = self._index + 1
        if next_index < len(self._clips):
            self._index = next_index
            self.video.src = self._clips[next_index].blob_url
            self.video.play()
            return True

        self.audio.pause()
        self._playing = False
        logger.info("Playback finished")
        return False
