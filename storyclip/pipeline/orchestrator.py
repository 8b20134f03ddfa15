from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from storyclip.models import (
    AudioAsset,
    GeneratedClip,
    PipelineState,
    Progress,
    VideoSegment,
)
from storyclip.pipeline.progress import ProgressCallback, ProgressSignal
from storyclip.pipeline.roster import CharacterRoster
from storyclip.tools.scene_segment import SceneSegmenter
from storyclip.tools.video_gen import ClipGenerator
from storyclip.utils.blob_store import BlobStore
from storyclip.utils.logging_setup import log_context, setup_logger

logger = setup_logger(__name__)


class StoryPipeline:
    """
    Session object driving narration -> segments -> clips.

    The presentation layer edits inputs through the setters and the character
    roster, calls ``run()`` and ``reset()``, and observes progress through
    ``subscribe()``. All state is owned here and exposed read-only.

    Example:
        ```python
        pipeline = StoryPipeline()
        pipeline.set_audio(AudioAsset.from_path("story.mp3"))
        hero = next(iter(pipeline.characters))
        pipeline.characters.set_name(hero.id, "Mara")
        await pipeline.run()
        for clip in pipeline.clips:
            print(clip.segment.topic_summary, clip.blob_url)
        ```
    """

    def __init__(
        self,
        segmenter: Optional[SceneSegmenter] = None,
        generator: Optional[ClipGenerator] = None,
        blobs: Optional[BlobStore] = None,
    ):
        self.blobs = blobs if blobs is not None else (generator.blobs if generator else BlobStore())
        self.segmenter = segmenter or SceneSegmenter()
        self.generator = generator or ClipGenerator(self.blobs)

        self._progress = ProgressSignal()
        self._roster = CharacterRoster(self.blobs)
        self._roster.add()

        self._state = PipelineState.IDLE
        self._clips: List[GeneratedClip] = []
        self._error = ""
        self._audio: Optional[AudioAsset] = None
        self._audio_url: Optional[str] = None
        self._context = ""
        self._active_segment: Optional[VideoSegment] = None
        self._session = 0
        self._session_id = uuid.uuid4().hex[:8]

    # -- read-only state ---------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def progress(self) -> Progress:
        return self._progress.value

    @property
    def clips(self) -> Tuple[GeneratedClip, ...]:
        return tuple(self._clips)

    @property
    def error(self) -> str:
        return self._error

    @property
    def audio(self) -> Optional[AudioAsset]:
        return self._audio

    @property
    def audio_url(self) -> Optional[str]:
        return self._audio_url

    @property
    def context(self) -> str:
        return self._context

    @property
    def characters(self) -> CharacterRoster:
        return self._roster

    @property
    def active_segment(self) -> Optional[VideoSegment]:
        return self._active_segment

    @property
    def session(self) -> int:
        return self._session

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        return self._progress.subscribe(callback)

    # -- inputs ------------------------------------------------------------

    def set_audio(self, audio: AudioAsset) -> str:
        self.clear_audio()
        self._audio = audio
        self._audio_url = self.blobs.create(audio.data, audio.mime_type)
        return self._audio_url

    def clear_audio(self) -> None:
        if self._audio_url:
            self.blobs.release(self._audio_url)
        self._audio = None
        self._audio_url = None

    def set_context(self, text: str) -> None:
        self._context = text or ""

    # -- lifecycle ---------------------------------------------------------

    async def run(self) -> PipelineState:
        """
        Segments the narration and generates every clip in order.

        Failures never escape: they land in ``state``/``error`` and the clips
        generated so far are kept. A ``reset()`` while this is awaiting turns
        the rest of the run into a no-op.
        """
        if self._audio is None:
            logger.warning("run() called without an audio asset")
            return self._state
        if self._state is not PipelineState.IDLE:
            # complete and error only leave through reset()
            logger.warning(f"run() ignored in state {self._state.value}; reset() first")
            return self._state

        token = self._session
        self._release_clips()
        self._error = ""
        self._active_segment = None
        self._state = PipelineState.PROCESSING
        self._progress.clear()

        with log_context(session_id=self._session_id, stage="segment"):
            try:
                segments = await self.segmenter.segment(
                    self._audio,
                    self._context,
                    self._roster.to_list(),
                    report=lambda p: self._publish(token, p),
                )
                if self._is_stale(token):
                    return self._state
                await self._generate_all(token, segments)
            except Exception as exc:
                if self._is_stale(token):
                    logger.info(f"Ignoring failure from a reset session: {exc}")
                    return self._state
                self._fail(exc)
        return self._state

    def reset(self) -> None:
        """Discard all session state and return to idle; in-flight work is abandoned."""
        self._session += 1
        self._release_clips()
        self.clear_audio()
        self._context = ""
        self._roster.reset()
        self._error = ""
        self._active_segment = None
        self._state = PipelineState.IDLE
        self._progress.clear()
        logger.info(f"Session {self._session_id} reset")
        self._session_id = uuid.uuid4().hex[:8]

    # -- internals ---------------------------------------------------------

    async def _generate_all(self, token: int, segments: List[VideoSegment]) -> None:
        total = len(segments)
        self._progress.set(Progress(stage="Generating clips", current=0, total=total, message="Starting video generation..."))

        for index, segment in enumerate(segments):
            self._progress.update(
                current=index,
                message=f"Generating clip {index + 1}/{total}: {segment.topic_summary}",
            )
            self._active_segment = segment
            character = self._roster.find(segment.character_id)
            photo = character.photo if character else None

            with log_context(stage="generate", segment=str(index)):
                logger.info(f"Generating clip {index + 1}/{total}")
                blob_url = await self.generator.generate(segment, photo)

            if self._is_stale(token):
                self.blobs.release(blob_url)
                return
            self._clips.append(GeneratedClip(segment=segment, blob_url=blob_url))

        self._active_segment = None
        self._progress.set(Progress(stage="Finished", current=total, total=total, message="All clips generated!"))
        self._state = PipelineState.COMPLETE
        logger.info(f"Generated {total} clips")

    def _fail(self, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        logger.error(f"Generation failed after {len(self._clips)} clips: {message}")
        self._error = message
        self._active_segment = None
        self._state = PipelineState.ERROR
        self._progress.set(replace(self._progress.value, stage="Error", message=message))

    def _publish(self, token: int, progress: Progress) -> None:
        if not self._is_stale(token):
            self._progress.set(progress)

    def _is_stale(self, token: int) -> bool:
        return token != self._session

    def _release_clips(self) -> None:
        self.blobs.release_many(clip.blob_url for clip in self._clips)
        self._clips = []
