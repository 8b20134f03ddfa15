import asyncio
import math
import os
import time
from typing import Awaitable, Callable, Dict, Iterator, Optional

import requests

from storyclip.config.config import config
from storyclip.errors import (
    DownloadFailed,
    GenerationFailed,
    GenerationNoResult,
    GenerationPollFailed,
    GenerationStartFailed,
    GenerationTimedOut,
    MissingCredential,
)
from storyclip.models import MAX_CLIP_SECONDS, MIN_CLIP_SECONDS, ReferenceImage, VideoSegment
from storyclip.utils.blob_store import BlobStore
from storyclip.utils.genai_client import DownloadError, GenAIClient, VideoJob
from storyclip.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

video_gen_config: Dict = config.get("generation", {})

# Polling policy for long-running video jobs; not configurable
POLL_INITIAL_MS = 5000
POLL_FACTOR = 1.5
POLL_MAX_MS = 15000
DEADLINE_SECONDS = 600


def _get_api_key() -> str:
    """Read at call time so a key exported after import is still picked up."""
    env_var = config.get("credential_env", "GEMINI_API_KEY")
    key = os.getenv(env_var) or ""
    if not key:
        raise MissingCredential(env_var)
    return key


def clamp_clip_duration(seconds: float, min_seconds: int = MIN_CLIP_SECONDS, max_seconds: int = MAX_CLIP_SECONDS) -> int:
    """Round half up, then clamp into [min_seconds, max_seconds]."""
    if math.isnan(seconds):
        return min_seconds
    if math.isinf(seconds):
        return max_seconds if seconds > 0 else min_seconds
    return max(min_seconds, min(max_seconds, math.floor(seconds + 0.5)))


def clip_duration(segment: VideoSegment) -> int:
    return clamp_clip_duration(segment.end_time - segment.start_time)


def backoff_delays(initial_ms: float = POLL_INITIAL_MS, factor: float = POLL_FACTOR, cap_ms: float = POLL_MAX_MS) -> Iterator[float]:
    """Poll waits in milliseconds: grows by ``factor`` until it sticks at ``cap_ms``."""
    wait = min(initial_ms, cap_ms)
    while True:
        yield wait
        wait = min(wait * factor, cap_ms)


class ClipGenerator:
    def __init__(
        self,
        blobs: BlobStore,
        client_factory: Optional[Callable[[str], GenAIClient]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.blobs = blobs
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def _default_client(api_key: str) -> GenAIClient:
        models = config.get("models", {})
        return GenAIClient(
            api_key,
            segment_model=models.get("segment", "gemini-2.5-flash"),
            video_model=models.get("video", "veo-2.0-generate-001"),
        )

    async def generate(self, segment: VideoSegment, reference_image: Optional[ReferenceImage] = None) -> str:
        """
        Generates one clip for a segment and returns a blob handle to the video bytes.

        Args:
            segment (VideoSegment): The segment to render.
            reference_image (ReferenceImage, optional): Character photo used as visual reference.

        Returns:
            str: Blob handle owned by the caller.

        Raises:
            MissingCredential, GenerationStartFailed, GenerationPollFailed,
            GenerationTimedOut, GenerationFailed, GenerationNoResult, DownloadFailed
        """
        api_key = _get_api_key()
        client = self._client_factory(api_key)
        duration = clip_duration(segment)

        try:
            job = await client.start_video_job(
                segment.video_prompt,
                reference_image,
                duration_seconds=duration,
                aspect_ratio=video_gen_config.get("aspect_ratio", "16:9"),
                person_generation=video_gen_config.get("person_generation", "allow_all"),
            )
        except Exception as exc:
            logger.exception("Error starting video generation")
            raise GenerationStartFailed(str(exc) or type(exc).__name__) from exc

        logger.info(f"Started video job {job.name} ({duration}s): {segment.topic_summary}")
        job = await self._wait_for_job(client, job)

        if job.error_message:
            logger.error(f"Video job {job.name} failed: {job.error_message}")
            raise GenerationFailed(job.error_message)
        if not job.result_uri:
            raise GenerationNoResult()

        data = await self._download(client, job.result_uri)
        handle = self.blobs.create(data, "video/mp4")
        logger.info(f"Video job {job.name} downloaded ({len(data)} bytes) -> {handle}")
        return handle

    async def _wait_for_job(self, client: GenAIClient, job: VideoJob) -> VideoJob:
        deadline = self._clock() + DEADLINE_SECONDS
        delays = backoff_delays()

        while not job.done:
            if self._clock() > deadline:
                logger.error(f"Video job {job.name} exceeded {DEADLINE_SECONDS}s")
                raise GenerationTimedOut(DEADLINE_SECONDS)
            wait_ms = next(delays)
            await self._sleep(wait_ms / 1000)
            try:
                job = await client.poll_video_job(job)
            except Exception as exc:
                logger.exception("Error polling video generation status")
                raise GenerationPollFailed(str(exc) or type(exc).__name__) from exc
            logger.debug(f"Polled video job {job.name}: done={job.done}")
        return job

    async def _download(self, client: GenAIClient, uri: str) -> bytes:
        timeout = float(video_gen_config.get("download_timeout_seconds", 120))
        try:
            return await client.download(uri, timeout=timeout)
        except DownloadError as exc:
            logger.error(f"Error downloading video: {exc}")
            raise DownloadFailed(exc.status, exc.reason) from exc
        except requests.RequestException as exc:
            logger.exception("Error downloading video")
            raise DownloadFailed(None, str(exc)) from exc
