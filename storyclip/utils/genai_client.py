import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import requests
from google import genai
from google.genai import types

from storyclip.models import ReferenceImage


@dataclass
class VideoJob:
    """Normalized view of a long-running video generation operation."""

    name: Optional[str]
    done: bool
    error_message: Optional[str] = None
    result_uri: Optional[str] = None
    # Raw SDK operation, re-submitted on every poll
    operation: Any = None

    @classmethod
    def from_operation(cls, operation: Any) -> "VideoJob":
        error = getattr(operation, "error", None)
        error_message = None
        if error:
            if isinstance(error, dict):
                error_message = str(error.get("message") or error)
            else:
                error_message = str(getattr(error, "message", None) or error)

        result_uri = None
        response = getattr(operation, "response", None) or getattr(operation, "result", None)
        videos = getattr(response, "generated_videos", None) or []
        if videos:
            video = getattr(videos[0], "video", None)
            result_uri = getattr(video, "uri", None) or None

        return cls(
            name=getattr(operation, "name", None),
            done=bool(getattr(operation, "done", False)),
            error_message=error_message,
            result_uri=result_uri,
            operation=operation,
        )


class DownloadError(RuntimeError):
    def __init__(self, status: Optional[int], reason: str = ""):
        self.status = status
        self.reason = reason
        super().__init__(f"Download failed: {status} {reason}".strip())


class GenAIClient:
    """Thin async wrapper over the google-genai SDK for Gemini and Veo."""

    def __init__(
        self,
        api_key: str,
        segment_model: str = "gemini-2.5-flash",
        video_model: str = "veo-2.0-generate-001",
    ):
        self.api_key = api_key
        self.segment_model = segment_model
        self.video_model = video_model
        self._client = genai.Client(api_key=api_key)

    async def analyze_audio(
        self,
        prompt: str,
        audio_bytes: bytes,
        mime_type: str,
        response_schema: Optional[types.Schema] = None,
    ) -> str:
        contents = [
            types.Content(
                role="user",
                parts=[
                    types.Part.from_text(text=prompt),
                    types.Part.from_bytes(data=audio_bytes, mime_type=mime_type),
                ],
            )
        ]
        response = await self._client.aio.models.generate_content(
            model=self.segment_model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=response_schema,
            ),
        )
        return response.text or ""

    async def start_video_job(
        self,
        prompt: str,
        image: Optional[ReferenceImage],
        duration_seconds: int,
        aspect_ratio: str = "16:9",
        person_generation: str = "allow_all",
    ) -> VideoJob:
        image_part = None
        if image is not None:
            image_part = types.Image(image_bytes=image.data, mime_type=image.mime_type)

        operation = await self._client.aio.models.generate_videos(
            model=self.video_model,
            prompt=prompt,
            image=image_part,
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                aspect_ratio=aspect_ratio,
                duration_seconds=duration_seconds,
                person_generation=person_generation,
            ),
        )
        return VideoJob.from_operation(operation)

    async def poll_video_job(self, job: VideoJob) -> VideoJob:
        operation = await self._client.aio.operations.get(job.operation)
        return VideoJob.from_operation(operation)

    async def download(self, uri: str, timeout: float = 120) -> bytes:
        return await asyncio.to_thread(self._download_sync, uri, timeout)

    def _download_sync(self, uri: str, timeout: float) -> bytes:
        # requests merges params into any query string already on the URI
        resp = requests.get(uri, params={"key": self.api_key}, timeout=timeout)
        if not 200 <= resp.status_code < 300:
            raise DownloadError(resp.status_code, resp.reason or "")
        return resp.content
