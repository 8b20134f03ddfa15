import json
import os
import re
from typing import Callable, List, Optional, Sequence

from google.genai import types
from pydantic import ValidationError

from storyclip.config.config import config
from storyclip.errors import MissingCredential, SegmentationFailed
from storyclip.models import MAX_CLIP_SECONDS, MIN_CLIP_SECONDS, AudioAsset, Character, Progress, VideoSegment
from storyclip.utils.genai_client import GenAIClient
from storyclip.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

ProgressReporter = Callable[[Progress], None]

ANALYZE_STAGE = "Analyzing audio"

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

SEGMENT_RULES = """You are a film director's assistant. Your task is to analyze an audio file and create a synchronized visual story.
1. Transcribe the audio verbatim.
2. Analyze the transcript and break it down into short, visually distinct video segments that together cover the full transcript.
3. Each segment's duration must be between {min_seconds} and {max_seconds} seconds to feel natural and not rushed.
4. For each segment, provide the precise 'startTime' and 'endTime' in seconds from the audio.
5. For each segment, provide a concise 'topicSummary' and a detailed 'videoPrompt' for an AI video generator.
6. If a specific character is the main focus, identify them by their 'characterId'.
7. The final output must be a valid JSON array of objects, in chronological order.

Character Descriptions:
{characters}

Story Context:
{context}
"""

SEGMENT_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "topicSummary": types.Schema(
                type=types.Type.STRING,
                description="A brief summary of what happens in this segment.",
            ),
            "videoPrompt": types.Schema(
                type=types.Type.STRING,
                description=(
                    "A detailed, vivid visual prompt for the AI video generator. Describe the scene, "
                    "character actions, emotions, and camera angle. Include character names where applicable."
                ),
            ),
            "characterId": types.Schema(
                type=types.Type.STRING,
                description=(
                    "The ID of the character who is the main focus of this segment. Use one of the "
                    "provided character IDs. If no single character is the focus, omit this field."
                ),
            ),
            "startTime": types.Schema(type=types.Type.NUMBER, description="The start time of this segment in seconds."),
            "endTime": types.Schema(type=types.Type.NUMBER, description="The end time of this segment in seconds."),
        },
        required=["topicSummary", "videoPrompt", "startTime", "endTime"],
    ),
)


def _get_api_key() -> str:
    env_var = config.get("credential_env", "GEMINI_API_KEY")
    key = os.getenv(env_var) or ""
    if not key:
        raise MissingCredential(env_var)
    return key


def format_character_roster(characters: Sequence[Character]) -> str:
    return "\n".join(f"- {c.name} ({c.id}): {c.description}" for c in characters)


def build_segment_prompt(context: str, characters: Sequence[Character]) -> str:
    return SEGMENT_RULES.format(
        min_seconds=MIN_CLIP_SECONDS,
        max_seconds=MAX_CLIP_SECONDS,
        characters=format_character_roster(characters),
        context=context.strip() or "No additional context provided.",
    )


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_segments(text: str) -> List[VideoSegment]:
    """
    Decode the capability's reply into segments.

    Raises:
        ValueError: The payload is not a JSON array of valid segment objects.
    """
    payload = json.loads(strip_code_fences(text))
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array of segments, got {type(payload).__name__}")
    return [VideoSegment.model_validate(item) for item in payload]


class SceneSegmenter:
    def __init__(self, client_factory: Optional[Callable[[str], GenAIClient]] = None):
        self._client_factory = client_factory or self._default_client

    @staticmethod
    def _default_client(api_key: str) -> GenAIClient:
        models = config.get("models", {})
        return GenAIClient(
            api_key,
            segment_model=models.get("segment", "gemini-2.5-flash"),
            video_model=models.get("video", "veo-2.0-generate-001"),
        )

    async def segment(
        self,
        audio: AudioAsset,
        context: str,
        characters: Sequence[Character],
        report: Optional[ProgressReporter] = None,
    ) -> List[VideoSegment]:
        """
        Transcribes the narration and splits it into timed video segments.

        Args:
            audio (AudioAsset): The narration to analyze.
            context (str): Free-text story context; may be empty.
            characters (Sequence[Character]): Roster to attribute segments to; may be empty.
            report (callable, optional): Receives Progress updates for this stage.

        Returns:
            list[VideoSegment]: Segments in transcript order. Empty narration may yield [].

        Raises:
            SegmentationFailed: On any failure. No partial list is returned.
        """
        emit = report or (lambda _p: None)
        emit(Progress(stage=ANALYZE_STAGE, current=0, total=1, message="Transcribing and creating scenes..."))

        try:
            if not audio.data:
                raise ValueError("audio asset is empty")
            if not audio.mime_type.startswith("audio/"):
                raise ValueError(f"unsupported audio type '{audio.mime_type}'")

            client = self._client_factory(_get_api_key())
            prompt = build_segment_prompt(context, characters)
            logger.info(f"Segmenting {audio.name or 'audio'} ({len(audio.data)} bytes) with {len(characters)} characters")
            text = await client.analyze_audio(prompt, audio.data, audio.mime_type, response_schema=SEGMENT_SCHEMA)
            segments = parse_segments(text)
        except (ValidationError, ValueError) as exc:
            reason = str(exc)
            logger.error(f"Malformed segmentation response: {reason}")
            emit(Progress(stage="Error", current=1, total=1, message=f"Failed to analyze audio: {reason}"))
            raise SegmentationFailed(reason) from exc
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.exception("Error processing audio")
            emit(Progress(stage="Error", current=1, total=1, message=f"Failed to analyze audio: {reason}"))
            raise SegmentationFailed(reason) from exc

        logger.info(f"Audio analysis produced {len(segments)} segments")
        emit(Progress(stage=ANALYZE_STAGE, current=1, total=1, message="Audio analysis complete."))
        return segments
