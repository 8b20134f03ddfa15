"""
Failure taxonomy for a story run.

Every member is terminal for the current run; ``str(err)`` is the message shown
to the user.
"""

from typing import Optional


class StoryClipError(RuntimeError):
    """Base exception for all pipeline errors."""


class SegmentationFailed(StoryClipError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to analyze audio: {reason}")


class MissingCredential(StoryClipError):
    def __init__(self, env_var: str):
        self.env_var = env_var
        super().__init__(f"API key is not available. Ensure the {env_var} environment variable is set.")


class GenerationStartFailed(StoryClipError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to start video generation: {reason}")


class GenerationPollFailed(StoryClipError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Polling for video failed: {reason}")


class GenerationTimedOut(StoryClipError):
    def __init__(self, deadline_seconds: float):
        self.deadline_seconds = deadline_seconds
        minutes = deadline_seconds / 60
        super().__init__(f"Video generation timed out after {minutes:g} minutes.")


class GenerationFailed(StoryClipError):
    def __init__(self, message: str):
        self.reason = message
        super().__init__(f"Video generation failed: {message}")


class GenerationNoResult(StoryClipError):
    def __init__(self):
        super().__init__("Video generation succeeded, but no download link was returned.")


class DownloadFailed(StoryClipError):
    def __init__(self, status: Optional[int], reason: str = ""):
        self.status = status
        self.reason = reason
        detail = f"HTTP {status}" if status is not None else "transport error"
        if reason:
            detail = f"{detail} {reason}"
        super().__init__(f"Downloading video failed: {detail}")
