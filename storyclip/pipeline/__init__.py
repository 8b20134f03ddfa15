from .orchestrator import StoryPipeline
from .progress import ProgressSignal
from .roster import CharacterRoster

__all__ = ["CharacterRoster", "ProgressSignal", "StoryPipeline"]
