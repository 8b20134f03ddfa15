import uuid
from dataclasses import dataclass
from typing import Dict, Iterable

from storyclip.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

BLOB_PREFIX = "blob:storyclip/"


@dataclass(frozen=True)
class Blob:
    data: bytes
    mime_type: str


class BlobStore:
    """
    Session-scoped binary store handing out opaque handles.

    A handle stays resolvable until it is released; callers own the handles
    they create and must release them once superseded.
    """

    def __init__(self):
        self._blobs: Dict[str, Blob] = {}

    def create(self, data: bytes, mime_type: str) -> str:
        handle = f"{BLOB_PREFIX}{uuid.uuid4()}"
        self._blobs[handle] = Blob(data=bytes(data), mime_type=mime_type)
        logger.debug(f"Created blob {handle} ({len(data)} bytes, {mime_type})")
        return handle

    def resolve(self, handle: str) -> Blob:
        try:
            return self._blobs[handle]
        except KeyError:
            raise KeyError(f"Unknown or released blob handle: {handle}") from None

    def release(self, handle: str) -> bool:
        if self._blobs.pop(handle, None) is None:
            return False
        logger.debug(f"Released blob {handle}")
        return True

    def release_many(self, handles: Iterable[str]) -> int:
        return sum(1 for h in list(handles) if self.release(h))

    def release_all(self) -> int:
        count = len(self._blobs)
        self._blobs.clear()
        return count

    def __contains__(self, handle: object) -> bool:
        return handle in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)
