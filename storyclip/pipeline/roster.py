from __future__ import annotations

import uuid
from typing import Dict, Iterator, List, Optional

from storyclip.models import Character, ReferenceImage
from storyclip.utils.blob_store import BlobStore


def _new_character_id() -> str:
    return f"char_{uuid.uuid4().hex[:12]}"


class CharacterRoster:
    """
    Ordered set of user-defined characters.

    Edits go through one operation per field; each photo keeps a preview blob
    handle that is released when the photo is replaced or the character removed.
    """

    def __init__(self, blobs: BlobStore):
        self.blobs = blobs
        self._characters: Dict[str, Character] = {}

    def add(self) -> Character:
        character = Character(id=_new_character_id())
        self._characters[character.id] = character
        return character

    def get(self, character_id: str) -> Character:
        try:
            return self._characters[character_id]
        except KeyError:
            raise KeyError(f"Unknown character: {character_id}") from None

    def find(self, character_id: Optional[str]) -> Optional[Character]:
        if not character_id:
            return None
        return self._characters.get(character_id)

    def remove(self, character_id: str) -> None:
        character = self.get(character_id)
        self._release_preview(character)
        del self._characters[character_id]

    def set_name(self, character_id: str, name: str) -> Character:
        character = self.get(character_id)
        character.name = name
        return character

    def set_description(self, character_id: str, description: str) -> Character:
        character = self.get(character_id)
        character.description = description
        return character

    def set_photo(self, character_id: str, photo: ReferenceImage) -> Character:
        character = self.get(character_id)
        self._release_preview(character)
        character.photo = photo
        character.photo_url = self.blobs.create(photo.data, photo.mime_type)
        return character

    def clear(self) -> None:
        for character in self._characters.values():
            self._release_preview(character)
        self._characters.clear()

    def reset(self) -> Character:
        """Drop everyone and start again from a single blank character."""
        self.clear()
        return self.add()

    def to_list(self) -> List[Character]:
        return list(self._characters.values())

    def _release_preview(self, character: Character) -> None:
        if character.photo_url:
            self.blobs.release(character.photo_url)
            character.photo_url = None

    def __iter__(self) -> Iterator[Character]:
        return iter(list(self._characters.values()))

    def __len__(self) -> int:
        return len(self._characters)

    def __contains__(self, character_id: object) -> bool:
        return character_id in self._characters
