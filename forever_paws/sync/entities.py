"""Registry of synced entity types, in the order they are reconciled"""

from dataclasses import dataclass
from typing import Tuple, Type

from ..models.entities import Letter, MemorialVideo, Pet, SyncedEntity


@dataclass(frozen=True)
class EntityKind:
    name: str
    collection: str  # remote path segment: GET /{collection}
    table: str  # local store table
    model: Type[SyncedEntity]


PETS = EntityKind(name="pets", collection="pets", table="pets", model=Pet)
VIDEOS = EntityKind(name="videos", collection="videos", table="memorial_videos", model=MemorialVideo)
LETTERS = EntityKind(name="letters", collection="letters", table="letters", model=Letter)

SYNC_ORDER: Tuple[EntityKind, ...] = (PETS, VIDEOS, LETTERS)
