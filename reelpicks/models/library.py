from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from reelpicks.models.candidate import Genre


class EvidenceType(str, Enum):
    FAVORITE = "favorite"
    HIGHLY_RATED = "highly_rated"
    WATCHED = "watched"


class WatchedItem(BaseModel):
    """An item from the user's watch history, with its engagement metadata."""

    model_config = ConfigDict(frozen=True)

    entity_id: str = Field(description="Identifier of the item in the shared embedding space")
    tmdb_id: int | None = None
    title: str = ""
    genres: tuple[Genre, ...] = ()
    play_count: int = 0
    is_favorite: bool = False
    user_rating: float | None = None
    last_played_at: datetime | None = None

    @property
    def evidence_type(self) -> EvidenceType:
        if self.is_favorite:
            return EvidenceType.FAVORITE
        if self.play_count > 1:
            return EvidenceType.HIGHLY_RATED
        return EvidenceType.WATCHED


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    similar_item_id: str
    similar_item_title: str = ""
    similarity: float
    evidence_type: EvidenceType


class DiscoveryUser(BaseModel):
    id: str
    username: str = ""
    trakt_access_token: str | None = Field(default=None, description="Set once the user links a Trakt account")

    @property
    def has_trakt_link(self) -> bool:
        return bool(self.trakt_access_token)
