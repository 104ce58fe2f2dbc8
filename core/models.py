"""
Core data models for the Gallery API

GalleryItem and Guess are stored in the database. The remaining models are
request/response bodies; their field names follow the JSON contract the web
client already speaks (camelCase where the client expects it).
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field
from pydantic import BaseModel

# Correct answer shown for items stored without a person name
UNKNOWN_PERSON_NAME = "Unknown user"


def correct_answer(person_name: Optional[str]) -> str:
    """The name a guess is compared against (exact, case-sensitive)"""
    return person_name if person_name else UNKNOWN_PERSON_NAME


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GalleryItem(SQLModel, table=True):
    """
    A published avatar post. Created once, never updated within this scope.
    """

    __tablename__ = "gallery_items"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=36)
    person_name: Optional[str] = Field(default=None, max_length=100, index=True)
    generated_image: str  # http(s) URL or data URI
    is_public: bool = Field(default=True, index=True)
    created_at: datetime = Field(
        default_factory=_utcnow, sa_type=DateTime(timezone=True), index=True
    )
    user_id: Optional[str] = Field(default=None, max_length=255, index=True)


class Guess(SQLModel, table=True):
    """
    One submitted guess. Written for analytics; the game never reads it back.
    """

    __tablename__ = "guesses"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=36)
    gallery_item_id: str = Field(foreign_key="gallery_items.id", index=True)
    user_id: str = Field(max_length=255, index=True)
    guessed_name: str = Field(max_length=100)
    is_correct: bool = False
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))


class GalleryItemOut(BaseModel):
    id: str
    person_name: Optional[str] = None
    generated_image: str


class PaginationInfo(BaseModel):
    page: int
    offset: int
    limit: int
    total: int
    totalPages: int
    hasNextPage: bool
    hasPrevPage: bool


class GalleryPage(BaseModel):
    items: List[GalleryItemOut]
    pagination: PaginationInfo


class NamesResponse(BaseModel):
    names: List[str]
    count: int


class GenerateRequest(BaseModel):
    personName: str
    generatedImage: str


class GenerateResponse(BaseModel):
    success: bool
    itemId: str
    message: str


class GuessRequest(BaseModel):
    galleryItemId: str
    guessedName: str


class GuessResponse(BaseModel):
    success: bool
    guessId: str
    isCorrect: bool


class UserStats(BaseModel):
    total_uploads: int
    correct_guesses: int
    total_guesses: int
