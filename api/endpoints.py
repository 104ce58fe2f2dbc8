"""
API Endpoints for the Pet Avatar Gallery.

REST endpoints consumed by the gallery web client.

Endpoints Provided:
- `GET /gallery`: One page of public items, newest first. Accepts `offset`
  (preferred) or the legacy 1-based `page`, plus `limit`.
- `GET /names`: Every distinct person name of public items, sorted. Used by
  the client to build guessing-game distractors.
- `POST /generate`: Publish a generated avatar (signed-in callers only).
- `POST /guesses`: Record one guess for analytics (signed-in callers only).
- `GET /me/items`, `GET /me/stats`: The caller's own uploads and guess totals.

Architectural Design:
- Endpoints are thin: parameters are validated by FastAPI, the work is done by
  `GalleryService`, and failures surface as `GalleryAPIException` subclasses
  that the registered handlers turn into `{"error": ...}` bodies.
- The database session and the current user are injected dependencies, which
  the test suite overrides.
"""

import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import User
from core.database import get_session
from core.logging_config import log_function_call
from core.models import (
    GalleryItemOut,
    GalleryPage,
    GenerateRequest,
    GenerateResponse,
    GuessRequest,
    GuessResponse,
    NamesResponse,
    UserStats,
)
from core.performance import get_metrics_collector
from services.gallery_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    GalleryService,
    resolve_offset,
)
from .dependencies import get_current_user, get_gallery_service

logger = logging.getLogger("api.endpoints")

router = APIRouter(tags=["Gallery"])


@router.get("/gallery", response_model=GalleryPage)
@log_function_call(logger)
async def get_gallery(
    offset: Optional[int] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    session: AsyncSession = Depends(get_session),
    service: GalleryService = Depends(get_gallery_service),
):
    """Return one page of public gallery items"""
    start = resolve_offset(offset, page, limit)
    # Echo the legacy page number only when the caller paged that way
    return await service.list_public_page(
        session, start, limit, page=None if offset is not None else page
    )


@router.get("/names", response_model=NamesResponse)
@log_function_call(logger)
async def get_names(
    session: AsyncSession = Depends(get_session),
    service: GalleryService = Depends(get_gallery_service),
):
    """Return the full, sorted directory of person names"""
    return await service.list_names(session)


@router.post("/generate", response_model=GenerateResponse)
@log_function_call(logger)
async def create_gallery_item(
    request: GenerateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: GalleryService = Depends(get_gallery_service),
):
    """Publish a generated avatar as a public gallery item"""
    item = await service.create_item(
        session, user, request.personName, request.generatedImage
    )
    get_metrics_collector().increment_counter("gallery_items_created")
    return GenerateResponse(
        success=True, itemId=item.id, message="Gallery item created successfully"
    )


@router.post("/guesses", response_model=GuessResponse)
@log_function_call(logger)
async def submit_guess(
    request: GuessRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: GalleryService = Depends(get_gallery_service),
):
    """Record a guess; correctness is computed server side"""
    guess = await service.record_guess(
        session, user, request.galleryItemId, request.guessedName
    )
    get_metrics_collector().increment_counter(
        "guesses_recorded", tags={"correct": str(guess.is_correct).lower()}
    )
    return GuessResponse(success=True, guessId=guess.id, isCorrect=guess.is_correct)


@router.get("/me/items", response_model=List[GalleryItemOut])
async def get_my_items(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: GalleryService = Depends(get_gallery_service),
):
    items = await service.list_user_items(session, user.id)
    return [
        GalleryItemOut(
            id=item.id, person_name=item.person_name, generated_image=item.generated_image
        )
        for item in items
    ]


@router.get("/me/stats", response_model=UserStats)
async def get_my_stats(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    service: GalleryService = Depends(get_gallery_service),
):
    return await service.get_user_stats(session, user.id)
