"""
Gallery Query Service.

This module implements everything the HTTP layer asks of the gallery store:
the paginated public feed, the directory of known person names, item creation
and the guess write path, plus the per-user views of the "me" page.

Key Components:
- `resolve_offset`: Normalizes the two accepted paging styles (offset, or the
  legacy 1-based page number) into a single skip-count.
- `build_pagination`: Derives the pagination block of a feed page from the
  window that was actually returned and the exact public item count.
- `dedupe_by_id`: Order-preserving removal of repeated item ids.
- `GalleryService`: Stateless query/write facade over an `AsyncSession`.

Pagination semantics:
- `total` is an exact count taken by an independent query at request time, so
  it is not snapshot-consistent with the window. Under concurrent inserts
  `hasNextPage` can be transiently wrong; clients de-duplicate across pages.
- `hasNextPage` is computed from the returned count, never from page math, so
  a short last page always terminates the feed.
"""

import math
import logging
from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, col

from core.auth import User
from core.exceptions import DatabaseQueryError, ItemNotFoundError
from core.models import (
    GalleryItem,
    GalleryItemOut,
    GalleryPage,
    Guess,
    NamesResponse,
    PaginationInfo,
    UserStats,
    correct_answer,
)
from core.performance import get_metrics_collector, timed
from core.validation import InputValidator

logger = logging.getLogger("services.gallery_service")

DEFAULT_PAGE_SIZE = 8
MAX_PAGE_SIZE = 100


def resolve_offset(offset: Optional[int], page: int, limit: int) -> int:
    """Offset wins when given; otherwise convert the 1-based page number"""
    if offset is not None:
        return offset
    return (page - 1) * limit


def build_pagination(
    offset: int, limit: int, returned: int, total: int, page: Optional[int] = None
) -> PaginationInfo:
    """Derive the pagination block for one feed window"""
    if page is None:
        page = offset // limit + 1
    return PaginationInfo(
        page=page,
        offset=offset,
        limit=limit,
        total=total,
        totalPages=math.ceil(total / limit) if limit else 0,
        hasNextPage=offset + returned < total,
        hasPrevPage=offset > 0,
    )


def dedupe_by_id(items: Iterable) -> list:
    """Drop repeated ids, keeping the first occurrence"""
    seen = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


class GalleryService:
    """Read and write access to gallery items and guesses"""

    @timed("gallery.list_public_page")
    async def list_public_page(
        self,
        session: AsyncSession,
        offset: int,
        limit: int,
        page: Optional[int] = None,
    ) -> GalleryPage:
        """Return one window of public items, newest first"""
        try:
            count_result = await session.execute(
                select(func.count())
                .select_from(GalleryItem)
                .where(GalleryItem.is_public == True)  # noqa: E712
            )
            total = count_result.scalar_one()
            get_metrics_collector().set_gauge("gallery.public_items", total)

            items_result = await session.execute(
                select(GalleryItem)
                .where(GalleryItem.is_public == True)  # noqa: E712
                .order_by(col(GalleryItem.created_at).desc(), col(GalleryItem.id).desc())
                .offset(offset)
                .limit(limit)
            )
            rows = items_result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Gallery page query failed at offset={offset}: {e}")
            raise DatabaseQueryError("list_public_page", str(e))

        unique = dedupe_by_id(rows)
        if len(unique) != len(rows):
            logger.warning(
                f"Dropped {len(rows) - len(unique)} duplicate items from page at offset={offset}"
            )

        pagination = build_pagination(offset, limit, len(unique), total, page)
        logger.debug(
            f"Gallery page offset={offset} limit={limit} returned={len(unique)} total={total}"
        )
        return GalleryPage(
            items=[
                GalleryItemOut(
                    id=item.id,
                    person_name=item.person_name,
                    generated_image=item.generated_image,
                )
                for item in unique
            ],
            pagination=pagination,
        )

    @timed("gallery.list_names")
    async def list_names(self, session: AsyncSession) -> NamesResponse:
        """Distinct, sorted, non-null person names of public items"""
        try:
            result = await session.execute(
                select(GalleryItem.person_name)
                .where(GalleryItem.is_public == True)  # noqa: E712
                .where(col(GalleryItem.person_name).is_not(None))
                .distinct()
            )
            names = sorted(set(result.scalars().all()))
        except SQLAlchemyError as e:
            logger.error(f"Name directory query failed: {e}")
            raise DatabaseQueryError("list_names", str(e))

        return NamesResponse(names=names, count=len(names))

    async def create_item(
        self,
        session: AsyncSession,
        user: User,
        person_name: str,
        generated_image: str,
        created_at: Optional[datetime] = None,
    ) -> GalleryItem:
        """
        Validate and insert one public item owned by `user`.
        `created_at` is only passed by bulk imports that keep the source timestamp.
        """
        person_name = InputValidator.validate_person_name(person_name)
        generated_image = InputValidator.validate_generated_image(generated_image)

        item = GalleryItem(
            person_name=person_name,
            generated_image=generated_image,
            is_public=True,
            user_id=user.id,
        )
        if created_at is not None:
            item.created_at = created_at
        try:
            session.add(item)
            await session.commit()
            await session.refresh(item)
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Gallery item insert failed for user {user.id}: {e}")
            raise DatabaseQueryError("create_item", str(e))

        logger.info(f"Created gallery item {item.id} for user {user.id}")
        return item

    async def get_public_item(self, session: AsyncSession, item_id: str) -> GalleryItem:
        try:
            item = await session.get(GalleryItem, item_id)
        except SQLAlchemyError as e:
            raise DatabaseQueryError("get_public_item", str(e))

        if item is None or not item.is_public:
            raise ItemNotFoundError(item_id)
        return item

    async def record_guess(
        self, session: AsyncSession, user: User, item_id: str, guessed_name: str
    ) -> Guess:
        """
        Persist one guess. Correctness is decided here, never by the client.
        No per-user or per-item limits apply.
        """
        item = await self.get_public_item(session, item_id)
        guessed_name = InputValidator.sanitize_string(
            guessed_name, field="guessedName", max_length=100
        )

        guess = Guess(
            gallery_item_id=item.id,
            user_id=user.id,
            guessed_name=guessed_name,
            is_correct=guessed_name == correct_answer(item.person_name),
        )
        try:
            session.add(guess)
            await session.commit()
            await session.refresh(guess)
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Guess insert failed for item {item_id}: {e}")
            raise DatabaseQueryError("record_guess", str(e))

        logger.info(
            f"Recorded guess {guess.id} on item {item.id} (correct={guess.is_correct})"
        )
        return guess

    async def list_user_items(self, session: AsyncSession, user_id: str) -> List[GalleryItem]:
        """All items uploaded by one user, newest first, public or not"""
        try:
            result = await session.execute(
                select(GalleryItem)
                .where(GalleryItem.user_id == user_id)
                .order_by(col(GalleryItem.created_at).desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseQueryError("list_user_items", str(e))

    async def get_user_stats(self, session: AsyncSession, user_id: str) -> UserStats:
        try:
            uploads = await session.execute(
                select(func.count()).select_from(GalleryItem).where(GalleryItem.user_id == user_id)
            )
            guesses = await session.execute(
                select(func.count()).select_from(Guess).where(Guess.user_id == user_id)
            )
            correct = await session.execute(
                select(func.count())
                .select_from(Guess)
                .where(Guess.user_id == user_id)
                .where(Guess.is_correct == True)  # noqa: E712
            )
        except SQLAlchemyError as e:
            raise DatabaseQueryError("get_user_stats", str(e))

        return UserStats(
            total_uploads=uploads.scalar_one(),
            correct_guesses=correct.scalar_one(),
            total_guesses=guesses.scalar_one(),
        )
