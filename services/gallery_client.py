"""
Gallery HTTP Client.

Async client for the gallery endpoints, used by the feed controller and the
guessing game. It speaks the same JSON contract as the web client.

Key Components:
- `GalleryClient`: One method per endpoint. A fresh `aiohttp.ClientSession`
  is opened per call unless one is injected.
- `GalleryClientError`: Raised for every transport failure, non-2xx
  response or malformed body, carrying the HTTP status (None when the server
  was never reached) and the server's `error` message. Callers must catch it;
  an empty page is a normal return value, never an error.

`record_outcome` adapts `record_guess` to the `GuessGame` recorder signature.

Uploads are validated locally with the server's own validators and rejected
before any request is made. Writes without a bearer token raise
`AuthenticationError` without touching the network.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Type, TypeVar
import aiohttp
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import AuthenticationError
from core.models import GalleryPage, GenerateResponse, GuessResponse, NamesResponse
from core.validation import InputValidator
from services.guess_game import GuessOutcome

logger = logging.getLogger("services.gallery_client")

ModelT = TypeVar("ModelT", bound=BaseModel)


class GalleryClientError(Exception):
    """Transport failure, non-2xx response or malformed body"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class GalleryClient:
    """Async client for the gallery API"""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        path: str,
        model: Type[ModelT],
        **kwargs,
    ) -> ModelT:
        async with session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            **kwargs,
        ) as response:
            try:
                body = await response.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError):
                body = None

            if response.status >= 400 or body is None:
                message = (
                    body.get("error")
                    if isinstance(body, dict) and body.get("error")
                    else f"HTTP {response.status}"
                )
                raise GalleryClientError(str(message), status=response.status)

            try:
                return model.model_validate(body)
            except PydanticValidationError as e:
                logger.debug(f"{path} body failed validation: {e.error_count()} errors")
                raise GalleryClientError("Malformed response", status=response.status) from e

    async def _request(
        self, method: str, path: str, model: Type[ModelT], **kwargs
    ) -> ModelT:
        try:
            if self._session is not None:
                return await self._send(self._session, method, path, model, **kwargs)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, method, path, model, **kwargs)
        except GalleryClientError as e:
            logger.warning(f"{method} {path} failed with status {e.status}: {e.message}")
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise GalleryClientError(f"Network error: {type(e).__name__}") from e

    async def fetch_page(self, offset: int, limit: int) -> GalleryPage:
        """Fetch one feed window"""
        return await self._request(
            "GET",
            "/gallery",
            GalleryPage,
            params={"offset": str(offset), "limit": str(limit)},
        )

    async def fetch_names(self) -> List[str]:
        """Fetch the full name directory"""
        data = await self._request("GET", "/names", NamesResponse)
        return data.names

    async def create_item(self, person_name: str, generated_image: str) -> str:
        """Publish a generated avatar; returns the new item id"""
        person_name = InputValidator.validate_person_name(person_name)
        generated_image = InputValidator.validate_generated_image(generated_image)
        if not self.token:
            raise AuthenticationError("Sign in required")

        data = await self._request(
            "POST",
            "/generate",
            GenerateResponse,
            json={"personName": person_name, "generatedImage": generated_image},
        )
        return data.itemId

    async def record_guess(self, item_id: str, guessed_name: str) -> GuessResponse:
        if not self.token:
            raise AuthenticationError("Sign in required")

        return await self._request(
            "POST",
            "/guesses",
            GuessResponse,
            json={"galleryItemId": item_id, "guessedName": guessed_name},
        )

    async def record_outcome(self, outcome: GuessOutcome) -> GuessResponse:
        """`GuessGame` recorder: posts the guess behind one outcome"""
        return await self.record_guess(outcome.item_id, outcome.guessed_name)
