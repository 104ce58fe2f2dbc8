from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.auth import User, get_auth_service
from services.gallery_service import GalleryService

gallery_service = GalleryService()
bearer_scheme = HTTPBearer(auto_error=False)


def get_gallery_service() -> GalleryService:
    return gallery_service


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """Require a signed-in caller; raises AuthenticationError (401) otherwise"""
    token = credentials.credentials if credentials else None
    return get_auth_service().authenticate(token)
