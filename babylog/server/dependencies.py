"""FastAPI dependencies: the account service and the request owner."""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Path, status

from babylog.core import AccountService
from babylog.protocols import ValidationError
from babylog.validation import validate_owner_id

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


@lru_cache
def _service_for(database_path: str) -> AccountService:
    logger.info(f"Opening record store at {database_path}")
    return AccountService(database_path)


def get_service(settings: Annotated[Settings, Depends(get_settings)]) -> AccountService:
    """FastAPI dependency for the account service."""
    return _service_for(settings.database_path)


def get_owner_id(
    settings: Annotated[Settings, Depends(get_settings)],
    owner_id: Annotated[str, Path()],
    x_owner_id: Annotated[str | None, Header()] = None,
) -> int:
    """Owner id from the path, checked against the proxy header when trusted."""
    try:
        owner = validate_owner_id(owner_id)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if settings.trust_owner_header and x_owner_id != str(owner):
        logger.warning(f"Owner header {x_owner_id!r} does not match path owner {owner}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return owner


# Type aliases for dependency injection
Service = Annotated[AccountService, Depends(get_service)]
OwnerId = Annotated[int, Depends(get_owner_id)]
