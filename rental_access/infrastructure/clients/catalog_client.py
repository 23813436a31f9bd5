"""Catalog Service client."""
import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from rental_access.config import settings
from rental_access.domain.exceptions import (
    CatalogUnavailableException,
    FilmNotFoundException,
)
from rental_access.domain.models import FilmInfo, MediaAssets

logger = logging.getLogger(__name__)


class _TransientCatalogError(Exception):
    pass


class CatalogClient:
    """Client for the film catalog: availability, release info and asset paths.

    Transport failures and 5xx answers are retried. A 404 means the
    film does not exist; anything else is treated as an outage.
    """

    def __init__(
        self,
        base_url: str = settings.catalog_service_url,
        timeout: float = settings.catalog_service_timeout,
        retry_attempts: int = settings.catalog_retry_attempts,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )
        self.retry_attempts = retry_attempts

    async def close(self) -> None:
        """Close the client."""
        await self.client.aclose()

    async def _fetch(self, film_id: int) -> Dict[str, Any]:
        path = f"/internal/films/{film_id}"
        try:
            response = await self.client.get(path)
        except httpx.TransportError as e:
            logger.warning(f"Catalog unreachable on {path}: {e}")
            raise _TransientCatalogError(str(e)) from e

        if response.status_code == 404:
            raise FilmNotFoundException(film_id)
        if response.status_code >= 500:
            logger.warning(f"Catalog answered {response.status_code} on {path}")
            raise _TransientCatalogError(f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.json()

    async def get_film(self, film_id: int) -> FilmInfo:
        """Look up a film."""
        fetch = retry(
            retry=retry_if_exception_type(_TransientCatalogError),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_fixed(0.2),
            reraise=True,
        )(self._fetch)

        try:
            logger.info(f"Fetching film {film_id} from Catalog Service")
            response = await fetch(film_id)
        except FilmNotFoundException:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch film {film_id}: {e}")
            raise CatalogUnavailableException()

        if not response or "film_id" not in response:
            logger.error(f"Catalog returned no film record for {film_id}")
            raise CatalogUnavailableException()

        return FilmInfo(
            film_id=int(response["film_id"]),
            title=response.get("title", ""),
            available=bool(response.get("available", False)),
            is_new_release=bool(response.get("is_new_release", False)),
            release_year=response.get("release_year"),
            assets=MediaAssets(**(response.get("assets") or {})),
        )
