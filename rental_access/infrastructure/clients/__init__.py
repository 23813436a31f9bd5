"""External service clients."""
from rental_access.infrastructure.clients.catalog_client import CatalogClient

__all__ = ["CatalogClient"]
