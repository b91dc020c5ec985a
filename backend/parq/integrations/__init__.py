"""External collaborators: listings catalog and notification dispatcher."""

from .catalog_client import CatalogClient, CatalogError, FakeCatalogClient, ParkingSpace
from .notifier_client import (
    FakeNotifierClient,
    Notification,
    Notifier,
    NotifierClient,
    NotifierError,
)

__all__ = [
    "CatalogClient",
    "CatalogError",
    "FakeCatalogClient",
    "ParkingSpace",
    "FakeNotifierClient",
    "Notification",
    "Notifier",
    "NotifierClient",
    "NotifierError",
]
