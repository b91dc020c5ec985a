"""Client for the listings catalog: space existence, hourly price and owning host."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import json
import logging
import threading
from typing import Any, Dict, Optional, cast

import httpx

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """Raised when the catalog cannot be reached or answers with garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ParkingSpace:
    """Read-only view of a listed space."""

    id: str
    price_per_hour: Decimal
    host_id: str


class CatalogClient:
    """Thin client for the listings catalog REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def get_space(self, space_id: str) -> Optional[ParkingSpace]:
        """Return the space, or None when the catalog does not know it."""

        payload = self._request("GET", f"/spaces/{space_id}")
        if payload is None:
            return None
        return _parse_space(space_id, payload)

    def _request(self, method: str, path: str) -> Optional[Dict[str, Any]]:
        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        ) as client:
            try:
                response = client.request(method, url)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.error(
                    "Catalog API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise CatalogError(f"Catalog responded with status {status}", status) from exc
            except httpx.RequestError as exc:
                logger.error("Catalog request failure for %s %s: %s", method, path, str(exc))
                raise CatalogError("Failed to reach catalog") from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from catalog for %s %s: %s", method, path, response.text)
            raise CatalogError("Received malformed JSON from catalog") from exc


def _parse_space(space_id: str, payload: Dict[str, Any]) -> ParkingSpace:
    try:
        price = Decimal(str(payload["price_per_hour"]))
        host_id = str(payload["host_id"])
    except (KeyError, InvalidOperation) as exc:
        raise CatalogError(f"Catalog returned an incomplete record for space {space_id}") from exc
    return ParkingSpace(id=str(payload.get("id", space_id)), price_per_hour=price, host_id=host_id)


class FakeCatalogClient(CatalogClient):
    """In-memory catalog for tests and local runs."""

    def __init__(self, spaces: Optional[Dict[str, ParkingSpace]] = None) -> None:
        super().__init__(base_url="http://catalog.invalid")
        self._spaces: Dict[str, ParkingSpace] = dict(spaces or {})
        self._lock = threading.Lock()

    def add_space(
        self, space_id: str, price_per_hour: Decimal | str | int, host_id: str = "host-1"
    ) -> ParkingSpace:
        space = ParkingSpace(id=space_id, price_per_hour=Decimal(str(price_per_hour)), host_id=host_id)
        with self._lock:
            self._spaces[space_id] = space
        return space

    def remove_space(self, space_id: str) -> None:
        with self._lock:
            self._spaces.pop(space_id, None)

    def get_space(self, space_id: str) -> Optional[ParkingSpace]:
        with self._lock:
            return self._spaces.get(space_id)
