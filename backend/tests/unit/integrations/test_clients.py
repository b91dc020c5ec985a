from decimal import Decimal

import httpx
import pytest

from parq.integrations import (
    CatalogClient,
    CatalogError,
    Notification,
    NotifierClient,
    NotifierError,
    ParkingSpace,
)


def catalog_with(handler) -> CatalogClient:
    return CatalogClient(base_url="http://catalog.test/", transport=httpx.MockTransport(handler))


class TestCatalogClient:
    def test_get_space(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/spaces/space-1"
            return httpx.Response(
                200, json={"id": "space-1", "price_per_hour": "5.50", "host_id": "host-9"}
            )

        space = catalog_with(handler).get_space("space-1")

        assert space == ParkingSpace(id="space-1", price_per_hour=Decimal("5.50"), host_id="host-9")

    def test_unknown_space_is_none(self):
        assert catalog_with(lambda request: httpx.Response(404)).get_space("space-404") is None

    def test_server_error(self):
        with pytest.raises(CatalogError) as exc:
            catalog_with(lambda request: httpx.Response(503, text="down")).get_space("space-1")
        assert exc.value.status_code == 503

    def test_incomplete_record(self):
        client = catalog_with(lambda request: httpx.Response(200, json={"id": "space-1"}))
        with pytest.raises(CatalogError):
            client.get_space("space-1")

    def test_malformed_json(self):
        client = catalog_with(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(CatalogError):
            client.get_space("space-1")

    def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CatalogError):
            catalog_with(handler).get_space("space-1")


class TestNotifierClient:
    def test_send_posts_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, request.read()))
            return httpx.Response(202)

        client = NotifierClient(base_url="http://notifier.test", transport=httpx.MockTransport(handler))
        client.send(Notification(recipient_id="renter-1", template="waitlist_offer"))

        assert seen[0][0] == "/messages"
        assert b"waitlist_offer" in seen[0][1]

    def test_rejected_message(self):
        client = NotifierClient(
            base_url="http://notifier.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(NotifierError):
            client.send(Notification(recipient_id="renter-1", template="waitlist_offer"))
