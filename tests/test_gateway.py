"""Remote Sync Gateway: payload shape, defensive parsing, transport failures."""

import json

import pytest
import requests

from fleet_core.app.schemas import (
    MaterialRequest, MovementType, RequestedItem, RequestStatus, StockMovement
)
from fleet_core.app.services.errors import StoreParseError
from fleet_core.app.services.gateway import (
    PullStatus, PushStatus, RemoteSyncGateway, build_payload, parse_items,
    parse_snapshot
)

from conftest import material

URL = "https://script.example.com/macros/s/abc/exec"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self._text = text

    def json(self):
        if self._text is not None:
            return json.loads(self._text)
        return self._body


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        if self.error:
            raise self.error
        return self.response


def sample_request():
    return MaterialRequest(
        id="PED-AB12", vtr="VTR-07", timestamp="2026-10-19T10:00:00",
        items=[RequestedItem(material_id="A1", quantity=3)],
        status=RequestStatus.PENDING,
    )


def sample_movement():
    return StockMovement(
        id="MOV-1", material_id="A1", type=MovementType.OUT, quantity=3,
        timestamp="2026-10-19T10:00:00", reason="reservation PED-AB12",
    )


class TestPayload:

    def test_sync_action_with_embedded_item_json(self):
        payload = build_payload([material("A1", 10)], [sample_request()], [sample_movement()])

        assert payload["action"] == "sync"
        assert payload["materials"] == [{"code": "A1", "name": "Material A1", "stock": 10}]
        req = payload["requests"][0]
        assert req["status"] == "Pending"
        assert isinstance(req["details"], str)
        assert json.loads(req["details"]) == [{"materialId": "A1", "quantity": 3}]
        assert payload["movements"][0] == {
            "id": "MOV-1", "materialId": "A1", "type": "Out", "quantity": 3,
            "timestamp": "2026-10-19T10:00:00", "reason": "reservation PED-AB12",
        }


class TestPush:

    def test_plain_text_post_without_custom_headers(self):
        http = FakeHttp()
        gw = RemoteSyncGateway(URL, session=http)

        status = gw.push([material("A1", 10)], [sample_request()], [])

        assert status == PushStatus.SENT
        method, url, kwargs = http.calls[0]
        assert (method, url) == ("POST", URL)
        assert kwargs["headers"] == {"Content-Type": "text/plain;charset=utf-8"}
        assert json.loads(kwargs["data"].decode("utf-8"))["action"] == "sync"

    def test_remote_error_status_still_counts_as_sent(self):
        gw = RemoteSyncGateway(URL, session=FakeHttp(FakeResponse(status_code=500)))
        assert gw.push([], [], []) == PushStatus.SENT

    def test_network_error_is_failed_not_raised(self):
        gw = RemoteSyncGateway(URL, session=FakeHttp(error=requests.ConnectionError("down")))
        assert gw.push([], [], []) == PushStatus.FAILED

    def test_not_configured(self):
        http = FakeHttp()
        gw = RemoteSyncGateway("", session=http)
        assert not gw.configured
        assert gw.push([], [], []) == PushStatus.NOT_CONFIGURED
        assert http.calls == []


class TestPull:

    def test_cache_buster_and_timeout(self):
        http = FakeHttp(FakeResponse(body={"materials": []}))
        gw = RemoteSyncGateway(URL, pull_timeout_ms=15000, session=http)

        result = gw.pull()

        assert result.status == PullStatus.OK
        _, _, kwargs = http.calls[0]
        assert "t" in kwargs["params"]
        assert kwargs["timeout"] == 15

    def test_timeout_is_no_data(self):
        gw = RemoteSyncGateway(URL, session=FakeHttp(error=requests.Timeout()))
        assert gw.pull().status == PullStatus.NO_DATA

    def test_http_error_is_no_data(self):
        gw = RemoteSyncGateway(URL, session=FakeHttp(FakeResponse(status_code=502)))
        assert gw.pull().status == PullStatus.NO_DATA

    def test_non_json_body_is_no_data(self):
        gw = RemoteSyncGateway(URL, session=FakeHttp(FakeResponse(text="<html>")))
        assert gw.pull().status == PullStatus.NO_DATA

    def test_not_configured(self):
        assert RemoteSyncGateway(None).pull().status == PullStatus.NOT_CONFIGURED


class TestParseSnapshot:

    def test_duplicate_codes_first_in_payload_wins(self):
        snapshot = parse_snapshot({"materials": [
            {"code": "B2", "name": "Manta", "stock": 5},
            {"code": "B2", "name": "Manta", "stock": 9},
        ]})
        assert [(m.id, m.stock) for m in snapshot.materials] == [("B2", 5)]

    def test_string_stock_values(self):
        snapshot = parse_snapshot({"materials": [{"code": "A1", "name": "x", "stock": "7"}]})
        assert snapshot.materials[0].stock == 7

    def test_missing_collections_stay_none(self):
        snapshot = parse_snapshot({"materials": []})
        assert snapshot.materials == []
        assert snapshot.requests is None
        assert snapshot.movements is None

    def test_details_as_json_string(self):
        snapshot = parse_snapshot({"requests": [{
            "id": "PED-1", "vtr": "VTR-07", "timestamp": "t", "status": "Pending",
            "details": json.dumps([{"materialId": "A1", "quantity": 2}]),
        }]})
        assert snapshot.requests[0].items[0].quantity == 2

    def test_details_as_array(self):
        snapshot = parse_snapshot({"requests": [{
            "id": "PED-1", "vtr": "VTR-07", "timestamp": "t", "status": "Pending",
            "details": [{"materialId": "A1", "quantity": 2}],
        }]})
        assert snapshot.requests[0].items[0].material_id == "A1"

    def test_malformed_details_drop_only_that_request(self):
        snapshot = parse_snapshot({"requests": [
            {"id": "PED-1", "vtr": "VTR-07", "timestamp": "t", "status": "Pending",
             "details": "not json"},
            {"id": "PED-2", "vtr": "VTR-07", "timestamp": "t", "status": "Pending",
             "details": json.dumps([{"materialId": "A1", "quantity": 1}])},
        ]})
        assert [r.id for r in snapshot.requests] == ["PED-2"]

    def test_legacy_status_labels(self):
        snapshot = parse_snapshot({"requests": [{
            "id": "PED-1", "vtr": "VTR-07", "timestamp": "t", "status": "Cancelado",
            "details": [{"materialId": "A1", "quantity": 1}],
        }]})
        assert snapshot.requests[0].status == RequestStatus.CANCELLED

    def test_body_must_be_an_object(self):
        with pytest.raises(StoreParseError):
            parse_snapshot([1, 2, 3])

    def test_parse_items_degrades_to_empty(self):
        assert parse_items("not json") == []
        assert parse_items({"materialId": "A1"}) == []
        assert parse_items(None) == []
