import json
import time

import pytest
import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from provenance import pinata
from provenance.identity import signing_message
from provenance.main import create_app

from .conftest import DAY, START


def as_(identity):
    return {"X-Caller": identity}


def register_all(client, actors):
    for role, who, details in (
        ("producer", actors.producer, "Green Valley Dairy"),
        ("inspector", actors.inspector, "FoodSafe Labs"),
        ("inspector", actors.inspector2, "QualityCheck Inc"),
        ("distributor", actors.distributor, "FastFreight"),
        ("retailer", actors.retailer, "Corner Grocery"),
    ):
        r = client.post(f"/actors/{role}", json={"identity": who, "details": details}, headers=as_(actors.admin))
        assert r.status_code == 200, r.text


def create_milk(client, actors):
    r = client.post("/products", headers=as_(actors.producer), json={
        "name": "Milk",
        "batch_id": "BATCH-001",
        "category": "Dairy",
        "production_date": START,
        "metadata_uri": "ipfs://QmMilk",
    })
    assert r.status_code == 200, r.text
    return r.json()["product_id"]


def test_full_flow_over_http(client, actors):
    register_all(client, actors)
    pid = create_milk(client, actors)
    assert pid == 1

    r = client.post(f"/products/{pid}/inspector", json={"identity": actors.inspector}, headers=as_(actors.producer))
    assert r.json()["stage"] == "inspector_assigned"

    r = client.post(f"/products/{pid}/certifications", json={"text": "Organic Certified"},
                    headers=as_(actors.inspector))
    assert [c["text"] for c in r.json()] == ["Organic Certified"]

    r = client.post(f"/products/{pid}/approval", json={"expiry_date": START + 7 * DAY},
                    headers=as_(actors.inspector))
    assert r.json()["quality_approved"] is True

    r = client.post(f"/products/{pid}/distributor", json={"identity": actors.distributor},
                    headers=as_(actors.producer))
    assert r.json()["current_custodian"] == actors.distributor

    r = client.post(f"/products/{pid}/retailer", json={"identity": actors.retailer},
                    headers=as_(actors.distributor))
    assert r.json()["current_custodian"] == actors.retailer

    r = client.post(f"/products/{pid}/sale", json={"buyer": actors.consumer}, headers=as_(actors.retailer))
    body = r.json()
    assert body["stage"] == "sold"
    assert body["verified"] is True

    history = client.get(f"/products/{pid}/history").json()
    assert history["custodians"] == [actors.producer, actors.distributor, actors.retailer, actors.consumer]
    assert len(history["timestamps"]) == 4

    basic = client.get(f"/products/{pid}").json()
    assert basic == {
        "id": 1,
        "name": "Milk",
        "batch_id": "BATCH-001",
        "category": "Dairy",
        "producer": actors.producer,
        "current_custodian": actors.consumer,
        "quality_approved": True,
    }

    events = client.get("/events", params={"product_id": pid}).json()
    assert len(events) == 7


def test_actor_queries(client, actors):
    register_all(client, actors)
    assert client.get("/actors/inspector/count").json()["count"] == 2
    assert client.get(f"/actors/producer/{actors.producer}").json()["details"] == "Green Valley Dairy"
    assert client.get(f"/actors/producer/{actors.producer.lower()}/registered").json()["registered"] is True
    assert client.get(f"/actors/retailer/{actors.producer}/registered").json()["registered"] is False
    listed = client.get("/actors/inspector").json()
    assert [a["identity"] for a in listed] == [actors.inspector, actors.inspector2]


@pytest.mark.parametrize("path,status,kind", [
    ("/actors/producer/{stranger}", 404, "NotRegistered"),
    ("/products/0", 404, "NotFound"),
    ("/products/5/history", 404, "NotFound"),
    ("/actors/producer/not-an-address", 400, "InvalidIdentity"),
])
def test_read_errors(client, actors, path, status, kind):
    r = client.get(path.format(stranger=actors.stranger))
    assert r.status_code == status
    assert r.json()["error"] == kind


def test_write_errors(client, actors):
    r = client.post("/actors/producer", json={"identity": actors.producer, "details": "x"},
                    headers=as_(actors.stranger))
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"

    register_all(client, actors)
    r = client.post("/actors/producer", json={"identity": actors.producer, "details": "x"},
                    headers=as_(actors.admin))
    assert r.status_code == 409
    assert r.json()["error"] == "AlreadyRegistered"

    r = client.post("/products", headers=as_(actors.stranger), json={
        "name": "Milk", "batch_id": "B", "category": "Dairy", "production_date": START,
    })
    assert r.status_code == 403

    pid = create_milk(client, actors)
    client.post(f"/products/{pid}/inspector", json={"identity": actors.inspector}, headers=as_(actors.producer))
    r = client.post(f"/products/{pid}/approval", json={"expiry_date": START}, headers=as_(actors.inspector2))
    assert r.status_code == 403
    assert r.json()["error"] == "Forbidden"
    assert client.get(f"/products/{pid}").json()["quality_approved"] is False

    r = client.post(f"/products/{pid}/distributor", json={"identity": actors.retailer},
                    headers=as_(actors.producer))
    assert r.status_code == 422
    assert r.json()["error"] == "InvalidTarget"

    r = client.post(f"/products/{pid}/retailer", json={"identity": actors.retailer},
                    headers=as_(actors.distributor))
    assert r.status_code == 403


def test_missing_caller_header(client):
    r = client.post("/products", json={"name": "Milk", "batch_id": "B", "category": "c", "production_date": 0})
    assert r.status_code == 422


def test_signed_requests(settings, registry, actors):
    producer = Account.create()
    registry.register_producer(actors.admin, producer.address, "Signed Farm")
    signed_settings = settings.model_copy(update={"REQUIRE_SIGNED_REQUESTS": True})
    client = TestClient(create_app(settings=signed_settings, registry=registry))
    body = json.dumps({"name": "Milk", "batch_id": "B", "category": "c", "production_date": START}).encode()
    json_headers = {"Content-Type": "application/json"}

    r = client.post("/products", content=body, headers={**json_headers, **as_(producer.address)})
    assert r.status_code == 400

    ts = int(time.time())
    message = signing_message("POST", "/products", ts, body)
    sig = producer.sign_message(encode_defunct(text=message)).signature.hex()
    signed = {**json_headers, "X-Caller": producer.address, "X-Timestamp": str(ts), "X-Signature": sig}
    r = client.post("/products", content=body, headers=signed)
    assert r.status_code == 200, r.text
    assert r.json() == {"product_id": 1}

    # same signature, different body
    tampered = json.dumps({"name": "Fake", "batch_id": "B", "category": "c", "production_date": START}).encode()
    r = client.post("/products", content=tampered, headers=signed)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidIdentity"
    assert registry.product_count() == 1

    impostor = {**signed, "X-Caller": actors.producer}
    r = client.post("/products", content=body, headers=impostor)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidIdentity"


class _FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def test_pin_metadata_json(client, actors, monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return _FakeResponse({"IpfsHash": "QmTestCid"})

    monkeypatch.setattr(pinata.requests, "post", fake_post)
    register_all(client, actors)

    r = client.post("/metadata", json={"name": "Milk", "origin": "Green Valley"}, headers=as_(actors.producer))
    assert r.status_code == 200, r.text
    assert r.json() == {"ipfs_cid": "QmTestCid", "metadata_uri": "ipfs://QmTestCid"}
    url, kwargs = calls[0]
    assert url == pinata.PIN_JSON_URL
    assert kwargs["headers"]["Authorization"] == "Bearer test-jwt"


def test_pin_metadata_file(client, actors, monkeypatch):
    monkeypatch.setattr(pinata.requests, "post", lambda url, **kw: _FakeResponse({"IpfsHash": "QmFileCid"}))
    register_all(client, actors)
    r = client.post("/metadata/file", files={"file": ("label.pdf", b"%PDF-1.4", "application/pdf")},
                    headers=as_(actors.producer))
    assert r.status_code == 200, r.text
    assert r.json()["metadata_uri"] == "ipfs://QmFileCid"


def test_pin_metadata_failures(client, actors, monkeypatch):
    monkeypatch.setattr(pinata.requests, "post", lambda url, **kw: _FakeResponse({}, status=500))
    register_all(client, actors)

    r = client.post("/metadata", json={"name": "Milk"}, headers=as_(actors.stranger))
    assert r.status_code == 403

    r = client.post("/metadata", json={"name": "Milk"}, headers=as_(actors.producer))
    assert r.status_code == 502
    assert r.json()["error"] == "PinataError"
