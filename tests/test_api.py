from __future__ import annotations

import os
import tempfile
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from autotag.api.app import create_app

from fake_catalog import FakeCatalog, product


SHOP = "s.myshopify.com"

RULE_BODY = {
    "name": "Wholesale",
    "description": "Tag wholesale vendors",
    "enabled": True,
    "conditions": {
        "groupJoiner": "AND",
        "groups": [
            {
                "joiner": "AND",
                "conditions": [
                    {"field": "vendor", "operator": "contains", "value": "wholesale"},
                    {"field": "minVariantPrice", "operator": "greater_than", "value": "80"},
                ],
            }
        ],
    },
    "actions": {"items": [{"type": "add", "tags": ["wholesale"]}]},
}


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog(
        [
            product("gid://shopify/Product/1", vendor="Acme Wholesale", prices=("90",)),
            product("gid://shopify/Product/2", vendor="Retail", prices=("90",)),
        ]
    )


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, catalog: FakeCatalog) -> Iterator[TestClient]:
    with tempfile.TemporaryDirectory() as td:
        cfg_path = os.path.join(td, "config.toml")
        with open(cfg_path, "w", encoding="utf-8") as f:
            f.write("[limits]\nmax_active_rules_per_shop = 1\nrecent_rules_snapshot = 5\n")
        monkeypatch.setenv("AUTOTAG_SQLITE_PATH", os.path.join(td, "app.db"))
        monkeypatch.setenv("AUTOTAG_CONFIG_PATH", cfg_path)
        monkeypatch.setenv("AUTOTAG_ENABLE_WORKER", "0")

        app = create_app(catalog_factory=lambda shop: catalog)
        with TestClient(app) as c:
            yield c


def _create_rule(client: TestClient, **overrides) -> dict:  # noqa: ANN003
    resp = client.post(f"/api/v1/shops/{SHOP}/rules", json={**RULE_BODY, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()["rule"]


def test_health_and_version(client: TestClient) -> None:
    assert client.get("/api/v1/healthz").json() == {"status": "ok"}
    version = client.get("/api/v1/version").json()
    assert version["service"] == "autotag"
    assert set(version["deps"]) == {"fastapi", "pydantic", "uvicorn"}
    client.post(f"/api/v1/shops/{SHOP}/runs")
    worker = client.get("/api/v1/system/worker").json()
    assert worker["worker"]["enabled"] is False
    assert worker["queued"] == 1
    assert worker["runs_by_status"] == {"queued": 1}
    assert worker["requeued_on_startup"] == 0


def test_rule_crud(client: TestClient) -> None:
    rule = _create_rule(client)
    assert rule["name"] == "Wholesale"
    assert rule["conditions"]["groups"][0]["conditions"][1]["field"] == "minVariantPrice"

    listed = client.get(f"/api/v1/shops/{SHOP}/rules").json()
    assert [r["id"] for r in listed["items"]] == [rule["id"]]
    assert listed["active_count"] == 1
    assert listed["rule_limit"] == 1

    updated = client.put(
        f"/api/v1/shops/{SHOP}/rules/{rule['id']}",
        json={**RULE_BODY, "name": "Wholesale v2", "enabled": False},
    )
    assert updated.status_code == 200
    assert updated.json()["rule"]["enabled"] is False

    assert client.get(f"/api/v1/shops/{SHOP}/rules", params={"status": "active"}).json()["items"] == []
    assert client.get(f"/api/v1/shops/other.myshopify.com/rules/{rule['id']}").status_code == 404

    assert client.delete(f"/api/v1/shops/{SHOP}/rules/{rule['id']}").status_code == 200
    missing = client.get(f"/api/v1/shops/{SHOP}/rules/{rule['id']}")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_rule_validation_and_limit(client: TestClient) -> None:
    bad = client.post(f"/api/v1/shops/{SHOP}/rules", json={**RULE_BODY, "actions": {"items": []}})
    assert bad.status_code == 400
    assert bad.json()["error"] == {"code": "invalid_argument", "message": "At least one tag action is required"}

    _create_rule(client)
    over = client.post(f"/api/v1/shops/{SHOP}/rules", json={**RULE_BODY, "name": "Second"})
    assert over.status_code == 409
    assert over.json()["error"]["code"] == "conflict"

    # A disabled rule is accepted at the cap.
    _create_rule(client, name="Second", enabled=False)


def test_enqueue_and_read_runs(client: TestClient) -> None:
    resp = client.post(f"/api/v1/shops/{SHOP}/runs")
    assert resp.status_code == 201
    run = resp.json()["run"]
    assert run["status"] == "queued"
    assert run["processed"] == 0

    assert client.get(f"/api/v1/runs/{run['run_id']}").json()["run"]["shop"] == SHOP
    assert client.get(f"/api/v1/shops/{SHOP}/runs/latest").json()["run"]["run_id"] == run["run_id"]

    page = client.get(f"/api/v1/shops/{SHOP}/runs").json()
    assert [r["run_id"] for r in page["items"]] == [run["run_id"]]
    assert page["has_more"] is False

    assert client.get(f"/api/v1/shops/{SHOP}/runs", params={"status": "paused"}).status_code == 400
    assert client.get(f"/api/v1/shops/{SHOP}/runs", params={"cursor": "???"}).status_code == 400
    assert client.get("/api/v1/runs/run_missing").status_code == 404
    assert client.get(f"/api/v1/runs/{run['run_id']}/events").json()["items"] == []

    assert client.get("/api/v1/shops/empty.myshopify.com/runs/latest").json() == {"run": None}


def test_shop_status(client: TestClient) -> None:
    empty = client.get(f"/api/v1/shops/{SHOP}/status").json()
    assert empty["status"]["automation_active"] is False
    assert empty["status"]["last_execution_at"] is None
    assert empty["has_rules"] is False

    rule = _create_rule(client)
    client.post(f"/api/v1/shops/{SHOP}/runs")
    status = client.get(f"/api/v1/shops/{SHOP}/status").json()
    assert status["status"]["active_rule_count"] == 1
    assert status["status"]["rule_limit"] == 1
    assert status["status"]["last_execution_at"] is not None
    assert status["recent_rules"] == [
        {"id": rule["id"], "name": "Wholesale", "enabled": True, "condition_count": 2, "tag_count": 1}
    ]


def test_rule_test_endpoint_does_not_write(client: TestClient, catalog: FakeCatalog) -> None:
    rule = _create_rule(client, enabled=False)
    resp = client.post(f"/api/v1/shops/{SHOP}/rules/{rule['id']}/test", json={"product_id": "1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["matched"] is True
    assert body["evaluation"]["addedTags"] == ["wholesale"]
    assert [c["matched"] for c in body["conditions"]] == [True, True]
    assert catalog.writes == []

    missing = client.post(f"/api/v1/shops/{SHOP}/rules/{rule['id']}/test", json={"product_id": "999"})
    assert missing.status_code == 404


def test_product_update_webhook(client: TestClient, catalog: FakeCatalog) -> None:
    headers = {"X-Shopify-Shop-Domain": SHOP}
    payload = {"admin_graphql_api_id": "gid://shopify/Product/1"}

    no_rules = client.post("/api/v1/webhooks/products/update", json=payload, headers=headers).json()
    assert no_rules["changed"] is False
    assert no_rules["reason"] == "No enabled rules"

    _create_rule(client)
    changed = client.post("/api/v1/webhooks/products/update", json=payload, headers=headers).json()
    assert changed["changed"] is True
    assert catalog.writes == [("gid://shopify/Product/1", ["wholesale"])]

    again = client.post("/api/v1/webhooks/products/update", json=payload, headers=headers).json()
    assert again["changed"] is False

    ignored = client.post("/api/v1/webhooks/products/update", json={}, headers=headers).json()
    assert ignored["handled"] is False

    assert client.post("/api/v1/webhooks/products/update", json=payload).status_code == 400
