from datetime import datetime

from fastapi.testclient import TestClient

from app.main import app
from factories import make_item


def test_metrics_shape():
    client = TestClient(app)
    client.get("/health")
    res = client.get("/metrics")
    assert res.status_code == 200
    body = res.json()
    assert body["requests_total"] >= 1
    assert "/health" in body["by_path"]
    assert set(body["gifts"]) == {"gift_request", "gift_approval", "workflow"}
    assert "total_entries" in body["rate_limit"]


async def test_gift_request_metrics(parent_client, db, set_now):
    set_now(datetime(2025, 6, 1, 12, 0))
    item = await make_item(db, price=10)
    await db.commit()
    child = (await parent_client.post("/children", json={"display_name": "Tim"})).json()

    missing = await parent_client.post(
        "/gifts/requests",
        json={"child_id": 999, "catalog_item_id": item.id, "order_type": "REWARD"},
    )
    assert missing.status_code == 404

    # No points yet, so the request is rejected too.
    poor = await parent_client.post(
        "/gifts/requests",
        json={"child_id": child["id"], "catalog_item_id": item.id, "order_type": "REWARD"},
    )
    assert poor.status_code == 400

    gifts = (await parent_client.get("/metrics")).json()["gifts"]
    assert gifts["gift_request"]["total"] == 2
    assert gifts["gift_request"]["errors"] == 2
    assert gifts["workflow"]["requests_created"] == 0
