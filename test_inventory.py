import pytest

import inventory


@pytest.mark.parametrize("stock,state", [(0, "critical"), (200, "critical"), (201, "low"), (1000, "low"), (1001, "ok")])
def test_stock_state_thresholds(stock, state):
    assert inventory.stock_state(stock, minimum_stock=1000, critical_stock=200) == state


def test_purchase_adds_stock_and_sets_unit_cost():
    changes = inventory.apply_purchase({"stock": 500}, quantity=1000, total_cost=150)
    assert changes == {"stock": 1500, "cost_per_unit": 0.15}


def test_movement_quantity_is_signed():
    assert inventory.movement("s1", "waste", 800, 300)["quantity"] == -500


def test_product_cost_and_margin():
    cost = inventory.product_cost(30, [(100, 0.1), (50, 0.2)])
    assert cost == {"price": 30, "supply_cost": 20, "gross_margin": 10, "margin_percent": 33.3}
    assert inventory.product_cost(0, [])["margin_percent"] == 0


STRAWBERRIES = {
    "name": "Fresas",
    "unit": "g",
    "stock": 500,
    "minimum_stock": 1000,
    "critical_stock": 200,
    "cost_per_unit": 0.1,
}


@pytest.fixture
def supply_id(client):
    return client.post("/inventory/supplies", json=STRAWBERRIES).json()["id"]


def test_create_supply_reports_state(client):
    response = client.post("/inventory/supplies", json=STRAWBERRIES)
    assert response.status_code == 201
    body = response.json()
    assert body["stock_state"] == "low"
    assert body["inventory_value"] == 50


def test_critical_above_minimum_rejected(client):
    response = client.post("/inventory/supplies", json={**STRAWBERRIES, "critical_stock": 2000})
    assert response.status_code == 422


def test_purchase_increases_stock(client, supply_id):
    response = client.post("/inventory/purchases", json={"supply_id": supply_id, "quantity": 1000, "total_cost": 150})
    assert response.status_code == 201
    purchase = response.json()
    assert purchase["supply"]["stock"] == 1500
    assert purchase["supply"]["cost_per_unit"] == 0.15
    assert purchase["supply"]["stock_state"] == "ok"

    movements = client.get("/inventory/movements", params={"supply_id": supply_id}).json()
    assert len(movements) == 1
    assert movements[0]["kind"] == "purchase"
    assert movements[0]["stock_before"] == 500
    assert movements[0]["stock_after"] == 1500
    assert movements[0]["reference_id"] == purchase["id"]
    assert [p["id"] for p in client.get("/inventory/purchases").json()] == [purchase["id"]]


def test_purchase_of_unknown_supply(client, store):
    response = client.post("/inventory/purchases", json={"supply_id": "nope", "quantity": 1, "total_cost": 1})
    assert response.status_code == 404


def test_waste_records_movement(client, supply_id):
    response = client.post(f"/inventory/supplies/{supply_id}/adjust", json={"stock": 100, "kind": "waste"})
    assert response.json()["stock_state"] == "critical"
    movement = client.get("/inventory/movements").json()[0]
    assert movement["kind"] == "waste"
    assert movement["quantity"] == -400


def test_update_does_not_touch_stock(client, supply_id):
    response = client.put(f"/inventory/supplies/{supply_id}", json={**STRAWBERRIES, "stock": 9999, "supplier": "Central"})
    assert response.status_code == 200
    assert response.json()["stock"] == 500
    assert response.json()["supplier"] == "Central"


def test_deleted_supply_is_only_deactivated(client, supply_id):
    assert client.delete(f"/inventory/supplies/{supply_id}").status_code == 204
    assert client.get("/inventory/supplies").json() == []
    assert client.get("/inventory/supplies", params={"all": "true"}).json()[0]["active"] is False
    assert client.delete("/inventory/supplies/nope").status_code == 404


def test_supplies_filtered_by_state(client, supply_id):
    client.post("/inventory/supplies", json={**STRAWBERRIES, "name": "Crema", "stock": 5000})
    assert [s["name"] for s in client.get("/inventory/supplies", params={"state": "ok"}).json()] == ["Crema"]
    assert [s["name"] for s in client.get("/inventory/supplies", params={"state": "low"}).json()] == ["Fresas"]


def test_inventory_stats(client, supply_id):
    client.post("/inventory/supplies", json={**STRAWBERRIES, "name": "Crema", "stock": 5000})
    client.post("/inventory/supplies", json={**STRAWBERRIES, "name": "Nuez", "stock": 0})
    stats = client.get("/inventory/stats").json()
    assert stats == {"total_supplies": 3, "ok": 1, "low": 1, "critical": 1, "inventory_value": 550}


def test_recipe_costs(client, catalog, supply_id):
    classic = catalog["classic"]
    client.put("/inventory/recipes", json={"product_id": classic, "supply_id": supply_id, "quantity": 150})
    client.put("/inventory/recipes", json={"product_id": classic, "supply_id": supply_id, "quantity": 100})
    recipes = client.get("/inventory/recipes", params={"product_id": classic}).json()
    assert [r["quantity"] for r in recipes] == [100]

    cost = client.get("/inventory/costs").json()[0]
    assert cost["product_id"] == classic
    assert cost["supply_cost"] == 10
    assert cost["gross_margin"] == 20

    assert client.delete(f"/inventory/recipes/{recipes[0]['id']}").status_code == 204
    assert client.get("/inventory/costs").json()[0]["supply_cost"] == 0


def test_recipe_needs_known_product(client, store, supply_id):
    response = client.put("/inventory/recipes", json={"product_id": "nope", "supply_id": supply_id, "quantity": 1})
    assert response.status_code == 400
