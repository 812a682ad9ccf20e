from bson import ObjectId

from conftest import make_product


def test_featured_products_are_read_through_cache(client, db, featured_cache):
    make_product(db, name="Ceiling Fan", is_featured=True)

    first = client.get("/api/products/featured")
    assert [p["name"] for p in first.json()] == ["Ceiling Fan"]
    assert featured_cache.get()[0]["name"] == "Ceiling Fan"

    make_product(db, name="Pedestal Fan", is_featured=True)
    second = client.get("/api/products/featured")
    assert [p["name"] for p in second.json()] == ["Ceiling Fan"]


def test_toggle_featured_overwrites_cache(client, db, admin, featured_cache):
    make_product(db, name="Ceiling Fan", is_featured=True)
    client.get("/api/products/featured")
    pid = make_product(db, name="Pedestal Fan")

    res = client.patch(f"/api/products/{pid}", headers=admin["headers"])

    assert res.status_code == 200
    assert res.json()["is_featured"] is True
    names = sorted(p["name"] for p in client.get("/api/products/featured").json())
    assert names == ["Ceiling Fan", "Pedestal Fan"]


def test_edit_and_delete_refresh_cache(client, db, admin):
    pid = make_product(db, name="Ceiling Fan", is_featured=True)
    client.get("/api/products/featured")

    res = client.post(f"/api/products/id/{pid}", json={"price": 149.0, "quantity": 3}, headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["price"] == 149.0
    assert client.get("/api/products/featured").json()[0]["price"] == 149.0

    assert client.delete(f"/api/products/{pid}", headers=admin["headers"]).status_code == 200
    assert client.get("/api/products/featured").json() == []
    assert db["product"].count_documents({}) == 0


def test_category_listing_excludes_clearance(client, db):
    make_product(db, name="Ceiling Fan", category="fans")
    make_product(db, name="Exhaust Fan", category="fans", close_out=True)
    make_product(db, name="LED Bulb", category="lights")

    res = client.get("/api/products/category/fans")

    assert res.status_code == 200
    assert [p["name"] for p in res.json()["products"]] == ["Ceiling Fan"]


def test_clearance_listing(client, db):
    assert client.get("/api/products/clearance-sale").status_code == 404
    make_product(db, name="Exhaust Fan", close_out=True)
    res = client.get("/api/products/clearance-sale")
    assert [p["name"] for p in res.json()["products"]] == ["Exhaust Fan"]


def test_search_is_case_insensitive(client, db):
    make_product(db, name="Ceiling Fan")
    make_product(db, name="LED Bulb")

    assert client.get("/api/products/search").status_code == 400
    assert client.get("/api/products/search", params={"name": "heater"}).status_code == 404
    res = client.get("/api/products/search", params={"name": "fan"})
    assert [p["name"] for p in res.json()["products"]] == ["Ceiling Fan"]


def test_product_page_by_name(client, db):
    make_product(db, name="Ceiling Fan")
    res = client.get("/api/products/Ceiling Fan")
    assert res.status_code == 200
    assert res.json()["product"]["name"] == "Ceiling Fan"
    assert client.get("/api/products/Nothing").status_code == 404


def test_product_admin_routes_are_guarded(client, db, customer, admin):
    product = {"name": "Wall Fan", "price": 80, "category": "fans", "quantity": 4}

    assert client.post("/api/products", json=product).status_code == 401
    assert client.post("/api/products", json=product, headers=customer["headers"]).status_code == 403

    res = client.post("/api/products", json=product, headers=admin["headers"])
    assert res.status_code == 201
    assert db["product"].find_one({"_id": ObjectId(res.json()["id"])})["name"] == "Wall Fan"

    listing = client.get("/api/products", headers=admin["headers"])
    assert [p["name"] for p in listing.json()["products"]] == ["Wall Fan"]


def test_quantity_check(client, db):
    pid = make_product(db, quantity=2)
    assert client.post("/api/products/update-quantity", json={"id": pid, "quantity": -1}).status_code == 400
    assert client.post("/api/products/update-quantity", json={"id": pid, "quantity": 3}).status_code == 400
    assert client.post("/api/products/update-quantity", json={"id": str(ObjectId()), "quantity": 1}).status_code == 404
    assert client.post("/api/products/update-quantity", json={"id": pid, "quantity": 2}).json()["success"] is True


def test_warranty_claim_flow(client, db, customer, admin):
    claim = {"product_name": "Ceiling Fan", "reason": "Motor hums", "photo": "https://img.test/fan.jpg", "address": "Pune", "phone": "99999"}

    missing = client.post("/api/products/warranty/claim", json={**claim, "phone": ""}, headers=customer["headers"])
    assert missing.status_code == 400

    res = client.post("/api/products/warranty/claim", json=claim, headers=customer["headers"])
    assert res.status_code == 201
    claim_id = res.json()["id"]

    dashboard = client.get("/api/products/warranty/claim/dashboard", headers=admin["headers"]).json()
    assert dashboard[0]["status"] == "pending"
    assert dashboard[0]["image_url"] == "https://img.test/fan.jpg"
    assert dashboard[0]["user"]["email"] == "user@example.com"

    url = f"/api/products/warranty/claim/{claim_id}"
    assert client.put(url, json={"status": "lost"}, headers=admin["headers"]).status_code == 400
    assert client.put(url, json={"status": "approved"}, headers=admin["headers"]).status_code == 200
    assert client.put(url, json={"status": "approved"}, headers=admin["headers"]).status_code == 404
    assert db["warrantyclaim"].find_one({"_id": ObjectId(claim_id)})["status"] == "approved"
