from tests.conftest import auth_headers


def test_list_areas_hides_inactive_by_default(client, seeded):
    active = client.get("/v1/areas", headers=auth_headers(seeded["w1"]))
    everything = client.get("/v1/areas?include_inactive=true", headers=auth_headers(seeded["w1"]))

    assert active.status_code == 200
    assert [area["key"] for area in active.json()] == ["kitchen", "bathroom", "bedroom", "living_room"]
    assert "retired" in {area["key"] for area in everything.json()}


def test_supervisor_creates_area_and_assigns_it(client, seeded, order_payload):
    supervisor = auth_headers(seeded["supervisor"])
    created = client.post(
        "/v1/areas", json={"key": "garage", "name": "Garage", "display_order": 5}, headers=supervisor
    )
    assert created.status_code == 201
    area = created.json()
    assert area["is_active"] is True

    body = {**order_payload, "scheduled_date": order_payload["scheduled_date"].isoformat()}
    order_id = client.post("/v1/orders", json=body, headers=supervisor).json()["id"]
    assigned = client.put(f"/v1/orders/{order_id}/areas", json={"area_ids": [area["id"]]}, headers=supervisor)

    assert assigned.status_code == 200
    assert [row["name"] for row in assigned.json()["areas"]] == ["Garage"]


def test_duplicate_area_key_conflicts(client, seeded):
    response = client.post(
        "/v1/areas", json={"key": "kitchen", "name": "Second kitchen"}, headers=auth_headers(seeded["admin"])
    )

    assert response.status_code == 409
    assert response.json()["code"] == "area_key_taken"


def test_area_key_format_is_validated(client, seeded):
    response = client.post(
        "/v1/areas", json={"key": "Garage-1", "name": "Garage"}, headers=auth_headers(seeded["admin"])
    )

    assert response.status_code == 422


def test_manager_and_worker_cannot_manage_areas(client, seeded):
    for name in ("manager", "w1"):
        response = client.post("/v1/areas", json={"key": "patio", "name": "Patio"}, headers=auth_headers(seeded[name]))
        assert response.status_code == 403
        assert response.json()["code"] == "capability_missing"


def test_deactivated_area_cannot_be_assigned(client, seeded, order_payload):
    supervisor = auth_headers(seeded["supervisor"])
    assert client.delete(f"/v1/areas/{seeded['area_bedroom']}", headers=supervisor).status_code == 204
    assert client.delete("/v1/areas/999999", headers=supervisor).json()["code"] == "area_not_found"

    body = {**order_payload, "scheduled_date": order_payload["scheduled_date"].isoformat()}
    order_id = client.post("/v1/orders", json=body, headers=supervisor).json()["id"]
    response = client.put(
        f"/v1/orders/{order_id}/areas", json={"area_ids": [seeded["area_bedroom"]]}, headers=supervisor
    )

    assert response.status_code == 404
    assert response.json()["code"] == "areas_not_found"
