def create(client, headers, **fields):
    body = {"garment_type": "shirt", "front_view_url": "data:image/png;base64,AAAA"}
    body.update(fields)
    r = client.post("/api/generations", json=body, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()["generation"]


def test_create_defaults_to_processing(client, signup):
    user, headers = signup()
    generation = create(client, headers)
    assert generation["status"] == "processing"
    assert generation["user_id"] == user["id"]


def test_list_is_paginated_newest_first(client, signup):
    _, headers = signup()
    ids = [create(client, headers, garment_type=g)["id"] for g in ("shirt", "jeans", "skirt")]

    r = client.get("/api/generations", params={"page": 1, "limit": 2}, headers=headers)
    body = r.json()
    assert body["total"] == 3 and body["page"] == 1 and body["limit"] == 2
    assert [g["id"] for g in body["generations"]] == [ids[2], ids[1]]
    assert set(body["generations"][0]) == {"id", "garment_type", "status", "created_at", "updated_at"}

    r = client.get("/api/generations", params={"page": 2, "limit": 2}, headers=headers)
    assert [g["id"] for g in r.json()["generations"]] == [ids[0]]


def test_get_single_generation(client, signup):
    _, headers = signup()
    generation = create(client, headers, generated_side="data:image/png;base64,BBBB")
    r = client.get("/api/generations", params={"id": generation["id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["generation"]["generated_side"] == "data:image/png;base64,BBBB"


def test_update_only_touches_supplied_fields(client, signup):
    _, headers = signup()
    generation = create(client, headers, generated_side="side")
    r = client.put("/api/generations", json={"id": generation["id"], "status": "front_generated",
                                             "generated_front1": "f1"}, headers=headers)
    assert r.status_code == 200
    updated = r.json()["generation"]
    assert updated["status"] == "front_generated"
    assert updated["generated_front1"] == "f1"
    assert updated["generated_side"] == "side"


def test_update_and_delete_require_id(client, signup):
    _, headers = signup()
    assert client.put("/api/generations", json={"status": "completed"}, headers=headers).status_code == 400
    r = client.delete("/api/generations", headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Generation ID is required"


def test_other_users_rows_are_invisible(client, signup):
    _, owner = signup("owner@example.com")
    _, intruder = signup("intruder@example.com")
    generation = create(client, owner)

    assert client.get("/api/generations", headers=intruder).json()["total"] == 0
    assert client.get("/api/generations", params={"id": generation["id"]}, headers=intruder).status_code == 404
    r = client.put("/api/generations", json={"id": generation["id"], "status": "failed"}, headers=intruder)
    assert r.status_code == 404
    r = client.delete("/api/generations", params={"id": generation["id"]}, headers=intruder)
    assert r.status_code == 404

    r = client.get("/api/generations", params={"id": generation["id"]}, headers=owner)
    assert r.json()["generation"]["status"] == "processing"


def test_delete_own_generation(client, signup):
    _, headers = signup()
    generation = create(client, headers)
    r = client.delete("/api/generations", params={"id": generation["id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert client.get("/api/generations", params={"id": generation["id"]}, headers=headers).status_code == 404


def test_update_rejects_null_status(client, signup):
    _, headers = signup()
    generation = create(client, headers)
    r = client.put("/api/generations", json={"id": generation["id"], "status": None}, headers=headers)
    assert r.status_code == 400
    assert r.json()["success"] is False

    r = client.get("/api/generations", params={"id": generation["id"]}, headers=headers)
    assert r.json()["generation"]["status"] == "processing"
