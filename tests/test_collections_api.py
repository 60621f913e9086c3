import csv
import io

from what2watch.db import get_db
from what2watch.ordering import is_densely_packed

TITLES = [
    ("movie", 1, "Alpha"),
    ("tv", 2, "Beta"),
    ("movie", 3, "Charlie"),
    ("tv", 4, "Delta"),
]


def _add_all(client, url, headers, titles=TITLES):
    ids = []
    for media_type, tmdb_id, title in titles:
        resp = client.post(url, json={"media_type": media_type, "tmdb_id": tmdb_id, "title": title}, headers=headers)
        assert resp.status_code == 201, resp.get_json()
        ids.append(resp.get_json()["item"]["id"])
    return ids


def _order(client, url, headers):
    items = client.get(url, headers=headers).get_json()["items"]
    return [(item["title"], item["position"]) for item in items]


def test_watchlist_requires_auth(client):
    assert client.get("/api/watchlist").status_code == 401
    resp = client.post("/api/watchlist", json={}, headers={"Authorization": "Bearer 99:nobody@example.com"})
    assert resp.status_code == 401


def test_watchlist_is_created_on_first_add_and_starts_at_zero(client, alice):
    assert client.get("/api/watchlist", headers=alice).get_json()["collection"] is None
    _add_all(client, "/api/watchlist", alice)
    assert _order(client, "/api/watchlist", alice) == [("Alpha", 0), ("Beta", 1), ("Charlie", 2), ("Delta", 3)]


def test_watchlist_rejects_duplicates_and_bad_payloads(client, alice):
    _add_all(client, "/api/watchlist", alice, TITLES[:1])
    dup = client.post("/api/watchlist", json={"media_type": "movie", "tmdb_id": 1, "title": "Alpha"}, headers=alice)
    assert dup.status_code == 409
    bad = client.post("/api/watchlist", json={"media_type": "person", "tmdb_id": 1, "title": "x"}, headers=alice)
    assert bad.status_code == 400
    bad = client.post("/api/watchlist", json={"media_type": "movie", "tmdb_id": "1", "title": "x"}, headers=alice)
    assert bad.status_code == 400


def test_reorder_within_filtered_watchlist(client, alice):
    _add_all(client, "/api/watchlist", alice)
    resp = client.post(
        "/api/watchlist/reorder",
        json={"source_index": 0, "destination_index": 1, "type": "movie"},
        headers=alice,
    )
    assert resp.status_code == 200
    assert len(resp.get_json()["updates"]) == 4
    assert _order(client, "/api/watchlist", alice) == [("Charlie", 0), ("Alpha", 1), ("Beta", 2), ("Delta", 3)]


def test_reorder_with_search_term(client, alice):
    _add_all(client, "/api/watchlist", alice)
    # "ha" matches Alpha and Charlie only
    resp = client.post(
        "/api/watchlist/reorder",
        json={"source_index": 1, "destination_index": 0, "q": "HA"},
        headers=alice,
    )
    assert resp.status_code == 200
    assert _order(client, "/api/watchlist", alice) == [("Charlie", 0), ("Alpha", 1), ("Beta", 2), ("Delta", 3)]


def test_reorder_no_op_and_bad_indices(client, alice):
    _add_all(client, "/api/watchlist", alice)
    resp = client.post("/api/watchlist/reorder", json={"source_index": 2, "destination_index": 2}, headers=alice)
    assert resp.get_json()["updates"] == []
    resp = client.post("/api/watchlist/reorder", json={"source_index": 0, "destination_index": 4}, headers=alice)
    assert resp.status_code == 400
    resp = client.post(
        "/api/watchlist/reorder",
        json={"source_index": 0, "destination_index": 2, "type": "tv"},
        headers=alice,
    )
    assert resp.status_code == 400
    assert _order(client, "/api/watchlist", alice)[0] == ("Alpha", 0)


def test_remove_repacks_positions(client, alice):
    ids = _add_all(client, "/api/watchlist", alice)
    resp = client.delete(f"/api/watchlist/items/{ids[1]}", headers=alice)
    assert resp.status_code == 200
    assert resp.get_json()["repacked"] == 2
    assert _order(client, "/api/watchlist", alice) == [("Alpha", 0), ("Charlie", 1), ("Delta", 2)]
    assert client.delete(f"/api/watchlist/items/{ids[1]}", headers=alice).status_code == 404


def test_patch_item_position_and_note(client, alice):
    ids = _add_all(client, "/api/watchlist", alice)
    resp = client.patch(f"/api/watchlist/items/{ids[3]}", json={"position": 0, "note": "tonight"}, headers=alice)
    assert resp.status_code == 200
    assert resp.get_json()["item"]["note"] == "tonight"
    assert _order(client, "/api/watchlist", alice) == [("Delta", 0), ("Alpha", 1), ("Beta", 2), ("Charlie", 3)]
    assert client.patch(f"/api/watchlist/items/{ids[0]}", json={}, headers=alice).status_code == 400
    assert client.patch(f"/api/watchlist/items/{ids[0]}", json={"position": 9}, headers=alice).status_code == 400


def test_watchlist_pagination_and_filter(client, alice):
    _add_all(client, "/api/watchlist", alice)
    body = client.get("/api/watchlist?per_page=1&page=2&type=tv", headers=alice).get_json()
    assert [item["title"] for item in body["items"]] == ["Delta"]
    assert body["pagination"]["total"] == 2
    assert body["pagination"]["pages"] == [1, 2]
    assert body["collection"]["item_count"] == 4


def test_playlist_lifecycle(client, alice, bob):
    resp = client.post("/api/playlists", json={"name": "Friday Night"}, headers=alice)
    assert resp.status_code == 201
    playlist = resp.get_json()["collection"]
    assert playlist["visibility"] == "PRIVATE"
    url = f"/api/playlists/{playlist['id']}"

    _add_all(client, f"{url}/items", alice)
    assert _order(client, url, alice)[0] == ("Alpha", 1)

    # private playlists are invisible to other users
    assert client.get(url, headers=bob).status_code == 404
    assert client.post(f"{url}/items", json={}, headers=bob).status_code == 403

    resp = client.post(f"{url}/reorder", json={"source_index": 3, "destination_index": 0}, headers=alice)
    assert resp.status_code == 200
    assert _order(client, url, alice) == [("Delta", 1), ("Alpha", 2), ("Beta", 3), ("Charlie", 4)]

    resp = client.patch(url, json={"visibility": "PUBLIC", "name": "Weekend"}, headers=alice)
    assert resp.get_json()["collection"]["name"] == "Weekend"
    assert client.get(url, headers=bob).status_code == 200

    assert client.delete(url, headers=bob).status_code == 403
    assert client.delete(url, headers=alice).status_code == 200
    assert client.get(url, headers=alice).status_code == 404


def test_playlist_and_list_ids_are_not_interchangeable(client, alice):
    playlist = client.post("/api/playlists", json={"name": "P"}, headers=alice).get_json()["collection"]
    assert client.get(f"/api/lists/{playlist['id']}", headers=alice).status_code == 404


def test_collections_index(client, alice, bob):
    client.post("/api/lists", json={"name": "Public one"}, headers=alice)
    client.post("/api/lists", json={"name": "Hidden", "visibility": "PRIVATE"}, headers=alice)
    mine = client.get("/api/lists", headers=alice).get_json()["lists"]
    assert {c["name"] for c in mine} == {"Public one", "Hidden"}

    alice_id = mine[0]["owner_id"]
    seen_by_bob = client.get(f"/api/lists?owner_id={alice_id}", headers=bob).get_json()["lists"]
    assert [c["name"] for c in seen_by_bob] == ["Public one"]
    assert client.get("/api/lists").status_code == 401


def test_list_explicit_positions_batch(client, alice):
    lst = client.post("/api/lists", json={"name": "Top"}, headers=alice).get_json()["collection"]
    url = f"/api/lists/{lst['id']}"
    ids = _add_all(client, f"{url}/items", alice, TITLES[:3])

    batch = [{"id": ids[2], "position": 1}, {"id": ids[0], "position": 2}, {"id": ids[1], "position": 3}]
    resp = client.patch(f"{url}/positions", json={"items": batch}, headers=alice)
    assert resp.status_code == 200
    assert _order(client, url, alice) == [("Charlie", 1), ("Alpha", 2), ("Beta", 3)]

    gap = [{"id": ids[0], "position": 1}, {"id": ids[1], "position": 2}, {"id": ids[2], "position": 5}]
    assert client.patch(f"{url}/positions", json={"items": gap}, headers=alice).status_code == 400
    partial = batch[:2]
    assert client.patch(f"{url}/positions", json={"items": partial}, headers=alice).status_code == 400
    assert client.patch(f"{url}/positions", json={"items": []}, headers=alice).status_code == 400
    assert _order(client, url, alice) == [("Charlie", 1), ("Alpha", 2), ("Beta", 3)]


def test_list_export_csv(client, alice):
    lst = client.post("/api/lists", json={"name": "Best of 2024"}, headers=alice).get_json()["collection"]
    url = f"/api/lists/{lst['id']}"
    _add_all(client, f"{url}/items", alice, TITLES[:2])

    resp = client.get(f"{url}/export", headers=alice)
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert f"best-of-2024-{lst['id']}.csv" in resp.headers["Content-Disposition"]
    rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
    assert [(r["position"], r["title"]) for r in rows] == [("1", "Alpha"), ("2", "Beta")]


def test_positions_stay_dense_after_mixed_mutations(app, client, alice):
    pl = client.post("/api/playlists", json={"name": "Mix"}, headers=alice).get_json()["collection"]
    url = f"/api/playlists/{pl['id']}"
    ids = _add_all(client, f"{url}/items", alice)
    client.post(f"{url}/reorder", json={"source_index": 0, "destination_index": 1, "q": "e"}, headers=alice)
    client.delete(f"{url}/items/{ids[2]}", headers=alice)
    client.patch(f"{url}/items/{ids[3]}", json={"position": 1}, headers=alice)
    client.post(f"{url}/items", json={"media_type": "movie", "tmdb_id": 9, "title": "Echo"}, headers=alice)

    with app.app_context():
        rows = get_db().execute(
            "SELECT position FROM collection_items WHERE collection_id = ?", (pl["id"],)
        ).fetchall()
    assert is_densely_packed([r["position"] for r in rows], base=1)
    assert len(rows) == 4


def test_list_export_imports_into_another_list(client, alice):
    source = client.post("/api/lists", json={"name": "Source"}, headers=alice).get_json()["collection"]
    target = client.post("/api/lists", json={"name": "Target"}, headers=alice).get_json()["collection"]
    _add_all(client, f"/api/lists/{source['id']}/items", alice, TITLES[:3])
    exported = client.get(f"/api/lists/{source['id']}/export", headers=alice).get_data(as_text=True)

    resp = client.post(f"/api/lists/{target['id']}/import", data=exported, content_type="text/csv", headers=alice)
    assert resp.status_code == 200
    body = resp.get_json()
    assert (body["imported"], body["updated"], body["skipped"], body["warnings"]) == (3, 0, 0, [])
    assert _order(client, f"/api/lists/{target['id']}", alice) == [("Alpha", 1), ("Beta", 2), ("Charlie", 3)]


def test_import_places_explicit_positions_and_warns_on_bad_ones(app, client, alice):
    pl = client.post("/api/playlists", json={"name": "Mix"}, headers=alice).get_json()["collection"]
    url = f"/api/playlists/{pl['id']}"
    _add_all(client, f"{url}/items", alice, TITLES[:2])
    upload = (
        "position,media_type,tmdb_id,title,note\n"
        "1,movie,3,Charlie,\n"
        "abc,tv,4,Delta,\n"
        "99,movie,5,Echo,\n"
        ",tv,2,Beta,seen it\n"
    )

    resp = client.post(f"{url}/import", data=upload, content_type="text/csv", headers=alice)
    body = resp.get_json()
    assert (body["imported"], body["updated"], body["skipped"]) == (3, 1, 0)
    assert [w["row"] for w in body["warnings"]] == [3, 4]
    assert "Invalid position value: abc" in body["warnings"][0]["warning"]
    assert _order(client, url, alice) == [("Charlie", 1), ("Alpha", 2), ("Beta", 3), ("Delta", 4), ("Echo", 5)]

    items = client.get(url, headers=alice).get_json()["items"]
    assert items[2]["note"] == "seen it"
    with app.app_context():
        rows = get_db().execute(
            "SELECT position FROM collection_items WHERE collection_id = ?", (pl["id"],)
        ).fetchall()
    assert is_densely_packed([r["position"] for r in rows], base=1)


def test_import_accepts_order_column_and_can_skip_duplicates(client, alice):
    lst = client.post("/api/lists", json={"name": "Keep"}, headers=alice).get_json()["collection"]
    url = f"/api/lists/{lst['id']}"
    _add_all(client, f"{url}/items", alice, TITLES[:2])
    upload = (
        "order,media_type,tmdb_id,title\n"
        "2,movie,1,Renamed Alpha\n"
        "1,tv,8,Foxtrot\n"
        "1,person,9,Someone\n"
    )

    resp = client.post(f"{url}/import?duplicates=skip", data=upload, content_type="text/csv", headers=alice)
    body = resp.get_json()
    assert (body["imported"], body["updated"], body["skipped"]) == (1, 0, 2)
    assert [w["row"] for w in body["warnings"]] == [4]
    assert _order(client, url, alice) == [("Foxtrot", 1), ("Alpha", 2), ("Beta", 3)]


def test_import_from_multipart_upload(client, alice):
    lst = client.post("/api/lists", json={"name": "Upload"}, headers=alice).get_json()["collection"]
    upload = b"media_type,tmdb_id,title\nmovie,550,Fight Club\n"
    resp = client.post(
        f"/api/lists/{lst['id']}/import",
        data={"file": (io.BytesIO(upload), "list.csv")},
        content_type="multipart/form-data",
        headers=alice,
    )
    assert resp.status_code == 200
    assert resp.get_json()["imported"] == 1


def test_import_rejections(client, alice, bob):
    lst = client.post("/api/lists", json={"name": "Guarded"}, headers=alice).get_json()["collection"]
    url = f"/api/lists/{lst['id']}/import"
    good = "media_type,tmdb_id,title\nmovie,1,Alpha\n"

    assert client.post(url, data=good, content_type="text/csv").status_code == 401
    assert client.post(url, data=good, content_type="text/csv", headers=bob).status_code == 403
    missing = client.post(url, data="tmdb_id,title\n1,Alpha\n", content_type="text/csv", headers=alice)
    assert missing.status_code == 400
    assert "media_type" in missing.get_json()["error"]
    assert client.post(url, data="", content_type="text/csv", headers=alice).status_code == 400
    assert client.post(f"{url}?duplicates=merge", data=good, content_type="text/csv", headers=alice).status_code == 400
