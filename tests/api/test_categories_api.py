"""Tests for category API endpoints."""

from fastapi.testclient import TestClient


class TestReadCategories:
    """Tests for GET /categories endpoints."""

    def test_list_in_tree_order(self, client: TestClient, tree) -> None:
        """Parents are listed before their children."""
        response = client.get("/categories")
        assert response.status_code == 200
        names = [c["name"] for c in response.json()]
        assert names == ["Plumbing", "Pipes", "PVC", "Fittings", "Bathrooms"]

    def test_main_categories(self, client: TestClient, tree) -> None:
        """Only roots are main categories."""
        data = client.get("/categories/main").json()
        assert [c["slug"] for c in data] == ["plumbing", "bathrooms"]
        assert all(c["type"] == "main" for c in data)

    def test_tree(self, client: TestClient, tree) -> None:
        """The tree nests children under parents."""
        data = client.get("/categories/tree").json()
        plumbing = data[0]
        assert [c["name"] for c in plumbing["children"]] == ["Pipes", "Fittings"]
        assert plumbing["children"][0]["children"][0]["slug"] == "plumbing-pipes-pvc"

    def test_tree_from_slug(self, client: TestClient, tree) -> None:
        """root_slug limits the tree to one subtree."""
        data = client.get("/categories/tree", params={"root_slug": "plumbing-pipes"}).json()
        assert len(data) == 1
        assert data[0]["name"] == "Pipes"

    def test_path_children_and_descendants(self, client: TestClient, tree) -> None:
        """Navigation endpoints agree with the seeded tree."""
        pvc_id = tree["PVC"]["id"]
        path = client.get(f"/categories/{pvc_id}/path").json()
        assert [c["name"] for c in path] == ["Plumbing", "Pipes", "PVC"]

        children = client.get(f"/categories/{tree['Plumbing']['id']}/children").json()
        assert [c["name"] for c in children] == ["Pipes", "Fittings"]

        descendants = client.get(f"/categories/{tree['Plumbing']['id']}/descendants").json()
        assert set(descendants) == {tree[n]["id"] for n in ("Pipes", "PVC", "Fittings")}

    def test_get_by_slug(self, client: TestClient, tree) -> None:
        """Categories can be fetched by slug."""
        response = client.get("/categories/slug/plumbing-fittings")
        assert response.status_code == 200
        assert response.json()["level"] == 1

    def test_unknown_category(self, client: TestClient, tree) -> None:
        """Unknown ids return the standard error body."""
        response = client.get("/categories/missing")
        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "CATEGORY_NOT_FOUND"
        assert "request_id" in data

    def test_parent_candidates(self, client: TestClient, tree) -> None:
        """A category's own subtree is not offered as a parent."""
        data = client.get(
            "/categories/parent-candidates", params={"exclude_id": tree["Pipes"]["id"]}
        ).json()
        assert {c["name"] for c in data} == {"Plumbing", "Fittings", "Bathrooms"}


class TestWriteCategories:
    """Tests for category write endpoints."""

    def test_create_child(self, client: TestClient, tree) -> None:
        """Children get a level and a prefixed slug."""
        response = client.post(
            "/categories", json={"name": "Valves", "parent_id": tree["Plumbing"]["id"]}
        )
        assert response.status_code == 201
        data = response.json()
        assert data["slug"] == "plumbing-valves"
        assert data["level"] == 1
        assert data["type"] == "sub"

    def test_create_too_deep(self, client: TestClient, tree) -> None:
        """Nothing can be created below level 3."""
        pvc_id = tree["PVC"]["id"]
        pressure = client.post("/categories", json={"name": "Pressure", "parent_id": pvc_id})
        assert pressure.status_code == 201

        response = client.post(
            "/categories", json={"name": "Too deep", "parent_id": pressure.json()["id"]}
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "CATEGORY_DEPTH_EXCEEDED"

    def test_create_requires_name(self, client: TestClient) -> None:
        """Request validation rejects an empty name."""
        response = client.post("/categories", json={"name": ""})
        assert response.status_code == 422

    def test_move_to_root(self, client: TestClient, tree) -> None:
        """An explicit null parent moves the category to the root."""
        response = client.patch(f"/categories/{tree['Pipes']['id']}", json={"parent_id": None})
        assert response.status_code == 200
        data = response.json()
        assert data["level"] == 0
        assert data["parent_id"] is None

        pvc = client.get(f"/categories/{tree['PVC']['id']}").json()
        assert pvc["level"] == 1

    def test_rename_keeps_parent(self, client: TestClient, tree) -> None:
        """Leaving parent_id out keeps the current parent."""
        response = client.patch(f"/categories/{tree['Pipes']['id']}", json={"name": "Tubes"})
        data = response.json()
        assert data["name"] == "Tubes"
        assert data["parent_id"] == tree["Plumbing"]["id"]

    def test_move_under_own_descendant(self, client: TestClient, tree) -> None:
        """Cycles are rejected."""
        response = client.patch(
            f"/categories/{tree['Plumbing']['id']}", json={"parent_id": tree["PVC"]["id"]}
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "CATEGORY_CYCLE"

    def test_delete_and_activate(self, client: TestClient, tree) -> None:
        """Deleting deactivates and reports leftovers; activate restores."""
        pipes_id = tree["Pipes"]["id"]
        response = client.delete(f"/categories/{pipes_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["category"]["active"] is False
        assert data["active_children"] == 1
        assert data["warnings"]

        names = [c["name"] for c in client.get("/categories").json()]
        assert "Pipes" not in names

        response = client.post(f"/categories/{pipes_id}/activate")
        assert response.json()["active"] is True

    def test_export_and_import(self, client: TestClient, tree) -> None:
        """CSV export and JSON import round through the API."""
        response = client.get("/categories/export")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "plumbing-pipes-pvc" in response.text

        response = client.post(
            "/categories/import",
            json=[
                {"name": "Sinks", "slug": "sinks", "parent_slug": "bathrooms"},
                {"name": "Orphan", "slug": "orphan", "parent_slug": "nowhere"},
            ],
        )
        assert response.status_code == 200
        data = response.json()
        assert data["created"] == ["sinks"]
        assert data["errors"][0]["slug"] == "orphan"

    def test_recount(self, client: TestClient, tree) -> None:
        """Recount reports how many categories were visited."""
        response = client.post("/categories/recount")
        assert response.status_code == 200
        assert response.json() == {"categories": 5, "products": 0}
