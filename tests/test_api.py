"""
API integration tests
"""

from datetime import datetime, timedelta

from conftest import TEST_PASSWORD


def _receive(client, headers, ids, lot_code="L-1", quantity=10, exp_date="2030-01-01", warehouse=None, product=None):
    response = client.post("/receive/", headers=headers, json={"lots": [{
        "lot_code": lot_code,
        "product_id": product or ids.milk,
        "warehouse_id": warehouse or ids.bkk,
        "exp_date": exp_date,
        "quantity": quantity,
        "supplier_id": ids.supplier,
    }]})
    assert response.status_code == 201, response.text
    return response.json()["transactions"][0]


class TestAuth:

    def test_login_with_json(self, client, seed):
        response = client.post("/auth/login", json={"username": "admin", "password": TEST_PASSWORD})
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["role"] == "admin"

    def test_login_with_form(self, client, seed):
        response = client.post("/auth/login", data={"username": "clerk_bkk", "password": TEST_PASSWORD})
        assert response.status_code == 200
        assert response.json()["role"] == "user"

    def test_bad_password(self, client, seed):
        response = client.post("/auth/login", json={"username": "admin", "password": "nope"})
        assert response.status_code == 400

    def test_me(self, client, seed, auth_headers):
        response = client.get("/users/me", headers=auth_headers("clerk_bkk"))
        assert response.status_code == 200
        assert response.json()["warehouse_id"] == seed.ids.bkk

    def test_token_required(self, client, seed):
        assert client.get("/lots/").status_code == 401


class TestStockFlow:

    def test_receive_issue_cancel(self, client, seed, auth_headers):
        ids = seed.ids
        admin = auth_headers("admin")
        tx = _receive(client, admin, ids, quantity=10)
        assert tx["transaction_number"].startswith("RCV-BKK-")

        response = client.post("/issue/", headers=admin, json={
            "type": "Sale", "warehouse_id": ids.bkk, "product_id": ids.milk, "quantity": 4
        })
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["success"] is True
        assert data["transaction_number"] == "ISS-BKK-00001"
        assert data["remaining_stock"] == {str(tx["lot_id"]): 6}
        issue_id = data["issue"]["id"]

        response = client.post(f"/issue/{issue_id}/cancel", headers=admin)
        assert response.status_code == 200
        assert response.json()["status"] == "Cancelled"

        lot = client.get(f"/lots/{tx['lot_id']}", headers=admin).json()
        assert lot["qty_on_hand"] == 10
        assert [h["transaction_type"] for h in lot["history"]] == ["Receive", "Sale", "Cancel"]

        response = client.post(f"/issue/{issue_id}/cancel", headers=admin)
        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyCancelledError"

    def test_insufficient_stock_maps_to_409_with_context(self, client, seed, auth_headers):
        ids = seed.ids
        headers = auth_headers("clerk_bkk")
        _receive(client, headers, ids, quantity=3)

        response = client.post("/issue/", headers=headers, json={
            "type": "Sale", "warehouse_id": ids.bkk, "product_id": ids.milk, "quantity": 4
        })

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "InsufficientStockError"
        assert body["available"] == 3
        assert body["requested"] == 4

    def test_unknown_lot_maps_to_404(self, client, seed, auth_headers):
        response = client.get("/lots/999", headers=auth_headers("admin"))
        assert response.status_code == 404
        assert response.json()["error"] == "LotNotFoundError"

    def test_clerk_cannot_adjust_or_cancel(self, client, seed, auth_headers):
        ids = seed.ids
        headers = auth_headers("clerk_bkk")
        tx = _receive(client, headers, ids)

        response = client.post(f"/lots/{tx['lot_id']}/adjust", headers=headers, json={"delta": 5, "reason": "count"})
        assert response.status_code == 403

        issue = client.post("/issue/", headers=headers, json={
            "type": "Sale", "warehouse_id": ids.bkk, "product_id": ids.milk, "quantity": 1
        }).json()
        assert client.post(f"/issue/{issue['issue']['id']}/cancel", headers=headers).status_code == 403

    def test_admin_adjust(self, client, seed, auth_headers):
        admin = auth_headers("admin")
        tx = _receive(client, admin, seed.ids)

        response = client.post(f"/lots/{tx['lot_id']}/adjust", headers=admin, json={"delta": -3, "reason": "count"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "transaction_number": "ADJ-BKK-00001", "qty_on_hand": 7}

    def test_damage(self, client, seed, auth_headers):
        headers = auth_headers("clerk_bkk")
        tx = _receive(client, headers, seed.ids)

        response = client.post(f"/lots/{tx['lot_id']}/damage", headers=headers, json={"quantity": 2, "reason": "torn"})

        assert response.status_code == 200
        data = response.json()
        assert data["record_number"] == "DMG-BKK-USER-00001"
        assert (data["qty_on_hand"], data["damaged"]) == (8, 2)

    def test_clerk_is_pinned_to_home_warehouse(self, client, seed, auth_headers):
        ids = seed.ids
        _receive(client, auth_headers("admin"), ids, lot_code="CNX-1", warehouse=ids.cnx)
        headers = auth_headers("clerk_bkk")

        response = client.post("/receive/", headers=headers, json={"lots": [{
            "lot_code": "X", "product_id": ids.milk, "warehouse_id": ids.cnx,
            "exp_date": "2030-01-01", "quantity": 1,
        }]})
        assert response.status_code == 403

        assert client.get("/lots/", headers=headers).json() == []
        assert client.get(f"/lots/?warehouse_id={ids.cnx}", headers=headers).status_code == 403
        assert len(client.get("/lots/", headers=auth_headers("admin")).json()) == 1

    def test_receive_history_search_and_pages(self, client, seed, auth_headers):
        ids = seed.ids
        admin = auth_headers("admin")
        for i in range(3):
            _receive(client, admin, ids, lot_code=f"MILK-{i}")
        _receive(client, admin, ids, lot_code="RICE-1", product=ids.rice)

        page = client.get("/receive/history?limit=2&page=1", headers=admin).json()
        assert (page["total"], page["page"], page["pages"]) == (4, 1, 2)
        assert len(page["data"]) == 2

        found = client.get("/receive/history?search=Jasmine", headers=admin).json()
        assert found["total"] == 1

        tomorrow = (datetime.utcnow().date() + timedelta(days=1)).isoformat()
        empty = client.get(f"/receive/history?start_date={tomorrow}", headers=admin).json()
        assert empty["total"] == 0


class TestTransferFlow:

    def test_initiate_and_confirm_from_destination(self, client, seed, auth_headers):
        ids = seed.ids
        bkk = auth_headers("clerk_bkk")
        cnx = auth_headers("clerk_cnx")
        tx = _receive(client, bkk, ids, lot_code="T-1", quantity=20)

        response = client.post("/transfers/", headers=bkk, json={
            "source_warehouse_id": ids.bkk, "destination_warehouse_id": ids.cnx,
            "lots": [{"lot_id": tx["lot_id"], "quantity": 8}],
        })
        assert response.status_code == 201, response.text
        transfer = response.json()
        assert transfer["status"] == "Pending"
        assert transfer["transfer_number"] == "TRF-BKK-00001"

        pending = client.get("/transfers/?status=Pending", headers=cnx).json()
        assert [t["id"] for t in pending] == [transfer["id"]]

        response = client.post(f"/transfers/{transfer['id']}/confirm", headers=bkk)
        assert response.status_code == 403

        response = client.post(f"/transfers/{transfer['id']}/confirm", headers=cnx)
        assert response.status_code == 200
        assert response.json()["status"] == "Confirmed"

        response = client.post(f"/transfers/{transfer['id']}/reject", headers=cnx)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransferStateError"

        lots = client.get("/lots/", headers=cnx).json()
        assert [(lot["lot_code"], lot["qty_on_hand"], lot["status"]) for lot in lots] == [("T-1", 8, "active")]

    def test_reject_leaves_no_destination_lot(self, client, seed, auth_headers):
        ids = seed.ids
        bkk = auth_headers("clerk_bkk")
        cnx = auth_headers("clerk_cnx")
        tx = _receive(client, bkk, ids, lot_code="T-2", quantity=20)

        transfer = client.post("/transfers/", headers=bkk, json={
            "source_warehouse_id": ids.bkk, "destination_warehouse_id": ids.cnx,
            "lots": [{"lot_id": tx["lot_id"], "quantity": 8}],
        }).json()

        response = client.post(f"/transfers/{transfer['id']}/reject", headers=cnx, json={"reason": "wrong item"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "Rejected"
        assert data["lines"][0]["destination_lot_id"] is None

        assert client.get("/lots/", headers=cnx).json() == []
        assert client.get(f"/lots/{tx['lot_id']}", headers=bkk).json()["qty_on_hand"] == 20

    def test_clerk_cannot_start_transfer_from_another_warehouse(self, client, seed, auth_headers):
        ids = seed.ids
        tx = _receive(client, auth_headers("admin"), ids, lot_code="T-3", warehouse=ids.cnx)
        response = client.post("/transfers/", headers=auth_headers("clerk_bkk"), json={
            "source_warehouse_id": ids.cnx, "destination_warehouse_id": ids.bkk,
            "lots": [{"lot_id": tx["lot_id"], "quantity": 1}],
        })
        assert response.status_code == 403


class TestReportsAndSettings:

    def test_summary(self, client, seed, auth_headers):
        ids = seed.ids
        admin = auth_headers("admin")
        _receive(client, admin, ids, lot_code="S-1", quantity=5, exp_date="2031-01-01")
        _receive(client, admin, ids, lot_code="S-2", quantity=7, exp_date="2030-06-01")

        rows = client.get("/reports/summary?product_code=P-MILK", headers=admin).json()

        assert len(rows) == 1
        row = rows[0]
        assert (row["warehouse_code"], row["lot_count"], row["qty_on_hand"]) == ("BKK", 2, 12)
        assert row["nearest_expiry"] == "2030-06-01"

    def test_alerts_follow_settings(self, client, seed, auth_headers):
        ids = seed.ids
        admin = auth_headers("admin")
        soon = (datetime.utcnow().date() + timedelta(days=5)).isoformat()
        _receive(client, admin, ids, lot_code="SOON", quantity=50, exp_date=soon)
        _receive(client, admin, ids, lot_code="FEW", quantity=3, product=ids.rice)

        alerts = client.get("/reports/alerts", headers=admin).json()
        assert [a["lot_code"] for a in alerts["expiring"]] == ["SOON"]
        assert [(s["product_id"], s["qty_on_hand"]) for s in alerts["low_stock"]] == [(ids.rice, 3)]

        response = client.put("/settings/", headers=admin, json={"expiration_warning_days": 1, "low_stock_threshold": 2})
        assert response.status_code == 200
        assert response.json()["expiration_warning_days"] == 1

        alerts = client.get("/reports/alerts", headers=admin).json()
        assert alerts == {"expiring": [], "low_stock": []}

    def test_clerk_cannot_change_settings(self, client, seed, auth_headers):
        headers = auth_headers("clerk_bkk")
        assert client.get("/settings/", headers=headers).status_code == 200
        assert client.put("/settings/", headers=headers, json={"low_stock_threshold": 1}).status_code == 403

    def test_notifications_list_and_mark_read(self, client, seed, auth_headers):
        headers = auth_headers("clerk_bkk")
        _receive(client, headers, seed.ids)

        notes = client.get("/notifications/", headers=headers).json()
        assert len(notes) == 1
        assert notes[0]["read"] is False

        response = client.post("/notifications/mark-read", headers=headers, json=[notes[0]["id"]])
        assert response.json() == {"updated": 1}
        assert client.get("/notifications/?unread_only=true", headers=headers).json() == []

        # another user's notification cannot be touched
        other = client.post("/notifications/mark-read", headers=auth_headers("clerk_cnx"), json=[notes[0]["id"]])
        assert other.json() == {"updated": 0}
