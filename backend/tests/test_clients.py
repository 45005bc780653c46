"""
Client directory tests.

Verifies:
- Emails are unique case-insensitively
- Purchase metrics follow the client's non-cancelled sales
- Clients with sales cannot be deleted
- Admin-only stats and filtering
"""

from bizdesk.models import Client
from bizdesk.services import clients_service


# =============================================================================
# CRUD
# =============================================================================


class TestClientCrud:

    def test_create_client(self, client, user_headers):
        resp = client.post(
            "/api/clients",
            json={"name": "Moussa Keita", "email": "Moussa@Example.com", "phone": "+22376000000"},
            headers=user_headers,
        )
        assert resp.status_code == 201
        assert resp.json["email"] == "moussa@example.com"
        assert resp.json["total_purchases_cents"] == 0
        assert resp.json["purchase_count"] == 0
        assert resp.json["last_purchase_date"] is None

    def test_duplicate_email_case_insensitive(self, client, user_headers, client_record):
        resp = client.post(
            "/api/clients",
            json={"name": "Other Awa", "email": "AWA@example.com"},
            headers=user_headers,
        )
        assert resp.status_code == 409

    def test_missing_email(self, client, user_headers):
        resp = client.post("/api/clients", json={"name": "No Mail"}, headers=user_headers)
        assert resp.status_code == 400
        assert "email" in resp.json["message"]

    def test_metrics_not_writable(self, client, user_headers):
        resp = client.post(
            "/api/clients",
            json={"name": "Sneaky", "email": "sneaky@example.com", "total_purchases_cents": 100},
            headers=user_headers,
        )
        assert resp.status_code == 400

    def test_list_and_search(self, client, user_headers, client_record, db_session):
        db_session.add(Client(name="Bakary Diallo", email="bakary@example.com", phone="+22371111111"))
        db_session.commit()

        resp = client.get("/api/clients", headers=user_headers)
        assert resp.json["total"] == 2
        assert [c["name"] for c in resp.json["clients"]] == ["Awa Traoré", "Bakary Diallo"]

        by_phone = client.get("/api/clients?search=7111", headers=user_headers).json
        assert [c["name"] for c in by_phone["clients"]] == ["Bakary Diallo"]

    def test_update_requires_admin(self, client, user_headers, client_record):
        resp = client.put(f"/api/clients/{client_record.id}", json={"address": "Ségou"}, headers=user_headers)
        assert resp.status_code == 403

    def test_update_client(self, client, admin_headers, client_record):
        resp = client.put(f"/api/clients/{client_record.id}", json={"address": "Ségou"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["address"] == "Ségou"

    def test_update_to_taken_email(self, client, admin_headers, client_record, db_session):
        other = Client(name="Bakary", email="bakary@example.com")
        db_session.add(other)
        db_session.commit()

        resp = client.put(f"/api/clients/{other.id}", json={"email": "Awa@Example.com"}, headers=admin_headers)
        assert resp.status_code == 409

    def test_get_missing_client(self, client, user_headers):
        resp = client.get("/api/clients/999999", headers=user_headers)
        assert resp.status_code == 404


# =============================================================================
# PURCHASE METRICS
# =============================================================================


class TestPurchaseMetrics:

    def test_get_refreshes_metrics(self, client, user_headers, product, client_record, make_sale, db_session):
        make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 2}])

        # Drift the cached values; reading the client recomputes them
        db_session.query(Client).filter_by(id=client_record.id).update({"total_purchases_cents": 1, "purchase_count": 9})
        db_session.commit()

        resp = client.get(f"/api/clients/{client_record.id}", headers=user_headers)
        assert resp.json["total_purchases_cents"] == 3000
        assert resp.json["purchase_count"] == 1
        assert resp.json["last_purchase_date"] is not None

    def test_cancel_removes_sale_from_metrics(self, client, admin_headers, product, client_record, make_sale, reload):
        sale_id = make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 1}]).json["id"]
        client.post(f"/api/sales/{sale_id}/cancel", headers=admin_headers)

        record = reload(client_record)
        assert record.total_purchases_cents == 0
        assert record.purchase_count == 0

    def test_refresh_purchase_metrics(self, client, user_headers, product, client_record, make_sale, reload, db_session):
        make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 1}])
        make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 1, "price_cents": 2000}])

        record = reload(client_record)
        clients_service.refresh_purchase_metrics(record)
        db_session.commit()
        assert record.total_purchases_cents == 3500
        assert record.purchase_count == 2


# =============================================================================
# DELETE
# =============================================================================


class TestClientDelete:

    def test_delete_without_sales(self, client, admin_headers, client_record):
        resp = client.delete(f"/api/clients/{client_record.id}", headers=admin_headers)
        assert resp.status_code == 200

    def test_delete_with_sales_refused(self, client, admin_headers, product, client_record, make_sale):
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 1}])
        resp = client.delete(f"/api/clients/{client_record.id}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["message"] == "Cannot delete a client that has sales"

    def test_delete_requires_admin(self, client, user_headers, client_record):
        resp = client.delete(f"/api/clients/{client_record.id}", headers=user_headers)
        assert resp.status_code == 403


# =============================================================================
# STATS / FILTER
# =============================================================================


class TestClientStats:

    def test_stats(self, client, admin_headers, product, client_record, make_sale, db_session):
        db_session.add(Client(name="Idle", email="idle@example.com"))
        db_session.commit()
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 2}])

        resp = client.get("/api/clients/stats", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["total_clients"] == 2
        assert resp.json["clients_with_purchases"] == 1
        assert resp.json["active_clients"] == 1
        assert resp.json["total_revenue_cents"] == 3000
        assert resp.json["average_revenue_per_client_cents"] == 1500
        assert resp.json["top_clients"][0]["id"] == client_record.id

    def test_stats_requires_admin(self, client, user_headers):
        resp = client.get("/api/clients/stats", headers=user_headers)
        assert resp.status_code == 403

    def test_filter(self, client, admin_headers, product, client_record, make_sale, db_session):
        db_session.add(Client(name="Idle", email="idle@example.com"))
        db_session.commit()
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 2}])

        big = client.get("/api/clients/filter?min_total=2000", headers=admin_headers).json
        assert [c["name"] for c in big["clients"]] == ["Awa Traoré"]

        inactive = client.get("/api/clients/filter?inactive_days=30", headers=admin_headers).json
        assert [c["name"] for c in inactive["clients"]] == ["Idle"]

    def test_filter_bad_number(self, client, admin_headers):
        resp = client.get("/api/clients/filter?min_total=lots", headers=admin_headers)
        assert resp.status_code == 400
