"""
Product catalogue tests.

Verifies:
- Slug and SKU generation
- Admin-only catalogue writes with validation
- Price and stock changes are logged as activities
- Products referenced by sales cannot be deleted
- Stats, dashboard and never-sold listings
"""

import re

import pytest

from bizdesk.models import ProductActivity
from bizdesk.services.identifier_service import generate_sku, slugify, to_base36
from bizdesk.services.inventory_service import InsufficientStockError, adjust_stock


NEW_PRODUCT = {
    "name": "Café Crème",
    "description": "Ground coffee, 250 g",
    "category": "grocery",
    "price_cents": 2500,
    "cost_price_cents": 1800,
    "stock": 12,
}


# =============================================================================
# IDENTIFIERS
# =============================================================================


class TestIdentifiers:

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Café Crème", "cafe-creme"),
            ("  Hello,   World!  ", "hello-world"),
            ("Évian 1.5L", "evian-1-5l"),
            ("--already-slugged--", "already-slugged"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected

    def test_slugify_fallback(self):
        assert slugify("!!!").startswith("item-")
        assert slugify(None).startswith("item-")

    def test_to_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_generate_sku_format(self, db_session):
        sku = generate_sku()
        assert re.fullmatch(r"SKU-[0-9A-Z]+-[0-9A-Z]{4}", sku)


# =============================================================================
# CREATE / UPDATE
# =============================================================================


class TestProductWrites:

    def test_create_generates_slug_and_sku(self, client, admin_headers, db_session):
        resp = client.post("/api/products", json=NEW_PRODUCT, headers=admin_headers)
        assert resp.status_code == 201, resp.json
        assert resp.json["slug"] == "cafe-creme"
        assert resp.json["sku"].startswith("SKU-")
        assert resp.json["supplier_name"] == "Non défini"
        assert resp.json["min_stock_level"] == 5
        assert resp.json["created_by"]["email"] == "admin@bizdesk.test"

        activity = db_session.query(ProductActivity).filter_by(product_id=resp.json["id"]).one()
        assert activity.type == "creation"

    def test_duplicate_name_gets_suffixed_slug(self, client, admin_headers):
        client.post("/api/products", json=NEW_PRODUCT, headers=admin_headers)
        resp = client.post("/api/products", json=NEW_PRODUCT, headers=admin_headers)
        assert resp.json["slug"] == "cafe-creme-2"

    def test_supplied_sku_is_uppercased(self, client, admin_headers):
        resp = client.post("/api/products", json={**NEW_PRODUCT, "sku": "cof 250"}, headers=admin_headers)
        assert resp.json["sku"] == "COF250"

    def test_duplicate_sku_conflict(self, client, admin_headers):
        client.post("/api/products", json={**NEW_PRODUCT, "sku": "COF-1"}, headers=admin_headers)
        resp = client.post("/api/products", json={**NEW_PRODUCT, "sku": "cof-1"}, headers=admin_headers)
        assert resp.status_code == 409

    def test_missing_required_fields(self, client, admin_headers):
        resp = client.post("/api/products", json={"name": "Only a name"}, headers=admin_headers)
        assert resp.status_code == 400
        assert "Missing required fields" in resp.json["message"]

    def test_unknown_field_rejected(self, client, admin_headers):
        resp = client.post("/api/products", json={**NEW_PRODUCT, "slug": "hand-made"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["message"] == "Field not allowed: slug"

    def test_negative_price_rejected(self, client, admin_headers):
        resp = client.post("/api/products", json={**NEW_PRODUCT, "price_cents": -1}, headers=admin_headers)
        assert resp.status_code == 400

    def test_name_too_long(self, client, admin_headers):
        resp = client.post("/api/products", json={**NEW_PRODUCT, "name": "x" * 101}, headers=admin_headers)
        assert resp.status_code == 400

    def test_user_cannot_create(self, client, user_headers):
        resp = client.post("/api/products", json=NEW_PRODUCT, headers=user_headers)
        assert resp.status_code == 403

    def test_price_change_logged(self, client, admin_headers, product, db_session):
        resp = client.put(f"/api/products/{product.id}", json={"price_cents": 1700}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["price_cents"] == 1700

        activity = db_session.query(ProductActivity).filter_by(product_id=product.id, type="price_update").one()
        assert activity.old_value == "1500"
        assert activity.new_value == "1700"

    def test_stock_change_logged(self, client, admin_headers, product, db_session):
        resp = client.put(f"/api/products/{product.id}", json={"stock": 25}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["stock"] == 25

        activity = db_session.query(ProductActivity).filter_by(product_id=product.id, type="stock_update").one()
        assert (activity.old_value, activity.new_value) == ("10", "25")

    def test_negative_stock_rejected(self, client, admin_headers, product):
        resp = client.put(f"/api/products/{product.id}", json={"stock": -1}, headers=admin_headers)
        assert resp.status_code == 400

    def test_rename_regenerates_slug(self, client, admin_headers, product):
        resp = client.put(f"/api/products/{product.id}", json={"name": "Blue Widget"}, headers=admin_headers)
        assert resp.json["slug"] == "blue-widget"

    def test_update_missing_product(self, client, admin_headers):
        resp = client.put("/api/products/999999", json={"price_cents": 100}, headers=admin_headers)
        assert resp.status_code == 404


# =============================================================================
# STOCK CHOKE POINT
# =============================================================================


class TestAdjustStock:

    def test_adjust_below_zero_raises(self, product, db_session):
        with pytest.raises(InsufficientStockError):
            adjust_stock(product, -11, activity_type="adjustment", description="Shrinkage")
        db_session.rollback()

    def test_adjust_logs_activity(self, product, db_session):
        assert adjust_stock(product, -3, activity_type="adjustment", description="Damaged") == 7
        db_session.commit()
        activity = db_session.query(ProductActivity).filter_by(product_id=product.id).one()
        assert activity.type == "adjustment"
        assert activity.description == "Damaged"

    def test_low_stock_warning(self, product, db_session, caplog):
        with caplog.at_level("WARNING", logger="bizdesk.services.inventory_service"):
            adjust_stock(product, -6, activity_type="adjustment", description="Count")
        db_session.commit()
        assert "low on stock" in caplog.text


# =============================================================================
# DELETE
# =============================================================================


class TestProductDelete:

    def test_delete_unused_product(self, client, admin_headers, product):
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/products/{product.id}", headers=admin_headers).status_code == 404

    def test_delete_sold_product_refused(self, client, admin_headers, product, client_record, make_sale):
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 1}])
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 400

    def test_delete_missing_product(self, client, admin_headers):
        resp = client.delete("/api/products/999999", headers=admin_headers)
        assert resp.status_code == 404


# =============================================================================
# READS
# =============================================================================


class TestProductReads:

    def test_list_ordered_by_stock(self, client, user_headers, product, second_product):
        resp = client.get("/api/products", headers=user_headers)
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json] == [product.id, second_product.id]

    def test_list_filters(self, client, user_headers, product, second_product):
        low = client.get("/api/products?low_stock=true", headers=user_headers).json
        assert [p["id"] for p in low] == [second_product.id]

        by_category = client.get("/api/products?category=widgets", headers=user_headers).json
        assert [p["id"] for p in by_category] == [product.id]

        search = client.get("/api/products?search=gadg", headers=user_headers).json
        assert [p["id"] for p in search] == [second_product.id]

    def test_derived_fields(self, client, user_headers, product):
        resp = client.get(f"/api/products/{product.id}", headers=user_headers)
        assert resp.json["unit_profit_cents"] == 500
        assert resp.json["profit_margin"] == 50.0
        assert resp.json["is_low_stock"] is False

    def test_never_sold(self, client, user_headers, product, second_product, client_record, make_sale):
        make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 1}])

        resp = client.get("/api/products/never-sold", headers=user_headers)
        assert resp.json["total"] == 1
        assert resp.json["products"][0]["id"] == second_product.id

    def test_product_stats(self, client, user_headers, product, client_record, make_sale):
        make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 2}])
        make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 3}])

        resp = client.get(f"/api/products/{product.id}/stats?range=week", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json["period"]["orders"] == 2
        assert resp.json["period"]["units"] == 5
        assert resp.json["lifetime"]["revenue_cents"] == 7500
        assert resp.json["lifetime"]["profit_cents"] == 2500
        assert resp.json["average_selling_price_cents"] == 1500
        assert resp.json["profit_per_unit_cents"] == 500
        assert resp.json["inventory"]["stock"] == 5
        assert resp.json["inventory"]["sell_through_rate"] == 50.0
        assert len(resp.json["trend"]) == 1
        assert resp.json["activities"][0]["type"] == "sale"

    def test_product_stats_excludes_cancelled(self, client, admin_headers, product, client_record, make_sale):
        sale_id = make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 2}]).json["id"]
        client.post(f"/api/sales/{sale_id}/cancel", headers=admin_headers)

        resp = client.get(f"/api/products/{product.id}/stats?range=all", headers=admin_headers)
        assert resp.json["lifetime"]["units"] == 0

    def test_product_stats_bad_range(self, client, user_headers, product):
        resp = client.get(f"/api/products/{product.id}/stats?range=decade", headers=user_headers)
        assert resp.status_code == 400

    def test_dashboard(self, client, admin_headers, product, second_product, client_record, make_sale):
        make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 2}])

        resp = client.get("/api/products/dashboard?range=month", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["total_products"] == 2
        assert resp.json["total_stock_value_cents"] == 8 * 1000 + 5 * 200
        assert resp.json["total_sales_value_cents"] == 3000
        assert resp.json["sales_trend"] == "up"
        assert resp.json["top_selling_products"][0] == {"product_id": product.id, "name": "Test Widget", "sold": 2}
        assert [p["id"] for p in resp.json["low_stock_products"]] == [second_product.id]
        assert resp.json["counters"]["never_sold"] == 1

    def test_dashboard_requires_admin(self, client, user_headers):
        resp = client.get("/api/products/dashboard", headers=user_headers)
        assert resp.status_code == 403
