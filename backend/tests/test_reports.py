"""
Sales reporting and profit analytics tests.

Fixture data:
- May 2024:  2 x Test Widget at 15.00 (profit 10.00, "high")
- June 2024: 1 x Test Gadget at 8.00 (profit 6.00, "excellent")
- Today:     1 x Test Widget, cancelled (excluded everywhere except the status breakdown)
"""

from datetime import datetime

import pytest

from bizdesk.models import Expense
from bizdesk.time_utils import parse_iso_datetime, period_fields


@pytest.fixture
def history(client, admin_headers, product, second_product, client_record, make_sale):
    may = make_sale(
        admin_headers, client_record.id, [{"product_id": product.id, "quantity": 2}],
        sale_date="2024-05-10T09:00:00Z",
    ).json
    june = make_sale(
        admin_headers, client_record.id, [{"product_id": second_product.id, "quantity": 1}],
        sale_date="2024-06-02T15:30:00Z",
    ).json
    cancelled = make_sale(admin_headers, client_record.id, [{"product_id": product.id, "quantity": 1}]).json
    client.post(f"/api/sales/{cancelled['id']}/cancel", headers=admin_headers)
    return {"may": may, "june": june, "cancelled": cancelled}


# =============================================================================
# SALES STATISTICS
# =============================================================================


class TestSalesStats:

    def test_stats_exclude_cancelled(self, client, admin_headers, history):
        client.post(
            f"/api/sales/{history['may']['id']}/payments",
            json={"amount_cents": 1000, "method": "cash"},
            headers=admin_headers,
        )

        resp = client.get("/api/sales/stats", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json == {
            "total_sales": 3800,
            "total_paid": 1000,
            "outstanding_balance": 2800,
            "average_sale": 1900,
            "total_products_sold": 3,
            "transaction_count": 2,
        }

    def test_stats_requires_admin(self, client, user_headers):
        assert client.get("/api/sales/stats", headers=user_headers).status_code == 403

    def test_status_breakdown(self, client, admin_headers, history):
        resp = client.get("/api/sales/stats/status", headers=admin_headers)
        assert resp.json["pending"] == {"count": 2, "total_amount": 3800, "total_paid": 0, "outstanding": 3800}
        assert resp.json["cancelled"]["count"] == 1
        assert resp.json["completed"]["count"] == 0

    def test_status_breakdown_date_filter(self, client, admin_headers, history):
        resp = client.get("/api/sales/stats/status?start_date=2024-06-01&end_date=2024-06-30", headers=admin_headers)
        assert resp.json["pending"]["count"] == 1
        assert resp.json["pending"]["total_amount"] == 800
        assert resp.json["cancelled"]["count"] == 0

    def test_status_breakdown_bad_date(self, client, admin_headers):
        resp = client.get("/api/sales/stats/status?start_date=june", headers=admin_headers)
        assert resp.status_code == 400


# =============================================================================
# DASHBOARD / BEST DAYS
# =============================================================================


class TestDashboard:

    def test_dashboard_all_time(self, client, admin_headers, history, product):
        resp = client.get("/api/sales/dashboard-sale?range=all", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json
        assert set(data) == {
            "range", "totals", "top_products", "sales_trend", "payment_methods",
            "status_stats", "daily_summary", "payments_summary", "best_days",
        }
        assert data["totals"] == {
            "total_sales_cents": 3800,
            "sales_count": 2,
            "products_sold": 3,
            "average_sale_cents": 1900,
        }
        assert data["top_products"][0]["product_id"] == product.id
        assert [point["date"] for point in data["sales_trend"]] == ["2024-05-10", "2024-06-02"]

    def test_dashboard_recent_range_skips_history(self, client, admin_headers, history):
        resp = client.get("/api/sales/dashboard-sale?range=7days", headers=admin_headers)
        assert resp.json["totals"]["sales_count"] == 0
        assert resp.json["status_stats"]["cancelled"]["count"] == 1

    def test_dashboard_payment_shares(self, client, admin_headers, history):
        client.post(f"/api/sales/{history['may']['id']}/payments", json={"amount_cents": 750, "method": "cash"},
                    headers=admin_headers)
        client.post(f"/api/sales/{history['june']['id']}/payments", json={"amount_cents": 250, "method": "MobileMoney"},
                    headers=admin_headers)

        data = client.get("/api/sales/dashboard-sale?range=30days", headers=admin_headers).json
        assert data["payment_methods"]["cash"]["percentage"] == 75.0
        assert data["payment_methods"]["MobileMoney"]["percentage"] == 25.0
        assert data["payments_summary"]["total_cents"] == 1000
        assert data["daily_summary"]["payments_total_cents"] == 1000

    def test_dashboard_invalid_range(self, client, admin_headers):
        resp = client.get("/api/sales/dashboard-sale?range=decade", headers=admin_headers)
        assert resp.status_code == 400

    def test_best_days(self, client, admin_headers, history, db_session):
        db_session.add(Expense(
            description="Shop rent",
            amount_cents=7500,
            category="rent",
            date=parse_iso_datetime("2024-05-01"),
            payment_method="cash",
        ))
        db_session.commit()

        resp = client.get("/api/sales/best-days?range=all", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["sales"] == {"date": "2024-05-10", "total_amount": 3000, "count": 1}
        assert resp.json["expenses"]["date"] == "2024-05-01"
        assert resp.json["payments"] is None

    def test_best_days_invalid_range(self, client, admin_headers):
        assert client.get("/api/sales/best-days?range=week", headers=admin_headers).status_code == 400


# =============================================================================
# PROFIT
# =============================================================================


class TestProfitAnalytics:

    def test_month_buckets(self, client, user_headers, history):
        resp = client.get("/api/sales/profit-analytics?period=month", headers=user_headers)
        assert resp.status_code == 200
        buckets = resp.json["period_analytics"]
        assert [b["period"] for b in buckets] == [{"year": 2024, "month": 5}, {"year": 2024, "month": 6}]
        assert buckets[0]["total_sales_cents"] == 3000
        assert buckets[0]["total_profit_cents"] == 1000
        assert buckets[1]["total_profit_cents"] == 600
        assert resp.json["general_stats"]["sales_count"] == 2
        assert resp.json["general_stats"]["profitable_sales"] == 2

    def test_quarter_buckets(self, client, user_headers, history):
        buckets = client.get("/api/sales/profit-analytics?period=quarter", headers=user_headers).json["period_analytics"]
        assert buckets == [{
            "period": {"year": 2024, "quarter": 2},
            "total_sales_cents": 3800,
            "total_profit_cents": 1600,
            "total_cost_cents": 2200,
            "sales_count": 2,
            "average_profit_cents": 800,
            "average_margin": buckets[0]["average_margin"],
        }]
        assert 54.1 < buckets[0]["average_margin"] < 54.2

    def test_week_buckets_use_iso_year(self, client, user_headers, product, client_record, make_sale):
        # 2024-12-30 is ISO week 1 of 2025, 2024-01-03 is ISO week 1 of 2024
        for sale_date in ("2024-01-03T10:00:00Z", "2024-12-30T10:00:00Z"):
            make_sale(user_headers, client_record.id, [{"product_id": product.id, "quantity": 1}], sale_date=sale_date)

        buckets = client.get("/api/sales/profit-analytics?period=week", headers=user_headers).json["period_analytics"]
        assert [b["period"] for b in buckets] == [{"week_year": 2024, "week": 1}, {"week_year": 2025, "week": 1}]
        assert [b["sales_count"] for b in buckets] == [1, 1]

    def test_category_filter(self, client, user_headers, history):
        resp = client.get("/api/sales/profit-analytics?category=excellent", headers=user_headers)
        assert resp.json["general_stats"]["sales_count"] == 1
        assert resp.json["general_stats"]["total_profit_cents"] == 600
        assert [c["category"] for c in resp.json["profit_by_category"]] == ["gadgets"]

    def test_profit_bounds(self, client, user_headers, history):
        resp = client.get("/api/sales/profit-analytics?min_profit=700", headers=user_headers)
        assert resp.json["general_stats"]["total_profit_cents"] == 1000

    def test_profit_by_category(self, client, user_headers, history):
        categories = client.get("/api/sales/profit-analytics", headers=user_headers).json["profit_by_category"]
        assert [(c["category"], c["profit_cents"]) for c in categories] == [("widgets", 1000), ("gadgets", 600)]

    def test_invalid_period(self, client, user_headers):
        resp = client.get("/api/sales/profit-analytics?period=fortnight", headers=user_headers)
        assert resp.status_code == 400

    def test_profit_report(self, client, user_headers, history, product):
        resp = client.get("/api/sales/profit-report", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json["totals"] == {
            "quantity": 3,
            "revenue_cents": 3800,
            "cost_cents": 2200,
            "profit_cents": 1600,
            "profit_margin": 42.11,
        }
        assert resp.json["products"][0]["product_id"] == product.id
        assert resp.json["products"][0]["profit_margin"] == 33.33

    def test_profit_report_date_range(self, client, user_headers, history):
        resp = client.get("/api/sales/profit-report?start_date=2024-06-01&end_date=2024-06-30", headers=user_headers)
        assert resp.json["totals"]["profit_cents"] == 600


class TestPeriodFields:

    def test_year_end_belongs_to_next_iso_week_year(self):
        fields = period_fields(datetime(2024, 12, 30, 9, 0))
        assert fields["period_year"] == 2024
        assert fields["period_week_year"] == 2025
        assert fields["period_week"] == 1

    def test_mid_year(self):
        fields = period_fields(datetime(2024, 5, 15))
        assert fields == {
            "period_year": 2024,
            "period_month": 5,
            "period_week_year": 2024,
            "period_week": 20,
            "period_day": 15,
            "period_quarter": 2,
        }
