"""
Expense and bank ledger tests.

Verifies:
- Expense validation, search and date-range listing
- Bank balance is derived per user and can never go negative
"""

import pytest

from bizdesk.models import BankTransaction, Expense, User
from bizdesk.services import bank_service
from bizdesk.services.bank_service import BankError
from bizdesk.time_utils import parse_iso_datetime


def _expense(description, amount_cents, category, date, payment_method="cash"):
    return Expense(
        description=description,
        amount_cents=amount_cents,
        category=category,
        date=parse_iso_datetime(date),
        payment_method=payment_method,
    )


# =============================================================================
# EXPENSES
# =============================================================================


class TestExpenses:

    def test_create_defaults_to_cash(self, client, admin_headers):
        resp = client.post("/api/expenses", json={
            "description": "Shop rent",
            "amount_cents": 7_500_000,
            "category": "rent",
            "date": "2024-05-01",
        }, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["payment_method"] == "cash"
        assert resp.json["created_by"]["email"] == "admin@bizdesk.test"

    def test_invalid_category(self, client, admin_headers):
        resp = client.post("/api/expenses", json={
            "description": "Party",
            "amount_cents": 100,
            "category": "fun",
            "date": "2024-05-01",
        }, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["message"].startswith("Invalid category")

    def test_invalid_payment_method(self, client, admin_headers):
        resp = client.post("/api/expenses", json={
            "description": "Water",
            "amount_cents": 100,
            "category": "utilities",
            "date": "2024-05-01",
            "payment_method": "barter",
        }, headers=admin_headers)
        assert resp.status_code == 400

    def test_zero_amount(self, client, admin_headers):
        resp = client.post("/api/expenses", json={
            "description": "Nothing",
            "amount_cents": 0,
            "category": "other",
            "date": "2024-05-01",
        }, headers=admin_headers)
        assert resp.status_code == 400

    def test_list_requires_admin(self, client, user_headers):
        assert client.get("/api/expenses", headers=user_headers).status_code == 403

    def test_list_filters(self, client, admin_headers, db_session):
        db_session.add_all([
            _expense("Shop rent", 7_500_000, "rent", "2024-05-01"),
            _expense("Electricity bill", 450_000, "utilities", "2024-05-10", "transfer"),
            _expense("Printer paper", 25_000, "supplies", "2024-06-02", "card"),
        ])
        db_session.commit()

        everything = client.get("/api/expenses", headers=admin_headers).json
        assert [e["description"] for e in everything] == ["Printer paper", "Electricity bill", "Shop rent"]

        may = client.get("/api/expenses?start_date=2024-05-01&end_date=2024-05-31", headers=admin_headers).json
        assert len(may) == 2

        by_method = client.get("/api/expenses?search=transfer", headers=admin_headers).json
        assert [e["description"] for e in by_method] == ["Electricity bill"]

        by_category = client.get("/api/expenses?category=supplies", headers=admin_headers).json
        assert [e["description"] for e in by_category] == ["Printer paper"]

    def test_date_range_ascending_and_open_to_users(self, client, user_headers, db_session):
        db_session.add_all([
            _expense("Late", 100, "other", "2024-05-20"),
            _expense("Early", 100, "other", "2024-05-02"),
            _expense("Outside", 100, "other", "2024-04-30"),
        ])
        db_session.commit()

        resp = client.get("/api/expenses/date-range?start_date=2024-05-01&end_date=2024-05-31", headers=user_headers)
        assert resp.status_code == 200
        assert [e["description"] for e in resp.json] == ["Early", "Late"]

    def test_date_range_requires_both_dates(self, client, user_headers):
        resp = client.get("/api/expenses/date-range?start_date=2024-05-01", headers=user_headers)
        assert resp.status_code == 400

    def test_update_and_delete(self, client, admin_headers, db_session):
        expense = _expense("Fuel", 10_000, "other", "2024-05-01")
        db_session.add(expense)
        db_session.commit()

        resp = client.put(f"/api/expenses/{expense.id}", json={"amount_cents": 12_000}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["amount_cents"] == 12_000
        assert resp.json["updated_by"]["email"] == "admin@bizdesk.test"

        assert client.delete(f"/api/expenses/{expense.id}", headers=admin_headers).status_code == 200
        assert client.delete(f"/api/expenses/{expense.id}", headers=admin_headers).status_code == 404


# =============================================================================
# BANK
# =============================================================================


class TestBank:

    def _post(self, client, headers, tx_type, amount, label="Cash"):
        return client.post("/api/bank", json={"type": tx_type, "amount_cents": amount, "label": label}, headers=headers)

    def test_deposit_and_withdraw(self, client, user_headers):
        resp = self._post(client, user_headers, "deposit", 50_000, "Takings")
        assert resp.status_code == 201
        assert resp.json["balance"] == 50_000

        resp = self._post(client, user_headers, "withdraw", 20_000, "Float")
        assert resp.json["balance"] == 30_000

        listing = client.get("/api/bank", headers=user_headers).json
        assert listing["balance"] == 30_000
        assert [t["label"] for t in listing["transactions"]] == ["Float", "Takings"]

    def test_withdraw_over_balance(self, client, user_headers):
        self._post(client, user_headers, "deposit", 1000)
        resp = self._post(client, user_headers, "withdraw", 1001)
        assert resp.status_code == 400
        assert resp.json["balance"] == 1000

    def test_withdraw_entire_balance(self, client, user_headers):
        self._post(client, user_headers, "deposit", 1000)
        resp = self._post(client, user_headers, "withdraw", 1000)
        assert resp.status_code == 201
        assert resp.json["balance"] == 0

    def test_invalid_type(self, client, user_headers):
        assert self._post(client, user_headers, "transfer", 1000).status_code == 400

    def test_empty_label(self, client, user_headers):
        assert self._post(client, user_headers, "deposit", 1000, "   ").status_code == 400

    def test_long_label(self, client, user_headers):
        assert self._post(client, user_headers, "deposit", 1000, "x" * 201).status_code == 400

    def test_non_positive_amount(self, client, user_headers):
        assert self._post(client, user_headers, "deposit", 0).status_code == 400
        assert self._post(client, user_headers, "deposit", -10).status_code == 400

    def test_ledgers_are_per_user(self, client, user_headers, admin_headers):
        self._post(client, user_headers, "deposit", 5000)

        admin_view = client.get("/api/bank", headers=admin_headers).json
        assert admin_view == {"transactions": [], "balance": 0}

        assert self._post(client, admin_headers, "withdraw", 100).status_code == 400

    def test_list_filters(self, client, user_headers):
        self._post(client, user_headers, "deposit", 5000, "Morning takings")
        self._post(client, user_headers, "withdraw", 1000, "Transport")

        deposits = client.get("/api/bank?type=deposit", headers=user_headers).json
        assert [t["label"] for t in deposits["transactions"]] == ["Morning takings"]
        assert deposits["balance"] == 4000

        search = client.get("/api/bank?search=trans", headers=user_headers).json
        assert [t["label"] for t in search["transactions"]] == ["Transport"]

        assert client.get("/api/bank?type=loan", headers=user_headers).status_code == 400

    def test_writes_lock_the_owner_row(self, regular_user, db_session, monkeypatch):
        locked = []
        real_lock = bank_service.lock_for_update

        def recording_lock(query):
            locked.append(query.column_descriptions[0]["entity"])
            return real_lock(query)

        monkeypatch.setattr(bank_service, "lock_for_update", recording_lock)

        bank_service.record_transaction(regular_user.id, "deposit", 500, "Takings")
        bank_service.record_transaction(regular_user.id, "withdraw", 200, "Float")

        assert locked == [User, User]
        assert bank_service.get_balance_cents(regular_user.id) == 300

    def test_rejected_withdrawal_leaves_no_row(self, regular_user, db_session):
        bank_service.record_transaction(regular_user.id, "deposit", 500, "Takings")

        with pytest.raises(BankError) as excinfo:
            bank_service.record_transaction(regular_user.id, "withdraw", 501, "Too much")
        assert excinfo.value.details == {"balance": 500}

        assert db_session.query(BankTransaction).count() == 1
        assert bank_service.get_balance_cents(regular_user.id) == 500
