"""
Payroll tests: employees, pay slips and salary advances.

Verifies:
- Net salary = base + bonuses - deductions, recomputed on update
- One pay slip per employee and month
- Advances capped at half the salary
- Deleting an employee removes their payroll records
"""

import pytest

from bizdesk.models import Employee, PaySlip, SalaryAdvance


@pytest.fixture
def employee(db_session):
    """Employee paid 200,000.00 a month."""
    employee = Employee(
        name="Fatou Coulibaly",
        email="fatou@bizdesk.test",
        position="Cashier",
        department="Shop",
        salary_cents=20_000_000,
    )
    db_session.add(employee)
    db_session.commit()
    return employee


# =============================================================================
# EMPLOYEES
# =============================================================================


class TestEmployees:

    def test_create_employee(self, client, admin_headers):
        resp = client.post("/api/employees", json={
            "name": "Ibrahim Sow",
            "email": "Ibrahim@Bizdesk.test",
            "position": "Driver",
            "salary_cents": 15_000_000,
            "hire_date": "2024-01-15",
        }, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["email"] == "ibrahim@bizdesk.test"
        assert resp.json["hire_date"] == "2024-01-15T00:00:00Z"

    def test_duplicate_email(self, client, admin_headers, employee):
        resp = client.post("/api/employees", json={
            "name": "Other",
            "email": "FATOU@bizdesk.test",
            "position": "Driver",
            "salary_cents": 100,
        }, headers=admin_headers)
        assert resp.status_code == 409

    def test_negative_salary(self, client, admin_headers):
        resp = client.post("/api/employees", json={
            "name": "Broke",
            "email": "broke@bizdesk.test",
            "position": "Intern",
            "salary_cents": -1,
        }, headers=admin_headers)
        assert resp.status_code == 400

    def test_missing_position(self, client, admin_headers):
        resp = client.post("/api/employees", json={
            "name": "Nobody",
            "email": "nobody@bizdesk.test",
            "salary_cents": 100,
        }, headers=admin_headers)
        assert resp.status_code == 400

    def test_requires_admin(self, client, user_headers):
        assert client.get("/api/employees", headers=user_headers).status_code == 403

    def test_get_includes_payroll(self, client, admin_headers, employee):
        client.post(f"/api/employees/{employee.id}/payroll", json={"month": 1, "year": 2024}, headers=admin_headers)
        resp = client.get(f"/api/employees/{employee.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert len(resp.json["payslips"]) == 1
        assert resp.json["advances"] == []

    def test_get_missing(self, client, admin_headers):
        assert client.get("/api/employees/999999", headers=admin_headers).status_code == 404

    def test_delete_cascades(self, client, admin_headers, employee, db_session):
        client.post(f"/api/employees/{employee.id}/payroll", json={"month": 1, "year": 2024}, headers=admin_headers)
        client.post(f"/api/employees/{employee.id}/advances", json={"amount_cents": 1000}, headers=admin_headers)

        resp = client.delete(f"/api/employees/{employee.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert db_session.query(PaySlip).count() == 0
        assert db_session.query(SalaryAdvance).count() == 0


# =============================================================================
# PAY SLIPS
# =============================================================================


class TestPaySlips:

    def test_net_salary(self, client, admin_headers, employee):
        resp = client.post(f"/api/employees/{employee.id}/payroll", json={
            "month": 5,
            "year": 2024,
            "deductions_cents": 1_500_000,
            "bonuses_cents": 500_000,
        }, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["base_salary_cents"] == 20_000_000
        assert resp.json["net_salary_cents"] == 19_000_000
        assert resp.json["status"] == "pending"
        assert resp.json["payment_date"] is None

    def test_duplicate_month(self, client, admin_headers, employee):
        body = {"month": 5, "year": 2024}
        client.post(f"/api/employees/{employee.id}/payroll", json=body, headers=admin_headers)
        resp = client.post(f"/api/employees/{employee.id}/payroll", json=body, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["message"] == "A pay slip already exists for this month and year"

    @pytest.mark.parametrize("body", [{"month": 13, "year": 2024}, {"month": 0, "year": 2024}, {"year": 2024}])
    def test_invalid_period(self, client, admin_headers, employee, body):
        resp = client.post(f"/api/employees/{employee.id}/payroll", json=body, headers=admin_headers)
        assert resp.status_code == 400

    def test_created_paid_has_payment_date(self, client, admin_headers, employee):
        resp = client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 6, "year": 2024, "status": "paid"},
            headers=admin_headers,
        )
        assert resp.json["payment_date"] is not None

    def test_update_recomputes_net_from_current_salary(self, client, admin_headers, employee, reload, db_session):
        slip_id = client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 5, "year": 2024},
            headers=admin_headers,
        ).json["id"]

        reload(employee).salary_cents = 22_000_000
        db_session.commit()

        resp = client.put(
            f"/api/employees/{employee.id}/payroll/{slip_id}",
            json={"bonuses_cents": 1_000_000},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["base_salary_cents"] == 22_000_000
        assert resp.json["net_salary_cents"] == 23_000_000

    def test_mark_paid(self, client, admin_headers, employee):
        slip_id = client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 5, "year": 2024},
            headers=admin_headers,
        ).json["id"]

        paid = client.put(f"/api/employees/{employee.id}/payroll/{slip_id}", json={"status": "paid"}, headers=admin_headers)
        assert paid.json["status"] == "paid"
        assert paid.json["payment_date"] is not None

        back = client.put(f"/api/employees/{employee.id}/payroll/{slip_id}", json={"status": "pending"}, headers=admin_headers)
        assert back.json["payment_date"] is None

    def test_invalid_status(self, client, admin_headers, employee):
        slip_id = client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 5, "year": 2024},
            headers=admin_headers,
        ).json["id"]
        resp = client.put(f"/api/employees/{employee.id}/payroll/{slip_id}", json={"status": "lost"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_list_newest_first(self, client, admin_headers, employee):
        for month in (1, 3, 2):
            client.post(f"/api/employees/{employee.id}/payroll", json={"month": month, "year": 2024}, headers=admin_headers)
        resp = client.get(f"/api/employees/{employee.id}/payroll", headers=admin_headers)
        assert [slip["month"] for slip in resp.json] == [3, 2, 1]

    def test_slip_of_other_employee(self, client, admin_headers, employee, db_session):
        other = Employee(name="Other", email="other@bizdesk.test", position="Clerk", salary_cents=100)
        db_session.add(other)
        db_session.commit()
        slip_id = client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 5, "year": 2024},
            headers=admin_headers,
        ).json["id"]

        resp = client.get(f"/api/employees/{other.id}/payroll/{slip_id}", headers=admin_headers)
        assert resp.status_code == 404

    def test_delete_slip(self, client, admin_headers, employee):
        slip_id = client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 5, "year": 2024},
            headers=admin_headers,
        ).json["id"]
        assert client.delete(f"/api/employees/{employee.id}/payroll/{slip_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/employees/{employee.id}/payroll/{slip_id}", headers=admin_headers).status_code == 404


# =============================================================================
# SALARY ADVANCES
# =============================================================================


class TestAdvances:

    def test_create_advance(self, client, admin_headers, employee):
        resp = client.post(
            f"/api/employees/{employee.id}/advances",
            json={"amount_cents": 5_000_000, "reason": "School fees", "date": "2024-05-03"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["status"] == "pending"
        assert resp.json["date"] == "2024-05-03T00:00:00Z"

    def test_advance_capped_at_half_salary(self, client, admin_headers, employee):
        ok = client.post(f"/api/employees/{employee.id}/advances", json={"amount_cents": 10_000_000}, headers=admin_headers)
        assert ok.status_code == 201

        resp = client.post(f"/api/employees/{employee.id}/advances", json={"amount_cents": 10_000_001}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["max_amount_cents"] == 10_000_000

    @pytest.mark.parametrize("amount", [0, -5, "abc", None])
    def test_invalid_amount(self, client, admin_headers, employee, amount):
        resp = client.post(f"/api/employees/{employee.id}/advances", json={"amount_cents": amount}, headers=admin_headers)
        assert resp.status_code == 400

    def test_update_advance_checks_cap(self, client, admin_headers, employee):
        advance_id = client.post(
            f"/api/employees/{employee.id}/advances",
            json={"amount_cents": 1000},
            headers=admin_headers,
        ).json["id"]

        too_much = client.put(
            f"/api/employees/{employee.id}/advances/{advance_id}",
            json={"amount_cents": 20_000_000},
            headers=admin_headers,
        )
        assert too_much.status_code == 400

        approved = client.put(
            f"/api/employees/{employee.id}/advances/{advance_id}",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert approved.json["status"] == "approved"

    def test_delete_advance(self, client, admin_headers, employee):
        advance_id = client.post(
            f"/api/employees/{employee.id}/advances",
            json={"amount_cents": 1000},
            headers=admin_headers,
        ).json["id"]
        assert client.delete(f"/api/employees/{employee.id}/advances/{advance_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/employees/{employee.id}/advances", headers=admin_headers).json == []

    def test_financial_summary(self, client, admin_headers, employee):
        client.post(f"/api/employees/{employee.id}/payroll", json={"month": 4, "year": 2024}, headers=admin_headers)
        client.post(
            f"/api/employees/{employee.id}/payroll",
            json={"month": 5, "year": 2024, "deductions_cents": 2_000_000},
            headers=admin_headers,
        )
        client.post(
            f"/api/employees/{employee.id}/advances",
            json={"amount_cents": 3_000_000, "status": "approved"},
            headers=admin_headers,
        )
        client.post(f"/api/employees/{employee.id}/advances", json={"amount_cents": 1_000_000}, headers=admin_headers)

        resp = client.get(f"/api/employees/{employee.id}/financial-summary", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json == {
            "employee_id": employee.id,
            "salary": 20_000_000,
            "total_paid": 38_000_000,
            "total_advances": 3_000_000,
            "balance": 35_000_000,
        }
