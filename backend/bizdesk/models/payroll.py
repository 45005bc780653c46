from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z, utcnow


ADVANCE_STATUSES = ("pending", "approved", "rejected")
PAYSLIP_STATUSES = ("pending", "paid")


class Employee(db.Model):
    """Staff member on the payroll (distinct from User login accounts)."""
    __tablename__ = "employees"
    __table_args__ = (
        db.CheckConstraint("salary_cents >= 0", name="ck_employees_salary_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    position = db.Column(db.String(120), nullable=False)
    department = db.Column(db.String(120), nullable=True)
    salary_cents = db.Column(db.Integer, nullable=False, default=0)
    hire_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    advances = db.relationship(
        "SalaryAdvance",
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="SalaryAdvance.id",
    )
    payslips = db.relationship(
        "PaySlip",
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="(PaySlip.year, PaySlip.month)",
    )

    def to_dict(self, *, include_payroll: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "position": self.position,
            "department": self.department,
            "salary_cents": self.salary_cents,
            "hire_date": to_utc_z(self.hire_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_payroll:
            data["advances"] = [advance.to_dict() for advance in self.advances]
            data["payslips"] = [slip.to_dict() for slip in self.payslips]
        return data


class SalaryAdvance(db.Model):
    __tablename__ = "salary_advances"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_salary_advances_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    reason = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")

    employee = db.relationship("Employee", back_populates="advances")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "amount_cents": self.amount_cents,
            "date": to_utc_z(self.date),
            "reason": self.reason,
            "status": self.status,
        }


class PaySlip(db.Model):
    """
    Monthly pay slip.

    base_salary_cents is copied from the employee when the slip is created;
    net_salary_cents = base + bonuses - deductions is recomputed on update.
    """
    __tablename__ = "payslips"
    __table_args__ = (
        db.UniqueConstraint("employee_id", "year", "month", name="uq_payslips_employee_period"),
        db.CheckConstraint("month >= 1 AND month <= 12", name="ck_payslips_month_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    base_salary_cents = db.Column(db.Integer, nullable=False)
    deductions_cents = db.Column(db.Integer, nullable=False, default=0)
    bonuses_cents = db.Column(db.Integer, nullable=False, default=0)
    net_salary_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    employee = db.relationship("Employee", back_populates="payslips")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "month": self.month,
            "year": self.year,
            "base_salary_cents": self.base_salary_cents,
            "deductions_cents": self.deductions_cents,
            "bonuses_cents": self.bonuses_cents,
            "net_salary_cents": self.net_salary_cents,
            "notes": self.notes or "",
            "status": self.status,
            "payment_date": to_utc_z(self.payment_date),
            "created_at": to_utc_z(self.created_at),
        }
