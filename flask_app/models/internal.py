# flask_app/models/internal.py
"""
Tenant-scoped platform entities that Vista records reconcile against.

These are owned by the platform's CRUD modules; the reconciliation engine only
reads them, except during promotion where it inserts new rows.
"""

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class Department(BaseModel):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    department_number = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    __table_args__ = (UniqueConstraint("tenant_id", "department_number", name="uq_departments_tenant_number"),)

    def __repr__(self):
        return f"<Department {self.department_number} {self.name}>"


class Employee(BaseModel):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    employee_number = db.Column(db.String(50), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    job_title = db.Column(db.String(200), nullable=True)
    hire_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)

    __table_args__ = (Index("idx_employees_tenant_number", "tenant_id", "employee_number"),)

    @property
    def full_name(self):
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self):
        return f"<Employee {self.full_name}>"


class Customer(BaseModel):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_number = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    facility_name = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    address2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    __table_args__ = (Index("idx_customers_tenant_number", "tenant_id", "customer_number"),)

    def __repr__(self):
        return f"<Customer {self.name}>"


class Vendor(BaseModel):
    __tablename__ = "vendors"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    vendor_number = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    address = db.Column(db.String(255), nullable=True)
    address2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    __table_args__ = (Index("idx_vendors_tenant_number", "tenant_id", "vendor_number"),)

    def __repr__(self):
        return f"<Vendor {self.name}>"


class Project(BaseModel):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    number = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    client_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="Open")
    contract_amount = db.Column(db.Float, nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)

    customer = db.relationship("Customer", foreign_keys=[customer_id])
    manager = db.relationship("Employee", foreign_keys=[manager_id])
    department = db.relationship("Department", foreign_keys=[department_id])

    __table_args__ = (Index("idx_projects_tenant_number", "tenant_id", "number"),)

    def __repr__(self):
        return f"<Project {self.number} {self.name}>"
