# conftest.py

import io
import os
from unittest.mock import patch

import pytest
from openpyxl import Workbook
from werkzeug.security import generate_password_hash

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app
from config import TestingConfig
from config.monitoring import TestingMonitoringConfig
from flask_app.models import (
    Customer,
    Department,
    Employee,
    LinkStatus,
    Organization,
    Project,
    User,
    UserOrganization,
    Vendor,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaVendor,
    VistaWorkOrder,
    db,
    ensure_default_roles,
)
from flask_app.reconciliation import get_celery_app

CONTRACT_HEADERS = (
    "Contract",
    "Contract Description",
    "Contract Status",
    "Employee Number Emp Number",
    "Project Manager",
    "Department",
    "Contract Amt",
    "Customer",
    "Customer Name",
    "Ship City",
    "Ship State",
    "Ship Zip",
)
WORK_ORDER_HEADERS = (
    "Work Order",
    "Description",
    "Status",
    "Project Manager Emp Number",
    "Department",
    "Customer",
    "City",
    "State",
    "Zip",
)
EMPLOYEE_HEADERS = ("Employee", "First Name", "Last Name", "Hire Date", "Active Y/N")
CUSTOMER_HEADERS = ("Customer Number", "Name", "Address", "Address2", "City", "State", "Zip", "Active Y/N")
VENDOR_HEADERS = ("Vendor Number", "Name", "Address", "Address2", "City", "State", "Zip", "Active Y/N")

SHEET_HEADERS = {
    "TGPBI_PMContractStatus": CONTRACT_HEADERS,
    "TGPBI_SMWorkOrderStatus": WORK_ORDER_HEADERS,
    "TGPREmployees": EMPLOYEE_HEADERS,
    "TGARCustomers": CUSTOMER_HEADERS,
    "TGAPVendors": VENDOR_HEADERS,
}


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application with a fresh in-memory database"""
    # Reset configuration that a previous test may have overridden
    flask_app.config.from_object(TestingConfig)
    flask_app.config.from_object(TestingMonitoringConfig)
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "RECONCILE_WORKER_ENABLED": False,
        }
    )

    from flask_app.utils.logging_config import setup_logging

    setup_logging(flask_app)

    celery_app = get_celery_app(flask_app)
    if celery_app is not None:
        celery_app.conf.update(task_always_eager=True, task_eager_propagates=True)

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def roles(app):
    """Default reconciliation roles keyed by name"""
    return ensure_default_roles()


@pytest.fixture
def tenant(app):
    org = Organization(name="Acme Mechanical", slug="acme", description="Primary tenant", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def other_tenant(app):
    org = Organization(name="Other Builders", slug="other", description="Second tenant", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


def _make_user(username, *, password, is_super_admin=False, is_active=True):
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=generate_password_hash(password),
        first_name=username.capitalize(),
        last_name="User",
        is_super_admin=is_super_admin,
        is_active=is_active,
    )
    db.session.add(user)
    db.session.commit()
    return user


def _add_membership(user, organization, role):
    db.session.add(UserOrganization(user_id=user.id, organization_id=organization.id, role_id=role.id, is_active=True))
    db.session.commit()


@pytest.fixture
def super_admin_user(app):
    return _make_user("superadmin", password="superpass123", is_super_admin=True)


@pytest.fixture
def manager_user(app, tenant, roles):
    """Tenant admin holding both reconciliation permissions"""
    user = _make_user("manager", password="managerpass123")
    _add_membership(user, tenant, roles["ORG_ADMIN"])
    return user


@pytest.fixture
def viewer_user(app, tenant, roles):
    """Read-only member of the tenant"""
    user = _make_user("viewer", password="viewerpass123")
    _add_membership(user, tenant, roles["VIEWER"])
    return user


@pytest.fixture
def outsider_user(app, other_tenant, roles):
    """Member of a different tenant only"""
    user = _make_user("outsider", password="outsiderpass123")
    _add_membership(user, other_tenant, roles["ORG_ADMIN"])
    return user


def login(client, username, password):
    return client.post("/login", json={"username": username, "password": password})


@pytest.fixture
def logged_in_manager(client, manager_user):
    """Client logged in as the tenant admin"""
    login(client, "manager", "managerpass123")
    yield client, manager_user


@pytest.fixture
def logged_in_viewer(client, viewer_user):
    login(client, "viewer", "viewerpass123")
    yield client, viewer_user


@pytest.fixture
def logged_in_admin(client, super_admin_user):
    """Client logged in as a super admin"""
    login(client, "superadmin", "superpass123")
    yield client, super_admin_user


@pytest.fixture
def tenant_headers(tenant):
    return {"X-Organization": tenant.slug}


def build_workbook(sheets):
    """
    Build an in-memory .xlsx workbook.

    ``sheets`` maps a sheet name to its data rows; known Vista sheets get their
    export headers, anything else takes a ``(headers, rows)`` tuple.
    """
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, content in sheets.items():
        if name in SHEET_HEADERS and not isinstance(content, tuple):
            headers, rows = SHEET_HEADERS[name], content
        else:
            headers, rows = content
        worksheet = workbook.create_sheet(title=name)
        worksheet.append(list(headers))
        for row in rows:
            worksheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def internal_entities(tenant):
    """A small set of platform entities for the primary tenant"""
    department = Department(tenant_id=tenant.id, department_number="200", name="HVAC Service")
    db.session.add(department)
    db.session.flush()
    manager = Employee(
        tenant_id=tenant.id,
        employee_number="1042",
        first_name="Dana",
        last_name="Whitaker",
        department_id=department.id,
    )
    customer = Customer(
        tenant_id=tenant.id,
        customer_number="C-100",
        name="Acme Corp",
        facility_name="Acme Corp Plant 2",
        city="Kansas City",
        state="MO",
    )
    vendor = Vendor(tenant_id=tenant.id, vendor_number="V-9", name="Midwest Supply", city="Omaha", state="NE")
    db.session.add_all([manager, customer, vendor])
    db.session.flush()
    project = Project(
        tenant_id=tenant.id,
        number="24-1001",
        name="Acme Plant Retrofit",
        client_name="Acme Corp",
        customer_id=customer.id,
        manager_id=manager.id,
        department_id=department.id,
    )
    db.session.add(project)
    db.session.commit()
    return {
        "department": department,
        "employee": manager,
        "customer": customer,
        "vendor": vendor,
        "project": project,
    }


_VISTA_MODELS = {
    "contracts": (VistaContract, "contract_number"),
    "work_orders": (VistaWorkOrder, "work_order_number"),
    "employees": (VistaEmployee, "employee_number"),
    "customers": (VistaCustomer, "customer_number"),
    "vendors": (VistaVendor, "vendor_number"),
}


@pytest.fixture
def add_record(tenant):
    """Factory inserting a committed Vista record, by default for the primary tenant"""

    def _add(entity_type, key, *, tenant_id=None, link_status=LinkStatus.UNMATCHED, **values):
        model, key_field = _VISTA_MODELS[entity_type]
        record = model(
            tenant_id=tenant_id or tenant.id,
            link_status=link_status,
            **{key_field: key},
            **values,
        )
        db.session.add(record)
        db.session.commit()
        return record

    return _add


@pytest.fixture
def mock_email():
    """Mock email sending for testing"""
    with patch("flask_app.utils.error_handler.send_email") as mock_send:
        yield mock_send


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
