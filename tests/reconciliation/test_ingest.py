"""
End-to-end tests for workbook ingest: sheet recognition, ordering, import
batches and the optional post-import steps.
"""

import io
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

import pytest

from flask_app.models import (
    EntityType,
    ImportBatch,
    LinkStatus,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    db,
)
from flask_app.reconciliation.auto_match import AutoMatchEngine
from flask_app.reconciliation.errors import UnrecognizedWorkbook, WorkbookReadError
from flask_app.reconciliation.ingest import WorkbookIngestService
from flask_app.reconciliation.upsert import UpsertEngine
from flask_app.reconciliation.workbook import EXCEL_EPOCH

CONTRACT_ROW = ("C-100", "Plant retrofit", "Open", 1042, "Dana Whitaker", "200", "$1,250.50", None, "Acme Corp", "Kansas City", "MO", 64101)
WORK_ORDER_ROW = ("5001", "Boiler repair", "Open", "1042", "200", "Acme Corp", "Omaha", "NE", "68102")
EMPLOYEE_ROWS = [(1042.0, "Dana", "Whitaker", 45000, "Y"), ("2001", "Robin", "Keller", "03/15/2023", "N")]
CUSTOMER_ROW = ("C-100", "Acme Corp", "1 Main St", None, "Kansas City", "MO", "64101", "Y")
VENDOR_ROW = ("V-9", "Midwest Supply", "9 Dock Rd", "Suite 4", "Omaha", "NE", "68102", "Y")


def _full_workbook(make_workbook):
    # Deliberately out of dependency order, with an unrelated sheet mixed in
    return make_workbook(
        {
            "TGPBI_SMWorkOrderStatus": [WORK_ORDER_ROW],
            "Notes": (("Note",), [("exported 2024-01-31",)]),
            "TGPBI_PMContractStatus": [CONTRACT_ROW],
            "TGAPVendors": [VENDOR_ROW],
            "TGPREmployees": EMPLOYEE_ROWS,
            "TGARCustomers": [CUSTOMER_ROW],
        }
    )


def _ingest(content, tenant, file_name="vista.xlsx", user_id=None):
    return WorkbookIngestService().ingest(content, file_name=file_name, tenant_id=tenant.id, user_id=user_id)


def test_full_workbook_is_imported_in_dependency_order(make_workbook, tenant, manager_user):
    result = _ingest(_full_workbook(make_workbook), tenant, user_id=manager_user.id).as_dict()

    assert result["sheetsProcessed"] == [
        "TGPREmployees",
        "TGARCustomers",
        "TGAPVendors",
        "TGPBI_PMContractStatus",
        "TGPBI_SMWorkOrderStatus",
    ]
    assert "Notes" in result["sheetsFound"]
    assert "Notes" not in result["sheetsProcessed"]
    assert "postImport" not in result
    assert result["employees"]["total"] == 2
    assert result["employees"]["new"] == 2
    for key in ("contracts", "workOrders", "customers", "vendors"):
        assert result[key]["new"] == 1
        assert result[key]["failed"] == 0

    batches = db.session.scalars(select(ImportBatch).order_by(ImportBatch.id)).all()
    assert [batch.entity_type for batch in batches] == [
        EntityType.EMPLOYEE,
        EntityType.CUSTOMER,
        EntityType.VENDOR,
        EntityType.CONTRACT,
        EntityType.WORK_ORDER,
    ]
    assert all(batch.is_complete for batch in batches)
    assert all(batch.imported_by == manager_user.id for batch in batches)
    assert result["contracts"]["batch_id"] == batches[3].id


def test_cells_are_coerced_into_typed_columns(make_workbook, tenant):
    _ingest(_full_workbook(make_workbook), tenant)

    contract = db.session.scalars(select(VistaContract)).one()
    assert contract.contract_amount == pytest.approx(1250.50)
    assert contract.employee_number == "1042"
    assert contract.ship_zip == "64101"
    assert contract.customer_number is None
    assert contract.raw_data["Contract"] == "C-100"

    dana, robin = db.session.scalars(select(VistaEmployee).order_by(VistaEmployee.employee_number)).all()
    assert dana.employee_number == "1042"
    assert dana.hire_date == EXCEL_EPOCH + timedelta(days=45000)
    assert dana.active is True
    assert robin.active is False
    assert robin.hire_date.year == 2023


def test_empty_sheet_still_records_a_batch(make_workbook, tenant):
    result = _ingest(make_workbook({"TGARCustomers": []}), tenant).as_dict()

    assert result["customers"]["total"] == 0
    batch = db.session.get(ImportBatch, result["customers"]["batch_id"])
    assert batch.records_total == 0
    assert batch.is_complete


def test_rows_without_a_key_are_skipped(make_workbook, tenant):
    rows = [CUSTOMER_ROW, (None, "Keyless Co", None, None, None, None, None, "Y")]

    result = _ingest(io.BytesIO(make_workbook({"TGARCustomers": rows})), tenant).as_dict()

    assert result["customers"] == {
        "total": 2,
        "new": 1,
        "updated": 0,
        "skipped": 1,
        "failed": 0,
        "batch_id": result["customers"]["batch_id"],
    }


def test_unrecognized_workbook_is_rejected(make_workbook, tenant):
    content = make_workbook({"Sheet1": (("A", "B"), [(1, 2)]), "Summary": (("X",), [])})

    with pytest.raises(UnrecognizedWorkbook) as excinfo:
        _ingest(content, tenant)

    assert excinfo.value.to_payload()["availableSheets"] == ["Sheet1", "Summary"]
    assert db.session.scalars(select(ImportBatch)).first() is None


def test_unreadable_file_is_rejected(tenant):
    with pytest.raises(WorkbookReadError):
        _ingest(b"PK\x03\x04 definitely not a workbook", tenant)


def test_reimport_updates_rows_and_preserves_links(make_workbook, internal_entities, tenant):
    _ingest(make_workbook({"TGARCustomers": [CUSTOMER_ROW]}), tenant)
    AutoMatchEngine().run("customers", tenant.id)

    moved = ("C-100", "Acme Corp", "500 River Rd", None, "Omaha", "NE", "68102", "Y")
    result = _ingest(make_workbook({"TGARCustomers": [moved]}), tenant, file_name="vista-feb.xlsx").as_dict()
    db.session.expire_all()

    assert result["customers"]["new"] == 0
    assert result["customers"]["updated"] == 1
    customer = db.session.scalars(select(VistaCustomer)).one()
    assert customer.city == "Omaha"
    assert customer.link_status == LinkStatus.AUTO_MATCHED
    assert customer.linked_entity_id == internal_entities["customer"].id
    assert customer.import_batch_id == result["customers"]["batch_id"]


def test_contract_with_customer_name_auto_matches_after_import(make_workbook, internal_entities, tenant):
    row = ("C-100", None, None, None, None, None, None, None, "Acme Corp", None, None, None)
    _ingest(make_workbook({"TGPBI_PMContractStatus": [row]}), tenant)

    summary = AutoMatchEngine().run("contracts", tenant.id)
    db.session.expire_all()

    assert summary.matched == 1
    contract = db.session.scalars(select(VistaContract)).one()
    assert contract.link_status == LinkStatus.AUTO_MATCHED
    assert contract.linked_customer_id == internal_entities["customer"].id
    assert contract.linked_entity_id is None
    assert contract.link_confidence == 1.0


def test_post_import_steps_are_off_by_default(make_workbook, internal_entities, tenant):
    _ingest(make_workbook({"TGARCustomers": [CUSTOMER_ROW]}), tenant)

    customer = db.session.scalars(select(VistaCustomer)).one()
    assert customer.link_status == LinkStatus.UNMATCHED


def test_post_import_auto_link_and_promotion(app, make_workbook, internal_entities, tenant):
    app.config["RECONCILE_POST_IMPORT_AUTO_LINK"] = True
    app.config["RECONCILE_POST_IMPORT_PROMOTE"] = True
    content = make_workbook(
        {
            "TGARCustomers": [CUSTOMER_ROW, ("C-900", "Zenith Plumbing", None, None, "Lincoln", "NE", None, "Y")],
            "TGPBI_PMContractStatus": [("C-7", "New job", "Open", None, None, "200", None, None, None, None, None, None)],
        }
    )

    result = _ingest(content, tenant).as_dict()
    db.session.expire_all()

    post_import = result["postImport"]
    assert post_import["autoLink"]["customers"]["matched"] == 1
    # The exact department code already linked the contract during auto-link
    assert post_import["autoLink"]["contracts"]["matched"] == 1
    assert post_import["autoLink"]["departments"]["contracts_updated"] == 0
    assert post_import["promoted"]["customers"]["imported"] == 1
    assert post_import["promoted"]["contracts"]["imported"] == 0
    assert db.session.get(ImportBatch, result["customers"]["batch_id"]).records_auto_matched == 1

    statuses = dict(db.session.execute(select(VistaCustomer.customer_number, VistaCustomer.link_status)).all())
    assert statuses == {"C-100": LinkStatus.AUTO_MATCHED, "C-900": LinkStatus.MANUAL_MATCHED}
    contract = db.session.scalars(select(VistaContract)).one()
    assert contract.link_status == LinkStatus.AUTO_MATCHED
    assert contract.linked_department_id == internal_entities["department"].id


def _failing_upsert(fail_on_call):
    """Wrap UpsertEngine.upsert so the nth call hits a dropped connection"""
    original = UpsertEngine.upsert
    calls = {"count": 0}

    def upsert(self, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == fail_on_call:
            raise OperationalError("INSERT INTO vista_customers", {}, Exception("server closed the connection"))
        return original(self, *args, **kwargs)

    return upsert


def test_database_failure_keeps_committed_chunks_and_completes_batch(app, make_workbook, tenant):
    app.config["RECONCILE_CHUNK_SIZE"] = 1
    rows = [
        CUSTOMER_ROW,
        ("C-200", "Zenith Plumbing", None, None, "Lincoln", "NE", None, "Y"),
        ("C-300", "Prairie Electric", None, None, "Wichita", "KS", None, "Y"),
        ("C-400", "Summit Roofing", None, None, "Topeka", "KS", None, "Y"),
    ]
    content = make_workbook({"TGARCustomers": rows, "TGAPVendors": [VENDOR_ROW]})

    with patch.object(UpsertEngine, "upsert", autospec=True, side_effect=_failing_upsert(3)):
        result = _ingest(content, tenant)
    db.session.expire_all()

    assert result.failed
    payload = result.as_dict()
    assert payload["error"] == "Import of TGARCustomers stopped: OperationalError"
    assert payload["customers"]["total"] == 2
    assert payload["customers"]["new"] == 2
    assert payload["sheetsProcessed"] == []
    assert "vendors" not in payload

    numbers = db.session.scalars(select(VistaCustomer.customer_number).order_by(VistaCustomer.customer_number)).all()
    assert numbers == ["C-100", "C-200"]

    [batch] = db.session.scalars(select(ImportBatch)).all()
    assert batch.entity_type == EntityType.CUSTOMER
    assert batch.is_complete
    assert batch.records_total == 2
    assert batch.records_new == 2


def test_database_failure_skips_post_import_steps(app, make_workbook, internal_entities, tenant):
    app.config["RECONCILE_POST_IMPORT_AUTO_LINK"] = True

    with patch.object(UpsertEngine, "upsert", autospec=True, side_effect=_failing_upsert(1)):
        result = _ingest(make_workbook({"TGARCustomers": [CUSTOMER_ROW]}), tenant)

    assert result.failed
    assert result.post_import == {}
    assert result.as_dict()["customers"]["total"] == 0
