from http import HTTPStatus

import pytest

from flask_app.models.vista import EntityType
from flask_app.reconciliation.descriptors import (
    CONTRACT,
    CUSTOMER,
    DESCRIPTORS,
    EMPLOYEE,
    INGEST_ORDER,
    WORK_ORDER,
    descriptor_for_sheet,
    get_descriptor,
    resolve_entity_type,
)
from flask_app.reconciliation.errors import UnknownEntityType, UnrecognizedWorkbook


@pytest.mark.parametrize(
    "alias,expected",
    [
        ("contracts", EntityType.CONTRACT),
        ("contract", EntityType.CONTRACT),
        ("work-orders", EntityType.WORK_ORDER),
        ("work_orders", EntityType.WORK_ORDER),
        ("workOrders", EntityType.WORK_ORDER),
        ("TGPREmployees", EntityType.EMPLOYEE),
        (" Customers ", EntityType.CUSTOMER),
        ("vendor", EntityType.VENDOR),
        (EntityType.VENDOR, EntityType.VENDOR),
    ],
)
def test_resolve_entity_type_aliases(alias, expected):
    assert resolve_entity_type(alias) is expected


@pytest.mark.parametrize("value", ["widgets", "", None, 7])
def test_unknown_entity_type_is_404(value):
    with pytest.raises(UnknownEntityType) as excinfo:
        get_descriptor(value)
    assert excinfo.value.http_status == HTTPStatus.NOT_FOUND
    assert "Unknown Vista entity type" in excinfo.value.to_payload()["error"]


def test_every_type_has_a_descriptor_and_ingest_slot():
    assert set(DESCRIPTORS) == set(EntityType)
    assert set(INGEST_ORDER) == set(EntityType)
    # People and parties load before the project-bearing sheets
    assert INGEST_ORDER.index(EntityType.EMPLOYEE) < INGEST_ORDER.index(EntityType.CONTRACT)
    assert INGEST_ORDER.index(EntityType.CUSTOMER) < INGEST_ORDER.index(EntityType.WORK_ORDER)


def test_work_order_keys_match_prefixed_project_numbers():
    assert WORK_ORDER.matches_key("5001", "WO-5001")
    assert WORK_ORDER.matches_key("5001.0", "5001")
    assert not WORK_ORDER.matches_key("5001", "WO-5002")
    assert not CONTRACT.matches_key("", "")


def test_exclusive_links_only_for_people_and_parties():
    assert EMPLOYEE.exclusive_link and CUSTOMER.exclusive_link
    assert not CONTRACT.exclusive_link and not WORK_ORDER.exclusive_link


def test_descriptor_for_sheet():
    assert descriptor_for_sheet(" TGARCustomers ") is CUSTOMER
    assert descriptor_for_sheet("Sheet1") is None


def test_unrecognized_workbook_payload_lists_sheets():
    error = UnrecognizedWorkbook(["Sheet1", "Notes"])
    assert error.http_status == HTTPStatus.BAD_REQUEST
    assert error.to_payload() == {
        "error": "No recognized Vista sheets found in workbook.",
        "availableSheets": ["Sheet1", "Notes"],
    }
