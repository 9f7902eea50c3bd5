from flask_app.models import EntityType, ImportBatch, db
from flask_app.reconciliation.batches import ImportBatchManager


def _reload(batch_id):
    db.session.expire_all()
    return db.session.get(ImportBatch, batch_id)


def test_create_and_complete_batch(tenant, manager_user):
    manager = ImportBatchManager()
    batch = manager.create_batch(
        tenant.id,
        file_name="vista.xlsx",
        entity_type=EntityType.VENDOR,
        sheet_name="TGAPVendors",
        imported_by=manager_user.id,
    )
    assert batch.id is not None
    assert not batch.is_complete

    manager.complete_batch(batch.id, records_total=4, records_new=2, records_updated=1, records_skipped=1)

    completed = _reload(batch.id)
    assert completed.is_complete
    payload = completed.to_dict()
    assert payload["entity_type"] == "vendors"
    assert payload["records_total"] == 4
    assert payload["records_new"] == 2
    assert payload["records_updated"] == 1
    assert payload["records_skipped"] == 1
    assert payload["records_failed"] == 0
    assert payload["imported_by"] == manager_user.id


def test_completed_batch_is_not_rewritten(tenant):
    manager = ImportBatchManager()
    batch = manager.create_batch(tenant.id, file_name="vista.xlsx", entity_type=EntityType.VENDOR)
    manager.complete_batch(batch.id, records_total=3, records_new=3, records_updated=0)

    manager.complete_batch(batch.id, records_total=9, records_new=9, records_updated=9)

    assert _reload(batch.id).records_new == 3


def test_record_auto_matched_accumulates(tenant):
    manager = ImportBatchManager()
    batch = manager.create_batch(tenant.id, file_name="vista.xlsx", entity_type=EntityType.CUSTOMER)

    manager.record_auto_matched(batch.id, 2)
    manager.record_auto_matched(batch.id, 0)
    manager.record_auto_matched(batch.id, 3)

    assert _reload(batch.id).records_auto_matched == 5


def test_history_is_tenant_scoped_and_newest_first(app, tenant, other_tenant):
    manager = ImportBatchManager()
    first = manager.create_batch(tenant.id, file_name="jan.xlsx", entity_type=EntityType.CUSTOMER)
    second = manager.create_batch(tenant.id, file_name="feb.xlsx", entity_type=EntityType.CUSTOMER)
    third = manager.create_batch(tenant.id, file_name="feb.xlsx", entity_type=EntityType.VENDOR)
    manager.create_batch(other_tenant.id, file_name="other.xlsx", entity_type=EntityType.CUSTOMER)

    assert [batch.id for batch in manager.history(tenant.id)] == [third.id, second.id, first.id]
    assert [batch.id for batch in manager.history(tenant.id, limit=2)] == [third.id, second.id]

    app.config["RECONCILE_HISTORY_LIMIT"] = 1
    assert [batch.id for batch in manager.history(tenant.id)] == [third.id]


def test_latest_by_type(tenant):
    manager = ImportBatchManager()
    manager.create_batch(tenant.id, file_name="jan.xlsx", entity_type=EntityType.CUSTOMER)
    latest_customers = manager.create_batch(tenant.id, file_name="feb.xlsx", entity_type=EntityType.CUSTOMER)
    vendors = manager.create_batch(tenant.id, file_name="feb.xlsx", entity_type=EntityType.VENDOR)

    latest = manager.latest_by_type(tenant.id)

    assert set(latest) == {"customers", "vendors"}
    assert latest["customers"].id == latest_customers.id
    assert latest["vendors"].id == vendors.id
