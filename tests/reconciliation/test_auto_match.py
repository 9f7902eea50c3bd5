"""
Tests for the auto-match engine.

Covers the pure decision rule and end-to-end runs against a tenant's
platform entities.
"""

import pytest

from flask_app.models import (
    Customer,
    EntityType,
    ImportBatch,
    LinkStatus,
    Project,
    VistaContract,
    VistaCustomer,
    VistaVendor,
    VistaWorkOrder,
    db,
)
from flask_app.reconciliation.auto_match import AutoMatchEngine, MatchCandidate, decide, decide_exact
from flask_app.reconciliation.batches import ImportBatchManager


def _candidate(entity_id, score, *, exact_key=False, exact_name=False):
    return MatchCandidate(
        entity_id=entity_id,
        name=f"Entity {entity_id}",
        score=score,
        exact_key_match=exact_key,
        exact_name_match=exact_name,
        same_location=False,
    )


def _reload(model, record_id):
    db.session.expire_all()
    return db.session.get(model, record_id)


class TestDecide:
    def test_unique_exact_key_wins_regardless_of_names(self):
        decision = decide([_candidate(1, 0.1, exact_key=True), _candidate(2, 0.99)], threshold=0.92, margin=0.03)
        assert decision.candidate.entity_id == 1
        assert decision.confidence == 1.0
        assert decision.reason == "exact_key"

    def test_two_exact_keys_are_ambiguous(self):
        decision = decide([_candidate(1, 1.0, exact_key=True), _candidate(2, 1.0, exact_key=True)], threshold=0.92, margin=0.03)
        assert not decision.linked
        assert decision.reason == "ambiguous"

    def test_best_name_must_reach_threshold(self):
        decision = decide([_candidate(1, 0.91)], threshold=0.92, margin=0.03)
        assert decision.reason == "below_threshold"

    def test_best_name_must_beat_runner_up(self):
        assert decide([_candidate(1, 0.96), _candidate(2, 0.94)], threshold=0.92, margin=0.03).reason == "ambiguous"
        decision = decide([_candidate(1, 0.99), _candidate(2, 0.90)], threshold=0.92, margin=0.03)
        assert decision.candidate.entity_id == 1
        assert decision.confidence == pytest.approx(0.99)
        assert decision.reason == "name"

    def test_no_candidates(self):
        assert decide([], threshold=0.92, margin=0.03).reason == "no_candidates"

    def test_exact_only_rule(self):
        assert decide_exact([_candidate(1, 0.5, exact_name=True)]).reason == "exact_name"
        assert decide_exact([_candidate(1, 1.0, exact_name=True), _candidate(2, 1.0, exact_name=True)]).reason == "ambiguous"
        assert decide_exact([_candidate(1, 0.99)]).reason == "no_candidates"


def test_customer_with_unique_exact_key_is_auto_matched(internal_entities, add_record, tenant):
    record = add_record("customers", "C-100", name="ACME Corporation Holdings")

    summary = AutoMatchEngine().run("customers", tenant.id)

    assert summary.as_dict() == {"matched": 1, "total": 1, "ambiguous": 0, "no_candidates": 0, "skipped": 0}
    refreshed = _reload(VistaCustomer, record.id)
    assert refreshed.link_status == LinkStatus.AUTO_MATCHED
    assert refreshed.linked_entity_id == internal_entities["customer"].id
    assert refreshed.link_confidence == 1.0
    assert refreshed.linked_at is not None


def test_customer_matched_on_normalized_name(internal_entities, add_record, tenant):
    record = add_record("customers", "X-1", name="  acme   CORP ")

    AutoMatchEngine().run("customers", tenant.id)

    refreshed = _reload(VistaCustomer, record.id)
    assert refreshed.link_status == LinkStatus.AUTO_MATCHED
    assert refreshed.linked_entity_id == internal_entities["customer"].id


def test_identically_named_customers_are_ambiguous(internal_entities, add_record, tenant):
    db.session.add(Customer(tenant_id=tenant.id, customer_number="C-200", name="Acme Corp."))
    db.session.commit()
    record = add_record("customers", "X-1", name="Acme Corp")

    summary = AutoMatchEngine().run("customers", tenant.id)

    assert summary.ambiguous == 1
    assert summary.matched == 0
    refreshed = _reload(VistaCustomer, record.id)
    assert refreshed.link_status == LinkStatus.UNMATCHED
    assert refreshed.linked_entity_id is None


def test_threshold_comes_from_config(app, internal_entities, add_record, tenant):
    record = add_record("customers", "X-1", name="Acme Corporation")

    assert AutoMatchEngine().run("customers", tenant.id).no_candidates == 1
    assert _reload(VistaCustomer, record.id).link_status == LinkStatus.UNMATCHED

    app.config["RECONCILE_AUTO_MATCH_THRESHOLD"] = 0.7
    assert AutoMatchEngine().run("customers", tenant.id).matched == 1
    refreshed = _reload(VistaCustomer, record.id)
    assert refreshed.link_status == LinkStatus.AUTO_MATCHED
    assert refreshed.link_confidence == pytest.approx(0.72, abs=0.01)


def test_internal_entity_already_linked_is_not_offered_again(internal_entities, add_record, tenant):
    add_record(
        "customers",
        "C-1",
        name="Acme Corp",
        link_status=LinkStatus.MANUAL_MATCHED,
        linked_entity_id=internal_entities["customer"].id,
    )
    duplicate = add_record("customers", "C-2", name="Acme Corp")

    summary = AutoMatchEngine().run("customers", tenant.id)

    assert summary.total == 1
    assert summary.matched == 0
    assert _reload(VistaCustomer, duplicate.id).link_status == LinkStatus.UNMATCHED


def test_only_unmatched_records_are_considered(internal_entities, add_record, tenant):
    ignored = add_record("customers", "C-100", name="Acme Corp", link_status=LinkStatus.IGNORED)

    summary = AutoMatchEngine().run("customers", tenant.id)

    assert summary.total == 0
    refreshed = _reload(VistaCustomer, ignored.id)
    assert refreshed.link_status == LinkStatus.IGNORED
    assert refreshed.linked_entity_id is None


def test_other_tenants_entities_are_never_candidates(internal_entities, add_record, other_tenant):
    record = add_record("customers", "C-100", name="Acme Corp", tenant_id=other_tenant.id)

    summary = AutoMatchEngine().run("customers", other_tenant.id)

    assert summary.matched == 0
    assert _reload(VistaCustomer, record.id).link_status == LinkStatus.UNMATCHED


def test_contract_resolves_project_and_associations(internal_entities, add_record, tenant):
    record = add_record(
        "contracts",
        "24-1001",
        description="Acme Plant Retrofit",
        customer_name="Acme Corp",
        employee_number="1042",
        department_code="200",
    )

    summary = AutoMatchEngine().run("contracts", tenant.id)

    assert summary.matched == 1
    refreshed = _reload(VistaContract, record.id)
    assert refreshed.link_status == LinkStatus.AUTO_MATCHED
    assert refreshed.linked_entity_id == internal_entities["project"].id
    assert refreshed.linked_customer_id == internal_entities["customer"].id
    assert refreshed.linked_employee_id == internal_entities["employee"].id
    assert refreshed.linked_department_id == internal_entities["department"].id
    assert refreshed.link_confidence == 1.0


def test_contract_with_only_a_customer_name_links_the_customer(internal_entities, add_record, tenant):
    record = add_record("contracts", "C-100", customer_name="Acme Corp")

    AutoMatchEngine().run("contracts", tenant.id)

    refreshed = _reload(VistaContract, record.id)
    assert refreshed.link_status == LinkStatus.AUTO_MATCHED
    assert refreshed.linked_entity_id is None
    assert refreshed.linked_customer_id == internal_entities["customer"].id
    assert refreshed.link_confidence == 1.0


def test_contract_with_nothing_to_resolve_stays_unmatched(internal_entities, add_record, tenant):
    record = add_record("contracts", "99-0001", description="Unrelated job")

    summary = AutoMatchEngine().run("contracts", tenant.id)

    assert summary.no_candidates == 1
    assert _reload(VistaContract, record.id).link_status == LinkStatus.UNMATCHED


def test_work_order_matches_prefixed_project_number(tenant, add_record):
    project = Project(tenant_id=tenant.id, number="WO-5001", name="Boiler repair")
    db.session.add(project)
    db.session.commit()
    record = add_record("work_orders", "5001", description="Service call")

    AutoMatchEngine().run("work-orders", tenant.id)

    refreshed = _reload(VistaWorkOrder, record.id)
    assert refreshed.linked_entity_id == project.id
    assert refreshed.link_status == LinkStatus.AUTO_MATCHED


def test_projects_are_shared_between_contracts(internal_entities, add_record, tenant):
    first = add_record("contracts", "24-1001")
    second = add_record("contracts", "24-1001.0")

    summary = AutoMatchEngine().run("contracts", tenant.id)

    assert summary.matched == 2
    assert _reload(VistaContract, first.id).linked_entity_id == internal_entities["project"].id
    assert _reload(VistaContract, second.id).linked_entity_id == internal_entities["project"].id


def test_run_all_reports_contracts_and_work_orders(internal_entities, add_record, tenant):
    add_record("contracts", "24-1001")

    results = AutoMatchEngine().run_all(tenant.id)

    assert set(results) == {"contracts", "workOrders"}
    assert results["contracts"].matched == 1
    assert results["workOrders"].total == 0


def test_auto_link_exact_uses_keys_then_exact_names(internal_entities, add_record, tenant):
    by_key = add_record("vendors", "V-9", name="Midwest Supply Co")
    by_name = add_record("vendors", "V-77", name="MIDWEST   supply")
    fuzzy = add_record("vendors", "V-78", name="Midwest Supplies")

    summary = AutoMatchEngine().auto_link_exact("vendors", tenant.id)

    assert summary.matched == 1
    assert _reload(VistaVendor, by_key.id).link_status == LinkStatus.AUTO_MATCHED
    # Vendors link exclusively, so the exact-name record finds the vendor taken
    assert _reload(VistaVendor, by_name.id).link_status == LinkStatus.UNMATCHED
    assert _reload(VistaVendor, fuzzy.id).link_status == LinkStatus.UNMATCHED


def test_auto_link_exact_links_on_exact_name(internal_entities, add_record, tenant):
    record = add_record("vendors", "V-77", name="MIDWEST   supply")

    summary = AutoMatchEngine().auto_link_exact("vendors", tenant.id)

    assert summary.matched == 1
    refreshed = _reload(VistaVendor, record.id)
    assert refreshed.linked_entity_id == internal_entities["vendor"].id
    assert refreshed.link_confidence == 1.0


def test_batch_run_updates_auto_matched_counter(internal_entities, add_record, tenant):
    batch = ImportBatchManager().create_batch(tenant.id, file_name="vista.xlsx", entity_type=EntityType.CUSTOMER)
    in_batch = add_record("customers", "C-100", name="Acme Corp", import_batch_id=batch.id)
    outside = add_record("customers", "X-9", name="Acme Corp Plant 2")

    summary = AutoMatchEngine().run("customers", tenant.id, batch_id=batch.id)

    assert summary.total == 1
    assert _reload(ImportBatch, batch.id).records_auto_matched == 1
    assert _reload(VistaCustomer, in_batch.id).link_status == LinkStatus.AUTO_MATCHED
    assert _reload(VistaCustomer, outside.id).link_status == LinkStatus.UNMATCHED
