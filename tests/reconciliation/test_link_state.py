"""Tests for the link state machine and manual link/unlink/ignore actions."""

from http import HTTPStatus

import pytest

from flask_app.models import Customer, LinkStatus, Project, VistaContract, VistaCustomer, db
from flask_app.reconciliation.descriptors import CUSTOMER
from flask_app.reconciliation.errors import (
    InvalidLinkTransition,
    LinkConflict,
    LinkTargetNotFound,
    RecordNotFound,
    ReconciliationError,
)
from flask_app.reconciliation.link_state import LinkAction, LinkService, claim_unmatched, transition


class TestTransitionTable:
    @pytest.mark.parametrize("current", list(LinkStatus))
    def test_link_and_unlink_allowed_from_any_state(self, current):
        assert transition(LinkAction.LINK, current) == LinkStatus.MANUAL_MATCHED
        assert transition(LinkAction.UNLINK, current) == LinkStatus.UNMATCHED

    def test_system_writers_only_claim_unmatched(self):
        assert transition(LinkAction.AUTO_MATCH, LinkStatus.UNMATCHED) == LinkStatus.AUTO_MATCHED
        assert transition(LinkAction.PROMOTE, LinkStatus.UNMATCHED) == LinkStatus.MANUAL_MATCHED
        for current in (LinkStatus.AUTO_MATCHED, LinkStatus.MANUAL_MATCHED, LinkStatus.IGNORED):
            with pytest.raises(InvalidLinkTransition):
                transition(LinkAction.AUTO_MATCH, current)
            with pytest.raises(InvalidLinkTransition):
                transition(LinkAction.PROMOTE, current)

    def test_ignore_requires_unlinking_first(self):
        assert transition(LinkAction.IGNORE, LinkStatus.IGNORED) == LinkStatus.IGNORED
        with pytest.raises(InvalidLinkTransition) as excinfo:
            transition(LinkAction.IGNORE, LinkStatus.AUTO_MATCHED)
        assert excinfo.value.http_status == HTTPStatus.CONFLICT


def test_manual_link_sets_status_and_audit_fields(internal_entities, add_record, manager_user, tenant):
    customer = internal_entities["customer"]
    record = add_record("customers", "C-100", name="Acme Corp")

    linked = LinkService().link("customers", record.id, tenant.id, entity_id=customer.id, user_id=manager_user.id)

    assert linked.link_status == LinkStatus.MANUAL_MATCHED
    assert linked.linked_entity_id == customer.id
    assert linked.linked_by == manager_user.id
    assert linked.linked_at is not None
    assert linked.link_confidence is None


def test_relink_is_last_write_wins(internal_entities, add_record, tenant):
    first_project = internal_entities["project"]
    second_project = Project(tenant_id=tenant.id, number="24-2002", name="Second")
    db.session.add(second_project)
    db.session.commit()
    record = add_record(
        "contracts",
        "C-100",
        link_status=LinkStatus.AUTO_MATCHED,
        linked_entity_id=first_project.id,
        link_confidence=0.95,
    )

    LinkService().link("contracts", record.id, tenant.id, entity_id=second_project.id)

    refreshed = db.session.get(VistaContract, record.id)
    assert refreshed.linked_entity_id == second_project.id
    assert refreshed.link_status == LinkStatus.MANUAL_MATCHED
    assert refreshed.link_confidence is None


def test_link_target_must_belong_to_tenant(add_record, tenant, other_tenant):
    foreign = Customer(tenant_id=other_tenant.id, name="Acme Corp")
    db.session.add(foreign)
    db.session.commit()
    record = add_record("customers", "C-100", name="Acme Corp")

    with pytest.raises(LinkTargetNotFound) as excinfo:
        LinkService().link("customers", record.id, tenant.id, entity_id=foreign.id)

    assert excinfo.value.http_status == HTTPStatus.BAD_REQUEST
    assert db.session.get(VistaCustomer, record.id).link_status == LinkStatus.UNMATCHED


def test_link_rejects_non_numeric_target(add_record, tenant):
    record = add_record("customers", "C-100", name="Acme Corp")
    with pytest.raises(LinkTargetNotFound):
        LinkService().link("customers", record.id, tenant.id, entity_id="abc")


def test_internal_customer_links_to_one_vista_customer(internal_entities, add_record, tenant):
    customer = internal_entities["customer"]
    add_record(
        "customers",
        "C-100",
        name="Acme Corp",
        link_status=LinkStatus.MANUAL_MATCHED,
        linked_entity_id=customer.id,
    )
    duplicate = add_record("customers", "C-101", name="Acme Corporation")

    with pytest.raises(LinkConflict) as excinfo:
        LinkService().link("customers", duplicate.id, tenant.id, entity_id=customer.id)

    assert excinfo.value.other_key == "C-100"
    assert excinfo.value.http_status == HTTPStatus.CONFLICT


def test_projects_may_back_several_contracts(internal_entities, add_record, tenant):
    project = internal_entities["project"]
    first = add_record("contracts", "C-100")
    second = add_record("contracts", "C-101")

    service = LinkService()
    service.link("contracts", first.id, tenant.id, entity_id=project.id)
    service.link("contracts", second.id, tenant.id, entity_id=project.id)

    assert db.session.get(VistaContract, second.id).linked_entity_id == project.id


def test_contract_associations_accept_short_names(internal_entities, add_record, tenant):
    record = add_record("contracts", "C-100")

    LinkService().link(
        "contracts",
        record.id,
        tenant.id,
        associations={
            "customer_id": internal_entities["customer"].id,
            "employee_id": internal_entities["employee"].id,
            "department_id": internal_entities["department"].id,
        },
    )

    refreshed = db.session.get(VistaContract, record.id)
    assert refreshed.linked_entity_id is None
    assert refreshed.linked_customer_id == internal_entities["customer"].id
    assert refreshed.linked_employee_id == internal_entities["employee"].id
    assert refreshed.linked_department_id == internal_entities["department"].id
    assert refreshed.link_status == LinkStatus.MANUAL_MATCHED


def test_associations_only_on_project_bearing_types(internal_entities, add_record, tenant):
    record = add_record("customers", "C-100")
    with pytest.raises(ReconciliationError):
        LinkService().link(
            "customers", record.id, tenant.id, associations={"customer_id": internal_entities["customer"].id}
        )


def test_link_requires_a_target(add_record, tenant):
    record = add_record("customers", "C-100")
    with pytest.raises(ReconciliationError, match="link target is required"):
        LinkService().link("customers", record.id, tenant.id)


def test_records_of_other_tenants_are_not_found(add_record, other_tenant, tenant):
    foreign = add_record("customers", "C-100", tenant_id=other_tenant.id)
    with pytest.raises(RecordNotFound):
        LinkService().unlink("customers", foreign.id, tenant.id)


def test_unlink_is_idempotent_and_reversible(internal_entities, add_record, tenant, manager_user):
    customer = internal_entities["customer"]
    record = add_record("customers", "C-100", name="Acme Corp")
    service = LinkService()

    # Never linked: nothing to do
    untouched = service.unlink("customers", record.id, tenant.id)
    assert untouched.link_status == LinkStatus.UNMATCHED

    service.link("customers", record.id, tenant.id, entity_id=customer.id, user_id=manager_user.id)
    unlinked = service.unlink("customers", record.id, tenant.id, user_id=manager_user.id)
    assert unlinked.link_status == LinkStatus.UNMATCHED
    assert unlinked.linked_entity_id is None
    assert unlinked.linked_at is None
    assert unlinked.linked_by is None
    assert unlinked.link_confidence is None

    relinked = service.link("customers", record.id, tenant.id, entity_id=customer.id)
    assert relinked.link_status == LinkStatus.MANUAL_MATCHED

    service.unlink("customers", record.id, tenant.id)
    again = service.unlink("customers", record.id, tenant.id)
    assert again.link_status == LinkStatus.UNMATCHED


def test_unlink_clears_every_association(internal_entities, add_record, tenant):
    record = add_record(
        "contracts",
        "C-100",
        link_status=LinkStatus.AUTO_MATCHED,
        linked_entity_id=internal_entities["project"].id,
        linked_customer_id=internal_entities["customer"].id,
        linked_employee_id=internal_entities["employee"].id,
        linked_department_id=internal_entities["department"].id,
        link_confidence=1.0,
    )

    LinkService().unlink("contracts", record.id, tenant.id)

    refreshed = db.session.get(VistaContract, record.id)
    assert not refreshed.has_link
    assert refreshed.linked_department_id is None
    assert refreshed.link_confidence is None


def test_ignore_then_unlink(add_record, tenant):
    record = add_record("vendors", "V-1", name="Midwest Supply")
    service = LinkService()

    assert service.ignore("vendors", record.id, tenant.id).link_status == LinkStatus.IGNORED
    assert service.ignore("vendors", record.id, tenant.id).link_status == LinkStatus.IGNORED
    assert service.unlink("vendors", record.id, tenant.id).link_status == LinkStatus.UNMATCHED


def test_ignore_matched_record_is_rejected(internal_entities, add_record, tenant):
    record = add_record(
        "customers",
        "C-100",
        link_status=LinkStatus.AUTO_MATCHED,
        linked_entity_id=internal_entities["customer"].id,
    )
    with pytest.raises(InvalidLinkTransition):
        LinkService().ignore("customers", record.id, tenant.id)


def test_claim_unmatched_loses_to_a_prior_manual_action(internal_entities, add_record, tenant):
    record = add_record("customers", "C-100", link_status=LinkStatus.IGNORED)

    claimed = claim_unmatched(
        CUSTOMER,
        record.id,
        tenant.id,
        action=LinkAction.AUTO_MATCH,
        links={"linked_entity_id": internal_entities["customer"].id},
        confidence=1.0,
    )
    db.session.commit()
    db.session.expire_all()

    assert claimed is False
    refreshed = db.session.get(VistaCustomer, record.id)
    assert refreshed.link_status == LinkStatus.IGNORED
    assert refreshed.linked_entity_id is None
