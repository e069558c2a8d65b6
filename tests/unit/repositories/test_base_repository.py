"""
Tests for TenantScopedRepository

Runs against the in-memory database through ContactRepository, the simplest
tenant-owned repository.
"""

import pytest

from crm_database import Contact
from repositories.contact_repository import ContactRepository
from services.common.errors import NotFound, PermissionDenied, TenantContextRequired
from services.common.tenant_context import TenantContext
from tests.fixtures.factories import ContactFactory


@pytest.fixture
def repository(db_session):
    return ContactRepository(db_session)


@pytest.fixture
def scope(tenant):
    return TenantContext(tenant_id=tenant.id, role='admin')


@pytest.fixture
def other_scope(other_tenant):
    return TenantContext(tenant_id=other_tenant.id, role='admin')


class TestContextChecks:

    def test_missing_context_is_rejected(self, repository):
        with pytest.raises(TenantContextRequired):
            repository.find_by(None)

    def test_context_without_tenant_is_rejected_for_regular_roles(self, repository):
        with pytest.raises(TenantContextRequired) as exc_info:
            repository.find_by(TenantContext(tenant_id=None, role='admin'))
        assert exc_info.value.code == 'ERR_TENANT_CONTEXT_REQUIRED'

    def test_super_admin_sees_every_tenant(self, repository, tenant, other_tenant):
        ContactFactory(tenant_id=tenant.id)
        ContactFactory(tenant_id=other_tenant.id)

        contacts = repository.find_by(TenantContext.super_admin())

        assert {c.tenant_id for c in contacts} == {tenant.id, other_tenant.id}


class TestCreate:

    def test_create_stamps_context_tenant(self, repository, scope, tenant):
        contact = repository.create(scope, name='Ana', number='5511999990000')

        assert contact.id is not None
        assert contact.tenant_id == tenant.id

    def test_create_for_another_tenant_is_denied(self, repository, scope, other_tenant):
        with pytest.raises(PermissionDenied):
            repository.create(scope, tenant_id=other_tenant.id, name='Ana', number='5511999990000')

    def test_super_admin_create_needs_an_explicit_tenant(self, repository):
        with pytest.raises(TenantContextRequired):
            repository.create(TenantContext.super_admin(), name='Ana', number='5511999990000')

    def test_super_admin_may_create_for_any_tenant(self, repository, other_tenant):
        contact = repository.create(TenantContext.super_admin(), tenant_id=other_tenant.id,
                                    name='Ana', number='5511999990000')
        assert contact.tenant_id == other_tenant.id


class TestReads:

    def test_get_by_id_hides_foreign_rows(self, repository, scope, other_tenant):
        foreign = ContactFactory(tenant_id=other_tenant.id)

        assert repository.get_by_id(scope, foreign.id) is None

    def test_get_owned_distinguishes_missing_from_foreign(self, repository, scope, other_tenant):
        foreign = ContactFactory(tenant_id=other_tenant.id)

        with pytest.raises(PermissionDenied):
            repository.get_owned(scope, foreign.id)
        with pytest.raises(NotFound):
            repository.get_owned(scope, 999999)

    def test_scoped_query_rejects_foreign_tenant_filter(self, repository, scope, other_tenant):
        with pytest.raises(PermissionDenied):
            repository.scoped_query(scope, {'tenant_id': other_tenant.id})

    def test_none_filter_means_is_null(self, repository, scope, tenant):
        ContactFactory(tenant_id=tenant.id, alt_id=None)
        ContactFactory(tenant_id=tenant.id, alt_id='lid-1')

        without_alt = repository.find_by(scope, alt_id=None)

        assert len(without_alt) == 1
        assert without_alt[0].alt_id is None

    def test_list_filter_means_in(self, repository, scope, tenant):
        first = ContactFactory(tenant_id=tenant.id)
        second = ContactFactory(tenant_id=tenant.id)
        ContactFactory(tenant_id=tenant.id)

        found = repository.find_by(scope, id=[first.id, second.id])

        assert {c.id for c in found} == {first.id, second.id}

    def test_unknown_filter_fields_are_ignored(self, repository, scope, tenant):
        ContactFactory(tenant_id=tenant.id)
        assert repository.count(scope, not_a_column='x') == 1


class TestWrites:

    def test_update_foreign_entity_is_denied(self, repository, scope, other_tenant):
        foreign = ContactFactory(tenant_id=other_tenant.id)

        with pytest.raises(PermissionDenied):
            repository.update(scope, foreign, name='Hijacked')

    def test_update_cannot_move_entity_between_tenants(self, repository, scope, tenant, other_tenant):
        contact = ContactFactory(tenant_id=tenant.id)

        with pytest.raises(PermissionDenied):
            repository.update(scope, contact, tenant_id=other_tenant.id)

    def test_update_where_is_limited_to_context_tenant(self, repository, scope, tenant, other_tenant, db_session):
        mine = ContactFactory(tenant_id=tenant.id, email='')
        foreign = ContactFactory(tenant_id=other_tenant.id, email='')

        count = repository.update_where(scope, {'email': ''}, {'email': 'bulk@example.com'})
        db_session.commit()

        assert count == 1
        assert db_session.get(Contact, mine.id).email == 'bulk@example.com'
        assert db_session.get(Contact, foreign.id).email == ''

    def test_update_where_refuses_tenant_changes(self, repository, scope, other_tenant):
        with pytest.raises(PermissionDenied):
            repository.update_where(scope, {}, {'tenant_id': other_tenant.id})

    def test_delete_foreign_entity_is_denied(self, repository, scope, other_tenant):
        foreign = ContactFactory(tenant_id=other_tenant.id)

        with pytest.raises(PermissionDenied):
            repository.delete(scope, foreign)

    def test_rollback_discards_uncommitted_rows(self, repository, scope):
        repository.create(scope, name='Temp', number='5511000000000')
        repository.rollback()

        assert repository.count(scope) == 0
