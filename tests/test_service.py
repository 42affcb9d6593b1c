"""
Integration tests for the family ledger service

Exercises the collaborator interface end to end: every operation returns a
ServiceResponse envelope, domain errors surface as their user-facing
message and unexpected faults never escape.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from family_ledger.analytics import ClusterOverview, FiscalReport
from family_ledger.config import LedgerConfig
from family_ledger.errors import AuthenticationFailed, Unauthorized
from family_ledger.insights import INSIGHT_PLACEHOLDER, MockInsightClient
from family_ledger.models import (
    BROADCAST, RequestStatus, Role, TransactionCategory, TransactionKind
)
from family_ledger.schemas import IdentityView, ServiceResponse
from family_ledger.service import INTERNAL_FAULT, FamilyLedgerService
from family_ledger.storage import InMemoryStorage


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_config(**overrides) -> LedgerConfig:
    settings = {
        'session_secret': "service-secret-for-tests-0123456789abcdef",
        'insight_url': "",
        'scrypt_n': 1024,
        'log_level': "WARNING",
    }
    settings.update(overrides)
    return LedgerConfig(**settings)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(clock):
    svc = FamilyLedgerService(storage=InMemoryStorage(), config=make_config(), clock=clock)
    yield svc
    svc.close()


@pytest.fixture
def family(service):
    """Cluster fam1 with host alice and member bob, both logged in"""
    alice = service.signup_cluster("fam1", "alice", "pw").data
    host = service.login("fam1", "alice", "pw").data
    bob = service.provision_member(host, "bob", "pw2").data
    member = service.login("fam1", "bob", "pw2").data
    return {'alice': alice, 'bob': bob, 'host': host, 'member': member}


class TestEnvelopes:

    def test_success_envelope(self, service):
        response = service.signup_cluster("fam1", "alice", "pw")

        assert isinstance(response, ServiceResponse)
        assert response.success
        assert response.error is None
        assert response.data.role == Role.HOST

    def test_failure_envelope(self, service):
        response = service.signup_cluster("", "alice", "pw")

        assert not response.success
        assert response.data is None
        assert response.error == "cluster id is required"

    def test_unexpected_fault_is_contained(self, service, family, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(service.ledger, "list_requests", broken)
        response = service.list_requests(family['host'])

        assert not response.success
        assert response.error == INTERNAL_FAULT


class TestIdentityFlow:

    def test_signup_then_login(self, service):
        service.signup_cluster("fam1", "alice", "pw")
        response = service.login("fam1", "alice", "pw")

        assert response.success
        assert response.data.role == Role.HOST

    def test_wrong_secret_is_generic(self, service):
        service.signup_cluster("fam1", "alice", "pw")
        response = service.login("fam1", "alice", "wrong")

        assert not response.success
        assert response.error == AuthenticationFailed.default_message

    def test_duplicate_signup(self, service):
        service.signup_cluster("fam1", "alice", "pw")
        assert not service.signup_cluster("FAM1", "Alice", "pw").success

    def test_member_cannot_provision(self, service, family):
        response = service.provision_member(family['member'], "carol", "pw")
        assert response.error == Unauthorized.default_message

    def test_list_identities_carries_no_credentials(self, service, family):
        identities = service.list_identities(family['member']).data

        assert {i.display_handle for i in identities} == {"alice", "bob"}
        for identity in identities:
            assert isinstance(identity, IdentityView)
            dumped = identity.model_dump()
            assert "credential_hash" not in dumped
            assert "credential_salt" not in dumped
            assert not hasattr(identity, "credential_hash")

    def test_created_identities_carry_no_credentials(self, service, family):
        for key in ('alice', 'bob'):
            assert isinstance(family[key], IdentityView)
            assert "credential_hash" not in family[key].model_dump()
        assert family['bob'].parent_id == family['alice'].id


class TestStoredSession:

    def test_login_is_rehydrated(self, service, family):
        stored = service.get_stored_session()
        assert stored.success
        assert stored.data == family['member']

    def test_logout(self, service, family):
        assert service.logout().success
        assert service.get_stored_session().data is None

    def test_expired_session_is_absent(self, service, family, clock):
        clock.now += timedelta(hours=24, seconds=1)

        assert service.get_stored_session().data is None
        response = service.list_transactions(family['host'])
        assert response.error == Unauthorized.default_message

    def test_session_duration_follows_config(self, clock):
        svc = FamilyLedgerService(storage=InMemoryStorage(),
                                  config=make_config(session_duration_hours=1), clock=clock)
        svc.signup_cluster("fam1", "alice", "pw")
        session = svc.login("fam1", "alice", "pw").data
        assert session.expires_at == clock.now + timedelta(hours=1)
        svc.close()


class TestLedgerFlow:

    def test_request_lifecycle(self, service, family):
        created = service.create_request(family['member'], 500, "books")
        assert created.success
        assert created.data.status == RequestStatus.PENDING
        assert created.data.requester_id == family['bob'].id

        request_id = created.data.id
        approved = service.resolve_request(family['host'], request_id, RequestStatus.APPROVED)
        assert approved.data.status == RequestStatus.APPROVED

        again = service.resolve_request(family['host'], request_id, RequestStatus.REJECTED)
        assert not again.success
        assert again.error.startswith("Request is already APPROVED")

    def test_any_status_on_resolved_request_is_invalid_transition(self, service, family):
        request = service.create_request(family['member'], 50, "shoes").data
        service.resolve_request(family['host'], request.id, RequestStatus.APPROVED)

        response = service.resolve_request(family['host'], request.id, RequestStatus.PENDING)

        assert not response.success
        assert response.error.startswith("Request is already APPROVED")

    def test_unknown_status_is_reported_not_faulted(self, service, family):
        request = service.create_request(family['member'], 50, "shoes").data
        response = service.resolve_request(family['host'], request.id, "DONE")
        assert response.error == "status must be APPROVED or REJECTED"

    def test_unknown_category_is_reported_not_faulted(self, service, family):
        response = service.record_transaction(family['member'], family['bob'].id, 10,
                                              "DEBIT", "Food")
        assert response.error == "unknown category"

    def test_approve_and_fund(self, service, family):
        request = service.create_request(family['member'], 120, "school trip").data

        response = service.approve_and_fund(family['host'], request.id)
        approved, tx = response.data

        assert approved.status == RequestStatus.APPROVED
        assert tx.amount == Decimal(120)
        assert service.get_balance(family['member']).data == Decimal(120)

        repeat = service.approve_and_fund(family['host'], request.id)
        assert not repeat.success
        assert service.get_balance(family['member']).data == Decimal(120)

    def test_validation_message_is_specific(self, service, family):
        response = service.record_transaction(
            family['member'], family['bob'].id, -4,
            TransactionKind.DEBIT, TransactionCategory.SOCIAL
        )
        assert response.error == "amount must be positive"

    def test_member_sees_only_own_requests(self, service, family):
        service.create_request(family['member'], 10, "bus")
        assert len(service.list_requests(family['member']).data) == 1
        assert len(service.list_requests(family['host']).data) == 1


class TestMessagingFlow:

    def test_broadcast_and_direct(self, service, family):
        service.send_message(family['host'], "hello all")
        service.send_message(family['member'], "hi mum", family['alice'].id)

        host_view = service.list_messages(family['host']).data
        assert [m.text for m in host_view] == ["hello all", "hi mum"]
        assert host_view[0].to_id == BROADCAST

    def test_blank_message(self, service, family):
        assert service.send_message(family['member'], " ").error == "message text is required"


class TestAnalyticsAndInsights:

    def _spend(self, service, family):
        service.record_transaction(family['host'], family['bob'].id, 1000,
                                   TransactionKind.CREDIT, TransactionCategory.ALLOCATION)
        service.record_transaction(family['member'], family['bob'].id, 300,
                                   TransactionKind.DEBIT, TransactionCategory.RECREATION)
        service.record_transaction(family['member'], family['bob'].id, 200,
                                   TransactionKind.DEBIT, TransactionCategory.SOCIAL)

    def test_member_report(self, service, family):
        self._spend(service, family)

        report = service.get_analytics(family['member']).data

        assert isinstance(report, FiscalReport)
        assert report.balance == Decimal(500)
        assert report.running_balance[-1].balance == Decimal(500)
        assert report.category_distribution[TransactionCategory.RECREATION] == Decimal(60)

    def test_host_reads_member_report(self, service, family):
        self._spend(service, family)
        report = service.get_analytics(family['host'], family['bob'].id).data
        assert report.total_debits == Decimal(500)

    def test_member_cannot_read_host_report(self, service, family):
        response = service.get_analytics(family['member'], family['alice'].id)
        assert response.error == Unauthorized.default_message

    def test_cluster_overview_is_host_only(self, service, family):
        self._spend(service, family)

        overview = service.get_cluster_overview(family['host']).data
        assert isinstance(overview, ClusterOverview)
        assert overview.total_liquidity == Decimal(500)
        assert [m.identity_id for m in overview.members] == [family['bob'].id]

        denied = service.get_cluster_overview(family['member'])
        assert denied.error == Unauthorized.default_message

    def test_insight_placeholder_when_unconfigured(self, service, family):
        response = service.get_insight(family['member'])
        assert response.success
        assert response.data == INSIGHT_PLACEHOLDER

    def test_insight_from_client(self, clock):
        svc = FamilyLedgerService(storage=InMemoryStorage(), config=make_config(),
                                  insight_client=MockInsightClient(), clock=clock)
        svc.signup_cluster("fam1", "alice", "pw")
        host = svc.login("fam1", "alice", "pw").data
        svc.record_transaction(host, host.identity_id, 80, TransactionKind.DEBIT,
                               TransactionCategory.OPERATIONS)

        assert "Operations" in svc.get_insight(host).data
        svc.close()


class TestOnboarding:

    def test_flag_round_trip(self, service, family):
        alice_id = family['alice'].id
        assert service.get_onboarding_status(alice_id).data is False

        assert service.set_onboarding_status(family['host']).success
        assert service.get_onboarding_status(alice_id).data is True
        assert service.get_onboarding_status(family['bob'].id).data is False

        assert service.set_onboarding_status(family['host'], alice_id, False).success
        assert service.get_onboarding_status(alice_id).data is False

    def test_cannot_set_another_identity_flag(self, service, family):
        response = service.set_onboarding_status(family['host'], family['bob'].id)

        assert response.error == Unauthorized.default_message
        assert service.get_onboarding_status(family['bob'].id).data is False

    def test_requires_live_session(self, service, family, clock):
        alice_id = family['alice'].id
        assert service.set_onboarding_status(None, alice_id).error == Unauthorized.default_message

        clock.now += timedelta(days=2)
        assert service.set_onboarding_status(family['host']).error == Unauthorized.default_message
        assert service.get_onboarding_status(alice_id).data is False


class TestPersistence:

    def test_state_survives_restart(self, tmp_path, clock):
        config = make_config(database_path=str(tmp_path / "ledger.db"))

        first = FamilyLedgerService(config=config, clock=clock)
        first.signup_cluster("fam1", "alice", "pw")
        host = first.login("fam1", "alice", "pw").data
        first.record_transaction(host, host.identity_id, 75, TransactionKind.CREDIT,
                                 TransactionCategory.RESERVE)
        first.close()

        second = FamilyLedgerService(config=config, clock=clock)
        stored = second.get_stored_session().data
        assert stored == host
        assert second.get_balance(stored).data == Decimal(75)
        assert second.login("fam1", "alice", "pw").success
        second.close()
