"""
Family Ledger Service

Collaborator interface for presentation layers. Wires storage, sessions,
registry, ledger, messaging, analytics and the insight client together and
returns every result in a ServiceResponse envelope; domain errors become
failed envelopes carrying their user-facing message.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from .analytics import build_report, cluster_overview
from .authorization import require_active
from .config import LedgerConfig, get_config
from .errors import LedgerError, NotFound, Unauthorized
from .insights import InsightClient
from .ledger import LedgerOperations, compute_balance
from .logging_config import get_logger, setup_logging
from .messaging import MessageBoard
from .models import (
    BROADCAST, RequestStatus, Role, Session, TransactionCategory, TransactionKind
)
from .registry import IdentityRegistry
from .schemas import IdentityView, ServiceResponse
from .sessions import SessionManager, utc_now
from .storage import EntityStore, SQLiteStorage, StorageInterface

logger = get_logger("family_ledger.service")

INTERNAL_FAULT = "Internal ledger fault."


class FamilyLedgerService:
    """Family ledger with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[LedgerConfig] = None,
                 insight_client: Optional[InsightClient] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.config = config or get_config()
        self.clock = clock
        setup_logging(self.config.log_level, self.config.log_format)

        self.storage = storage or SQLiteStorage(self.config.database_path)
        self.store = EntityStore(self.storage, self.config.storage_namespace)
        self.sessions = SessionManager(self.store, clock=clock, config=self.config)
        self.registry = IdentityRegistry(self.store, self.sessions, clock=clock, config=self.config)
        self.ledger = LedgerOperations(self.store, self.registry, clock=clock)
        self.messages = MessageBoard(self.store, self.registry, clock=clock)
        self.insight_client = insight_client or InsightClient(
            base_url=self.config.insight_url,
            timeout=self.config.insight_timeout,
            api_key=self.config.insight_api_key
        )

    def _respond(self, op: str, fn: Callable[[], Any]) -> ServiceResponse:
        try:
            return ServiceResponse.ok(fn())
        except LedgerError as e:
            return ServiceResponse.fail(e.message)
        except Exception:
            logger.exception(f"Unexpected failure in {op}", extra={'action': op})
            return ServiceResponse.fail(INTERNAL_FAULT)

    # Identity & sessions

    def signup_cluster(self, cluster_id: str, handle: str, secret: str) -> ServiceResponse:
        return self._respond("signup_cluster", lambda: IdentityView.from_identity(
            self.registry.signup_cluster(cluster_id, handle, secret)
        ))

    def provision_member(self, session: Session, handle: str, secret: str) -> ServiceResponse:
        return self._respond("provision_member", lambda: IdentityView.from_identity(
            self.registry.provision_member(session, handle, secret)
        ))

    def login(self, cluster_id: str, handle: str, secret: str) -> ServiceResponse:
        return self._respond("login", lambda: self.registry.login(cluster_id, handle, secret))

    def logout(self) -> ServiceResponse:
        def _logout():
            self.sessions.revoke()
            return True
        return self._respond("logout", _logout)

    def get_stored_session(self) -> ServiceResponse:
        return self._respond("get_stored_session", self.sessions.current)

    def list_identities(self, session: Session) -> ServiceResponse:
        def _list():
            require_active(session, self.clock())
            return [IdentityView.from_identity(identity)
                    for identity in self.registry.list_cluster(session.cluster_id)]
        return self._respond("list_identities", _list)

    # Ledger

    def record_transaction(self, session: Session, identity_id: str, amount: Any,
                           kind: TransactionKind, category: TransactionCategory,
                           description: str = "",
                           timestamp: Optional[datetime] = None) -> ServiceResponse:
        return self._respond("record_transaction", lambda: self.ledger.record_transaction(
            session, identity_id, amount, kind, category, description, timestamp
        ))

    def list_transactions(self, session: Session,
                          identity_id: Optional[str] = None) -> ServiceResponse:
        return self._respond("list_transactions",
                             lambda: self.ledger.list_transactions(session, identity_id))

    def create_request(self, session: Session, amount: Any, reason: str) -> ServiceResponse:
        return self._respond("create_request",
                             lambda: self.ledger.create_request(session, amount, reason))

    def resolve_request(self, session: Session, request_id: str,
                        new_status: RequestStatus) -> ServiceResponse:
        return self._respond("resolve_request",
                             lambda: self.ledger.resolve_request(session, request_id, new_status))

    def approve_and_fund(self, session: Session, request_id: str,
                         category: TransactionCategory = TransactionCategory.GRANT
                         ) -> ServiceResponse:
        return self._respond("approve_and_fund",
                             lambda: self.ledger.approve_and_fund(session, request_id, category))

    def list_requests(self, session: Session) -> ServiceResponse:
        return self._respond("list_requests", lambda: self.ledger.list_requests(session))

    def get_balance(self, session: Session, identity_id: Optional[str] = None) -> ServiceResponse:
        return self._respond("get_balance", lambda: self.ledger.balance(session, identity_id))

    # Messaging

    def send_message(self, session: Session, text: str, to_id: str = BROADCAST,
                     reply_to_id: Optional[str] = None) -> ServiceResponse:
        return self._respond("send_message", lambda: self.messages.send_message(
            session, text, to_id, reply_to_id
        ))

    def list_messages(self, session: Session) -> ServiceResponse:
        return self._respond("list_messages", lambda: self.messages.list_messages(session))

    # Analytics

    def get_analytics(self, session: Session, identity_id: Optional[str] = None) -> ServiceResponse:
        def _report():
            target, transactions, balance = self._identity_ledger(session, identity_id)
            return build_report(transactions, balance, now=self.clock())
        return self._respond("get_analytics", _report)

    def get_cluster_overview(self, session: Session) -> ServiceResponse:
        def _overview():
            require_active(session, self.clock())
            if session.role != Role.HOST:
                raise Unauthorized()
            return cluster_overview(
                self.registry.list_cluster(session.cluster_id),
                self.ledger.list_transactions(session)
            )
        return self._respond("get_cluster_overview", _overview)

    def get_insight(self, session: Session, identity_id: Optional[str] = None) -> ServiceResponse:
        """Narrative summary; succeeds with a placeholder when the service fails"""
        def _insight():
            target, transactions, balance = self._identity_ledger(session, identity_id)
            return self.insight_client.summarize(transactions, balance)
        return self._respond("get_insight", _insight)

    # Onboarding

    def get_onboarding_status(self, identity_id: str) -> ServiceResponse:
        return self._respond("get_onboarding_status", lambda: self.store.get_flag(identity_id))

    def set_onboarding_status(self, session: Session, identity_id: Optional[str] = None,
                              value: bool = True) -> ServiceResponse:
        """Record onboarding acknowledgment; callers may only set their own flag"""
        def _set():
            caller = require_active(session, self.clock()).identity_id
            target = identity_id or caller
            if target != caller:
                raise Unauthorized()
            if self.registry.get(target) is None:
                raise NotFound("Identity not found.")
            self.store.set_flag(target, value)
            return value
        return self._respond("set_onboarding_status", _set)

    def close(self) -> None:
        self.insight_client.close()
        self.storage.close()

    # Private helpers

    def _identity_ledger(self, session: Session, identity_id: Optional[str]):
        target = identity_id or require_active(session, self.clock()).identity_id
        transactions = self.ledger.list_transactions(session, target)
        return target, transactions, compute_balance(target, transactions)
