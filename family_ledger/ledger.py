"""
Ledger Operations Module

Records transactions and capital requests, resolves requests and derives
balances. Transactions are immutable once appended and balances are always
folded from them, never stored separately.

Approving a request and issuing the matching credit happen in one atomic
operation (approve_and_fund): either both records are written or neither.
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, List, Optional, Set, Tuple, Union

from .authorization import Action, AuthTarget, require, require_active
from .errors import InvalidTransition, NotFound, Unauthorized, ValidationError
from .logging_config import get_logger, log_action
from .models import (
    CapitalRequest, Identity, RequestStatus, Role, Session,
    Transaction, TransactionCategory, TransactionKind
)
from .registry import IdentityRegistry
from .sessions import utc_now
from .storage import REQUESTS, TRANSACTIONS, EntityStore

logger = get_logger("family_ledger.ledger")

Amount = Union[Decimal, int, str]


def compute_balance(identity_id: str, transactions: Iterable[Transaction]) -> Decimal:
    """
    Fold an identity's transactions into its balance.

    CREDIT adds, DEBIT subtracts, starting from zero. Addition commutes, so
    the result does not depend on input order; an empty set yields 0.
    """
    balance = Decimal('0')
    for tx in transactions:
        if tx.identity_id == identity_id:
            balance += tx.signed_amount
    return balance


def _coerce(enum_cls, value, message: str):
    """Convert value to a member of enum_cls or raise ValidationError(message)"""
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(message)


def parse_amount(amount: Amount) -> Decimal:
    """Convert to a positive Decimal or raise ValidationError"""
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("amount must be a number")
    if not value.is_finite() or value <= 0:
        raise ValidationError("amount must be positive")
    return value


class LedgerOperations:
    """Transaction and capital request operations"""

    def __init__(self, store: EntityStore, registry: IdentityRegistry,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.registry = registry
        self.clock = clock

    # Transactions

    def record_transaction(self, session: Session, identity_id: str, amount: Amount,
                           kind: TransactionKind, category: TransactionCategory,
                           description: str = "",
                           timestamp: Optional[datetime] = None) -> Transaction:
        """
        Append a transaction for identity_id.

        The caller's own identity needs RECORD_OWN_TRANSACTION; any other
        identity needs CREDIT_ARBITRARY_IDENTITY within the same cluster.
        """
        now = self.clock()
        if session is not None and identity_id == session.identity_id:
            require(session, Action.RECORD_OWN_TRANSACTION,
                    AuthTarget(identity_id=identity_id), now=now)
        else:
            # Deny before looking anything up for callers who could never pass
            require(session, Action.CREDIT_ARBITRARY_IDENTITY,
                    AuthTarget(identity_id=identity_id,
                               cluster_id=session.cluster_id if session else None),
                    now=now)
            target = self._identity(identity_id)
            require(session, Action.CREDIT_ARBITRARY_IDENTITY,
                    AuthTarget(identity_id=identity_id, cluster_id=target.cluster_id), now=now)

        value = parse_amount(amount)
        kind = _coerce(TransactionKind, kind, "kind must be CREDIT or DEBIT")
        category = _coerce(TransactionCategory, category, "unknown category")
        tx = Transaction(
            id=str(uuid.uuid4()),
            identity_id=identity_id,
            amount=value,
            kind=kind,
            category=category,
            description=(description or "").strip(),
            timestamp=timestamp or now
        )
        self.store.append(TRANSACTIONS, tx.to_dict())

        log_action(logger, "info", "Transaction recorded",
                   identity_id=session.identity_id, cluster_id=session.cluster_id,
                   action="record_transaction", resource=tx.id,
                   extra={'target': identity_id, 'kind': tx.kind.value, 'amount': str(value)})
        return tx

    def list_transactions(self, session: Session,
                          identity_id: Optional[str] = None) -> List[Transaction]:
        """
        Transactions visible to the caller, in insertion order.

        A HOST sees every identity of its cluster, a MEMBER only itself.
        """
        visible = self._visible_identity_ids(session)
        if identity_id is not None:
            if identity_id not in visible:
                raise Unauthorized()
            visible = {identity_id}
        return [tx for tx in self._all_transactions() if tx.identity_id in visible]

    def balance(self, session: Session, identity_id: Optional[str] = None) -> Decimal:
        identity_id = identity_id or require_active(session, self.clock()).identity_id
        return compute_balance(identity_id, self.list_transactions(session, identity_id))

    # Capital requests

    def create_request(self, session: Session, amount: Amount, reason: str) -> CapitalRequest:
        """Raise a PENDING capital request for the calling MEMBER"""
        require(session, Action.CREATE_REQUEST, now=self.clock())
        value = parse_amount(amount)
        if not reason or not reason.strip():
            raise ValidationError("reason is required")

        request = CapitalRequest(
            id=str(uuid.uuid4()),
            requester_id=session.identity_id,
            amount=value,
            reason=reason.strip(),
            status=RequestStatus.PENDING,
            timestamp=self.clock()
        )
        self.store.append(REQUESTS, request.to_dict())

        log_action(logger, "info", "Capital request created",
                   identity_id=session.identity_id, cluster_id=session.cluster_id,
                   action="create_request", resource=request.id,
                   extra={'amount': str(value)})
        return request

    def resolve_request(self, session: Session, request_id: str,
                        new_status: RequestStatus) -> CapitalRequest:
        """
        Move a PENDING request to APPROVED or REJECTED.

        A request that is already resolved fails with InvalidTransition
        whatever status is asked for.
        """
        with self.store.atomic():
            request = self._authorized_pending_request(session, request_id)
            new_status = _coerce(RequestStatus, new_status, "status must be APPROVED or REJECTED")
            if not new_status.is_terminal:
                raise ValidationError("status must be APPROVED or REJECTED")
            now = self.clock()
            data = self.store.update(REQUESTS, request.id, {
                'status': new_status.value,
                'resolved_at': now.isoformat(),
                'resolved_by': session.identity_id,
            })

        log_action(logger, "info", "Capital request resolved",
                   identity_id=session.identity_id, cluster_id=session.cluster_id,
                   action="resolve_request", resource=request_id,
                   extra={'status': new_status.value})
        return CapitalRequest.from_dict(data)

    def approve_and_fund(self, session: Session, request_id: str,
                         category: TransactionCategory = TransactionCategory.GRANT
                         ) -> Tuple[CapitalRequest, Transaction]:
        """
        Approve a request and credit its requester as one operation.

        If the credit cannot be written the approval is rolled back, so the
        request stays PENDING and can be retried.
        """
        with self.store.atomic():
            approved = self.resolve_request(session, request_id, RequestStatus.APPROVED)
            tx = self.record_transaction(
                session, approved.requester_id, approved.amount,
                TransactionKind.CREDIT, category,
                f"Funding approved: {approved.reason}"
            )
        return approved, tx

    def list_requests(self, session: Session) -> List[CapitalRequest]:
        """Requests visible to the caller, in insertion order"""
        visible = self._visible_identity_ids(session)
        return [CapitalRequest.from_dict(data) for data in self.store.all(REQUESTS)
                if data.get('requester_id') in visible]

    def get_request(self, request_id: str) -> Optional[CapitalRequest]:
        data = self.store.get(REQUESTS, request_id)
        return CapitalRequest.from_dict(data) if data else None

    # Private helpers

    def _authorized_pending_request(self, session: Session, request_id: str) -> CapitalRequest:
        now = self.clock()
        if session is None or session.role != Role.HOST or not session.is_valid(now):
            require(session, Action.RESOLVE_REQUEST, now=now)

        request = self.get_request(request_id)
        if request is None:
            raise NotFound("Request not found.")

        requester = self.registry.get(request.requester_id)
        require(session, Action.RESOLVE_REQUEST,
                AuthTarget(identity_id=request.requester_id,
                           cluster_id=requester.cluster_id if requester else None),
                now=now)

        if request.status != RequestStatus.PENDING:
            raise InvalidTransition(
                f"Request is already {request.status.value} and cannot change."
            )
        return request

    def _identity(self, identity_id: str) -> Identity:
        identity = self.registry.get(identity_id)
        if identity is None:
            raise NotFound("Identity not found.")
        return identity

    def _all_transactions(self) -> List[Transaction]:
        return [Transaction.from_dict(data) for data in self.store.all(TRANSACTIONS)]

    def _visible_identity_ids(self, session: Session) -> Set[str]:
        require_active(session, self.clock())
        if session.role == Role.HOST:
            return {identity.id for identity in self.registry.list_cluster(session.cluster_id)}
        return {session.identity_id}
