"""
Domain Records Module

Identities, transactions, capital requests, messages and sessions. Each
record converts to and from the JSON-compatible dict kept in the
EntityStore: datetimes as ISO strings, amounts as Decimal strings, enums as
their values.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

BROADCAST = "cluster"


class Role(Enum):
    """Identity roles within a cluster"""
    HOST = "HOST"
    MEMBER = "MEMBER"


class TransactionKind(Enum):
    """Direction of a ledger transaction"""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionCategory(Enum):
    """Closed set of spending and funding categories"""
    ALLOCATION = "Allocation"
    OPERATIONS = "Operations"
    RECREATION = "Recreation"
    DEVELOPMENT = "Development"
    SOCIAL = "Social"
    RESERVE = "Reserve"
    GRANT = "Grant"
    MISCELLANEOUS = "Miscellaneous"


class RequestStatus(Enum):
    """Capital request states; APPROVED and REJECTED are terminal"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self != RequestStatus.PENDING


def normalize(value: str) -> str:
    """Trim and case-fold a cluster id or handle"""
    return (value or "").strip().casefold()


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Identity:
    """A HOST or MEMBER identity inside one cluster"""
    id: str
    cluster_id: str
    display_handle: str
    display_name: str
    role: Role
    created_at: datetime
    credential_hash: str = field(default="", repr=False)
    credential_salt: str = field(default="", repr=False)
    parent_id: Optional[str] = None
    active: bool = True

    def __post_init__(self):
        if self.role == Role.MEMBER and not self.parent_id:
            raise ValueError("A MEMBER identity must reference its provisioning HOST")
        if self.role == Role.HOST and self.parent_id:
            raise ValueError("A HOST identity cannot have a parent")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'cluster_id': self.cluster_id,
            'display_handle': self.display_handle,
            'display_name': self.display_name,
            'role': self.role.value,
            'created_at': _format_datetime(self.created_at),
            'credential_hash': self.credential_hash,
            'credential_salt': self.credential_salt,
            'parent_id': self.parent_id,
            'active': self.active,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Dict without credential material, for presentation"""
        data = self.to_dict()
        del data['credential_hash']
        del data['credential_salt']
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Identity':
        return cls(
            id=data['id'],
            cluster_id=data['cluster_id'],
            display_handle=data['display_handle'],
            display_name=data.get('display_name', data['display_handle']),
            role=Role(data['role']),
            created_at=_parse_datetime(data['created_at']),
            credential_hash=data.get('credential_hash', ""),
            credential_salt=data.get('credential_salt', ""),
            parent_id=data.get('parent_id'),
            active=data.get('active', True),
        )


@dataclass(frozen=True)
class Transaction:
    """Immutable ledger entry owned by the identity it credits or debits"""
    id: str
    identity_id: str
    amount: Decimal
    kind: TransactionKind
    category: TransactionCategory
    description: str
    timestamp: datetime

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount <= 0:
            raise ValueError("Transaction amount must be positive")

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind == TransactionKind.CREDIT else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'identity_id': self.identity_id,
            'amount': str(self.amount),
            'kind': self.kind.value,
            'category': self.category.value,
            'description': self.description,
            'timestamp': _format_datetime(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data['id'],
            identity_id=data['identity_id'],
            amount=Decimal(data['amount']),
            kind=TransactionKind(data['kind']),
            category=TransactionCategory(data['category']),
            description=data.get('description', ""),
            timestamp=_parse_datetime(data['timestamp']),
        )


@dataclass
class CapitalRequest:
    """A MEMBER's request for funds, resolved once by the cluster HOST"""
    id: str
    requester_id: str
    amount: Decimal
    reason: str
    status: RequestStatus
    timestamp: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'requester_id': self.requester_id,
            'amount': str(self.amount),
            'reason': self.reason,
            'status': self.status.value,
            'timestamp': _format_datetime(self.timestamp),
            'resolved_at': _format_datetime(self.resolved_at),
            'resolved_by': self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CapitalRequest':
        return cls(
            id=data['id'],
            requester_id=data['requester_id'],
            amount=Decimal(data['amount']),
            reason=data['reason'],
            status=RequestStatus(data['status']),
            timestamp=_parse_datetime(data['timestamp']),
            resolved_at=_parse_datetime(data.get('resolved_at')),
            resolved_by=data.get('resolved_by'),
        )


@dataclass(frozen=True)
class Message:
    """Cluster broadcast or directed message"""
    id: str
    cluster_id: str
    from_id: str
    from_role: Role
    to_id: str
    text: str
    timestamp: datetime
    is_read: bool = False
    reply_to_id: Optional[str] = None

    @property
    def is_broadcast(self) -> bool:
        return self.to_id == BROADCAST

    def visible_to(self, identity_id: str) -> bool:
        return self.is_broadcast or identity_id in (self.from_id, self.to_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'cluster_id': self.cluster_id,
            'from_id': self.from_id,
            'from_role': self.from_role.value,
            'to_id': self.to_id,
            'text': self.text,
            'timestamp': _format_datetime(self.timestamp),
            'is_read': self.is_read,
            'reply_to_id': self.reply_to_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        return cls(
            id=data['id'],
            cluster_id=data['cluster_id'],
            from_id=data['from_id'],
            from_role=Role(data['from_role']),
            to_id=data['to_id'],
            text=data['text'],
            timestamp=_parse_datetime(data['timestamp']),
            is_read=data.get('is_read', False),
            reply_to_id=data.get('reply_to_id'),
        )


@dataclass(frozen=True)
class Session:
    """Time-bounded capability binding a caller to an identity, cluster and role"""
    token: str = field(repr=False)
    identity_id: str
    cluster_id: str
    role: Role
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'token': self.token,
            'identity_id': self.identity_id,
            'cluster_id': self.cluster_id,
            'role': self.role.value,
            'expires_at': _format_datetime(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        return cls(
            token=data['token'],
            identity_id=data['identity_id'],
            cluster_id=data['cluster_id'],
            role=Role(data['role']),
            expires_at=_parse_datetime(data['expires_at']),
        )
