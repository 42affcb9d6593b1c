"""
Authorization Gate Module

Stateless permit/deny decisions for every write path. A rule table maps each
action to its permit condition; anything the table does not permit is
denied, and an expired or missing session is denied before any claim on it
is looked at.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import Unauthorized
from .logging_config import get_logger, log_action
from .models import Role, Session

logger = get_logger("family_ledger.authorization")


class Action(Enum):
    """Operations guarded by the gate"""
    PROVISION_MEMBER = "provision_member"
    CREDIT_ARBITRARY_IDENTITY = "credit_arbitrary_identity"
    RECORD_OWN_TRANSACTION = "record_own_transaction"
    CREATE_REQUEST = "create_request"
    RESOLVE_REQUEST = "resolve_request"
    SEND_MESSAGE = "send_message"


@dataclass(frozen=True)
class AuthTarget:
    """What an action is aimed at"""
    identity_id: Optional[str] = None
    cluster_id: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    permitted: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.permitted


PERMIT = Decision(True)


def _same_cluster(session: Session, target: AuthTarget) -> bool:
    return target.cluster_id is not None and target.cluster_id == session.cluster_id


_RULES: Dict[Action, Callable[[Session, AuthTarget], bool]] = {
    Action.PROVISION_MEMBER: lambda s, t: s.role == Role.HOST,
    Action.CREDIT_ARBITRARY_IDENTITY: lambda s, t: s.role == Role.HOST and _same_cluster(s, t),
    Action.RECORD_OWN_TRANSACTION: lambda s, t: (
        t.identity_id is not None and t.identity_id == s.identity_id
    ),
    Action.CREATE_REQUEST: lambda s, t: s.role == Role.MEMBER,
    Action.RESOLVE_REQUEST: lambda s, t: s.role == Role.HOST and _same_cluster(s, t),
    Action.SEND_MESSAGE: _same_cluster,
}


def authorize(session: Optional[Session], action: Action,
              target: Optional[AuthTarget] = None,
              now: Optional[datetime] = None) -> Decision:
    """
    Decide whether session may perform action on target.

    Args:
        session: Caller's session (None is always denied)
        action: Operation being attempted
        target: Identity / cluster the operation touches
        now: Evaluation time, defaults to the current UTC time

    Returns:
        Decision, falsy when denied, with an internal reason
    """
    if session is None:
        return Decision(False, "no session")

    now = now or datetime.now(timezone.utc)
    if not session.is_valid(now):
        return Decision(False, "session expired")

    rule = _RULES.get(action)
    if rule is None:
        return Decision(False, f"no rule for {action}")

    if not rule(session, target or AuthTarget()):
        return Decision(False, f"{session.role.value} may not {action.value} on this target")

    return PERMIT


def require(session: Optional[Session], action: Action,
            target: Optional[AuthTarget] = None,
            now: Optional[datetime] = None) -> None:
    """Raise Unauthorized unless authorize() permits"""
    decision = authorize(session, action, target, now)
    if not decision:
        log_action(
            logger, "warning", "Authorization denied",
            identity_id=session.identity_id if session else None,
            cluster_id=session.cluster_id if session else None,
            action=action.value,
            extra={'reason': decision.reason}
        )
        raise Unauthorized()


def require_active(session: Optional[Session], now: Optional[datetime] = None) -> Session:
    """Raise Unauthorized unless session exists and is unexpired (read paths)"""
    if session is None or not session.is_valid(now or datetime.now(timezone.utc)):
        raise Unauthorized()
    return session
