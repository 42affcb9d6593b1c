"""
Session Management Module

Issues, rehydrates and revokes the single current session. Tokens are
HS256-signed JWTs carrying a random jti; callers treat them as opaque. The
persisted record is only trusted after its expiry has been checked and its
claims have been matched against the signed token.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from .config import LedgerConfig, get_config
from .logging_config import get_logger, log_action
from .models import Identity, Session
from .storage import EntityStore

logger = get_logger("family_ledger.sessions")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Single-slot session lifecycle with lazy expiry"""

    def __init__(self, store: EntityStore, secret: Optional[str] = None,
                 duration: Optional[timedelta] = None,
                 clock: Callable[[], datetime] = utc_now,
                 config: Optional[LedgerConfig] = None):
        config = config or get_config()
        self.store = store
        self.secret = secret or config.session_secret
        self.algorithm = config.jwt_algorithm
        self.duration = duration or timedelta(hours=config.session_duration_hours)
        self.clock = clock

    def issue(self, identity: Identity) -> Session:
        """Create a session for identity, replacing any current one"""
        expires_at = self.clock() + self.duration
        payload = {
            'sub': identity.id,
            'cluster': identity.cluster_id,
            'role': identity.role.value,
            'exp': int(expires_at.timestamp()),
            'jti': secrets.token_urlsafe(16),
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)

        session = Session(
            token=token,
            identity_id=identity.id,
            cluster_id=identity.cluster_id,
            role=identity.role,
            expires_at=expires_at
        )
        self.store.save_session(session.to_dict())

        log_action(logger, "info", "Session issued",
                   identity_id=identity.id, cluster_id=identity.cluster_id,
                   action="session_issued")
        return session

    def current(self) -> Optional[Session]:
        """Return the persisted session if it is intact and unexpired"""
        data = self.store.load_session()
        if data is None:
            return None

        try:
            session = Session.from_dict(data)
            # Naive timestamps cannot be compared with the clock
            expired = not session.is_valid(self.clock())
        except (KeyError, TypeError, ValueError):
            self._discard("Malformed session discarded")
            return None

        if expired:
            self._discard("Expired session discarded", session)
            return None

        if not self._token_matches(session):
            self._discard("Session with mismatched token discarded", session)
            return None

        return session

    def revoke(self) -> None:
        """Delete the current session; safe to call when none exists"""
        if self.store.clear_session():
            log_action(logger, "info", "Session revoked", action="session_revoked")

    def _token_matches(self, session: Session) -> bool:
        try:
            # Expiry is checked against the injectable clock, not the wall clock
            claims = jwt.decode(
                session.token, self.secret, algorithms=[self.algorithm],
                options={'verify_exp': False}
            )
        except jwt.InvalidTokenError:
            return False

        return (claims.get('sub') == session.identity_id
                and claims.get('cluster') == session.cluster_id
                and claims.get('role') == session.role.value
                and claims.get('exp') == int(session.expires_at.timestamp()))

    def _discard(self, message: str, session: Optional[Session] = None) -> None:
        self.store.clear_session()
        log_action(logger, "info", message,
                   identity_id=session.identity_id if session else None,
                   action="session_discarded")
