"""
Identity & Cluster Registry Module

Signup of cluster HOSTs, provisioning of MEMBERs and login. Enforces
(cluster_id, display_handle) uniqueness after trimming and case-folding, the
HOST/MEMBER hierarchy, and stores credentials only as salted scrypt hashes.
"""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from .authorization import Action, require
from .config import LedgerConfig, get_config
from .errors import AuthenticationFailed, DuplicateIdentity, ValidationError
from .logging_config import get_logger, log_action
from .models import Identity, Role, Session, normalize
from .sessions import SessionManager, utc_now
from .storage import IDENTITIES, EntityStore

logger = get_logger("family_ledger.registry")


class IdentityRegistry:
    """Identity lifecycle within clusters"""

    def __init__(self, store: EntityStore, sessions: SessionManager,
                 clock: Callable[[], datetime] = utc_now,
                 config: Optional[LedgerConfig] = None):
        config = config or get_config()
        self.store = store
        self.sessions = sessions
        self.clock = clock
        self._scrypt_params = {'n': config.scrypt_n, 'r': config.scrypt_r, 'p': config.scrypt_p}

    # Identity creation

    def signup_cluster(self, cluster_id: str, handle: str, secret: str) -> Identity:
        """Create the HOST identity of a cluster"""
        cid, username = self._validate(cluster_id, handle, secret)

        with self.store.atomic():
            self._ensure_unique(cid, username)
            identity = self._create_identity(cid, username, handle.strip(), secret, Role.HOST)

        log_action(logger, "info", "Cluster signup",
                   identity_id=identity.id, cluster_id=cid, action="signup_cluster")
        return identity

    def provision_member(self, session: Session, handle: str, secret: str) -> Identity:
        """Create a MEMBER identity under the session's HOST"""
        require(session, Action.PROVISION_MEMBER, now=self.clock())
        _, username = self._validate(session.cluster_id, handle, secret)

        with self.store.atomic():
            self._ensure_unique(session.cluster_id, username)
            identity = self._create_identity(
                session.cluster_id, username, handle.strip(), secret,
                Role.MEMBER, parent_id=session.identity_id
            )

        log_action(logger, "info", "Member provisioned",
                   identity_id=session.identity_id, cluster_id=session.cluster_id,
                   action="provision_member", resource=identity.id)
        return identity

    # Authentication

    def login(self, cluster_id: str, handle: str, secret: str) -> Session:
        """
        Authenticate and issue a session.

        Every failure raises the same AuthenticationFailed, whichever of
        cluster, handle or secret was wrong.
        """
        identity = self.find(cluster_id, handle)

        if identity is None:
            # Same hashing work as a real check
            self._hash_secret(secret or "", secrets.token_hex(16))
            verified = False
        else:
            verified = identity.active and self._verify_secret(identity, secret or "")

        if not verified:
            log_action(logger, "warning", "Login failed",
                       cluster_id=normalize(cluster_id), action="login_failed")
            raise AuthenticationFailed()

        log_action(logger, "info", "Login succeeded",
                   identity_id=identity.id, cluster_id=identity.cluster_id, action="login")
        return self.sessions.issue(identity)

    # Queries

    def get(self, identity_id: str) -> Optional[Identity]:
        data = self.store.get(IDENTITIES, identity_id)
        return Identity.from_dict(data) if data else None

    def find(self, cluster_id: str, handle: str) -> Optional[Identity]:
        """Find an identity by normalized cluster id and handle"""
        cid, username = normalize(cluster_id), normalize(handle)
        for data in self.store.all(IDENTITIES):
            if data.get('cluster_id') == cid and data.get('display_handle') == username:
                return Identity.from_dict(data)
        return None

    def list_cluster(self, cluster_id: str) -> List[Identity]:
        cid = normalize(cluster_id)
        return [Identity.from_dict(data) for data in self.store.all(IDENTITIES)
                if data.get('cluster_id') == cid]

    # Private helpers

    def _validate(self, cluster_id: str, handle: str, secret: str):
        cid, username = normalize(cluster_id), normalize(handle)
        if not cid:
            raise ValidationError("cluster id is required")
        if not username:
            raise ValidationError("handle is required")
        if not secret:
            raise ValidationError("secret is required")
        return cid, username

    def _ensure_unique(self, cluster_id: str, username: str) -> None:
        if self.find(cluster_id, username) is not None:
            raise DuplicateIdentity()

    def _create_identity(self, cluster_id: str, username: str, display_name: str,
                         secret: str, role: Role, parent_id: Optional[str] = None) -> Identity:
        salt = secrets.token_hex(16)
        identity = Identity(
            id=str(uuid.uuid4()),
            cluster_id=cluster_id,
            display_handle=username,
            display_name=display_name,
            role=role,
            created_at=self.clock(),
            credential_hash=self._hash_secret(secret, salt),
            credential_salt=salt,
            parent_id=parent_id,
            active=True
        )
        self.store.append(IDENTITIES, identity.to_dict())
        return identity

    def _hash_secret(self, secret: str, salt: str) -> str:
        return hashlib.scrypt(secret.encode(), salt=salt.encode(), **self._scrypt_params).hex()

    def _verify_secret(self, identity: Identity, secret: str) -> bool:
        if not identity.credential_hash or not identity.credential_salt:
            return False
        expected = self._hash_secret(secret, identity.credential_salt)
        return hmac.compare_digest(expected, identity.credential_hash)
