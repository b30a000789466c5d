# backend/app/services/resolver.py
"""
Decide which account a freshly verified credential belongs to.

Evaluated top to bottom, first match wins:

    1. recovery or rescue token  -> the token's address (errors are final)
    2. valid session             -> the session's address
    3. stale session             -> SessionExpired
    4. returning candidate       -> the client-supplied address
    5. otherwise                 -> address derived from the credential id

Rule 3 keeps a user whose session lapsed from being silently handed a
brand-new empty account.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from backend.app.core.config import settings
from backend.app.core.errors import SessionExpired
from backend.app.core.logging import short
from backend.app.security.addresses import derive_address_from_credential
from backend.app.security.session import SessionState
from backend.app.services.accounts import AccountService
from backend.app.services.recovery import RecoveryService

logger = logging.getLogger(__name__)

SOURCE_RECOVERY = "recovery"
SOURCE_SESSION = "session"
SOURCE_RETURNING = "returning"
SOURCE_DERIVED = "derived"


@dataclass(frozen=True)
class Resolution:
    address: str
    source: str
    recovery_kind: Optional[str] = None


class AccountResolver:
    def __init__(self, accounts: AccountService, recovery: RecoveryService, namespace: Optional[str] = None):
        self.accounts = accounts
        self.recovery = recovery
        self.namespace = namespace or settings.ADDRESS_NAMESPACE

    async def resolve(
        self,
        credential_id: str,
        session: SessionState,
        candidate_address: Optional[str] = None,
        recovery_token: Optional[str] = None,
    ) -> Resolution:
        if recovery_token:
            claims = await self.recovery.verify_any(recovery_token)
            logger.info("Resolved %s via %s token", short(claims.address), claims.kind)
            return Resolution(claims.address, SOURCE_RECOVERY, claims.kind)

        if session.is_valid:
            return Resolution(session.address, SOURCE_SESSION)

        if session.is_stale:
            logger.info("Refusing registration with stale session")
            raise SessionExpired()

        if candidate_address and await self.accounts.is_returning(candidate_address):
            return Resolution(candidate_address, SOURCE_RETURNING)

        derived = derive_address_from_credential(credential_id, self.namespace)
        logger.info("Derived address %s for new credential", short(derived))
        return Resolution(derived, SOURCE_DERIVED)
