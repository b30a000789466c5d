# backend/app/services/authentication.py
"""
Passkey sign-in.

A credential the server does not know is not always a stranger: if the
address it would derive to already owns an account, the passkey was most
likely orphaned (storage lost, account relinked). Instead of a bare
"not found" the caller gets a rescue token for that address, good for
registering the passkey again.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.core.errors import Invalid, NotFound, RescueAvailable, Upstream
from backend.app.core.logging import short
from backend.app.models.challenge import CEREMONY_AUTHENTICATION
from backend.app.security.addresses import derive_address_from_credential, normalize_optional_address
from backend.app.security.passkeys import (
    RelyingParty,
    build_authentication_options,
    verify_assertion,
)
from backend.app.services.accounts import AccountService
from backend.app.services.challenges import ChallengeLedger, ANY_ADDRESS
from backend.app.services.credentials import CredentialStore
from backend.app.services.recovery import RecoveryService
from backend.app.services.wallets import WalletDeriver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticationBegin:
    options: Dict[str, Any]
    rp_id: str


@dataclass(frozen=True)
class AuthenticationResult:
    address: str
    credential_id: str


class AuthenticationFlow:
    def __init__(
        self,
        db: AsyncSession,
        rp: RelyingParty,
        deriver: WalletDeriver,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.rp = rp
        self.deriver = deriver
        self.ledger = ChallengeLedger(db, clock=clock)
        self.credentials = CredentialStore(db, clock=clock)
        self.accounts = AccountService(db, clock=clock)
        self.recovery = RecoveryService(db, clock=clock)

    async def begin(self, address_hint: Optional[str] = None) -> AuthenticationBegin:
        await self.ledger.prune()

        address = normalize_optional_address(address_hint)
        allow = await self.credentials.descriptors_for_account(address)
        options = build_authentication_options(self.rp, allow)
        await self.ledger.issue(
            CEREMONY_AUTHENTICATION, bound_address=address, value=options.challenge
        )
        return AuthenticationBegin(options=options.options, rp_id=self.rp.rp_id)

    async def complete(
        self,
        credential: Dict[str, Any],
        challenge: str,
        client_ip: Optional[str] = None,
    ) -> AuthenticationResult:
        """
        Raises:
            NotFound / AlreadyUsed / Expired / MismatchedCeremony: challenge
            RescueAvailable: unknown passkey, but its derived account exists
            RateLimited: too many rescues for that account
            NotFound: unknown passkey
            Invalid: assertion failed verification
        """
        await self.ledger.consume(challenge, CEREMONY_AUTHENTICATION, bound_address=ANY_ADDRESS)

        credential_id = credential.get("id") or credential.get("rawId")
        if not credential_id or not isinstance(credential_id, str):
            raise Invalid("Credential id is required")

        stored = await self.credentials.get_by_credential_id(credential_id)
        if stored is None:
            await self._offer_rescue(credential_id, client_ip)
            raise NotFound("Passkey not found. Please register first.")

        verified = verify_assertion(
            self.rp, credential, challenge, stored.public_key, stored.sign_count or 0
        )

        address = stored.account_address
        try:
            self.credentials.record_use(stored, verified.new_sign_count, verified.backed_up)
            account = await self.accounts.record_login(address)
            if stored.has_signing_capability:
                self.accounts.apply_smart_wallet(
                    account, self.deriver.wallet_address(stored.signer_address)
                )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Failed to record login for %s: %s", short(address), exc)
            raise Upstream() from exc

        logger.info("Passkey login for %s", short(address))
        return AuthenticationResult(address=address, credential_id=stored.credential_id)

    async def _offer_rescue(self, credential_id: str, client_ip: Optional[str]) -> None:
        derived = derive_address_from_credential(credential_id, settings.ADDRESS_NAMESPACE)
        if await self.accounts.get(derived) is None:
            logger.info("Unknown passkey %s", short(credential_id, 20))
            return

        logger.warning(
            "Orphaned passkey %s, account %s exists", short(credential_id, 20), short(derived)
        )
        token = await self.recovery.issue_rescue(derived, client_ip)
        raise RescueAvailable(rescueAddress=derived, rescueToken=token)
