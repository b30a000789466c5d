# backend/app/services/registration.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.errors import Conflict, Upstream
from backend.app.core.logging import short
from backend.app.models.account import Account
from backend.app.models.challenge import CEREMONY_REGISTRATION
from backend.app.models.credential import PasskeyCredential
from backend.app.security.addresses import normalize_optional_address, user_handle_for
from backend.app.security.passkeys import (
    RelyingParty,
    build_registration_options,
    verify_registration,
)
from backend.app.security.session import SessionState
from backend.app.services.accounts import AccountService
from backend.app.services.challenges import ChallengeLedger
from backend.app.services.credentials import CredentialStore
from backend.app.services.recovery import RecoveryService
from backend.app.services.resolver import AccountResolver, Resolution
from backend.app.services.wallets import WalletDeriver

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "Passkey User"


@dataclass(frozen=True)
class RegistrationBegin:
    options: Dict[str, Any]
    rp_id: str
    is_recovery_flow: bool
    address: Optional[str]


@dataclass(frozen=True)
class RegistrationResult:
    credential: PasskeyCredential
    account: Account
    resolution: Resolution


def _transports(credential: Dict[str, Any]):
    response = credential.get("response") or {}
    transports = response.get("transports") or credential.get("transports")
    return list(transports) if isinstance(transports, (list, tuple)) else None


class RegistrationFlow:
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
        self.clock = clock
        self.ledger = ChallengeLedger(db, clock=clock)
        self.credentials = CredentialStore(db, clock=clock)
        self.accounts = AccountService(db, clock=clock)
        self.recovery = RecoveryService(db, clock=clock)
        self.resolver = AccountResolver(self.accounts, self.recovery)

    async def begin(
        self,
        address_hint: Optional[str] = None,
        display_name: Optional[str] = None,
        recovery_token: Optional[str] = None,
    ) -> RegistrationBegin:
        """
        Build creation options and store the challenge bound to the address
        the client will present on completion. In a recovery flow that is
        the token's address and existing passkeys are not excluded.
        """
        address = normalize_optional_address(address_hint)
        is_recovery = bool(recovery_token)
        if is_recovery:
            claims = await self.recovery.verify_any(recovery_token)
            address = claims.address

        exclude = [] if is_recovery else await self.credentials.descriptors_for_account(address)

        options = build_registration_options(
            self.rp,
            user_id=user_handle_for(address),
            user_name=address or "passkey-user",
            display_name=display_name or DEFAULT_DISPLAY_NAME,
            exclude=exclude,
        )
        await self.ledger.issue(
            CEREMONY_REGISTRATION, bound_address=address, value=options.challenge
        )
        return RegistrationBegin(
            options=options.options,
            rp_id=self.rp.rp_id,
            is_recovery_flow=is_recovery,
            address=address,
        )

    async def complete(
        self,
        credential: Dict[str, Any],
        challenge: str,
        session: SessionState,
        address_hint: Optional[str] = None,
        display_name: Optional[str] = None,
        recovery_token: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Raises:
            Invalid: malformed hint, failed verification, bad recovery token
            NotFound / AlreadyUsed / Expired / MismatchedCeremony: challenge
            SessionExpired: stale session and no recovery token
            Conflict: credential already registered
            Upstream: datastore failure while persisting
        """
        hint = normalize_optional_address(address_hint)

        # Spent before verification: a failed attempt burns the challenge too
        await self.ledger.consume(challenge, CEREMONY_REGISTRATION, bound_address=hint)

        verified = verify_registration(self.rp, credential, challenge)
        resolution = await self.resolver.resolve(
            verified.credential_id, session, hint, recovery_token
        )

        signer_address = None
        wallet_address = None
        if verified.is_p256:
            signer_address = self.deriver.signer_address(verified.public_key_x, verified.public_key_y)
            wallet_address = self.deriver.wallet_address(signer_address)

        if await self.credentials.get_by_credential_id(verified.credential_id) is not None:
            raise Conflict("This passkey is already registered")

        try:
            if recovery_token:
                await self.recovery.consume(recovery_token, resolution.recovery_kind)
            account = await self.accounts.record_login(resolution.address)
            stored = self.credentials.add(
                resolution.address,
                verified,
                signer_address=signer_address,
                transports=_transports(credential),
                display_name=display_name,
                user_agent=user_agent,
            )
            self.accounts.apply_smart_wallet(account, wallet_address)
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning("Duplicate passkey %s: %s", short(verified.credential_id, 20), exc)
            raise Conflict("This passkey is already registered") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Failed to store passkey for %s: %s", short(resolution.address), exc)
            raise Upstream() from exc

        logger.info(
            "Registered passkey %s for %s (%s)",
            short(verified.credential_id, 20), short(resolution.address), resolution.source,
        )
        return RegistrationResult(credential=stored, account=account, resolution=resolution)
