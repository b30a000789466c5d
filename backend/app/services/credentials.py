# backend/app/services/credentials.py
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.errors import NotFound, Forbidden, OwnershipUnavailable
from backend.app.core.logging import short
from backend.app.db.retry import retry_once
from backend.app.models.account import Account
from backend.app.models.credential import PasskeyCredential
from backend.app.security.passkeys import VerifiedPasskey
from backend.app.services.wallets import OwnershipChecker

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def get_by_credential_id(self, credential_id: str) -> Optional[PasskeyCredential]:
        async def lookup():
            result = await self.db.execute(
                select(PasskeyCredential).where(PasskeyCredential.credential_id == credential_id)
            )
            return result.scalars().first()

        return await retry_once(lookup, session=self.db)

    async def get_for_account(self, address: str, row_id: int) -> Optional[PasskeyCredential]:
        result = await self.db.execute(
            select(PasskeyCredential).where(
                PasskeyCredential.id == row_id,
                PasskeyCredential.account_address == address,
            )
        )
        return result.scalars().first()

    async def list_for_account(self, address: str) -> List[PasskeyCredential]:
        async def lookup():
            result = await self.db.execute(
                select(PasskeyCredential)
                .where(PasskeyCredential.account_address == address)
                .order_by(PasskeyCredential.created_at.desc(), PasskeyCredential.id.desc())
            )
            return list(result.scalars().all())

        return await retry_once(lookup, session=self.db)

    async def descriptors_for_account(self, address: Optional[str]) -> List[Dict]:
        """Credential ids and transports, in the shape the ceremony builders take."""
        if not address:
            return []
        return [
            {"credential_id": cred.credential_id, "transports": cred.transports}
            for cred in await self.list_for_account(address)
        ]

    async def latest_for_account(self, address: str) -> Optional[PasskeyCredential]:
        credentials = await self.list_for_account(address)
        return credentials[0] if credentials else None

    async def count_for_account(self, address: str) -> int:
        result = await self.db.execute(
            select(func.count(PasskeyCredential.id)).where(
                PasskeyCredential.account_address == address
            )
        )
        return result.scalar_one()

    def add(
        self,
        address: str,
        verified: VerifiedPasskey,
        signer_address: Optional[str] = None,
        transports: Optional[List[str]] = None,
        display_name: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> PasskeyCredential:
        """Stage a new credential. The caller owns the transaction."""
        credential = PasskeyCredential(
            credential_id=verified.credential_id,
            account_address=address,
            public_key=verified.public_key,
            public_key_x=verified.public_key_x,
            public_key_y=verified.public_key_y,
            signer_address=signer_address,
            sign_count=verified.sign_count,
            backed_up=verified.backed_up,
            device_type=verified.device_type,
            aaguid=verified.aaguid,
            transports=transports,
            display_name=display_name,
            user_agent=(user_agent or "")[:512] or None,
            created_at=self.clock(),
        )
        self.db.add(credential)
        return credential

    def record_use(self, credential: PasskeyCredential, new_sign_count: int, backed_up: bool) -> None:
        credential.sign_count = new_sign_count
        credential.backed_up = backed_up
        credential.last_used_at = self.clock()

    async def delete(self, credential: PasskeyCredential) -> None:
        await self.db.delete(credential)
        await self.db.commit()


async def remove_credential(
    db: AsyncSession,
    session_address: str,
    row_id: int,
    checker: OwnershipChecker,
) -> None:
    """
    Delete one of the session account's credentials.

    A credential that is the only signer controlling the account's smart
    wallet cannot be removed: the wallet would become unreachable. When the
    checker cannot tell, deletion proceeds.

    Raises:
        NotFound: no such credential on this account
        Forbidden: credential is the sole controller of the wallet
    """
    store = CredentialStore(db)
    credential = await store.get_for_account(session_address, row_id)
    if credential is None:
        raise NotFound("Passkey not found")

    account = await db.get(Account, session_address)
    wallet = account.smart_wallet_address if account else None

    if credential.has_signing_capability and wallet:
        try:
            controls = await checker.controls_wallet(wallet, credential.signer_address)
            if controls:
                others = [
                    other
                    for other in await store.list_for_account(session_address)
                    if other.id != credential.id and other.has_signing_capability
                ]
                backup_exists = False
                for other in others:
                    if await checker.controls_wallet(wallet, other.signer_address):
                        backup_exists = True
                        break
                if not backup_exists:
                    logger.warning(
                        "Blocked deletion of wallet key %s for %s",
                        short(credential.credential_id, 20), short(session_address),
                    )
                    raise Forbidden(
                        "Cannot delete this passkey: it is the only key that can sign for your wallet. "
                        "Add another passkey first.",
                        isWalletKey=True,
                    )
        except OwnershipUnavailable as exc:
            logger.warning(
                "Wallet ownership check unavailable for %s, allowing deletion: %s",
                short(session_address), exc,
            )

    credential_id = credential.credential_id
    await store.delete(credential)
    logger.info("Deleted passkey %s for %s", short(credential_id, 20), short(session_address))
