# backend/app/services/accounts.py
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow
from backend.app.core.logging import short
from backend.app.db.retry import retry_once
from backend.app.models.account import Account
from backend.app.models.credential import PasskeyCredential

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def _load(self, address: str) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.address == address))
        return result.scalars().first()

    async def get(self, address: str) -> Optional[Account]:
        """Read outside a write transaction; retried once on transient errors."""
        return await retry_once(lambda: self._load(address), session=self.db)

    async def is_returning(self, address: str) -> bool:
        """An address counts as returning once it has completed a login."""
        account = await self.get(address)
        return account is not None and (account.login_count or 0) >= 1

    async def record_login(self, address: str) -> Account:
        """Create the account on first sight, bump its login stats otherwise. Flushes, no commit."""
        now = self.clock()
        account = await self._load(address)
        if account is None:
            account = Account(
                address=address,
                wallet_type="passkey",
                login_count=1,
                first_login_at=now,
                last_login_at=now,
                created_at=now,
            )
            self.db.add(account)
            logger.info("Created passkey account %s", short(address))
        else:
            account.login_count = (account.login_count or 0) + 1
            account.last_login_at = now
        await self.db.flush()
        return account

    def apply_smart_wallet(self, account: Account, wallet_address: Optional[str]) -> bool:
        """
        Set the account's smart wallet if it has none. An existing wallet is
        never replaced; a different candidate is logged and dropped.
        """
        if not wallet_address:
            return False
        wallet_address = wallet_address.lower()
        if not account.smart_wallet_address:
            account.smart_wallet_address = wallet_address
            logger.info("Set smart wallet %s for %s", short(wallet_address), short(account.address))
            return True
        if account.smart_wallet_address.lower() != wallet_address:
            logger.warning(
                "Refusing to overwrite smart wallet for %s: keeping %s, ignoring %s",
                short(account.address), short(account.smart_wallet_address), short(wallet_address),
            )
        return False

    async def delete_if_orphaned(self, address: str) -> bool:
        """Drop an account no credential points at anymore. No commit."""
        await self.db.flush()
        result = await self.db.execute(
            select(func.count(PasskeyCredential.id)).where(
                PasskeyCredential.account_address == address
            )
        )
        if result.scalar_one() > 0:
            return False
        account = await self._load(address)
        if account is None:
            return False
        await self.db.delete(account)
        logger.info("Deleted orphaned account %s", short(address))
        return True
