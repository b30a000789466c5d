# backend/app/services/challenges.py
"""
Challenge ledger: short-lived, single-use ceremony challenges.

Consumption is a single conditional UPDATE that only matches an unused,
unexpired row of the right ceremony type (and bound address). The update is
committed before the caller does anything else, so a challenge that was
presented once can never be presented again, even when verification fails
further down the request.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow, ensure_aware
from backend.app.core.config import settings
from backend.app.core.errors import NotFound, Expired, AlreadyUsed, MismatchedCeremony
from backend.app.core.logging import short
from backend.app.models.challenge import PasskeyChallenge, CEREMONY_TYPES, CEREMONY_RESCUE
from backend.app.security.codes import generate_challenge

logger = logging.getLogger(__name__)

# Rate-limit window for rescue issuance
RESCUE_WINDOW = timedelta(hours=1)


class _AnyAddress:
    def __repr__(self):
        return "ANY_ADDRESS"


# Passed as bound_address when the caller does not know the bound account
# (discoverable-credential authentication)
ANY_ADDRESS = _AnyAddress()


class ChallengeLedger:
    def __init__(
        self,
        db: AsyncSession,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ttl = timedelta(minutes=ttl_minutes or settings.CHALLENGE_TTL_MINUTES)
        self.clock = clock

    async def issue(
        self,
        ceremony_type: str,
        bound_address: Optional[str] = None,
        value: Optional[str] = None,
        client_ip: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> PasskeyChallenge:
        """
        Store a challenge. `value` is the challenge embedded in the WebAuthn
        options; a fresh random one is generated when omitted.
        """
        if ceremony_type not in CEREMONY_TYPES:
            raise ValueError(f"Unknown ceremony type: {ceremony_type}")

        now = self.clock()
        challenge = PasskeyChallenge(
            challenge=value or generate_challenge(),
            ceremony_type=ceremony_type,
            account_address=bound_address,
            expires_at=now + (ttl or self.ttl),
            used=False,
            client_ip=client_ip,
            created_at=now,
        )
        self.db.add(challenge)
        await self.db.commit()
        return challenge

    async def consume(
        self,
        value: str,
        ceremony_type: str,
        bound_address=ANY_ADDRESS,
        commit: bool = True,
    ) -> PasskeyChallenge:
        """
        Atomically mark a challenge used.

        Raises:
            NotFound: no such challenge
            AlreadyUsed: consumed before
            Expired: past its TTL
            MismatchedCeremony: different ceremony type or bound address
        """
        now = self.clock()
        conditions = [
            PasskeyChallenge.challenge == value,
            PasskeyChallenge.ceremony_type == ceremony_type,
            PasskeyChallenge.used.is_(False),
            PasskeyChallenge.expires_at > now,
        ]
        if bound_address is not ANY_ADDRESS:
            if bound_address is None:
                conditions.append(PasskeyChallenge.account_address.is_(None))
            else:
                conditions.append(PasskeyChallenge.account_address == bound_address)

        result = await self.db.execute(
            update(PasskeyChallenge)
            .where(*conditions)
            .values(used=True, consumed_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await self.db.rollback()
            await self._raise_consume_failure(value, ceremony_type, bound_address, now)

        if commit:
            await self.db.commit()

        consumed = await self.db.execute(
            select(PasskeyChallenge).where(PasskeyChallenge.challenge == value)
            .execution_options(populate_existing=True)
        )
        return consumed.scalars().first()

    async def _raise_consume_failure(self, value, ceremony_type, bound_address, now):
        result = await self.db.execute(
            select(PasskeyChallenge).where(PasskeyChallenge.challenge == value)
            .execution_options(populate_existing=True)
        )
        row = result.scalars().first()

        if row is None:
            logger.info("Challenge not found: %s", short(value, 20))
            raise NotFound("Invalid or expired challenge. Please try again.")
        if row.used:
            logger.warning("Challenge replay blocked: %s", short(value, 20))
            raise AlreadyUsed("Challenge already used. Please try again.")
        if ensure_aware(row.expires_at) <= now:
            raise Expired("Challenge has expired. Please try again.")
        if row.ceremony_type != ceremony_type:
            logger.warning(
                "Challenge ceremony mismatch: expected %s, got %s", ceremony_type, row.ceremony_type
            )
        else:
            logger.warning(
                "Challenge address mismatch: bound %s, presented %s",
                short(row.account_address), short(str(bound_address)),
            )
        raise MismatchedCeremony()

    async def count_recent(self, ceremony_type: str, address: str, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(PasskeyChallenge.id)).where(
                PasskeyChallenge.ceremony_type == ceremony_type,
                PasskeyChallenge.account_address == address,
                PasskeyChallenge.created_at >= since,
            )
        )
        return result.scalar_one()

    async def count_recent_by_ip(self, ceremony_type: str, client_ip: str, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(PasskeyChallenge.id)).where(
                PasskeyChallenge.ceremony_type == ceremony_type,
                PasskeyChallenge.client_ip == client_ip,
                PasskeyChallenge.created_at >= since,
            )
        )
        return result.scalar_one()

    async def prune(self) -> int:
        """
        Delete used and expired challenges. Best effort: failures are
        logged and swallowed so option generation never fails on cleanup.

        Rescue rows are kept for RESCUE_WINDOW so they still count toward
        the per-address and per-IP rescue limits after they expire or are used.
        """
        now = self.clock()
        ceremony_rows = and_(
            PasskeyChallenge.ceremony_type != CEREMONY_RESCUE,
            or_(PasskeyChallenge.used.is_(True), PasskeyChallenge.expires_at < now),
        )
        rescue_rows = and_(
            PasskeyChallenge.ceremony_type == CEREMONY_RESCUE,
            PasskeyChallenge.created_at < now - RESCUE_WINDOW,
        )
        try:
            result = await self.db.execute(
                delete(PasskeyChallenge)
                .where(or_(ceremony_rows, rescue_rows))
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            return result.rowcount or 0
        except SQLAlchemyError as exc:
            logger.warning("Challenge cleanup failed: %s", exc)
            await self.db.rollback()
            return 0
