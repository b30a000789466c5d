# backend/app/services/recovery.py
"""
Recovery codes, follow-up tokens and rescue tokens.

A recovery code is handed out of band and redeemed once for a signed,
short-lived follow-up token. A rescue token is issued automatically when
someone signs in with a passkey the server has lost track of but whose
derived address still owns an account.

Both token kinds are single-use: the JWT proves the server minted it, the
server-side row (RecoveryToken for follow-ups, a rescue entry in the
challenge ledger for rescues) records whether it has been spent.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.clock import utcnow, ensure_aware
from backend.app.core.config import settings
from backend.app.core.errors import (
    NotFound, Expired, AlreadyUsed, Invalid, RateLimited, Upstream,
)
from backend.app.core.logging import short
from backend.app.models.challenge import PasskeyChallenge, CEREMONY_RESCUE
from backend.app.models.recovery import (
    RecoveryCode, RecoveryToken, TOKEN_KIND_RECOVERY, TOKEN_KIND_RESCUE,
)
from backend.app.security.addresses import normalize_address
from backend.app.security.codes import (
    generate_recovery_code, normalize_recovery_code, generate_token_id,
)
from backend.app.security.recovery_tokens import (
    RecoveryClaims, create_recovery_token, decode_recovery_token, peek_token_kind,
)
from backend.app.services.accounts import AccountService
from backend.app.services.challenges import ChallengeLedger, RESCUE_WINDOW
from backend.app.services.credentials import CredentialStore

logger = logging.getLogger(__name__)

CODE_GENERATION_ATTEMPTS = 3


@dataclass(frozen=True)
class RedeemedCode:
    address: str
    token: str
    expires_in: int


class RecoveryService:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.ledger = ChallengeLedger(db, clock=clock)

    # -- recovery codes -------------------------------------------------

    async def issue_code(
        self,
        address: str,
        created_by: Optional[str] = None,
        expires_days: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> RecoveryCode:
        """
        Raises:
            Invalid: malformed address
            NotFound: the address has no passkeys to recover
        """
        address = normalize_address(address)
        if await CredentialStore(self.db).count_for_account(address) == 0:
            raise NotFound("No passkey credentials found for this address")

        now = self.clock()
        expires_at = now + timedelta(days=expires_days or settings.RECOVERY_CODE_EXPIRE_DAYS)

        for attempt in range(CODE_GENERATION_ATTEMPTS):
            record = RecoveryCode(
                code=generate_recovery_code(),
                account_address=address,
                expires_at=expires_at,
                used=False,
                created_by=created_by,
                notes=notes,
                created_at=now,
            )
            self.db.add(record)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("Recovery code collision, regenerating (attempt %d)", attempt + 1)
                continue
            logger.info(
                "Issued recovery code for %s by %s, expires %s",
                short(address), short(created_by or ""), expires_at.isoformat(),
            )
            return record

        raise Upstream("Could not generate a unique recovery code")

    async def active_codes(self) -> List[RecoveryCode]:
        result = await self.db.execute(
            select(RecoveryCode)
            .where(RecoveryCode.used.is_(False), RecoveryCode.expires_at > self.clock())
            .order_by(RecoveryCode.created_at.desc())
        )
        return list(result.scalars().all())

    async def redeem_code(self, code: str) -> RedeemedCode:
        """
        Spend a recovery code and hand back a follow-up token.

        The code is marked used with one conditional UPDATE, so of any number
        of concurrent redemptions exactly one succeeds.

        Raises:
            Invalid: empty code
            NotFound: unknown code
            AlreadyUsed: redeemed before
            Expired: past its expiry
        """
        normalized = normalize_recovery_code(code or "")
        if not normalized:
            raise Invalid("Recovery code is required")

        now = self.clock()
        result = await self.db.execute(
            update(RecoveryCode)
            .where(
                RecoveryCode.code == normalized,
                RecoveryCode.used.is_(False),
                RecoveryCode.expires_at > now,
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            await self._raise_redeem_failure(normalized, now)

        row = await self.db.execute(
            select(RecoveryCode)
            .where(RecoveryCode.code == normalized)
            .execution_options(populate_existing=True)
        )
        address = row.scalars().first().account_address

        token_id = generate_token_id()
        ttl = timedelta(minutes=settings.RECOVERY_TOKEN_TTL_MINUTES)
        expires_at = now + ttl
        self.db.add(
            RecoveryToken(
                token_id=token_id,
                account_address=address,
                expires_at=expires_at,
                used=False,
                created_at=now,
            )
        )
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Failed to store recovery token for %s: %s", short(address), exc)
            raise Upstream() from exc

        logger.info("Recovery code redeemed for %s", short(address))
        return RedeemedCode(
            address=address,
            token=create_recovery_token(address, TOKEN_KIND_RECOVERY, token_id, expires_at),
            expires_in=int(ttl.total_seconds()),
        )

    async def _raise_redeem_failure(self, code: str, now: datetime):
        result = await self.db.execute(
            select(RecoveryCode)
            .where(RecoveryCode.code == code)
            .execution_options(populate_existing=True)
        )
        row = result.scalars().first()
        if row is None:
            raise NotFound("Invalid recovery code")
        if row.used:
            logger.warning("Recovery code reuse blocked for %s", short(row.account_address))
            raise AlreadyUsed("This recovery code has already been used")
        if ensure_aware(row.expires_at) <= now:
            raise Expired("This recovery code has expired")
        raise Invalid("Invalid recovery code")

    # -- rescue tokens ----------------------------------------------------

    async def issue_rescue(self, address: str, client_ip: Optional[str] = None) -> str:
        """
        Raises:
            RateLimited: too many rescues for this address, or from this
                client IP, in the last hour
        """
        now = self.clock()
        recent = await self.ledger.count_recent(CEREMONY_RESCUE, address, now - RESCUE_WINDOW)
        if recent >= settings.RESCUE_RATE_LIMIT_PER_HOUR:
            logger.warning("Rescue rate limit hit for %s from %s", short(address), client_ip)
            raise RateLimited("Too many recovery attempts. Please try again later.")

        if client_ip:
            from_ip = await self.ledger.count_recent_by_ip(CEREMONY_RESCUE, client_ip, now - RESCUE_WINDOW)
            if from_ip >= settings.RESCUE_RATE_LIMIT_PER_IP_PER_HOUR:
                logger.warning("Rescue rate limit hit for client %s", client_ip)
                raise RateLimited("Too many recovery attempts. Please try again later.")

        token_id = generate_token_id()
        ttl = timedelta(minutes=settings.RESCUE_TOKEN_TTL_MINUTES)
        await self.ledger.issue(
            CEREMONY_RESCUE,
            bound_address=address,
            value=token_id,
            client_ip=client_ip,
            ttl=ttl,
        )
        logger.warning("Issued rescue token for %s from %s", short(address), client_ip)
        return create_recovery_token(address, TOKEN_KIND_RESCUE, token_id, now + ttl)

    # -- verification -----------------------------------------------------

    async def verify(self, token: str, kind: str) -> RecoveryClaims:
        """
        Signature and claims first, then the server-side record.

        Raises:
            Invalid: bad signature, wrong kind, unknown token, address mismatch
            Expired: past its expiry
            AlreadyUsed: spent
        """
        claims = decode_recovery_token(token, kind)

        if kind == TOKEN_KIND_RECOVERY:
            result = await self.db.execute(
                select(RecoveryToken).where(RecoveryToken.token_id == claims.token_id)
                .execution_options(populate_existing=True)
            )
        else:
            result = await self.db.execute(
                select(PasskeyChallenge).where(
                    PasskeyChallenge.challenge == claims.token_id,
                    PasskeyChallenge.ceremony_type == CEREMONY_RESCUE,
                ).execution_options(populate_existing=True)
            )
        row = result.scalars().first()

        if row is None or row.account_address != claims.address:
            logger.warning("Unknown %s token presented for %s", kind, short(claims.address))
            raise Invalid("Invalid recovery token")
        if row.used:
            raise AlreadyUsed("This recovery token has already been used")
        if ensure_aware(row.expires_at) <= self.clock():
            raise Expired("Recovery token has expired")
        return claims

    async def verify_any(self, token: str) -> RecoveryClaims:
        """Accept either a follow-up or a rescue token."""
        return await self.verify(token, peek_token_kind(token))

    async def consume(self, token: str, kind: Optional[str] = None) -> RecoveryClaims:
        """
        Verify and mark the token spent inside the caller's transaction.
        The caller commits.
        """
        claims = await (self.verify(token, kind) if kind else self.verify_any(token))
        now = self.clock()

        if claims.kind == TOKEN_KIND_RESCUE:
            await self.ledger.consume(
                claims.token_id, CEREMONY_RESCUE, bound_address=claims.address, commit=False
            )
            return claims

        result = await self.db.execute(
            update(RecoveryToken)
            .where(
                RecoveryToken.token_id == claims.token_id,
                RecoveryToken.used.is_(False),
                RecoveryToken.expires_at > now,
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise AlreadyUsed("This recovery token has already been used")
        return claims

    # -- linking ----------------------------------------------------------

    async def link(self, session_address: str, token: str) -> str:
        """
        Move the session account's newest passkey onto the account a
        recovery token vouches for. The emptied account is removed.

        Returns the target address.
        """
        claims = await self.verify_any(token)
        target = claims.address
        if target == session_address:
            raise Invalid("This passkey is already linked to that account")

        credentials = CredentialStore(self.db, clock=self.clock)
        latest = await credentials.latest_for_account(session_address)
        if latest is None:
            raise NotFound("No passkey found for this session")

        accounts = AccountService(self.db, clock=self.clock)
        await self.consume(token, claims.kind)
        try:
            await accounts.record_login(target)
            latest.account_address = target
            await accounts.delete_if_orphaned(session_address)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Account link failed for %s: %s", short(session_address), exc)
            raise Upstream() from exc

        logger.warning(
            "Linked passkey %s from %s to %s",
            short(latest.credential_id, 20), short(session_address), short(target),
        )
        return target
