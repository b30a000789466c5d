"""
Unit tests for the credential deletion guard.
"""

from unittest.mock import AsyncMock

import pytest

from backend.app.core.errors import Forbidden, NotFound, OwnershipUnavailable
from backend.app.models.account import Account
from backend.app.models.credential import PasskeyCredential
from backend.app.services.credentials import CredentialStore, remove_credential
from backend.app.services.wallets import StoreOwnershipChecker, WalletDeriver

ADDRESS = "0x" + "aa" * 20
DERIVER = WalletDeriver(8453)


def wallet_key(credential_id, seed):
    x = "0x" + f"{seed:02x}" * 32
    y = "0x" + f"{seed + 1:02x}" * 32
    return PasskeyCredential(
        credential_id=credential_id,
        account_address=ADDRESS,
        public_key="AA==",
        public_key_x=x,
        public_key_y=y,
        signer_address=DERIVER.signer_address(x, y),
        sign_count=0,
        backed_up=True,
    )


def plain_key(credential_id):
    return PasskeyCredential(
        credential_id=credential_id,
        account_address=ADDRESS,
        public_key="AA==",
        sign_count=0,
        backed_up=False,
    )


async def seed(db, *credentials, wallet_from=None):
    wallet = DERIVER.wallet_address(wallet_from.signer_address) if wallet_from else None
    db.add(Account(address=ADDRESS, login_count=1, smart_wallet_address=wallet))
    for credential in credentials:
        db.add(credential)
    await db.commit()
    return credentials


class TestRemoveCredential:
    async def test_sole_wallet_key_is_forbidden(self, db):
        """The only signer that controls a deployed wallet cannot be deleted."""
        signer = wallet_key("wallet-key", 1)
        other = plain_key("plain-key")
        await seed(db, signer, other, wallet_from=signer)

        with pytest.raises(Forbidden) as excinfo:
            await remove_credential(db, ADDRESS, signer.id, StoreOwnershipChecker(DERIVER))

        assert excinfo.value.to_dict()["isWalletKey"] is True
        assert await CredentialStore(db).count_for_account(ADDRESS) == 2

    async def test_non_wallet_key_can_be_deleted(self, db):
        signer = wallet_key("wallet-key", 1)
        other = plain_key("plain-key")
        await seed(db, signer, other, wallet_from=signer)

        await remove_credential(db, ADDRESS, other.id, StoreOwnershipChecker(DERIVER))

        assert await CredentialStore(db).get_by_credential_id("plain-key") is None

    async def test_signer_not_controlling_wallet_can_be_deleted(self, db):
        controller = wallet_key("controller", 1)
        bystander = wallet_key("bystander", 5)
        await seed(db, controller, bystander, wallet_from=controller)

        await remove_credential(db, ADDRESS, bystander.id, StoreOwnershipChecker(DERIVER))

        assert await CredentialStore(db).count_for_account(ADDRESS) == 1

    async def test_wallet_key_with_backup_signer_can_be_deleted(self, db):
        first = wallet_key("first", 1)
        second = wallet_key("second", 5)
        await seed(db, first, second, wallet_from=first)
        checker = AsyncMock()
        checker.controls_wallet.return_value = True

        await remove_credential(db, ADDRESS, first.id, checker)

        assert await CredentialStore(db).count_for_account(ADDRESS) == 1

    async def test_unavailable_ownership_check_fails_open(self, db):
        signer = wallet_key("wallet-key", 1)
        await seed(db, signer, wallet_from=signer)
        checker = AsyncMock()
        checker.controls_wallet.side_effect = OwnershipUnavailable("rpc down")

        await remove_credential(db, ADDRESS, signer.id, checker)

        assert await CredentialStore(db).count_for_account(ADDRESS) == 0

    async def test_account_without_wallet_skips_check(self, db):
        signer = wallet_key("wallet-key", 1)
        await seed(db, signer)
        checker = AsyncMock()

        await remove_credential(db, ADDRESS, signer.id, checker)

        checker.controls_wallet.assert_not_called()

    async def test_other_accounts_credential_is_not_found(self, db):
        signer = wallet_key("wallet-key", 1)
        await seed(db, signer)

        with pytest.raises(NotFound):
            await remove_credential(db, "0x" + "bb" * 20, signer.id, StoreOwnershipChecker(DERIVER))
