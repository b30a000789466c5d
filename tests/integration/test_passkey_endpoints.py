"""
End-to-end tests for the passkey API.

The WebAuthn verification library is replaced with canned results; every
other layer (ledger, resolver, recovery, sessions, persistence) is real.
"""

from datetime import timedelta
from unittest.mock import patch

from webauthn.helpers import bytes_to_base64url

from backend.app.core.clock import utcnow
from backend.app.core.config import settings
from backend.app.models.account import Account
from backend.app.models.recovery import RecoveryCode
from backend.app.security.addresses import derive_address_from_credential
from backend.app.security.session import create_session_token
from backend.app.services.accounts import AccountService
from backend.app.services.wallets import WalletDeriver

from tests.helpers import (
    ADMIN_ADDRESS,
    authentication_verification,
    cose_ec2_key,
    credential_payload,
    registration_verification,
)

VERIFY_REGISTRATION = "backend.app.security.passkeys.verify_registration_response"
VERIFY_ASSERTION = "backend.app.security.passkeys.verify_authentication_response"

API = settings.API_V1_STR


def register(client, credential_bytes, public_key=None, user_address=None, recovery_token=None, headers=None):
    options = client.post(
        f"{API}/passkey/register/options",
        json={"userAddress": user_address, "recoveryToken": recovery_token},
        headers=headers,
    )
    assert options.status_code == 200, options.text
    body = options.json()
    with patch(VERIFY_REGISTRATION, return_value=registration_verification(credential_bytes, public_key or cose_ec2_key())):
        return client.post(
            f"{API}/passkey/register/verify",
            json={
                "credential": credential_payload(credential_bytes),
                "challenge": body["options"]["challenge"],
                "userAddress": body["userAddress"],
                "recoveryToken": recovery_token,
            },
            headers=headers,
        )


def login(client, credential_bytes):
    options = client.post(f"{API}/passkey/login/options", json={})
    assert options.status_code == 200, options.text
    with patch(VERIFY_ASSERTION, return_value=authentication_verification(credential_bytes)):
        return client.post(
            f"{API}/passkey/login/verify",
            json={
                "credential": credential_payload(credential_bytes),
                "challenge": options.json()["options"]["challenge"],
            },
        )


class TestRegistration:
    def test_fresh_browser_gets_derived_account(self, client, run_db):
        """Scenario A: no cookie, no token, valid response."""
        response = register(client, b"fresh-passkey")

        assert response.status_code == 200, response.text
        body = response.json()
        expected = derive_address_from_credential(bytes_to_base64url(b"fresh-passkey"), settings.ADDRESS_NAMESPACE)
        assert body["verified"] is True
        assert body["userAddress"] == expected
        assert body["resolution"] == "derived"
        assert body["smartWalletAddress"]
        assert body["sessionToken"]
        assert settings.SESSION_COOKIE_NAME in response.cookies

        account = run_db(lambda db: AccountService(db).get(expected))
        assert account.smart_wallet_address == body["smartWalletAddress"]

    def test_signed_in_user_adds_second_passkey(self, client, run_db):
        """Scenario B: second passkey binds to the session account, wallet unchanged."""
        first = register(client, b"first-passkey", public_key=cose_ec2_key(1)).json()
        address = first["userAddress"]

        second = register(client, b"second-passkey", public_key=cose_ec2_key(9))

        assert second.status_code == 200, second.text
        assert second.json()["userAddress"] == address
        assert second.json()["resolution"] == "session"
        assert second.json()["smartWalletAddress"] == first["smartWalletAddress"]

        listed = client.get(f"{API}/passkey/credentials")
        assert listed.status_code == 200
        assert len(listed.json()["credentials"]) == 2

    def test_stale_session_cookie_is_refused(self, client, run_db):
        expired = create_session_token("0x" + "aa" * 20, expires_delta=timedelta(seconds=-1))
        stale_cookie = {"Cookie": f"{settings.SESSION_COOKIE_NAME}={expired}"}

        response = register(client, b"lapsed-passkey", headers=stale_cookie)

        assert response.status_code == 401
        assert response.json()["error"] == "session_expired"
        derived = derive_address_from_credential(bytes_to_base64url(b"lapsed-passkey"), settings.ADDRESS_NAMESPACE)
        assert run_db(lambda db: AccountService(db).get(derived)) is None

    def test_malformed_address_hint(self, client):
        response = client.post(f"{API}/passkey/register/options", json={"userAddress": "0xzz"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid"

    def test_replayed_challenge(self, client):
        options = client.post(f"{API}/passkey/register/options", json={}).json()
        payload = {
            "credential": credential_payload(b"replay-passkey"),
            "challenge": options["options"]["challenge"],
        }
        with patch(VERIFY_REGISTRATION, return_value=registration_verification(b"replay-passkey", cose_ec2_key())):
            assert client.post(f"{API}/passkey/register/verify", json=payload).status_code == 200
            client.cookies.clear()
            replay = client.post(f"{API}/passkey/register/verify", json=payload)

        assert replay.status_code == 409
        assert replay.json()["error"] == "already_used"


class TestLogin:
    def test_login_sets_session(self, client):
        address = register(client, b"login-passkey").json()["userAddress"]
        client.cookies.clear()

        response = login(client, b"login-passkey")

        assert response.status_code == 200, response.text
        assert response.json()["userAddress"] == address
        session = client.get(f"{API}/auth/session").json()
        assert session["authenticated"] is True
        assert session["userAddress"] == address

    def test_bearer_token_is_accepted(self, client):
        token = register(client, b"bearer-passkey").json()["sessionToken"]
        client.cookies.clear()

        response = client.get(f"{API}/passkey/credentials", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert len(response.json()["credentials"]) == 1

    def test_unknown_passkey(self, client):
        response = login(client, b"never-registered")

        assert response.status_code == 404

    def test_orphaned_passkey_is_rescued(self, client, run_db):
        """Unknown passkey whose derived account exists gets a rescue token to re-register with."""
        credential_id = bytes_to_base64url(b"orphaned-passkey")
        derived = derive_address_from_credential(credential_id, settings.ADDRESS_NAMESPACE)

        async def seed(db):
            db.add(Account(address=derived, login_count=3))
            await db.commit()

        run_db(seed)

        rescue = login(client, b"orphaned-passkey")

        assert rescue.status_code == 400
        body = rescue.json()
        assert body["error"] == "rescue_available"
        assert body["rescueAddress"] == derived

        rebound = register(client, b"orphaned-passkey", recovery_token=body["rescueToken"])
        assert rebound.status_code == 200, rebound.text
        assert rebound.json()["userAddress"] == derived
        assert rebound.json()["resolution"] == "recovery"

        client.cookies.clear()
        assert login(client, b"orphaned-passkey").status_code == 200

    def test_logout_clears_cookie(self, client):
        register(client, b"logout-passkey")

        assert client.post(f"{API}/auth/logout").json() == {"success": True}
        assert client.get(f"{API}/auth/session").json()["authenticated"] is False


class TestCredentials:
    def test_listing_requires_session(self, client):
        response = client.get(f"{API}/passkey/credentials")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_sole_wallet_key_cannot_be_deleted(self, client):
        register(client, b"only-key")
        credential = client.get(f"{API}/passkey/credentials").json()["credentials"][0]
        assert credential["isWalletKey"] is True

        response = client.delete(f"{API}/passkey/credentials/{credential['id']}")

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_wallet_key_deletable_when_ownership_unknown(self, client):
        from backend.app.api import deps
        from backend.app.core.errors import OwnershipUnavailable
        from backend.app.main import app

        class Unreachable:
            async def controls_wallet(self, wallet_address, signer_address):
                raise OwnershipUnavailable("chain unreachable")

        register(client, b"only-key")
        credential = client.get(f"{API}/passkey/credentials").json()["credentials"][0]
        app.dependency_overrides[deps.get_ownership_checker] = lambda: Unreachable()

        response = client.delete(f"{API}/passkey/credentials/{credential['id']}")

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get(f"{API}/passkey/credentials").json()["credentials"] == []

    def test_unknown_credential_id(self, client):
        register(client, b"some-key")

        assert client.delete(f"{API}/passkey/credentials/9999").status_code == 404


class TestRecovery:
    def test_code_redeemed_once(self, client, run_db):
        """Scenario C: first redemption returns address and token, the second is AlreadyUsed."""
        address = "0x" + "ab" * 20

        async def seed(db):
            db.add(RecoveryCode(code="ABC123", account_address=address, expires_at=utcnow() + timedelta(days=1), used=False))
            await db.commit()

        run_db(seed)

        first = client.post(f"{API}/passkey/recovery/redeem", json={"code": "ABC123"})
        second = client.post(f"{API}/passkey/recovery/redeem", json={"code": "ABC123"})

        assert first.status_code == 200
        assert first.json()["userAddress"] == address
        assert first.json()["recoveryToken"]
        assert first.json()["expiresIn"] == settings.RECOVERY_TOKEN_TTL_MINUTES * 60
        assert second.status_code == 409
        assert second.json()["error"] == "already_used"

    def test_recovery_registers_new_passkey(self, client, run_db):
        original = register(client, b"lost-passkey").json()["userAddress"]
        client.cookies.clear()
        admin = {"Authorization": f"Bearer {create_session_token(ADMIN_ADDRESS)}"}
        issued = client.post(f"{API}/admin/recovery-codes", json={"userAddress": original}, headers=admin)
        assert issued.status_code == 201, issued.text

        token = client.post(f"{API}/passkey/recovery/redeem", json={"code": issued.json()["code"]}).json()["recoveryToken"]
        options = client.post(f"{API}/passkey/register/options", json={"recoveryToken": token}).json()
        assert options["isRecoveryFlow"] is True
        assert options["userAddress"] == original

        response = register(client, b"replacement-passkey", recovery_token=token)

        assert response.status_code == 200, response.text
        assert response.json()["userAddress"] == original
        wallet = run_db(lambda db: AccountService(db).get(original)).smart_wallet_address
        assert wallet == response.json()["smartWalletAddress"]

    def test_link_moves_passkey_to_recovered_account(self, client, run_db):
        target = register(client, b"old-passkey").json()["userAddress"]
        client.cookies.clear()
        admin = {"Authorization": f"Bearer {create_session_token(ADMIN_ADDRESS)}"}
        code = client.post(f"{API}/admin/recovery-codes", json={"userAddress": target}, headers=admin).json()["code"]
        token = client.post(f"{API}/passkey/recovery/redeem", json={"code": code}).json()["recoveryToken"]

        stray = register(client, b"new-device-passkey").json()["userAddress"]
        assert stray != target

        linked = client.post(f"{API}/passkey/recovery/link", json={"recoveryToken": token})

        assert linked.status_code == 200, linked.text
        assert linked.json()["userAddress"] == target
        assert run_db(lambda db: AccountService(db).get(stray)) is None
        listed = client.get(f"{API}/passkey/credentials").json()["credentials"]
        assert len(listed) == 2

        again = client.post(f"{API}/passkey/recovery/link", json={"recoveryToken": token})
        assert again.status_code in (400, 409)

    def test_link_requires_session(self, client):
        response = client.post(f"{API}/passkey/recovery/link", json={"recoveryToken": "x"})

        assert response.status_code == 401


class TestAdmin:
    def test_issue_code_requires_admin(self, client):
        address = register(client, b"user-passkey").json()["userAddress"]

        response = client.post(f"{API}/admin/recovery-codes", json={"userAddress": address})

        assert response.status_code == 403

    def test_issue_and_list_codes(self, client):
        address = register(client, b"user-passkey").json()["userAddress"]
        client.cookies.clear()
        admin = {"Authorization": f"Bearer {create_session_token(ADMIN_ADDRESS)}"}

        issued = client.post(
            f"{API}/admin/recovery-codes",
            json={"userAddress": address, "expiresDays": 7, "notes": "support ticket"},
            headers=admin,
        )
        listed = client.get(f"{API}/admin/recovery-codes", headers=admin)

        assert issued.status_code == 201
        assert issued.json()["userAddress"] == address
        assert issued.json()["createdBy"] == ADMIN_ADDRESS
        assert [code["code"] for code in listed.json()["codes"]] == [issued.json()["code"]]

    def test_issue_code_for_unknown_address(self, client):
        admin = {"Authorization": f"Bearer {create_session_token(ADMIN_ADDRESS)}"}

        response = client.post(f"{API}/admin/recovery-codes", json={"userAddress": "0x" + "99" * 20}, headers=admin)

        assert response.status_code == 404


def test_root(client):
    assert "Passbind" in client.get("/").json()["message"]


def test_wallet_deriver_matches_response(client):
    response = register(client, b"wallet-passkey", public_key=cose_ec2_key(3)).json()
    deriver = WalletDeriver(settings.CHAIN_ID)
    signer = deriver.signer_address("0x" + "03" * 32, "0x" + "04" * 32)

    assert response["smartWalletAddress"] == deriver.wallet_address(signer)
