# backend/app/security/passkeys.py
"""
WebAuthn ceremony glue around the `webauthn` library.

The relying party (RP ID, name, accepted origins) is resolved once per
request from the host header and passed in explicitly; nothing here reads
ambient configuration at verification time.
"""
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from webauthn import (
    generate_registration_options,
    verify_registration_response,
    generate_authentication_options,
    verify_authentication_response,
    options_to_json,
    base64url_to_bytes,
)
from webauthn.helpers import bytes_to_base64url, decode_credential_public_key
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import (
    InvalidAuthenticationResponse,
    InvalidCBORData,
    InvalidJSONStructure,
    InvalidPublicKeyStructure,
    InvalidRegistrationResponse,
    UnsupportedPublicKeyType,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from backend.app.core.config import Settings
from backend.app.core.errors import Invalid
from backend.app.core.logging import short

logger = logging.getLogger(__name__)

# Two minutes leaves room for cross-device (hybrid) ceremonies
CEREMONY_TIMEOUT_MS = 120000

DEFAULT_TRANSPORTS = ["internal", "hybrid"]

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]


@dataclass(frozen=True)
class RelyingParty:
    rp_id: str
    rp_name: str
    allowed_origins: List[str] = field(default_factory=list)


def resolve_relying_party(host: Optional[str], config: Settings) -> RelyingParty:
    """
    Work out the RP ID for a request.

    - WEBAUTHN_RP_ID, when set, always wins
    - localhost / 127.0.0.1 → "localhost"
    - any host under PRIMARY_DOMAIN (app., www.) → PRIMARY_DOMAIN so one
      passkey works across subdomains
    - anything else → the host without its port (preview deployments)
    """
    if config.WEBAUTHN_RP_ID:
        rp_id = config.WEBAUTHN_RP_ID
    else:
        hostname = (host or "").split(":")[0].strip().lower()
        if hostname in ("localhost", "127.0.0.1") or not hostname:
            rp_id = "localhost"
        elif config.PRIMARY_DOMAIN and (
            hostname == config.PRIMARY_DOMAIN or hostname.endswith("." + config.PRIMARY_DOMAIN)
        ):
            rp_id = config.PRIMARY_DOMAIN
        else:
            rp_id = hostname
    return RelyingParty(
        rp_id=rp_id,
        rp_name=config.WEBAUTHN_RP_NAME,
        allowed_origins=config.webauthn_origins,
    )


@dataclass(frozen=True)
class RegistrationOptions:
    challenge: str
    options: Dict[str, Any]


@dataclass(frozen=True)
class VerifiedPasskey:
    credential_id: str
    public_key: str
    sign_count: int
    backed_up: bool
    device_type: Optional[str] = None
    aaguid: Optional[str] = None
    public_key_x: Optional[str] = None
    public_key_y: Optional[str] = None

    @property
    def is_p256(self) -> bool:
        return bool(self.public_key_x and self.public_key_y)


@dataclass(frozen=True)
class VerifiedAssertion:
    credential_id: str
    new_sign_count: int
    backed_up: bool


def _descriptors(credentials: Sequence[Dict[str, Any]]) -> List[PublicKeyCredentialDescriptor]:
    descriptors = []
    for cred in credentials:
        transports = []
        for raw in cred.get("transports") or DEFAULT_TRANSPORTS:
            try:
                transports.append(AuthenticatorTransport(raw))
            except ValueError:
                continue
        descriptors.append(
            PublicKeyCredentialDescriptor(
                id=base64url_to_bytes(cred["credential_id"]),
                transports=transports or None,
            )
        )
    return descriptors


def build_registration_options(
    rp: RelyingParty,
    user_id: bytes,
    user_name: str,
    display_name: str,
    exclude: Sequence[Dict[str, Any]] = (),
) -> RegistrationOptions:
    options = generate_registration_options(
        rp_id=rp.rp_id,
        rp_name=rp.rp_name,
        user_id=user_id,
        user_name=user_name,
        user_display_name=display_name,
        timeout=CEREMONY_TIMEOUT_MS,
        attestation=AttestationConveyancePreference.NONE,
        authenticator_selection=AuthenticatorSelectionCriteria(
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
            resident_key=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement.PREFERRED,
        ),
        exclude_credentials=_descriptors(exclude),
        supported_pub_key_algs=SUPPORTED_ALGORITHMS,
    )
    return RegistrationOptions(
        challenge=bytes_to_base64url(options.challenge),
        options=json.loads(options_to_json(options)),
    )


def build_authentication_options(
    rp: RelyingParty,
    allow: Sequence[Dict[str, Any]] = (),
) -> RegistrationOptions:
    options = generate_authentication_options(
        rp_id=rp.rp_id,
        timeout=CEREMONY_TIMEOUT_MS,
        allow_credentials=_descriptors(allow) or None,
        user_verification=UserVerificationRequirement.PREFERRED,
    )
    return RegistrationOptions(
        challenge=bytes_to_base64url(options.challenge),
        options=json.loads(options_to_json(options)),
    )


def extract_p256_coordinates(cose_public_key: bytes) -> Optional[tuple]:
    """(x_hex, y_hex) for an ES256 COSE key, None for any other key type."""
    try:
        decoded = decode_credential_public_key(cose_public_key)
    except (InvalidCBORData, InvalidPublicKeyStructure, UnsupportedPublicKeyType, ValueError) as exc:
        logger.warning("Could not decode credential public key: %s", exc)
        return None
    if getattr(decoded, "alg", None) != COSEAlgorithmIdentifier.ECDSA_SHA_256:
        return None
    x = getattr(decoded, "x", None)
    y = getattr(decoded, "y", None)
    if not x or not y:
        return None
    return "0x" + x.hex(), "0x" + y.hex()


def verify_registration(rp: RelyingParty, credential: Dict[str, Any], challenge: str) -> VerifiedPasskey:
    """
    Raises:
        Invalid: bad signature, origin, RP ID or malformed response
    """
    try:
        verification = verify_registration_response(
            credential=credential,
            expected_challenge=base64url_to_bytes(challenge),
            expected_rp_id=rp.rp_id,
            expected_origin=rp.allowed_origins,
            require_user_verification=False,
        )
    except (InvalidRegistrationResponse, InvalidJSONStructure, ValueError) as exc:
        logger.warning("Registration verification failed for RP %s: %s", rp.rp_id, exc)
        raise Invalid("Credential verification failed") from exc

    public_key = verification.credential_public_key
    coordinates = extract_p256_coordinates(public_key)
    device_type = getattr(verification, "credential_device_type", None)

    return VerifiedPasskey(
        credential_id=bytes_to_base64url(verification.credential_id),
        public_key=base64.b64encode(public_key).decode("utf-8"),
        sign_count=verification.sign_count,
        backed_up=bool(getattr(verification, "credential_backed_up", False)),
        device_type=getattr(device_type, "value", device_type),
        aaguid=getattr(verification, "aaguid", None),
        public_key_x=coordinates[0] if coordinates else None,
        public_key_y=coordinates[1] if coordinates else None,
    )


def verify_assertion(
    rp: RelyingParty,
    credential: Dict[str, Any],
    challenge: str,
    public_key_b64: str,
    sign_count: int,
) -> VerifiedAssertion:
    """
    User verification (biometric or PIN) is required: the same key signs
    wallet operations.

    Raises:
        Invalid: bad signature, origin, RP ID, counter regression
    """
    try:
        verification = verify_authentication_response(
            credential=credential,
            expected_challenge=base64url_to_bytes(challenge),
            expected_rp_id=rp.rp_id,
            expected_origin=rp.allowed_origins,
            credential_public_key=base64.b64decode(public_key_b64),
            credential_current_sign_count=sign_count,
            require_user_verification=True,
        )
    except (InvalidAuthenticationResponse, InvalidJSONStructure, ValueError) as exc:
        logger.warning(
            "Authentication verification failed for %s: %s",
            short(str(credential.get("id", "")), 20),
            exc,
        )
        raise Invalid("Authentication verification failed") from exc

    return VerifiedAssertion(
        credential_id=bytes_to_base64url(verification.credential_id),
        new_sign_count=verification.new_sign_count,
        backed_up=bool(getattr(verification, "credential_backed_up", False)),
    )
