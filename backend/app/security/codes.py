# backend/app/security/codes.py
"""
Random material for recovery codes, token ids and rescue tokens.

All randomness comes from `secrets`; nothing here is derived from
predictable state.
"""
import secrets

# No 0/O or 1/I so codes survive being read over the phone
RECOVERY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
RECOVERY_CODE_GROUPS = 3
RECOVERY_CODE_GROUP_SIZE = 4


def generate_recovery_code() -> str:
    """
    Generate a human-friendly recovery code.

    Returns:
        Code formatted as XXXX-XXXX-XXXX
    """
    raw = "".join(
        secrets.choice(RECOVERY_CODE_ALPHABET)
        for _ in range(RECOVERY_CODE_GROUPS * RECOVERY_CODE_GROUP_SIZE)
    )
    size = RECOVERY_CODE_GROUP_SIZE
    return "-".join(raw[i:i + size] for i in range(0, len(raw), size))


def normalize_recovery_code(code: str) -> str:
    """Users type codes in any case, with spaces or without dashes."""
    raw = "".join(ch for ch in code.upper() if ch.isalnum())
    size = RECOVERY_CODE_GROUP_SIZE
    if len(raw) == RECOVERY_CODE_GROUPS * size:
        return "-".join(raw[i:i + size] for i in range(0, len(raw), size))
    return code.strip().upper().replace(" ", "")


def generate_token_id() -> str:
    """jti for signed recovery and rescue tokens (128 bits)."""
    return secrets.token_hex(16)


def generate_challenge() -> str:
    """Standalone challenge value, base64url, 256 bits."""
    return secrets.token_urlsafe(32)
