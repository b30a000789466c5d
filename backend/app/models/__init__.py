from backend.app.models.account import Account
from backend.app.models.credential import PasskeyCredential
from backend.app.models.challenge import PasskeyChallenge
from backend.app.models.recovery import RecoveryCode, RecoveryToken

__all__ = [
    "Account",
    "PasskeyCredential",
    "PasskeyChallenge",
    "RecoveryCode",
    "RecoveryToken",
]
