# backend/app/services/wallets.py
"""
Smart-wallet collaborators.

WalletDeriver: pure functions from a passkey's P-256 public key to the
signer address, and from a signer address to the smart-wallet address it
controls. Both are CREATE2 addresses, so they match what the factories
deploy on chain:

    signer = CREATE2(SIGNER_FACTORY,
                     keccak256(x || y || p256_verifier(chain)),
                     minimal_proxy(SIGNER_SINGLETON))
    wallet = CREATE2(SAFE_PROXY_FACTORY,
                     keccak256(signer || chain_id),
                     minimal_proxy(SAFE_SINGLETON))

Addresses come back lowercase, like every other address in the service.

OwnershipChecker: answers "does this signer control this wallet?". The
default implementation answers from stored state; an on-chain checker can
replace it by raising OwnershipUnavailable when the chain cannot be reached.
"""
from web3 import Web3

SIGNER_FACTORY = "0xF7488fFbe67327ac9f37D5F722d83Fc900852Fbf"
SIGNER_SINGLETON = "0x2dd68b007B46fBe91B9A7c3EDa5A7a1063cB5b47"
SAFE_PROXY_FACTORY = "0x4e1DCf7AD4e460CfD30791CCC4F9c8a4f820ec67"
SAFE_SINGLETON = "0x41675C099F32341bf84BFc5382aF534df5C7461a"

DEFAULT_P256_VERIFIER = "0x75cf11467937ce3f2f357ce24ffc3dbf8fd5c226"
# Optimism ships the RIP-7212 precompile
P256_VERIFIERS = {
    10: "0x0000000000000000000000000000000000000100",
}

_PROXY_PREFIX = bytes.fromhex("3d602d80600a3d3981f3363d3d373d3d3d363d73")
_PROXY_SUFFIX = bytes.fromhex("5af43d82803e903d91602b57fd5bf3")


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def _uint256(value) -> bytes:
    if isinstance(value, str):
        value = int(value, 16)
    return value.to_bytes(32, "big")


def _keccak(data: bytes) -> bytes:
    return bytes(Web3.keccak(data))


def minimal_proxy_init_code(singleton: str) -> bytes:
    return _PROXY_PREFIX + _hex_bytes(singleton) + _PROXY_SUFFIX


def create2_address(deployer: str, salt: bytes, init_code_hash: bytes) -> str:
    digest = _keccak(b"\xff" + _hex_bytes(deployer) + salt + init_code_hash)
    return "0x" + digest[-20:].hex()


def p256_verifier_for(chain_id: int) -> str:
    return P256_VERIFIERS.get(chain_id, DEFAULT_P256_VERIFIER)


class WalletDeriver:
    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        self._signer_init_hash = _keccak(minimal_proxy_init_code(SIGNER_SINGLETON))
        self._wallet_init_hash = _keccak(minimal_proxy_init_code(SAFE_SINGLETON))

    def signer_address(self, public_key_x: str, public_key_y: str) -> str:
        salt = _keccak(
            _uint256(public_key_x)
            + _uint256(public_key_y)
            + _hex_bytes(p256_verifier_for(self.chain_id))
        )
        return create2_address(SIGNER_FACTORY, salt, self._signer_init_hash)

    def wallet_address(self, signer_address: str) -> str:
        salt = _keccak(_hex_bytes(signer_address) + _uint256(self.chain_id))
        return create2_address(SAFE_PROXY_FACTORY, salt, self._wallet_init_hash)


class OwnershipChecker:
    """Interface. Implementations raise OwnershipUnavailable when unsure."""

    async def controls_wallet(self, wallet_address: str, signer_address: str) -> bool:
        raise NotImplementedError


class StoreOwnershipChecker(OwnershipChecker):
    """A signer controls the wallet its own key derives to."""

    def __init__(self, deriver: WalletDeriver):
        self.deriver = deriver

    async def controls_wallet(self, wallet_address: str, signer_address: str) -> bool:
        return self.deriver.wallet_address(signer_address).lower() == wallet_address.lower()
