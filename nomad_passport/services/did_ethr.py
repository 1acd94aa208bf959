import re
from dataclasses import dataclass, field

from cryptography.hazmat.primitives.asymmetric import ec
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from nomad_passport.exceptions import InvalidHolderAddress, IssuerConfigurationError

DID_METHOD = "ethr"

# Orden de la curva secp256k1
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def is_valid_address(value) -> bool:
    """
    Hex address check. Mixed-case input must carry a valid EIP-55 checksum;
    all-lowercase or all-uppercase input is accepted as is.
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        return False
    body = value[2:] if value[:2].lower() == "0x" else value
    if body.lower() != body and body.upper() != body:
        return Web3.is_checksum_address(value)
    return True


def validate_holder_address(address) -> str:
    """Returns the EIP-55 checksum form of a well-formed address."""
    if not is_valid_address(address):
        raise InvalidHolderAddress(address)
    return Web3.to_checksum_address(address)


def ethr_did(network: str, address: str) -> str:
    return f"did:{DID_METHOD}:{network}:{Web3.to_checksum_address(address)}"


def holder_did(network: str, address: str) -> str:
    return ethr_did(network, validate_holder_address(address))


@dataclass(frozen=True)
class IssuerIdentity:
    account: LocalAccount = field(repr=False)
    network: str
    did: str

    @classmethod
    def from_private_key(cls, private_key: str, network: str) -> "IssuerIdentity":
        if not private_key:
            raise IssuerConfigurationError("Issuer private key is not configured")
        if not _HEX_KEY.match(private_key):
            raise IssuerConfigurationError("Issuer private key must be 32 bytes of hex")
        secret = int(private_key[2:] if private_key.startswith("0x") else private_key, 16)
        if not 0 < secret < SECP256K1_N:
            raise IssuerConfigurationError("Issuer private key is outside the secp256k1 range")
        try:
            account = Account.from_key(private_key)
        except ValueError as e:
            raise IssuerConfigurationError(f"Issuer private key is malformed: {e}")
        return cls(account=account, network=network, did=ethr_did(network, account.address))

    @property
    def address(self) -> str:
        return self.account.address

    def signing_key(self) -> ec.EllipticCurvePrivateKey:
        """secp256k1 key in the form PyJWT expects for ES256K."""
        return ec.derive_private_key(int.from_bytes(bytes(self.account.key), "big"), ec.SECP256K1())

    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self.signing_key().public_key()


def generate_issuer_identity(network: str) -> dict:
    account = Account.create()
    return {
        "did": ethr_did(network, account.address),
        "address": account.address,
        "privateKey": Web3.to_hex(account.key),
    }
