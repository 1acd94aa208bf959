import logging
import re
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from nomad_passport.config import Settings
from nomad_passport.exceptions import AnchoringError, ContractDecodeError
from nomad_passport.services.anchor_abi import ANCHOR_ABI
from nomad_passport.services.did_ethr import IssuerIdentity, is_valid_address

logger = logging.getLogger(__name__)

ZERO_HASH = b"\x00" * 32
_HEX_DIGEST = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Errores de RPC / contrato que se reportan como AnchoringError
RPC_ERRORS = (Web3Exception, ValueError, OSError)

_nonce_locks: Dict[str, threading.Lock] = {}
_nonce_locks_guard = threading.Lock()


def _nonce_lock(address: str) -> threading.Lock:
    """One lock per sending account; nonce allocation and broadcast run under it."""
    with _nonce_locks_guard:
        return _nonce_locks.setdefault(address.lower(), threading.Lock())


def compute_digest(token: str) -> bytes:
    """keccak-256 of the UTF-8 bytes of the signed credential."""
    return bytes(Web3.keccak(token.encode("utf-8")))


def parse_digest(value: str) -> bytes:
    if not isinstance(value, str) or not _HEX_DIGEST.match(value):
        raise ValueError(f"Expected a 0x-prefixed 32-byte hex hash, got {value!r}")
    return bytes.fromhex(value[2:])


# -----------------------------
# Resultados tipados
# -----------------------------
@dataclass(frozen=True)
class TransactionResult:
    tx_hash: str
    block_number: Optional[int]
    status: int


@dataclass(frozen=True)
class AnchorReceipt:
    digest_hex: str
    tx_hash: Optional[str]
    block_number: Optional[int]


@dataclass(frozen=True)
class PassportVerification:
    is_anchored: bool
    is_revoked: bool
    issuer: str
    p_type: str
    issued_at: int


@dataclass(frozen=True)
class PassportApplication:
    index: int
    applicant: str
    cids: List[str]
    processed: bool


@dataclass(frozen=True)
class AnchoredHash:
    hash_hex: str
    issuer: str
    holder: str
    p_type: str
    timestamp: int
    block_number: Optional[int]
    tx_hash: Optional[str]


# -----------------------------
# Validación de valores decodificados
# -----------------------------
def _expect_bool(name: str, value) -> bool:
    if not isinstance(value, bool):
        raise ContractDecodeError(f"{name}: expected bool, got {type(value).__name__}")
    return value


def _expect_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ContractDecodeError(f"{name}: expected uint256, got {value!r}")
    return value


def _expect_str(name: str, value) -> str:
    if not isinstance(value, str):
        raise ContractDecodeError(f"{name}: expected string, got {type(value).__name__}")
    return value


def _expect_address(name: str, value) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ContractDecodeError(f"{name}: expected address, got {value!r}")
    return Web3.to_checksum_address(value)


def _expect_bytes32(name: str, value) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or len(value) != 32:
        raise ContractDecodeError(f"{name}: expected bytes32, got {value!r}")
    return bytes(value)


class AnchorContract:
    """Typed client for the Anchor contract: one method per ABI entry point used."""

    def __init__(
        self,
        w3: Web3,
        address: str,
        account=None,
        chain_id: Optional[int] = None,
        receipt_timeout: float = 120.0,
        from_block: int = 0,
    ):
        if not Web3.is_address(address):
            raise AnchoringError(f"Invalid Anchor contract address: {address!r}")
        self.w3 = w3
        self.account = account
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.from_block = from_block
        self.address = Web3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=ANCHOR_ABI)

    @classmethod
    def from_settings(cls, settings: Settings, issuer: Optional[IssuerIdentity] = None) -> "AnchorContract":
        w3 = Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": settings.rpc_timeout}))
        return cls(
            w3,
            settings.anchor_contract,
            account=issuer.account if issuer else None,
            chain_id=settings.chain_id,
            receipt_timeout=settings.receipt_timeout,
            from_block=settings.from_block,
        )

    @property
    def sender(self) -> Optional[str]:
        """Address that signs writes, or None for a read-only client."""
        return self.account.address if self.account is not None else None

    # ---------- plumbing ----------

    def _call(self, fn_name: str, *args):
        try:
            return getattr(self.contract.functions, fn_name)(*args).call()
        except RPC_ERRORS as e:
            raise AnchoringError(f"{fn_name} call failed: {e}")

    def _transact(self, fn_name: str, *args) -> TransactionResult:
        if self.account is None:
            raise AnchoringError(f"{fn_name} needs a signing account")
        sender = self.account.address
        try:
            with _nonce_lock(sender):
                nonce = self.w3.eth.get_transaction_count(sender, "pending")
                params = {"from": sender, "nonce": nonce}
                if self.chain_id is not None:
                    params["chainId"] = self.chain_id
                tx = getattr(self.contract.functions, fn_name)(*args).build_transaction(params)
                signed = self.w3.eth.account.sign_transaction(tx, self.account.key)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("%s submitted: %s (nonce %s)", fn_name, Web3.to_hex(tx_hash), nonce)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except RPC_ERRORS as e:
            raise AnchoringError(f"{fn_name} transaction failed: {e}")

        result = TransactionResult(
            tx_hash=Web3.to_hex(tx_hash),
            block_number=receipt.get("blockNumber"),
            status=receipt.get("status", 0),
        )
        if result.status != 1:
            raise AnchoringError(f"{fn_name} transaction {result.tx_hash} reverted")
        return result

    # ---------- lecturas ----------

    def owner(self) -> str:
        return _expect_address("owner", self._call("owner"))

    def authorized_issuers(self, address: str) -> bool:
        return _expect_bool("authorizedIssuers", self._call("authorizedIssuers", Web3.to_checksum_address(address)))

    def suspended_issuers(self, address: str) -> bool:
        return _expect_bool("suspendedIssuers", self._call("suspendedIssuers", Web3.to_checksum_address(address)))

    def authorized_verifiers(self, address: str) -> bool:
        return _expect_bool("authorizedVerifiers", self._call("authorizedVerifiers", Web3.to_checksum_address(address)))

    def issuer_info(self, address: str) -> str:
        return _expect_str("issuerInfo", self._call("issuerInfo", Web3.to_checksum_address(address)))

    def is_anchored(self, digest: bytes) -> bool:
        return _expect_bool("isAnchored", self._call("isAnchored", digest))

    def revoked_hashes(self, digest: bytes) -> bool:
        return _expect_bool("revokedHashes", self._call("revokedHashes", digest))

    def verify_passport(self, digest: bytes) -> PassportVerification:
        raw = self._call("verifyPassport", digest)
        if not isinstance(raw, (list, tuple)) or len(raw) != 5:
            raise ContractDecodeError(f"verifyPassport: expected 5 values, got {raw!r}")
        is_anchored, is_revoked, issuer, p_type, issued_at = raw
        return PassportVerification(
            is_anchored=_expect_bool("isAnchored_", is_anchored),
            is_revoked=_expect_bool("isRevoked_", is_revoked),
            issuer=_expect_address("issuer_", issuer),
            p_type=_expect_str("pType_", p_type),
            issued_at=_expect_int("issuedAt_", issued_at),
        )

    def user_hash(self, address: str) -> Optional[bytes]:
        """Passport hash assigned to a holder, or None when none was issued."""
        value = _expect_bytes32("userHash", self._call("userHash", Web3.to_checksum_address(address)))
        return None if value == ZERO_HASH else value

    def application_index(self, address: str) -> int:
        return _expect_int("applicationIndex", self._call("applicationIndex", Web3.to_checksum_address(address)))

    def get_application(self, index: int) -> PassportApplication:
        raw = self._call("getApplication", index)
        if not isinstance(raw, (list, tuple)) or len(raw) != 3:
            raise ContractDecodeError(f"getApplication: expected 3 fields, got {raw!r}")
        applicant, cids, processed = raw
        if not isinstance(cids, (list, tuple)):
            raise ContractDecodeError(f"getApplication.docCids: expected string[], got {cids!r}")
        return PassportApplication(
            index=index,
            applicant=_expect_address("applicant", applicant),
            cids=[_expect_str("docCids", c) for c in cids],
            processed=_expect_bool("processed", processed),
        )

    # ---------- escrituras ----------

    def store_hash(self, digest: bytes) -> TransactionResult:
        return self._transact("storeHash", digest)

    def add_issuer(self, address: str) -> TransactionResult:
        return self._transact("addIssuer", Web3.to_checksum_address(address))

    def remove_issuer(self, address: str) -> TransactionResult:
        return self._transact("removeIssuer", Web3.to_checksum_address(address))

    def add_verifier(self, address: str) -> TransactionResult:
        return self._transact("addVerifier", Web3.to_checksum_address(address))

    def remove_verifier(self, address: str) -> TransactionResult:
        return self._transact("removeVerifier", Web3.to_checksum_address(address))

    def set_issuer_info(self, info: str) -> TransactionResult:
        """Updates the profile text of the signing account (msg.sender)."""
        return self._transact("setIssuerInfo", info)

    def process_application(self, application_id: int, digest: bytes, p_type: str) -> TransactionResult:
        return self._transact("processApplication", application_id, digest, p_type)

    def revoke_hash(self, digest: bytes) -> TransactionResult:
        return self._transact("revokeHash", digest)

    # ---------- calldata para la wallet del titular ----------

    def apply_for_passport_calldata(self, cids: List[str]) -> str:
        """
        applyForPassport must be sent by the applicant, so the service only
        encodes the call; the holder's wallet signs and submits it.
        """
        try:
            return self.contract.encode_abi("applyForPassport", args=[list(cids)])
        except RPC_ERRORS as e:
            raise AnchoringError(f"applyForPassport encoding failed: {e}")

    # ---------- eventos ----------

    def _get_logs(self, event_name: str, argument_filters: Optional[dict] = None) -> list:
        event = getattr(self.contract.events, event_name)
        try:
            return list(event.get_logs(argument_filters=argument_filters, from_block=self.from_block))
        except RPC_ERRORS as e:
            raise AnchoringError(f"{event_name} log query failed: {e}")

    def issuer_added_events(self) -> List[str]:
        return [_expect_address("IssuerAdded.issuer", log["args"]["issuer"]) for log in self._get_logs("IssuerAdded")]

    def verifier_added_events(self) -> List[str]:
        return [
            _expect_address("VerifierAdded.verifier", log["args"]["verifier"])
            for log in self._get_logs("VerifierAdded")
        ]

    def hash_anchored_events(self, issuer: Optional[str] = None) -> List[AnchoredHash]:
        filters = {"issuer": Web3.to_checksum_address(issuer)} if issuer else None
        out = []
        for log in self._get_logs("HashAnchored", filters):
            args = log["args"]
            tx_hash = log.get("transactionHash")
            out.append(AnchoredHash(
                hash_hex=Web3.to_hex(_expect_bytes32("HashAnchored.hash", args["hash"])),
                issuer=_expect_address("HashAnchored.issuer", args["issuer"]),
                holder=_expect_address("HashAnchored.user", args["user"]),
                p_type=_expect_str("HashAnchored.pType", args["pType"]),
                timestamp=_expect_int("HashAnchored.timestamp", args["timestamp"]),
                block_number=log.get("blockNumber"),
                tx_hash=Web3.to_hex(tx_hash) if tx_hash is not None else None,
            ))
        return out


class AnchorSubmitter:
    """Hashes a signed credential and records the digest with storeHash."""

    def __init__(self, contract: AnchorContract):
        self.contract = contract

    def submit(self, token: str) -> AnchorReceipt:
        digest = compute_digest(token)
        digest_hex = Web3.to_hex(digest)
        logger.info("Hash of VC: %s", digest_hex)
        result = self.contract.store_hash(digest)
        logger.info("VC anchored on-chain at tx: %s", result.tx_hash)
        return AnchorReceipt(digest_hex=digest_hex, tx_hash=result.tx_hash, block_number=result.block_number)
