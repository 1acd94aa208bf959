"""Tests for the typed Anchor contract client and the anchor submitter."""
import threading
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from nomad_passport.exceptions import AnchoringError, ContractDecodeError
from nomad_passport.services.anchor import (
    AnchorContract,
    AnchorSubmitter,
    PassportVerification,
    TransactionResult,
    _nonce_lock,
    compute_digest,
    parse_digest,
)
from nomad_passport.services.anchor_abi import ANCHOR_ABI

from conftest import HOLDER_ADDRESS, TEST_CONTRACT, TEST_ISSUER_ADDRESS, TEST_PRIVATE_KEY, TEST_TX_HASH

DIGEST = bytes.fromhex("11" * 32)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = bytes.fromhex(TEST_TX_HASH[2:])
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 42}
    w3.eth.account.sign_transaction.return_value = MagicMock(raw_transaction=b"\x02signed")
    return w3


@pytest.fixture
def functions(w3):
    return w3.eth.contract.return_value.functions


@pytest.fixture
def events(w3):
    return w3.eth.contract.return_value.events


@pytest.fixture
def anchor(w3):
    return AnchorContract(
        w3,
        TEST_CONTRACT.lower(),
        account=Account.from_key(TEST_PRIVATE_KEY),
        chain_id=11155111,
        receipt_timeout=5,
        from_block=100,
    )


# =============================================================================
# Digest helpers
# =============================================================================


class TestDigest:
    def test_known_vector(self):
        assert compute_digest("").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_matches_independent_keccak_of_same_bytes(self):
        token = "eyJhbGciOiJFUzI1NksifQ.eyJzdWIiOiJkaWQ6ZXRocjpzZXBvbGlhOjB4In0.c2ln"
        assert compute_digest(token) == bytes(Web3.keccak(text=token))
        assert len(compute_digest(token)) == 32

    def test_non_ascii_is_utf8_encoded(self):
        assert compute_digest("Zoë") == bytes(Web3.keccak("Zoë".encode("utf-8")))

    def test_parse_digest(self):
        assert parse_digest("0x" + "11" * 32) == DIGEST

    @pytest.mark.parametrize("value", ["11" * 32, "0x1234", "0x" + "zz" * 32, None])
    def test_parse_digest_rejects_bad_input(self, value):
        with pytest.raises(ValueError):
            parse_digest(value)


# =============================================================================
# Transactions
# =============================================================================


class TestTransactions:
    def test_store_hash_builds_signs_and_waits(self, anchor, w3, functions):
        functions.storeHash.return_value.build_transaction.return_value = {"to": TEST_CONTRACT}

        result = anchor.store_hash(DIGEST)

        functions.storeHash.assert_called_once_with(DIGEST)
        functions.storeHash.return_value.build_transaction.assert_called_once_with(
            {"from": TEST_ISSUER_ADDRESS, "nonce": 7, "chainId": 11155111}
        )
        w3.eth.get_transaction_count.assert_called_once_with(TEST_ISSUER_ADDRESS, "pending")
        w3.eth.send_raw_transaction.assert_called_once_with(b"\x02signed")
        w3.eth.wait_for_transaction_receipt.assert_called_once_with(
            bytes.fromhex(TEST_TX_HASH[2:]), timeout=5
        )
        assert result == TransactionResult(tx_hash=TEST_TX_HASH, block_number=42, status=1)

    def test_revert_raises(self, anchor, w3):
        w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 42}
        with pytest.raises(AnchoringError, match="reverted"):
            anchor.store_hash(DIGEST)

    def test_insufficient_funds_raises(self, anchor, w3):
        w3.eth.send_raw_transaction.side_effect = ValueError({"code": -32000, "message": "insufficient funds"})
        with pytest.raises(AnchoringError, match="insufficient funds"):
            anchor.store_hash(DIGEST)
        w3.eth.wait_for_transaction_receipt.assert_not_called()

    def test_confirmation_timeout_raises(self, anchor, w3):
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined")
        with pytest.raises(AnchoringError):
            anchor.store_hash(DIGEST)

    def test_rpc_unreachable_raises(self, anchor, w3):
        w3.eth.get_transaction_count.side_effect = ConnectionError("refused")
        with pytest.raises(AnchoringError):
            anchor.store_hash(DIGEST)

    def test_build_revert_raises(self, anchor, functions):
        functions.revokeHash.return_value.build_transaction.side_effect = ContractLogicError("Not authorized")
        with pytest.raises(AnchoringError, match="revokeHash"):
            anchor.revoke_hash(DIGEST)

    def test_write_without_account(self, w3):
        read_only = AnchorContract(w3, TEST_CONTRACT)
        with pytest.raises(AnchoringError):
            read_only.store_hash(DIGEST)
        w3.eth.send_raw_transaction.assert_not_called()

    @pytest.mark.parametrize(
        "method, fn_name, args, expected",
        [
            ("add_issuer", "addIssuer", (HOLDER_ADDRESS,), (Web3.to_checksum_address(HOLDER_ADDRESS),)),
            ("remove_issuer", "removeIssuer", (HOLDER_ADDRESS,), (Web3.to_checksum_address(HOLDER_ADDRESS),)),
            ("add_verifier", "addVerifier", (HOLDER_ADDRESS,), (Web3.to_checksum_address(HOLDER_ADDRESS),)),
            ("remove_verifier", "removeVerifier", (HOLDER_ADDRESS,), (Web3.to_checksum_address(HOLDER_ADDRESS),)),
            ("set_issuer_info", "setIssuerInfo", ("Lisbon visa office",), ("Lisbon visa office",)),
            ("process_application", "processApplication", (3, DIGEST, "Standard"), (3, DIGEST, "Standard")),
            ("revoke_hash", "revokeHash", (DIGEST,), (DIGEST,)),
        ],
    )
    def test_write_entry_points(self, anchor, functions, method, fn_name, args, expected):
        result = getattr(anchor, method)(*args)
        getattr(functions, fn_name).assert_called_once_with(*expected)
        assert result.tx_hash == TEST_TX_HASH

    def test_invalid_contract_address(self, w3):
        with pytest.raises(AnchoringError):
            AnchorContract(w3, "0x1234")

    def test_contract_address_with_bad_checksum(self, w3):
        with pytest.raises(AnchoringError):
            AnchorContract(w3, "0x5fbDB2315678afecb367f032d93F642f64180aa3")

    def test_sender(self, anchor, w3):
        assert anchor.sender == TEST_ISSUER_ADDRESS
        assert AnchorContract(w3, TEST_CONTRACT).sender is None

    def test_apply_for_passport_is_encoded_not_sent(self, anchor, w3):
        w3.eth.contract.return_value.encode_abi.return_value = "0xdeadbeef"
        assert anchor.apply_for_passport_calldata(("bafy1", "bafy2")) == "0xdeadbeef"
        w3.eth.contract.return_value.encode_abi.assert_called_once_with("applyForPassport", args=[["bafy1", "bafy2"]])
        w3.eth.send_raw_transaction.assert_not_called()

    def test_nonce_lock_is_per_account(self):
        assert _nonce_lock(TEST_ISSUER_ADDRESS) is _nonce_lock(TEST_ISSUER_ADDRESS.lower())
        assert _nonce_lock(TEST_ISSUER_ADDRESS) is not _nonce_lock(HOLDER_ADDRESS)

    def test_concurrent_submissions_get_distinct_nonces(self, anchor, w3):
        """Nonce lookup and broadcast do not interleave across threads."""
        counter = {"next": 0}

        def get_count(address, block):
            return counter["next"]

        def send(raw):
            counter["next"] += 1
            return bytes.fromhex(TEST_TX_HASH[2:])

        w3.eth.get_transaction_count.side_effect = get_count
        w3.eth.send_raw_transaction.side_effect = send

        threads = [threading.Thread(target=anchor.store_hash, args=(DIGEST,)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        build = w3.eth.contract.return_value.functions.storeHash.return_value.build_transaction
        nonces = [c.args[0]["nonce"] for c in build.call_args_list]
        assert sorted(nonces) == list(range(8))


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    def test_owner(self, anchor, functions):
        functions.owner.return_value.call.return_value = TEST_ISSUER_ADDRESS.lower()
        assert anchor.owner() == TEST_ISSUER_ADDRESS

    @pytest.mark.parametrize(
        "method, fn_name",
        [
            ("authorized_issuers", "authorizedIssuers"),
            ("suspended_issuers", "suspendedIssuers"),
            ("authorized_verifiers", "authorizedVerifiers"),
        ],
    )
    def test_role_lookups(self, anchor, functions, method, fn_name):
        getattr(functions, fn_name).return_value.call.return_value = True
        assert getattr(anchor, method)(HOLDER_ADDRESS) is True
        getattr(functions, fn_name).assert_called_once_with(Web3.to_checksum_address(HOLDER_ADDRESS))

    def test_role_lookup_rejects_non_bool(self, anchor, functions):
        functions.authorizedIssuers.return_value.call.return_value = 1
        with pytest.raises(ContractDecodeError):
            anchor.authorized_issuers(HOLDER_ADDRESS)

    def test_is_anchored_and_revoked(self, anchor, functions):
        functions.isAnchored.return_value.call.return_value = True
        functions.revokedHashes.return_value.call.return_value = False
        assert anchor.is_anchored(DIGEST) is True
        assert anchor.revoked_hashes(DIGEST) is False

    def test_verify_passport(self, anchor, functions):
        functions.verifyPassport.return_value.call.return_value = (
            True, False, TEST_ISSUER_ADDRESS.lower(), "DigitalNomad", 1700000000,
        )
        assert anchor.verify_passport(DIGEST) == PassportVerification(
            is_anchored=True,
            is_revoked=False,
            issuer=TEST_ISSUER_ADDRESS,
            p_type="DigitalNomad",
            issued_at=1700000000,
        )

    @pytest.mark.parametrize(
        "raw",
        [
            (True, False, TEST_ISSUER_ADDRESS),
            ("yes", False, TEST_ISSUER_ADDRESS, "t", 1),
            (True, False, "0x1234", "t", 1),
            (True, False, TEST_ISSUER_ADDRESS, 7, 1),
            (True, False, TEST_ISSUER_ADDRESS, "t", -1),
            (True, False, TEST_ISSUER_ADDRESS, "t", True),
            None,
        ],
    )
    def test_verify_passport_shape_mismatch(self, anchor, functions, raw):
        functions.verifyPassport.return_value.call.return_value = raw
        with pytest.raises(ContractDecodeError):
            anchor.verify_passport(DIGEST)

    def test_call_failure(self, anchor, functions):
        functions.verifyPassport.return_value.call.side_effect = ContractLogicError("Not a verifier")
        with pytest.raises(AnchoringError):
            anchor.verify_passport(DIGEST)

    def test_issuer_info(self, anchor, functions):
        functions.issuerInfo.return_value.call.return_value = "Lisbon visa office"
        assert anchor.issuer_info(HOLDER_ADDRESS) == "Lisbon visa office"
        functions.issuerInfo.assert_called_once_with(Web3.to_checksum_address(HOLDER_ADDRESS))

    def test_issuer_info_shape_mismatch(self, anchor, functions):
        functions.issuerInfo.return_value.call.return_value = b"bytes"
        with pytest.raises(ContractDecodeError):
            anchor.issuer_info(HOLDER_ADDRESS)

    def test_user_hash(self, anchor, functions):
        functions.userHash.return_value.call.return_value = DIGEST
        assert anchor.user_hash(HOLDER_ADDRESS) == DIGEST

    def test_user_hash_zero_means_none(self, anchor, functions):
        functions.userHash.return_value.call.return_value = b"\x00" * 32
        assert anchor.user_hash(HOLDER_ADDRESS) is None

    def test_application(self, anchor, functions):
        functions.applicationIndex.return_value.call.return_value = 2
        functions.getApplication.return_value.call.return_value = (HOLDER_ADDRESS, ["bafy1", "bafy2"], False)
        assert anchor.application_index(HOLDER_ADDRESS) == 2
        application = anchor.get_application(1)
        assert application.index == 1
        assert application.applicant == Web3.to_checksum_address(HOLDER_ADDRESS)
        assert application.cids == ["bafy1", "bafy2"]
        assert application.processed is False

    def test_application_shape_mismatch(self, anchor, functions):
        functions.getApplication.return_value.call.return_value = (HOLDER_ADDRESS, "bafy1", False)
        with pytest.raises(ContractDecodeError):
            anchor.get_application(0)


# =============================================================================
# Events
# =============================================================================


class TestEvents:
    def test_hash_anchored_filtered_by_issuer(self, anchor, events):
        events.HashAnchored.get_logs.return_value = [
            {
                "args": {
                    "hash": DIGEST,
                    "issuer": TEST_ISSUER_ADDRESS,
                    "user": HOLDER_ADDRESS,
                    "pType": "DigitalNomad",
                    "timestamp": 1700000000,
                },
                "blockNumber": 120,
                "transactionHash": bytes.fromhex(TEST_TX_HASH[2:]),
            }
        ]
        anchors = anchor.hash_anchored_events(TEST_ISSUER_ADDRESS.lower())

        events.HashAnchored.get_logs.assert_called_once_with(
            argument_filters={"issuer": TEST_ISSUER_ADDRESS}, from_block=100
        )
        assert len(anchors) == 1
        assert anchors[0].hash_hex == "0x" + "11" * 32
        assert anchors[0].issuer == TEST_ISSUER_ADDRESS
        assert anchors[0].holder == Web3.to_checksum_address(HOLDER_ADDRESS)
        assert anchors[0].p_type == "DigitalNomad"
        assert anchors[0].timestamp == 1700000000
        assert anchors[0].tx_hash == TEST_TX_HASH
        assert anchors[0].block_number == 120

    def test_issuer_and_verifier_added(self, anchor, events):
        events.IssuerAdded.get_logs.return_value = [{"args": {"issuer": HOLDER_ADDRESS}}]
        events.VerifierAdded.get_logs.return_value = [{"args": {"verifier": TEST_ISSUER_ADDRESS}}]
        assert anchor.issuer_added_events() == [Web3.to_checksum_address(HOLDER_ADDRESS)]
        assert anchor.verifier_added_events() == [TEST_ISSUER_ADDRESS]

    def test_log_query_failure(self, anchor, events):
        events.IssuerAdded.get_logs.side_effect = ValueError("query returned more than 10000 results")
        with pytest.raises(AnchoringError):
            anchor.issuer_added_events()


# =============================================================================
# Submitter
# =============================================================================


class TestAnchorSubmitter:
    def test_submits_digest_of_exact_token(self, contract):
        token = "eyJhbGciOiJFUzI1NksiLCJ0eXAiOiJKV1QifQ.eyJzdWIiOiJ4In0.c2ln"
        receipt = AnchorSubmitter(contract).submit(token)

        contract.store_hash.assert_called_once_with(bytes(Web3.keccak(token.encode("utf-8"))))
        assert receipt.digest_hex == Web3.to_hex(Web3.keccak(text=token))
        assert len(receipt.digest_hex) == 66
        assert receipt.tx_hash == TEST_TX_HASH
        assert receipt.block_number == 42

    def test_anchoring_error_propagates(self, contract):
        contract.store_hash.side_effect = AnchoringError("reverted")
        with pytest.raises(AnchoringError):
            AnchorSubmitter(contract).submit("t")


def test_from_settings_builds_http_client(settings, issuer):
    client = AnchorContract.from_settings(settings, issuer)
    assert client.address == Web3.to_checksum_address(TEST_CONTRACT)
    assert client.account.address == TEST_ISSUER_ADDRESS
    assert client.chain_id == 11155111
    assert client.receipt_timeout == 120.0


def test_apply_for_passport_calldata_selector(settings):
    client = AnchorContract.from_settings(settings)
    calldata = client.apply_for_passport_calldata(["bafy1", "bafy2"])
    selector = Web3.to_hex(Web3.keccak(text="applyForPassport(string[])")[:4])
    assert calldata.startswith(selector)


def test_hash_anchored_event_signature():
    event = next(e for e in ANCHOR_ABI if e["type"] == "event" and e["name"] == "HashAnchored")
    signature = "HashAnchored(" + ",".join(i["type"] for i in event["inputs"]) + ")"
    assert signature == "HashAnchored(bytes32,address,address,string,uint256)"
    assert [i["name"] for i in event["inputs"] if i["indexed"]] == ["hash", "issuer", "user"]
