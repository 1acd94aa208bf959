"""Pytest fixtures for the Nomad Passport issuer tests."""
import json
import os
from unittest.mock import MagicMock

import httpx
import pytest

from nomad_passport.config import Settings
from nomad_passport.services.anchor import AnchorContract, AnchorSubmitter, TransactionResult
from nomad_passport.services.credential import CredentialBuilder
from nomad_passport.services.did_ethr import IssuerIdentity
from nomad_passport.services.issuance import IssuanceService
from nomad_passport.services.pinning import PinningClient


# =============================================================================
# Constants
# =============================================================================

# Well-known throwaway key from the web3.py documentation
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ISSUER_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
TEST_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

HOLDER_ADDRESS = "0xabcd000000000000000000000000000000001234"
TEST_CID = "bafkreigh2akiscaildcqabsyg3dfr6chu3fgpregiymsck7e7aqa4s52zy"
TEST_TX_HASH = "0x" + "ab" * 32
FILE_CIDS = ("bafkrei" + "a" * 52, "bafkrei" + "b" * 52, "bafkrei" + "c" * 52)

# nomad_passport.main builds the app from the environment at import time
for _key, _value in {
    "PRIVATE_KEY": TEST_PRIVATE_KEY,
    "RPC_URL": "http://127.0.0.1:8545",
    "ANCHOR_CONTRACT": TEST_CONTRACT,
    "PINATA_GATEWAY_URL": "gateway.pinata.cloud",
    "PINATA_JWT": "test-pinata-jwt",
}.items():
    os.environ.setdefault(_key, _value)


def pinata_handler(cid: str = TEST_CID, status: int = 200, calls: list = None):
    """Builds an httpx.MockTransport handler emulating Pinata's pin and gateway endpoints."""
    stored = {}
    files = []

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.url.path.endswith("/pinning/pinFileToIPFS"):
            if status >= 400:
                return httpx.Response(status, json={"error": {"reason": "INVALID_CREDENTIALS", "details": "bad key"}})
            file_cid = FILE_CIDS[len(files) % len(FILE_CIDS)]
            files.append((file_cid, request.content))
            return httpx.Response(status, json={"IpfsHash": file_cid, "PinSize": len(request.content)})
        if request.url.path.endswith("/pinning/pinJSONToIPFS"):
            if status >= 400:
                return httpx.Response(status, json={"error": {"reason": "INVALID_CREDENTIALS", "details": "bad key"}})
            body = json.loads(request.content)
            stored[cid] = body["pinataContent"]
            return httpx.Response(
                status,
                json={"IpfsHash": cid, "PinSize": 512, "Timestamp": "2026-10-19T10:00:00.000Z"},
            )
        if request.url.path.startswith("/ipfs/"):
            key = request.url.path.rsplit("/", 1)[-1]
            if key not in stored:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json=stored[key])
        return httpx.Response(404)

    handler.stored = stored
    handler.files = files
    return handler


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        private_key=TEST_PRIVATE_KEY,
        rpc_url="http://127.0.0.1:8545",
        anchor_contract=TEST_CONTRACT,
        pinata_gateway="gateway.pinata.cloud",
        pinata_jwt="test-pinata-jwt",
    )


@pytest.fixture
def issuer() -> IssuerIdentity:
    return IssuerIdentity.from_private_key(TEST_PRIVATE_KEY, "sepolia")


@pytest.fixture
def builder(issuer) -> CredentialBuilder:
    return CredentialBuilder(issuer)


@pytest.fixture
def pinata():
    return pinata_handler()


@pytest.fixture
def pinner(settings, pinata) -> PinningClient:
    return PinningClient(settings, client=httpx.Client(transport=httpx.MockTransport(pinata)))


@pytest.fixture
def contract():
    """AnchorContract stand-in; storeHash succeeds with a fixed tx hash."""
    c = MagicMock(spec=AnchorContract)
    c.store_hash.return_value = TransactionResult(tx_hash=TEST_TX_HASH, block_number=42, status=1)
    c.is_anchored.return_value = False
    c.address = TEST_CONTRACT
    c.chain_id = 11155111
    return c


@pytest.fixture
def submitter(contract) -> AnchorSubmitter:
    return AnchorSubmitter(contract)


@pytest.fixture
def service(builder, pinner, submitter) -> IssuanceService:
    return IssuanceService(builder, pinner, submitter, "DigitalNomadPassportVC")
