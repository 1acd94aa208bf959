# nomad_passport/routers/registry.py
"""Anchor contract reads and owner/issuer actions, signed with the service account."""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from web3 import Web3

from nomad_passport.deps import get_anchor_contract
from nomad_passport.exceptions import AnchoringError, ContractDecodeError
from nomad_passport.services.anchor import AnchorContract, TransactionResult, parse_digest
from nomad_passport.services.did_ethr import is_valid_address

router = APIRouter()


class AddressIn(BaseModel):
    address: str


class IssuerInfoIn(BaseModel):
    info: str


class ProcessApplicationIn(BaseModel):
    hash: str
    type: str


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def _bad_address(address: str):
    if not is_valid_address(address):
        return _error(400, f"Invalid Ethereum address provided: {address!r}")
    return None


def _tx(result: TransactionResult) -> dict:
    return {"tx_hash": result.tx_hash, "block_number": result.block_number}


def _contract_call(fn, *args):
    """Runs a contract call, mapping RPC and decode failures to a 502 response."""
    try:
        return fn(*args), None
    except (AnchoringError, ContractDecodeError) as e:
        return None, _error(502, str(e))


# -----------------------------
# Owner
# -----------------------------
@router.get("/owner")
def get_owner(contract: AnchorContract = Depends(get_anchor_contract)):
    owner, err = _contract_call(contract.owner)
    return err or {"owner": owner}


# -----------------------------
# Issuers
# -----------------------------
@router.get("/issuers")
def list_issuers(contract: AnchorContract = Depends(get_anchor_contract)):
    """Issuers ever added (IssuerAdded events) that are still authorized."""
    added, err = _contract_call(contract.issuer_added_events)
    if err:
        return err
    issuers = []
    for address in dict.fromkeys(added):
        authorized, err = _contract_call(contract.authorized_issuers, address)
        if err:
            return err
        if authorized:
            issuers.append(address)
    return {"issuers": issuers}


@router.get("/issuers/{address}")
def issuer_status(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    authorized, err = _contract_call(contract.authorized_issuers, address)
    if err:
        return err
    suspended, err = _contract_call(contract.suspended_issuers, address)
    if err:
        return err
    return {"address": Web3.to_checksum_address(address), "authorized": authorized, "suspended": suspended}


@router.get("/issuers/{address}/anchors")
def issuer_anchors(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    events, err = _contract_call(contract.hash_anchored_events, address)
    if err:
        return err
    anchors = []
    for ev in events:
        revoked, err = _contract_call(contract.revoked_hashes, bytes.fromhex(ev.hash_hex[2:]))
        if err:
            return err
        anchors.append({
            "hash": ev.hash_hex,
            "type": ev.p_type,
            "holder": ev.holder,
            "timestamp": ev.timestamp,
            "block_number": ev.block_number,
            "tx_hash": ev.tx_hash,
            "revoked": revoked,
        })
    return {"issuer": Web3.to_checksum_address(address), "anchors": anchors}


@router.get("/issuers/{address}/info")
def get_issuer_info(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    info, err = _contract_call(contract.issuer_info, address)
    return err or {"address": Web3.to_checksum_address(address), "info": info}


@router.put("/issuers/{address}/info")
def set_issuer_info(address: str, body: IssuerInfoIn, contract: AnchorContract = Depends(get_anchor_contract)):
    """setIssuerInfo writes msg.sender's profile: only the service account can be updated."""
    err = _bad_address(address)
    if err:
        return err
    sender = contract.sender
    if sender is None or Web3.to_checksum_address(address) != sender:
        return _error(403, "Only the service account's issuer profile can be updated")
    result, err = _contract_call(contract.set_issuer_info, body.info)
    return err or _tx(result)


@router.post("/issuers")
def add_issuer(body: AddressIn, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(body.address)
    if err:
        return err
    result, err = _contract_call(contract.add_issuer, body.address)
    return err or _tx(result)


@router.delete("/issuers/{address}")
def remove_issuer(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    result, err = _contract_call(contract.remove_issuer, address)
    return err or _tx(result)


# -----------------------------
# Verifiers
# -----------------------------
@router.get("/verifiers")
def list_verifiers(contract: AnchorContract = Depends(get_anchor_contract)):
    added, err = _contract_call(contract.verifier_added_events)
    if err:
        return err
    verifiers = []
    for address in dict.fromkeys(added):
        authorized, err = _contract_call(contract.authorized_verifiers, address)
        if err:
            return err
        if authorized:
            verifiers.append(address)
    return {"verifiers": verifiers}


@router.get("/verifiers/{address}")
def verifier_status(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    authorized, err = _contract_call(contract.authorized_verifiers, address)
    return err or {"address": Web3.to_checksum_address(address), "authorized": authorized}


@router.post("/verifiers")
def add_verifier(body: AddressIn, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(body.address)
    if err:
        return err
    result, err = _contract_call(contract.add_verifier, body.address)
    return err or _tx(result)


@router.delete("/verifiers/{address}")
def remove_verifier(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    result, err = _contract_call(contract.remove_verifier, address)
    return err or _tx(result)


# -----------------------------
# Passports
# -----------------------------
@router.get("/passports/{passport_hash}")
def verify_passport(passport_hash: str, contract: AnchorContract = Depends(get_anchor_contract)):
    try:
        digest = parse_digest(passport_hash)
    except ValueError as e:
        return _error(400, str(e))
    status, err = _contract_call(contract.verify_passport, digest)
    if err:
        return err
    return {
        "hash": passport_hash.lower(),
        "is_anchored": status.is_anchored,
        "is_revoked": status.is_revoked,
        "issuer": status.issuer,
        "p_type": status.p_type,
        "issued_at": status.issued_at,
    }


@router.post("/passports/{passport_hash}/revoke")
def revoke_passport(passport_hash: str, contract: AnchorContract = Depends(get_anchor_contract)):
    try:
        digest = parse_digest(passport_hash)
    except ValueError as e:
        return _error(400, str(e))
    result, err = _contract_call(contract.revoke_hash, digest)
    return err or _tx(result)


# -----------------------------
# Applications
# -----------------------------
@router.get("/applications/{address}")
def application_status(address: str, contract: AnchorContract = Depends(get_anchor_contract)):
    err = _bad_address(address)
    if err:
        return err
    index, err = _contract_call(contract.application_index, address)
    if err:
        return err

    application = None
    if index > 0:
        app, err = _contract_call(contract.get_application, index - 1)
        if err:
            return err
        application = {"id": app.index, "cids": app.cids, "processed": app.processed}

    passport = None
    user_hash, err = _contract_call(contract.user_hash, address)
    if err:
        return err
    if user_hash is not None:
        status, err = _contract_call(contract.verify_passport, user_hash)
        if err:
            return err
        passport = {
            "hash": "0x" + user_hash.hex(),
            "type": status.p_type,
            "issuer": status.issuer,
            "issued_at": status.issued_at,
            "is_revoked": status.is_revoked,
        }

    return {
        "address": Web3.to_checksum_address(address),
        "submitted": application is not None,
        "application": application,
        "passport": passport,
    }


@router.post("/applications/{application_id}/process")
def process_application(
    application_id: int,
    body: ProcessApplicationIn,
    contract: AnchorContract = Depends(get_anchor_contract),
):
    try:
        digest = parse_digest(body.hash)
    except ValueError as e:
        return _error(400, str(e))
    result, err = _contract_call(contract.process_application, application_id, digest, body.type)
    return err or _tx(result)
