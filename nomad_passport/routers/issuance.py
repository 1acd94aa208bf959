# nomad_passport/routers/issuance.py
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import jwt
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from nomad_passport.deps import get_issuance_service
from nomad_passport.exceptions import (
    AnchoringError,
    ContractDecodeError,
    InvalidHolderAddress,
    IssuerConfigurationError,
    PinningServiceError,
)
from nomad_passport.services.anchor import compute_digest
from nomad_passport.services.credential import decode_credential
from nomad_passport.services.issuance import ApplicantDocument, IssuanceService

router = APIRouter()
logger = logging.getLogger(__name__)


class IssueRequest(BaseModel):
    address: str
    claims: Optional[Dict[str, Any]] = None


class DocumentIn(BaseModel):
    name: str
    type: str
    content_type: str = "application/octet-stream"
    content_base64: str


class ApplicationDocumentsIn(BaseModel):
    documents: List[DocumentIn]


def _error(status: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message, **extra})


@router.post("/issue-vc", summary="Sign, pin and anchor a Digital Nomad Passport credential")
def issue_vc(body: IssueRequest, service: IssuanceService = Depends(get_issuance_service)):
    try:
        result = service.issue(body.address, body.claims)
    except InvalidHolderAddress as e:
        return _error(400, str(e))
    except IssuerConfigurationError as e:
        logger.error("Issuer configuration error: %s", e)
        return _error(500, "Issuer is not configured")
    except PinningServiceError as e:
        return _error(502, "Failed to upload VC to IPFS", detail=e.message, upstream_status=e.status_code)
    except AnchoringError as e:
        content = e.content
        return _error(
            502,
            "Failed to anchor VC on-chain",
            detail=str(e),
            ipfs_cid=content.cid if content else None,
            ipfs_url=content.gateway_url if content else None,
        )

    return {
        "vc_jwt": result.vc_jwt,
        "hash": result.digest_hex,
        "tx_hash": result.tx_hash,
        "ipfs_cid": result.ipfs_cid,
        "ipfs_url": result.ipfs_url,
        "holder_did": result.holder_did,
        "issuer_did": result.issuer_did,
    }


@router.post("/reanchor/{cid}", summary="Anchor a pinned credential whose anchoring failed")
def reanchor(cid: str, service: IssuanceService = Depends(get_issuance_service)):
    try:
        receipt = service.reanchor(cid)
    except PinningServiceError as e:
        status = 404 if e.status_code == 404 else 502
        return _error(status, "Pinned credential not available", detail=e.message)
    except AnchoringError as e:
        return _error(502, "Failed to anchor VC on-chain", detail=str(e), ipfs_cid=cid)
    except ContractDecodeError as e:
        return _error(502, str(e))

    return {
        "hash": receipt.digest_hex,
        "tx_hash": receipt.tx_hash,
        "already_anchored": receipt.tx_hash is None,
    }


@router.get("/credentials/{cid}", summary="Fetch a pinned credential and its on-chain status")
def get_credential(cid: str, service: IssuanceService = Depends(get_issuance_service)):
    try:
        token = service.pinner.fetch_credential(cid)
        digest = compute_digest(token)
        status = service.contract.verify_passport(digest)
    except PinningServiceError as e:
        status_code = 404 if e.status_code == 404 else 502
        return _error(status_code, "Pinned credential not available", detail=e.message)
    except (AnchoringError, ContractDecodeError) as e:
        return _error(502, str(e))

    try:
        payload = decode_credential(token)
    except jwt.PyJWTError:
        logger.exception("Pinned content %s is not a decodable JWT", cid)
        payload = None

    return {
        "cid": cid,
        "vc_jwt": token,
        "payload": payload,
        "hash": "0x" + digest.hex(),
        "anchored": status.is_anchored,
        "revoked": status.is_revoked,
        "issuer": status.issuer,
        "issued_at": status.issued_at,
    }


@router.post(
    "/applications/{address}/documents",
    summary="Pin applicant documents and encode the applyForPassport call for the holder's wallet",
)
def prepare_application(
    address: str,
    body: ApplicationDocumentsIn,
    service: IssuanceService = Depends(get_issuance_service),
):
    if not body.documents:
        return _error(400, "At least one document is required")
    documents = []
    for doc in body.documents:
        try:
            content = base64.b64decode(doc.content_base64, validate=True)
        except (binascii.Error, ValueError):
            return _error(400, f"Document {doc.name!r} is not valid base64")
        documents.append(ApplicantDocument(doc.name, content, doc.content_type, doc.type))

    try:
        prepared = service.prepare_application(address, documents)
    except InvalidHolderAddress as e:
        return _error(400, str(e))
    except PinningServiceError as e:
        return _error(502, "Failed to upload documents to IPFS", detail=e.message, upstream_status=e.status_code)
    except AnchoringError as e:
        return _error(502, str(e))

    return {
        "address": prepared.holder_address,
        "documents": [
            {"name": doc.filename, "type": doc.doc_type, "cid": record.cid, "url": record.gateway_url}
            for doc, record in prepared.documents
        ],
        "cids": [record.cid for _, record in prepared.documents],
        "transaction": {
            "to": prepared.contract_address,
            "data": prepared.calldata,
            "chain_id": prepared.chain_id,
        },
    }
