import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from nomad_passport.config import Settings
from nomad_passport.exceptions import AnchoringError, OrphanedPinWarning
from nomad_passport.services.anchor import AnchorContract, AnchorReceipt, AnchorSubmitter, compute_digest
from nomad_passport.services.credential import CredentialBuilder
from nomad_passport.services.did_ethr import IssuerIdentity, validate_holder_address
from nomad_passport.services.pinning import ContentRecord, PinningClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuanceResult:
    vc_jwt: str
    digest_hex: str
    tx_hash: str
    ipfs_cid: str
    ipfs_url: str
    holder_did: str
    issuer_did: str


@dataclass(frozen=True)
class ApplicantDocument:
    filename: str
    content: bytes
    content_type: str
    doc_type: str


@dataclass(frozen=True)
class PreparedApplication:
    holder_address: str
    documents: List[Tuple[ApplicantDocument, ContentRecord]]
    calldata: str
    contract_address: str
    chain_id: Optional[int]


class IssuanceService:
    """
    Issues a passport credential and anchors it:
      1. sign the VC (no I/O)
      2. pin it to IPFS
      3. store keccak256(token) on the Anchor contract
    Each step must succeed before the next one runs. Nothing is retried.
    """

    def __init__(
        self,
        builder: CredentialBuilder,
        pinner: PinningClient,
        submitter: AnchorSubmitter,
        credential_name: str,
    ):
        self.builder = builder
        self.pinner = pinner
        self.submitter = submitter
        self.credential_name = credential_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "IssuanceService":
        issuer = IssuerIdentity.from_private_key(settings.private_key, settings.did_network)
        contract = AnchorContract.from_settings(settings, issuer)
        return cls(
            CredentialBuilder(issuer),
            PinningClient(settings),
            AnchorSubmitter(contract),
            settings.credential_name,
        )

    @property
    def contract(self) -> AnchorContract:
        return self.submitter.contract

    def issue(self, holder_address: str, claims: Optional[Dict[str, Any]] = None) -> IssuanceResult:
        credential = self.builder.issue(holder_address, claims)

        content = self.pinner.pin_credential(credential.token, self.credential_name, credential.holder_address)

        try:
            receipt = self.submitter.submit(credential.token)
        except AnchoringError as e:
            e.content = content
            logger.warning("Orphaned pin %s: anchoring failed (%s)", content.cid, e)
            warnings.warn(
                f"Credential pinned at {content.cid} was not anchored: {e}",
                OrphanedPinWarning,
                stacklevel=2,
            )
            raise

        return IssuanceResult(
            vc_jwt=credential.token,
            digest_hex=receipt.digest_hex,
            tx_hash=receipt.tx_hash,
            ipfs_cid=content.cid,
            ipfs_url=content.gateway_url,
            holder_did=credential.holder_did,
            issuer_did=credential.issuer_did,
        )

    def reanchor(self, cid: str) -> AnchorReceipt:
        """
        Anchors a credential that was pinned but never anchored.
        The digest is recomputed from the pinned token; if the contract already
        knows it, nothing is submitted and tx_hash is None.
        """
        token = self.pinner.fetch_credential(cid)
        digest = compute_digest(token)
        if self.contract.is_anchored(digest):
            logger.info("Content %s is already anchored", cid)
            return AnchorReceipt(digest_hex="0x" + digest.hex(), tx_hash=None, block_number=None)
        logger.info("Re-anchoring pinned content %s", cid)
        return self.submitter.submit(token)

    def prepare_application(self, holder_address: str, documents: List[ApplicantDocument]) -> PreparedApplication:
        """
        Pins the applicant's documents and encodes the applyForPassport call.
        The transaction is not sent: the holder's wallet must submit it so
        the holder, not the service account, becomes the applicant.
        """
        holder = validate_holder_address(holder_address)
        if not documents:
            raise ValueError("At least one document is required")

        pinned = []
        for doc in documents:
            record = self.pinner.pin_file(doc.filename, doc.content, doc.content_type, holder, doc.doc_type)
            pinned.append((doc, record))

        cids = [record.cid for _, record in pinned]
        calldata = self.contract.apply_for_passport_calldata(cids)
        logger.info("Pinned %d document(s) for %s", len(cids), holder)
        return PreparedApplication(
            holder_address=holder,
            documents=pinned,
            calldata=calldata,
            contract_address=self.contract.address,
            chain_id=self.contract.chain_id,
        )
