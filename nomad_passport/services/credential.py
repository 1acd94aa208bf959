import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt  # PyJWT

from nomad_passport.services.did_ethr import IssuerIdentity, ethr_did, validate_holder_address

logger = logging.getLogger(__name__)

VC_CONTEXT = ["https://www.w3.org/2018/credentials/v1"]
VC_TYPE = ["VerifiableCredential", "DigitalNomadPassport"]
JWT_ALG = "ES256K"

# Atributos por defecto del pasaporte
DEFAULT_CLAIMS: Dict[str, Any] = {
    "name": "Alice Nomad",
    "nationality": "Canadian",
    "residence": "Portugal",
    "visa": "Remote Work Visa",
    "validUntil": "2026-01-01",
}


@dataclass(frozen=True)
class SignedCredential:
    token: str
    holder_address: str
    holder_did: str
    issuer_did: str
    not_before: int


class CredentialBuilder:
    def __init__(self, issuer: IssuerIdentity):
        self.issuer = issuer

    def build_payload(
        self,
        holder_address: str,
        claims: Optional[Dict[str, Any]] = None,
        now: Optional[int] = None,
    ) -> Dict[str, Any]:
        holder = validate_holder_address(holder_address)
        subject = copy.deepcopy(claims) if claims else dict(DEFAULT_CLAIMS)
        return {
            "sub": ethr_did(self.issuer.network, holder),
            "nbf": int(time.time()) if now is None else int(now),
            "iss": self.issuer.did,
            "vc": {
                "@context": list(VC_CONTEXT),
                "type": list(VC_TYPE),
                "credentialSubject": subject,
            },
        }

    def sign(self, payload: Dict[str, Any]) -> str:
        """
        Signs the payload as a compact JWT (ES256K) with the issuer key.
        The returned string is the exact byte sequence that gets pinned and hashed.
        """
        token = jwt.encode(
            payload,
            self.issuer.signing_key(),
            algorithm=JWT_ALG,
            headers={"typ": "JWT"},
        )
        if isinstance(token, bytes):
            token = token.decode()
        return token

    def issue(self, holder_address: str, claims: Optional[Dict[str, Any]] = None) -> SignedCredential:
        payload = self.build_payload(holder_address, claims)
        token = self.sign(payload)
        logger.info("Signed credential for %s (nbf=%s)", payload["sub"], payload["nbf"])
        return SignedCredential(
            token=token,
            holder_address=payload["sub"].rsplit(":", 1)[-1],
            holder_did=payload["sub"],
            issuer_did=payload["iss"],
            not_before=payload["nbf"],
        )


def decode_credential(token: str, public_key=None) -> Dict[str, Any]:
    """
    Decodes a credential token. The signature is verified only when a public key
    is given; the not-before claim is not enforced.
    """
    if public_key is None:
        return jwt.decode(token, options={"verify_signature": False})
    return jwt.decode(
        token,
        public_key,
        algorithms=[JWT_ALG],
        options={"verify_nbf": False},
    )
