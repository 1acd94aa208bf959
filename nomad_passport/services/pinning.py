import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from nomad_passport.config import Settings
from nomad_passport.exceptions import PinningServiceError

logger = logging.getLogger(__name__)

PIN_JSON_PATH = "/pinning/pinJSONToIPFS"
PIN_FILE_PATH = "/pinning/pinFileToIPFS"
ENVELOPE_FIELD = "vc"

_CID_V0 = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CID_V1_BASE32 = re.compile(r"^b[a-z2-7]{58,}$")


def is_valid_cid(value) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_CID_V0.match(value) or _CID_V1_BASE32.match(value))


@dataclass(frozen=True)
class ContentRecord:
    cid: str
    gateway_url: str
    pin_size: Optional[int] = None
    timestamp: Optional[str] = None


class PinningClient:
    """Pinata JSON pinning API plus read-back through the configured gateway."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = client or httpx.Client(timeout=httpx.Timeout(settings.pin_timeout))

    def close(self):
        self._client.close()

    def _auth_headers(self) -> dict:
        if self.settings.pinata_jwt:
            return {"Authorization": f"Bearer {self.settings.pinata_jwt}"}
        return {
            "pinata_api_key": self.settings.pinata_api_key or "",
            "pinata_secret_api_key": self.settings.pinata_secret_api_key or "",
        }

    def gateway_url(self, cid: str) -> str:
        return f"https://{self.settings.pinata_gateway}/ipfs/{cid}"

    def pin_credential(self, token: str, name: str, holder_address: str) -> ContentRecord:
        body = {
            "pinataContent": {ENVELOPE_FIELD: token},
            "pinataMetadata": {
                "name": name,
                "keyvalues": {"type": "verifiable-credential", "holder": holder_address},
            },
            "pinataOptions": {"cidVersion": 1},
        }
        record = self._pin(PIN_JSON_PATH, json=body)
        logger.info("VC uploaded to IPFS: %s", record.gateway_url)
        return record

    def pin_file(
        self,
        filename: str,
        content: bytes,
        content_type: str,
        holder_address: str,
        doc_type: str,
    ) -> ContentRecord:
        """Pins a raw applicant document (pinFileToIPFS multipart upload)."""
        metadata = {
            "name": filename,
            "keyvalues": {"type": doc_type, "holder": holder_address},
        }
        record = self._pin(
            PIN_FILE_PATH,
            files={"file": (filename, content, content_type)},
            data={
                "pinataMetadata": json.dumps(metadata),
                "pinataOptions": json.dumps({"cidVersion": 1}),
            },
        )
        logger.info("Document %s uploaded to IPFS: %s", filename, record.gateway_url)
        return record

    def _pin(self, path: str, **kwargs) -> ContentRecord:
        url = self.settings.pinata_api_url + path
        try:
            r = self._client.post(url, headers=self._auth_headers(), **kwargs)
        except httpx.TimeoutException:
            raise PinningServiceError(f"Timeout after {self.settings.pin_timeout}s")
        except httpx.HTTPError as e:
            raise PinningServiceError(f"Request failed: {e}")

        if not r.is_success:
            detail = r.text
            try:
                data = r.json()
                if isinstance(data, dict):
                    err = data.get("error")
                    if isinstance(err, dict):
                        detail = err.get("details") or err.get("reason") or detail
                    elif err:
                        detail = str(err)
            except ValueError:
                pass
            logger.error("Pinning service returned %s", r.status_code)
            raise PinningServiceError(detail, status_code=r.status_code)

        try:
            data = r.json()
        except ValueError:
            raise PinningServiceError("Response is not JSON", status_code=r.status_code)

        cid = data.get("IpfsHash") if isinstance(data, dict) else None
        if not is_valid_cid(cid):
            raise PinningServiceError(f"Response has no valid content identifier: {cid!r}", status_code=r.status_code)

        return ContentRecord(
            cid=cid,
            gateway_url=self.gateway_url(cid),
            pin_size=data.get("PinSize"),
            timestamp=data.get("Timestamp"),
        )

    def fetch_credential(self, cid: str) -> str:
        """Reads a pinned envelope back through the gateway and returns the token."""
        if not is_valid_cid(cid):
            raise PinningServiceError(f"Invalid content identifier: {cid!r}")
        try:
            r = self._client.get(self.gateway_url(cid))
        except httpx.HTTPError as e:
            raise PinningServiceError(f"Gateway request failed: {e}")
        if not r.is_success:
            raise PinningServiceError(r.text, status_code=r.status_code)
        try:
            data = r.json()
        except ValueError:
            raise PinningServiceError("Pinned content is not JSON", status_code=r.status_code)
        token = data.get(ENVELOPE_FIELD) if isinstance(data, dict) else None
        if not isinstance(token, str):
            raise PinningServiceError(f"Pinned content has no '{ENVELOPE_FIELD}' field")
        return token
