# medic-app/content_store.py

import logging

import requests
from werkzeug.utils import secure_filename

from errors import Invalid, UploadFailed

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"
DEFAULT_GATEWAY_URL = "https://gateway.pinata.cloud"


class PinataClient:
    """
    Pins blobs to IPFS through Pinata and builds gateway URLs for them.

    Uploads are never retried here; the caller decides whether to try again.
    """

    def __init__(self, api_key=None, secret_api_key=None, jwt=None,
                 api_url=DEFAULT_API_URL, gateway_url=DEFAULT_GATEWAY_URL, timeout=120):
        self.api_key = api_key
        self.secret_api_key = secret_api_key
        self.jwt = jwt
        self.api_url = api_url
        # Accept both "https://host" and "https://host/ipfs" as the gateway base
        self.gateway_url = gateway_url.rstrip("/")
        if self.gateway_url.endswith("/ipfs"):
            self.gateway_url = self.gateway_url[: -len("/ipfs")]
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.PINATA_API_KEY,
            secret_api_key=config.PINATA_SECRET_API_KEY,
            jwt=config.PINATA_JWT,
            api_url=config.PINATA_API_URL,
            gateway_url=config.IPFS_GATEWAY_URL,
            timeout=config.UPLOAD_TIMEOUT,
        )

    @property
    def is_configured(self):
        return bool(self.jwt or (self.api_key and self.secret_api_key))

    def _headers(self):
        if self.jwt:
            return {"Authorization": f"Bearer {self.jwt}"}
        return {"pinata_api_key": self.api_key, "pinata_secret_api_key": self.secret_api_key}

    def upload(self, blob, file_name="file", file_type=None):
        """
        Pins ``blob`` and returns its IPFS CID.

        Raises:
            UploadFailed: on missing credentials, any non-2xx response, a
                network error, or a response without 'IpfsHash'.
        """
        if not self.is_configured:
            raise UploadFailed("Pinata API keys not set", reason="not_configured")

        safe_name = secure_filename(file_name or "") or "file"
        files_payload = {"file": (safe_name, blob, file_type or "application/octet-stream")}
        logger.info("Uploading file '%s' (%d bytes) to Pinata...", safe_name, len(blob))

        try:
            response = requests.post(self.api_url, files=files_payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code == 401:
                message = "Pinata authentication failed. Check API keys."
            elif isinstance(e, requests.exceptions.Timeout):
                message = "Timeout uploading file to Pinata"
            elif isinstance(e, requests.exceptions.ConnectionError):
                message = f"Could not connect to Pinata at {self.api_url}"
            else:
                message = f"Failed to upload file via Pinata: {e}"
            reason = e.response.reason if e.response is not None else type(e).__name__
            logger.warning("Pinata upload of '%s' failed: %s", safe_name, message)
            raise UploadFailed(message, status_code=status_code, reason=reason) from e

        try:
            cid = response.json().get("IpfsHash")
        except ValueError as e:
            raise UploadFailed("Pinata returned a non-JSON response", status_code=response.status_code) from e
        if not cid:
            raise UploadFailed("Pinata upload failed: 'IpfsHash' not found.", status_code=response.status_code)

        logger.info("File pinned via Pinata. CID: %s", cid)
        return cid

    def resolve(self, content_hash):
        """Returns the public gateway URL for a CID. No network call is made."""
        if not content_hash or not str(content_hash).strip():
            raise Invalid("Content hash is required")
        return f"{self.gateway_url}/ipfs/{str(content_hash).strip()}"
