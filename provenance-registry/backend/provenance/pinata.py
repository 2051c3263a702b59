# provenance/pinata.py
"""
Pins product metadata to IPFS through Pinata.

The registry itself stores only the returned `ipfs://` URI and never reads
it back.
"""
import requests
from .settings import Settings, get_settings
from typing import Optional, Dict
import json

PINATA_BASE_URL = "https://api.pinata.cloud"
PIN_FILE_URL = f"{PINATA_BASE_URL}/pinning/pinFileToIPFS"
PIN_JSON_URL = f"{PINATA_BASE_URL}/pinning/pinJSONToIPFS"


class PinataError(Exception):
    pass


def _auth_headers(settings: Optional[Settings] = None) -> Dict[str, str]:
    """
    Build authorization headers for Pinata.
    """
    settings = settings or get_settings()
    headers = {}
    if settings.PINATA_JWT:
        headers["Authorization"] = f"Bearer {settings.PINATA_JWT}"
    elif settings.PINATA_API_KEY and settings.PINATA_API_SECRET:
        headers["pinata_api_key"] = settings.PINATA_API_KEY
        headers["pinata_secret_api_key"] = settings.PINATA_API_SECRET
    else:
        raise PinataError("Pinata credentials not configured properly in .env")
    return headers


def _cid(res: dict) -> str:
    cid = res.get("IpfsHash") or res.get("ipfsHash")
    if not cid:
        raise PinataError("Pinata did not return CID")
    return cid


def metadata_uri(cid: str) -> str:
    return f"ipfs://{cid}"


def pin_file(filename: str, content: bytes, metadata: Optional[dict] = None,
             settings: Optional[Settings] = None) -> str:
    """
    Uploads a file to Pinata and returns its CID.
    """
    headers = _auth_headers(settings)
    payload = {}
    if metadata:
        payload["pinataMetadata"] = json.dumps(metadata)
    try:
        res = requests.post(PIN_FILE_URL, files={"file": (filename, content)}, data=payload,
                            headers=headers, timeout=60)
        res.raise_for_status()
    except requests.RequestException as e:
        raise PinataError(f"Pinata file upload failed: {e}") from e
    return _cid(res.json())


def pin_json(data: dict, metadata: Optional[dict] = None, settings: Optional[Settings] = None) -> str:
    """
    Pins product metadata JSON to Pinata and returns its CID.
    """
    headers = _auth_headers(settings)
    headers["Content-Type"] = "application/json"

    payload = {"pinataContent": data}
    if metadata:
        payload["pinataMetadata"] = metadata

    try:
        res = requests.post(PIN_JSON_URL, headers=headers, data=json.dumps(payload), timeout=60)
        res.raise_for_status()
    except requests.RequestException as e:
        raise PinataError(f"Pinata JSON upload failed: {e}") from e
    return _cid(res.json())
