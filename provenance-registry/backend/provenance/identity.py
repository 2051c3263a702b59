# provenance/identity.py
import json
import time
from typing import Optional

from web3 import Web3
from eth_account import Account
from eth_account.messages import encode_defunct
from hexbytes import HexBytes

from .errors import InvalidIdentity


def to_identity(value) -> str:
    """
    Normalize an actor identity to its EIP-55 checksummed address.
    Raises InvalidIdentity for anything that is not a 20-byte address.
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        raise InvalidIdentity(f"not a valid actor identity: {value!r}")
    return Web3.to_checksum_address(value)


def body_digest(body: bytes) -> str:
    return Web3.to_hex(Web3.keccak(body or b""))


def signing_message(method: str, path: str, timestamp: int, body: bytes = b"") -> str:
    """Text a caller signs (personal_sign) to authenticate one HTTP request, body included."""
    return f"{method.upper()} {path} {int(timestamp)} {body_digest(body)}"


def recover_signer(message: str, signature: str) -> str:
    """
    Recover the address that signed `message` using Ethereum personal_sign semantics
    (i.e. signer.signMessage(message) from ethers).
    """
    try:
        signable = encode_defunct(text=message)
        signer = Account.recover_message(signable, signature=HexBytes(signature))
    except Exception as e:
        raise InvalidIdentity(f"signature could not be recovered: {e}")
    return Web3.to_checksum_address(signer)


def verify_signed_request(
    caller: str,
    method: str,
    path: str,
    timestamp: Optional[int],
    signature: Optional[str],
    max_age_seconds: int,
    body: bytes = b"",
    now: Optional[int] = None,
) -> str:
    if timestamp is None or not signature:
        raise InvalidIdentity("signed request headers are missing")
    now = int(time.time()) if now is None else now
    if abs(now - int(timestamp)) > max_age_seconds:
        raise InvalidIdentity("request signature has expired")

    expected = to_identity(caller)
    recovered = recover_signer(signing_message(method, path, timestamp, body), signature)
    if recovered != expected:
        raise InvalidIdentity("signature does not match caller")
    return expected


def event_digest(payload: dict) -> str:
    """keccak256 over the canonical JSON form of an event payload, 0x-prefixed."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return Web3.to_hex(Web3.keccak(text=canonical))
