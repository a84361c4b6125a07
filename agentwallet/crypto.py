"""
Cryptography Module - Ed25519 Keys, Addresses & Hashing
=======================================================

Primitives shared by the registry client and the local ledger:
- Ed25519 keypair generation
- Base64 signing and verification of transaction hashes
- Canonical JSON hashing
- Address derivation from public keys
- A local key signer usable as a sign callback

Private-key custody is not handled here: production deployments plug in an
external signer that satisfies the same callback shape.
"""

import base64
import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat, PrivateFormat

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class CryptoError(Exception):
    """Base exception for cryptographic operations"""
    pass


@dataclass(frozen=True)
class SignatureResponse:
    """Signature returned by a sign callback"""
    signature: str  # base64 Ed25519 signature
    public_key: str  # base64 raw public key


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: str) -> str:
    """Lower-case an address, raising ValueError if it is malformed"""
    if not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def sha256_hex(data: bytes) -> str:
    """SHA256 hash as hex string"""
    return hashlib.sha256(data).hexdigest()


def canonical_json(obj: Any) -> bytes:
    """Deterministic JSON serialization used for hashing and wire formats"""
    return json.dumps(obj, sort_keys=True, separators=(',', ':')).encode('utf-8')


def digest_bytes(message_hash: str) -> bytes:
    """Raw bytes of a 0x-prefixed hex digest"""
    if message_hash.startswith("0x"):
        message_hash = message_hash[2:]
    return bytes.fromhex(message_hash)


def address_from_public_key(public_key_b64: str) -> str:
    """Derive a ledger address from a raw Ed25519 public key"""
    public_key_bytes = base64.b64decode(public_key_b64)
    if len(public_key_bytes) != 32:
        raise CryptoError("Ed25519 public key must be 32 bytes")
    return "0x" + sha256_hex(public_key_bytes)[-40:]


def generate_ed25519_keypair() -> Tuple[str, str]:
    """Generate an Ed25519 keypair. Returns (private_key_b64, public_key_b64)"""
    private_key = ed25519.Ed25519PrivateKey.generate()
    return _serialize_keypair(private_key)


def public_key_from_private(private_key_b64: str) -> str:
    private_key = _load_private_key(private_key_b64)
    return _serialize_keypair(private_key)[1]


def ed25519_sign_b64(message: bytes, private_key_b64: str) -> str:
    """Sign message with Ed25519 private key"""
    try:
        private_key = _load_private_key(private_key_b64)
        return base64.b64encode(private_key.sign(message)).decode()
    except Exception as e:
        logger.error(f"Message signing failed: {e}")
        raise CryptoError(f"Message signing failed: {e}")


def ed25519_verify_b64(message: bytes, signature_b64: str, public_key_b64: str) -> bool:
    """Verify Ed25519 signature"""
    try:
        signature = base64.b64decode(signature_b64)
        public_key = ed25519.Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key_b64))
        public_key.verify(signature, message)
        return True
    except (InvalidSignature, ValueError) as e:
        logger.debug(f"Signature verification failed: {e}")
        return False


def _load_private_key(private_key_b64: str) -> ed25519.Ed25519PrivateKey:
    return ed25519.Ed25519PrivateKey.from_private_bytes(base64.b64decode(private_key_b64))


def _serialize_keypair(private_key: ed25519.Ed25519PrivateKey) -> Tuple[str, str]:
    private_key_bytes = private_key.private_bytes(
        encoding=Encoding.Raw,
        format=PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_key_bytes = private_key.public_key().public_bytes(
        encoding=Encoding.Raw,
        format=PublicFormat.Raw
    )
    return base64.b64encode(private_key_bytes).decode(), base64.b64encode(public_key_bytes).decode()


class LocalKeySigner:
    """Signs transaction hashes with an in-memory Ed25519 key.

    Instances are awaitable sign callbacks::

        signer = LocalKeySigner()
        response = await signer("0x...")
    """

    def __init__(self, private_key_b64: Optional[str] = None):
        if private_key_b64 is None:
            private_key_b64, _ = generate_ed25519_keypair()
        self._private_key_b64 = private_key_b64
        self.public_key = public_key_from_private(private_key_b64)
        self.address = address_from_public_key(self.public_key)

    async def __call__(self, message_hash: str) -> SignatureResponse:
        return self.sign(message_hash)

    def sign(self, message_hash: str) -> SignatureResponse:
        signature = ed25519_sign_b64(digest_bytes(message_hash), self._private_key_b64)
        return SignatureResponse(signature=signature, public_key=self.public_key)

    def __repr__(self) -> str:
        return f"LocalKeySigner(address={self.address!r})"
