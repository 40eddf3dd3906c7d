# SPDX-License-Identifier: MPL-2.0
"""Cryptographic primitives for attestation signing.

This module wraps Ed25519 from ``cryptography`` and owns the on-disk key
format.  Private keys are stored as 64 raw bytes (32-byte seed followed by
the 32-byte public key) so that key files written by other acc
implementations load unchanged.  A 32-byte seed is accepted as well.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, cast

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from acc_trust.core.exceptions import InvalidKeyError

logger = logging.getLogger(__name__)

SEED_SIZE = 32
PUBLIC_KEY_SIZE = 32
PRIVATE_KEY_SIZE = 64
SIGNATURE_SIZE = 64

SIGNING_KEY_ENV = "ACC_SIGNING_KEY"
SIGNING_KEY_FILE_ENV = "ACC_SIGNING_KEY_FILE"


def key_id_from_public_bytes(public_bytes: bytes) -> str:
    """Derive a deterministic key identifier from a raw Ed25519 public key.

    ``keyId = "ed25519:" + lower(base32_nopad(sha256(pub)))[:26]``
    """

    digest = hashlib.sha256(public_bytes).digest()
    encoded = base64.b32encode(digest).decode("ascii").rstrip("=")
    return "ed25519:" + encoded.lower()[:26]


@dataclass
class KeyPair:
    """Represents an Ed25519 public/private key pair."""

    private_key: ed25519.Ed25519PrivateKey
    public_key: ed25519.Ed25519PublicKey

    @classmethod
    def generate(cls) -> KeyPair:
        """Generate a new key pair."""

        private_key = ed25519.Ed25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def from_private_bytes(cls, private_bytes: bytes) -> KeyPair:
        """Create a KeyPair from a 32-byte seed or 64-byte seed||public key."""

        if len(private_bytes) == PRIVATE_KEY_SIZE:
            seed = private_bytes[:SEED_SIZE]
        elif len(private_bytes) == SEED_SIZE:
            seed = private_bytes
        else:
            raise InvalidKeyError(
                f"invalid Ed25519 private key length: expected {SEED_SIZE} or "
                f"{PRIVATE_KEY_SIZE} bytes, got {len(private_bytes)}"
            )

        private_key = ed25519.Ed25519PrivateKey.from_private_bytes(seed)
        key_pair = cls(private_key=private_key, public_key=private_key.public_key())

        if len(private_bytes) == PRIVATE_KEY_SIZE and private_bytes[SEED_SIZE:] != key_pair.public_bytes():
            raise InvalidKeyError("private key material does not match its embedded public key")
        return key_pair

    @property
    def key_id(self) -> str:
        return key_id_from_public_bytes(self.public_bytes())

    def sign(self, data: bytes) -> bytes:
        """Sign data with the private key."""
        return cast("bytes", self.private_key.sign(data))

    def verify(self, data: bytes, signature: bytes) -> bool:
        """Verify a signature."""
        return verify_signature(self.public_bytes(), data, signature)

    def public_bytes(self) -> bytes:
        """Get the public key as raw bytes."""
        return cast(
            "bytes",
            self.public_key.public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            ),
        )

    def private_bytes(self) -> bytes:
        """Get the private key as 64 raw bytes (seed followed by public key)."""
        seed = cast(
            "bytes",
            self.private_key.private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )
        return seed + self.public_bytes()


def verify_signature(public_bytes: bytes, data: bytes, signature: bytes) -> bool:
    """Verify an Ed25519 ``signature`` over ``data`` with a raw public key."""

    if len(public_bytes) != PUBLIC_KEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(public_bytes).verify(signature, data)
    except (InvalidSignature, ValueError):
        return False
    else:
        return True


def load_key_file(path: Path) -> KeyPair:
    """Load a private key file containing raw or base64-encoded key bytes."""

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise InvalidKeyError(f"failed to read key file {path}: {exc}") from exc

    if len(data) in (SEED_SIZE, PRIVATE_KEY_SIZE):
        return KeyPair.from_private_bytes(data)

    try:
        decoded = base64.b64decode(data.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKeyError(f"key file {path} is not raw bytes or valid base64") from exc
    return KeyPair.from_private_bytes(decoded)


def write_key_file(path: Path, key_pair: KeyPair) -> None:
    """Write ``key_pair`` to ``path`` as raw bytes readable only by the owner."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_pair.private_bytes())


def resolve_signing_key(
    default_path: Path, environ: Optional[Mapping[str, str]] = None
) -> KeyPair:
    """Resolve the signing key.

    Sources, in order:

    1. ``ACC_SIGNING_KEY`` - base64-encoded private key
    2. ``ACC_SIGNING_KEY_FILE`` - path to a key file
    3. ``default_path`` (normally ``.acc/keys/ed25519.key``)

    Raises:
        InvalidKeyError: If no source yields a usable key.
    """

    env = os.environ if environ is None else environ

    env_key = env.get(SIGNING_KEY_ENV, "")
    if env_key:
        try:
            decoded = base64.b64decode(env_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidKeyError(f"{SIGNING_KEY_ENV} is not valid base64") from exc
        return KeyPair.from_private_bytes(decoded)

    env_file = env.get(SIGNING_KEY_FILE_ENV, "")
    if env_file:
        return load_key_file(Path(env_file))

    if default_path.exists():
        return load_key_file(default_path)

    raise InvalidKeyError(
        f"no signing key found (checked {SIGNING_KEY_ENV}, {SIGNING_KEY_FILE_ENV}, and {default_path})"
    )


def ensure_signing_key(
    default_path: Path, environ: Optional[Mapping[str, str]] = None
) -> KeyPair:
    """Resolve the signing key, generating and persisting one if none exists."""

    try:
        return resolve_signing_key(default_path, environ)
    except InvalidKeyError:
        if default_path.exists():
            raise
        env = os.environ if environ is None else environ
        if env.get(SIGNING_KEY_ENV) or env.get(SIGNING_KEY_FILE_ENV):
            raise

    key_pair = KeyPair.generate()
    write_key_file(default_path, key_pair)
    logger.info("Generated new signing key %s at %s", key_pair.key_id, default_path)
    return key_pair
