# SPDX-License-Identifier: MPL-2.0
"""Detached Ed25519 signature envelopes over JCS-canonical attestations.

A signed attestation file has the shape::

    {"attestation": {...}, "envelope": {"alg": "ed25519", "canon": "jcs", ...}}

This module is the only place that touches signature bytes; everything else
sees the result of :func:`verify_envelope` as a plain boolean.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from typing import Any, Dict, Mapping, Union

from acc_trust.core.canonicalization import canonical_bytes
from acc_trust.core.crypto import (
    PUBLIC_KEY_SIZE,
    SIGNATURE_SIZE,
    KeyPair,
    key_id_from_public_bytes,
    verify_signature,
)
from acc_trust.core.exceptions import CanonicalizationError
from acc_trust.core.models import ENVELOPE_ALG, ENVELOPE_CANON, AttestationDocument, SignatureEnvelope

logger = logging.getLogger(__name__)

Payload = Union[AttestationDocument, Mapping[str, Any]]


def _as_dict(payload: Payload) -> Dict[str, Any]:
    if isinstance(payload, AttestationDocument):
        return payload.to_dict()
    return dict(payload)


def payload_hash(payload: Payload) -> str:
    """Return ``sha256:<hex>`` over the canonical bytes of ``payload``."""
    return "sha256:" + hashlib.sha256(canonical_bytes(_as_dict(payload))).hexdigest()


def sign_attestation(payload: Payload, key_pair: KeyPair) -> SignatureEnvelope:
    """Sign the canonical form of ``payload``.

    The signature covers the canonical bytes themselves; ``payloadHash`` is
    carried alongside so tampering can be reported before the signature is
    checked.
    """
    data = canonical_bytes(_as_dict(payload))
    return SignatureEnvelope(
        alg=ENVELOPE_ALG,
        canon=ENVELOPE_CANON,
        key_id=key_pair.key_id,
        public_key=base64.b64encode(key_pair.public_bytes()).decode("ascii"),
        payload_hash="sha256:" + hashlib.sha256(data).hexdigest(),
        signature=base64.b64encode(key_pair.sign(data)).decode("ascii"),
    )


def signed_document(payload: Payload, envelope: SignatureEnvelope) -> Dict[str, Any]:
    """Wrap a payload and its envelope in the on-disk signed format."""
    return {"attestation": _as_dict(payload), "envelope": envelope.to_dict()}


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


def verify_envelope(payload: Payload, envelope: Union[SignatureEnvelope, Mapping[str, Any]]) -> bool:
    """Return True only if every envelope check passes.

    Checks, in order: algorithm and canonicalisation names, presence of all
    fields, public key size, key id derived from the public key, payload hash
    over the canonical document, and finally the Ed25519 signature.
    """
    if not isinstance(envelope, SignatureEnvelope):
        envelope = SignatureEnvelope.model_validate(dict(envelope))

    if envelope.alg != ENVELOPE_ALG or envelope.canon != ENVELOPE_CANON:
        logger.debug("Unsupported envelope alg=%r canon=%r", envelope.alg, envelope.canon)
        return False
    if not (envelope.key_id and envelope.public_key and envelope.payload_hash and envelope.signature):
        logger.debug("Envelope is missing required fields")
        return False

    try:
        public_bytes = _b64decode(envelope.public_key)
        signature = _b64decode(envelope.signature)
    except (binascii.Error, ValueError):
        logger.debug("Envelope public key or signature is not valid base64")
        return False
    if len(public_bytes) != PUBLIC_KEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False

    if key_id_from_public_bytes(public_bytes) != envelope.key_id:
        logger.debug("Envelope keyId does not match its public key")
        return False

    try:
        data = canonical_bytes(_as_dict(payload))
    except CanonicalizationError as e:
        logger.debug("Cannot canonicalize signed payload: %s", e)
        return False
    if "sha256:" + hashlib.sha256(data).hexdigest() != envelope.payload_hash:
        logger.debug("Envelope payloadHash does not match the canonical payload")
        return False

    return verify_signature(public_bytes, data, signature)
