from __future__ import annotations

"""
Ballot sealing (X25519 + HKDF-SHA256 + AES-256-GCM).

Envelope layout:
  ephemeral_pub (32) | nonce (12) | ciphertext | tag (16)

Every ballot gets its own ephemeral key pair, so two ballots sealed to the same
poll key can not be linked. The GCM tag protects the ballot in transit but says
nothing about who sent it.

On the wire the envelope is a JSON string holding the standard base64 of the
raw bytes.
"""

import base64
import binascii
import json
import os
from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from osvote.errors import CryptoError, InvalidPollKey, RandomSourceError
from osvote.keychain import verify_signature

PUB_KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

RandomSource = Callable[[int], bytes]


def envelope_size(plaintext_len: int) -> int:
    return PUB_KEY_SIZE + NONCE_SIZE + plaintext_len + TAG_SIZE


def _read_random(random: RandomSource, n: int, what: str) -> bytes:
    try:
        b = random(n)
    except OSError as e:
        raise RandomSourceError(f"reading {what} from random source: {e}") from e
    if len(b) != n:
        raise RandomSourceError(f"random source returned {len(b)} of {n} bytes for {what}")
    return bytes(b)


def _derive_key(shared_secret: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=None,
    ).derive(shared_secret)


def _raw_public(key: x25519.X25519PublicKey) -> bytes:
    return key.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)


def encrypt(random: RandomSource, public_key: bytes, plaintext: bytes) -> bytes:
    eph_priv = x25519.X25519PrivateKey.from_private_bytes(_read_random(random, PUB_KEY_SIZE, "ephemeral key"))
    eph_pub = _raw_public(eph_priv.public_key())

    try:
        recipient = x25519.X25519PublicKey.from_public_bytes(bytes(public_key))
        shared = eph_priv.exchange(recipient)
    except ValueError as e:
        raise CryptoError(f"creating shared secret: {e}") from e

    key = _derive_key(shared)
    nonce = _read_random(random, NONCE_SIZE, "nonce")
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    return eph_pub + nonce + sealed


def seal_vote(
    plaintext: bytes,
    main_key: bytes,
    poll_key: bytes,
    key_sig: bytes,
    *,
    random: RandomSource = os.urandom,
) -> bytes:
    """
    Seals plaintext to the poll key after checking the poll key against the
    main key. Nothing is read from random when that check fails.
    """
    if not main_key or not verify_signature(main_key, poll_key, key_sig):
        raise InvalidPollKey("poll key is invalid. It was not signed with the main key")
    return encrypt(random, poll_key, plaintext)


def open_vote(envelope: bytes, poll_private_key: x25519.X25519PrivateKey) -> bytes:
    if len(envelope) < envelope_size(0):
        raise CryptoError(f"envelope too short: {len(envelope)} bytes")
    eph_pub = envelope[:PUB_KEY_SIZE]
    nonce = envelope[PUB_KEY_SIZE:PUB_KEY_SIZE + NONCE_SIZE]
    sealed = envelope[PUB_KEY_SIZE + NONCE_SIZE:]
    try:
        shared = poll_private_key.exchange(x25519.X25519PublicKey.from_public_bytes(eph_pub))
    except ValueError as e:
        raise CryptoError(f"creating shared secret: {e}") from e
    try:
        return AESGCM(_derive_key(shared)).decrypt(nonce, sealed, None)
    except InvalidTag as err:
        raise CryptoError("ciphertext_tamper_detected") from err


def encode_envelope(envelope: bytes) -> str:
    return json.dumps(base64.b64encode(envelope).decode("ascii"))


def decode_envelope(value: str) -> bytes:
    try:
        text = json.loads(value)
        if not isinstance(text, str):
            raise CryptoError("encoded envelope must be a JSON string")
        return base64.b64decode(text, validate=True)
    except (ValueError, binascii.Error) as e:
        raise CryptoError(f"decoding envelope: {e}") from e


def encrypt_vote(
    vote: str,
    main_key: bytes,
    poll_key: bytes,
    key_sig: bytes,
    *,
    random: RandomSource = os.urandom,
) -> str:
    return encode_envelope(seal_vote(vote.encode("utf-8"), main_key, poll_key, key_sig, random=random))
