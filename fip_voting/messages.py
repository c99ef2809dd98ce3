"""Parsing and authentication of the signed messages clients submit.

Votes, vote starts and starter authorizations are EIP-191 personal-sign
messages from an Ethereum key. Voter registrations are signed by the storage
provider's BLS worker key and name the Ethereum address being authorized::

    vote:          "YAY: FIP-42"
    vote start:    "FIP-42"
    starter auth:  "0x3B9705F0EF88Ee74B9924e34A5Af578d2E24F300"
    registration:  "0x3B97...F300 f01234 f05678"
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct
from py_ecc.bls import G2Basic

from .errors import InvalidAddress, InvalidMessageFormat, InvalidSignature
from .models import MAX_PROPOSAL_NUMBER, Choice, Network, Vote, parse_address

BLS_PROTOCOL = 3
BLS_PUBKEY_LEN = 48
BLS_SIGNATURE_LEN = 96
CHECKSUM_LEN = 4

_FIP_RE = re.compile(r"^FIP-(\d{1,10})$", re.IGNORECASE)
_BLS_ADDRESS_RE = re.compile(r"^[ft]3[a-z2-7]{84}$", re.IGNORECASE)
_ACTOR_ID_RE = re.compile(r"^([ft])0(\d{1,10})$", re.IGNORECASE)


@dataclass(frozen=True)
class Registration:
    voter: bytes
    worker_address: str
    network: Network
    provider_ids: List[int]


def _field(body: Mapping[str, Any], name: str) -> str:
    value = body.get(name) if isinstance(body, Mapping) else None
    if not isinstance(value, str) or not value.strip():
        raise InvalidMessageFormat(f"missing {name}")
    return value.strip()


def parse_fip(token: str) -> int:
    match = _FIP_RE.match(token.strip())
    if not match:
        raise InvalidMessageFormat(f"expected FIP-<number>, got {token!r}")
    number = int(match.group(1))
    if number > MAX_PROPOSAL_NUMBER:
        raise InvalidMessageFormat(f"FIP number out of range: {number}")
    return number


def _checksum(pubkey: bytes) -> bytes:
    return hashlib.blake2b(bytes([BLS_PROTOCOL]) + pubkey, digest_size=CHECKSUM_LEN).digest()


def bls_worker_address(pubkey: bytes, network: Network) -> str:
    """Format a BLS public key as an ``f3``/``t3`` address."""
    encoded = base64.b32encode(pubkey + _checksum(pubkey)).decode("ascii").rstrip("=").lower()
    return f"{network.actor_prefix}{BLS_PROTOCOL}{encoded}"


def decode_bls_address(address: str) -> Tuple[bytes, Network]:
    """Return the BLS public key and network encoded in an ``f3``/``t3`` address."""
    if not _BLS_ADDRESS_RE.match(address or ""):
        raise InvalidMessageFormat("Invalid worker address")
    network = Network.MAINNET if address[0].lower() == "f" else Network.TESTNET
    encoded = address[2:].upper()
    encoded += "=" * (-len(encoded) % 8)
    try:
        raw = base64.b32decode(encoded)
    except (binascii.Error, ValueError):
        raise InvalidMessageFormat("Invalid worker address") from None
    pubkey, checksum = raw[:-CHECKSUM_LEN], raw[-CHECKSUM_LEN:]
    if len(pubkey) != BLS_PUBKEY_LEN or checksum != _checksum(pubkey):
        raise InvalidMessageFormat("Invalid worker address checksum")
    return pubkey, network


def _bls_signature_bytes(signature: str) -> bytes:
    text = signature.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    # Lotus prefixes hex signatures with the signature-type byte (02 = BLS).
    if len(text) == (BLS_SIGNATURE_LEN + 1) * 2 and text.startswith("02"):
        text = text[2:]
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raise InvalidSignature("Invalid hex encoding") from None
    if len(raw) != BLS_SIGNATURE_LEN:
        raise InvalidSignature("Invalid BLS signature length")
    return raw


def parse_actor_id(token: str, network: Network) -> int:
    match = _ACTOR_ID_RE.match(token.strip())
    if not match:
        raise InvalidMessageFormat(f"invalid storage provider id: {token!r}")
    if match.group(1).lower() != network.actor_prefix:
        raise InvalidMessageFormat(f"storage provider {token} is not a {network.wire_name} actor")
    return int(match.group(2))


class MessageAuthenticator:
    """Recovers signers and payloads from signed request bodies."""

    def recover_signer(self, message: str, signature: str) -> bytes:
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as exc:
            raise InvalidSignature(f"Signature recovery failed: {exc}") from exc
        return parse_address(recovered)

    def vote(self, body: Mapping[str, Any]) -> Vote:
        message = _field(body, "message")
        signature = _field(body, "signature")
        parts = message.split()
        if len(parts) != 2:
            raise InvalidMessageFormat("expected '<CHOICE>: FIP-<number>'")
        try:
            choice = Choice.parse(parts[0])
        except ValueError:
            raise InvalidMessageFormat(f"Invalid vote option: {parts[0]}") from None
        proposal = parse_fip(parts[1])
        return Vote(choice=choice, voter=self.recover_signer(message, signature), proposal=proposal)

    def vote_start(self, body: Mapping[str, Any]) -> Tuple[bytes, int]:
        """Returns (signer, fip number)."""
        message = _field(body, "message")
        signature = _field(body, "signature")
        proposal = parse_fip(message)
        return self.recover_signer(message, signature), proposal

    def starter_authorization(self, body: Mapping[str, Any]) -> Tuple[bytes, bytes]:
        """Returns (signer, newly authorized address)."""
        message = _field(body, "message")
        signature = _field(body, "signature")
        try:
            new_starter = parse_address(message)
        except InvalidAddress:
            raise InvalidMessageFormat("message must be the address to authorize") from None
        return self.recover_signer(message, signature), new_starter

    def registration(self, body: Mapping[str, Any]) -> Registration:
        message = _field(body, "message")
        signature = _field(body, "signature")
        worker_address = _field(body, "worker_address")

        pubkey, network = decode_bls_address(worker_address)
        if not G2Basic.Verify(pubkey, message.encode("utf-8"), _bls_signature_bytes(signature)):
            raise InvalidSignature("Signature does not match message")

        parts = message.split()
        if not parts:
            raise InvalidMessageFormat("expected '<address> <provider id>...'")
        voter = parse_address(parts[0])
        provider_ids = [parse_actor_id(token, network) for token in parts[1:]]
        return Registration(
            voter=voter,
            worker_address=worker_address,
            network=network,
            provider_ids=provider_ids,
        )
