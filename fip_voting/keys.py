"""Binary key scheme and value codecs for the flat key-value namespace.

Every logical table shares one namespace, so each key family has a layout that
cannot overlap with any other:

* numeric tables (5 bytes): ``be32(proposal) || discriminant``
    - votes:           ``network``                  -> 0..1
    - start timestamp: ``2 + network``              -> 2..3
    - storage totals:  ``4 + 3 * network + choice`` -> 4..9
* address tables (21 bytes): ``network || address`` for registrations and
  ``0xFF || address`` for the reverse network lookup
* administrative singletons: ``ADMIN_PREFIX || name || b":" || network``

Values are fixed-width big-endian records. Absent list values decode as empty
collections; malformed values raise :class:`DecodeError`.
"""

from __future__ import annotations

import struct
from typing import Iterable, List, Optional

from .errors import DecodeError
from .models import ADDRESS_LEN, MAX_PROPOSAL_NUMBER, Choice, Network, Vote

VOTES_BASE = 0
TIMESTAMP_BASE = 2
STORAGE_BASE = 4
REVERSE_LOOKUP_TAG = 0xFF
ADMIN_PREFIX = b"\xfe\xfeadmin:"

VOTE_RECORD_LEN = 1 + ADDRESS_LEN + 4
U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1


class KeyBuilder:
    """Bounds-checked append-only byte buffer used to assemble keys."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> "KeyBuilder":
        if not 0 <= int(value) <= 0xFF:
            raise ValueError(f"byte out of range: {value}")
        self._buf.append(int(value))
        return self

    def u32(self, value: int) -> "KeyBuilder":
        if not 0 <= int(value) <= MAX_PROPOSAL_NUMBER:
            raise ValueError(f"u32 out of range: {value}")
        self._buf += struct.pack(">I", int(value))
        return self

    def address(self, raw: bytes) -> "KeyBuilder":
        if len(raw) != ADDRESS_LEN:
            raise ValueError(f"address must be {ADDRESS_LEN} bytes, got {len(raw)}")
        self._buf += raw
        return self

    def literal(self, raw: bytes) -> "KeyBuilder":
        self._buf += raw
        return self

    def build(self) -> bytes:
        return bytes(self._buf)


# Keys


def votes_key(proposal: int, network: Network) -> bytes:
    return KeyBuilder().u32(proposal).u8(VOTES_BASE + int(network)).build()


def timestamp_key(proposal: int, network: Network) -> bytes:
    return KeyBuilder().u32(proposal).u8(TIMESTAMP_BASE + int(network)).build()


def storage_key(proposal: int, choice: Choice, network: Network) -> bytes:
    discriminant = STORAGE_BASE + 3 * int(network) + int(choice)
    return KeyBuilder().u32(proposal).u8(discriminant).build()


def registration_key(address: bytes, network: Network) -> bytes:
    return KeyBuilder().u8(int(network)).address(address).build()


def network_lookup_key(address: bytes) -> bytes:
    return KeyBuilder().u8(REVERSE_LOOKUP_TAG).address(address).build()


def _admin_key(name: bytes, network: Network) -> bytes:
    return KeyBuilder().literal(ADMIN_PREFIX).literal(name).literal(b":").u8(int(network)).build()


def starters_key(network: Network) -> bytes:
    return _admin_key(b"starters", network)


def active_key(network: Network) -> bytes:
    return _admin_key(b"active", network)


def concluded_key(network: Network) -> bytes:
    return _admin_key(b"concluded", network)


# Value codecs


def encode_u64(value: int) -> bytes:
    if not 0 <= int(value) <= U64_MAX:
        raise ValueError(f"u64 out of range: {value}")
    return struct.pack(">Q", int(value))


def decode_u64(raw: bytes) -> int:
    if len(raw) != 8:
        raise DecodeError(f"expected 8-byte u64, got {len(raw)} bytes")
    return struct.unpack(">Q", raw)[0]


def encode_u128(value: int) -> bytes:
    if not 0 <= int(value) <= U128_MAX:
        raise ValueError(f"u128 out of range: {value}")
    return int(value).to_bytes(16, "big")


def decode_u128(raw: Optional[bytes]) -> int:
    if raw is None:
        return 0
    if len(raw) != 16:
        raise DecodeError(f"expected 16-byte u128, got {len(raw)} bytes")
    return int.from_bytes(raw, "big")


def encode_network(network: Network) -> bytes:
    return bytes([int(network)])


def decode_network(raw: bytes) -> Network:
    if len(raw) != 1:
        raise DecodeError(f"expected 1-byte network, got {len(raw)} bytes")
    try:
        return Network(raw[0])
    except ValueError:
        raise DecodeError(f"unknown network byte: {raw[0]}") from None


def encode_ids(ids: Iterable[int]) -> bytes:
    out = KeyBuilder()
    for value in ids:
        out.u32(value)
    return out.build()


def decode_ids(raw: Optional[bytes]) -> List[int]:
    if not raw:
        return []
    if len(raw) % 4:
        raise DecodeError(f"id list length {len(raw)} is not a multiple of 4")
    return [value for (value,) in struct.iter_unpack(">I", raw)]


def encode_addresses(addresses: Iterable[bytes]) -> bytes:
    out = KeyBuilder()
    for address in addresses:
        out.address(address)
    return out.build()


def decode_addresses(raw: Optional[bytes]) -> List[bytes]:
    if not raw:
        return []
    if len(raw) % ADDRESS_LEN:
        raise DecodeError(f"address list length {len(raw)} is not a multiple of {ADDRESS_LEN}")
    return [raw[i:i + ADDRESS_LEN] for i in range(0, len(raw), ADDRESS_LEN)]


def encode_vote(vote: Vote) -> bytes:
    return KeyBuilder().u8(int(vote.choice)).address(vote.voter).u32(vote.proposal).build()


def decode_vote(raw: bytes) -> Vote:
    if len(raw) != VOTE_RECORD_LEN:
        raise DecodeError(f"invalid vote record length: {len(raw)}")
    try:
        choice = Choice(raw[0])
    except ValueError:
        raise DecodeError(f"invalid vote option byte: {raw[0]}") from None
    (proposal,) = struct.unpack(">I", raw[1 + ADDRESS_LEN:])
    return Vote(choice=choice, voter=bytes(raw[1:1 + ADDRESS_LEN]), proposal=proposal)


def encode_votes(votes: Iterable[Vote]) -> bytes:
    return b"".join(encode_vote(vote) for vote in votes)


def decode_votes(raw: Optional[bytes]) -> List[Vote]:
    if not raw:
        return []
    if len(raw) % VOTE_RECORD_LEN:
        raise DecodeError(f"vote list length {len(raw)} is not a multiple of {VOTE_RECORD_LEN}")
    return [decode_vote(raw[i:i + VOTE_RECORD_LEN]) for i in range(0, len(raw), VOTE_RECORD_LEN)]
