"""Value types: networks, vote choices, votes and address helpers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict

from eth_utils import to_checksum_address

from .errors import InvalidAddress, InvalidNetwork

ADDRESS_LEN = 20
MAX_PROPOSAL_NUMBER = 0xFFFFFFFF


class Network(enum.IntEnum):
    MAINNET = 0
    TESTNET = 1

    @classmethod
    def parse(cls, value: Any) -> "Network":
        if isinstance(value, Network):
            return value
        name = str(value or "").strip().lower()
        if name == "mainnet":
            return cls.MAINNET
        if name in ("calibration", "testnet"):
            return cls.TESTNET
        raise InvalidNetwork(f"Invalid network: {value}")

    @property
    def wire_name(self) -> str:
        return "mainnet" if self is Network.MAINNET else "calibration"

    @property
    def actor_prefix(self) -> str:
        return "f" if self is Network.MAINNET else "t"

    def actor_id(self, provider_id: int) -> str:
        """Format a storage-provider id as an ID address (``f01234``)."""
        return f"{self.actor_prefix}0{int(provider_id)}"


class Choice(enum.IntEnum):
    YAY = 0
    NAY = 1
    ABSTAIN = 2

    @classmethod
    def parse(cls, value: str) -> "Choice":
        name = str(value or "").strip().rstrip(":").upper()
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"invalid vote option: {value}") from None

    @property
    def label(self) -> str:
        return self.name.lower()


def parse_address(value: Any) -> bytes:
    """Parse a ``0x``-prefixed hex Ethereum address into its 20 raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_LEN:
            raise InvalidAddress(f"Invalid address length: {len(value)}")
        return bytes(value)
    if not isinstance(value, str):
        raise InvalidAddress(f"Invalid address: {value!r}")
    text = value.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    if len(text) != ADDRESS_LEN * 2:
        raise InvalidAddress(f"Invalid address: {value}")
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise InvalidAddress(f"Invalid address: {value}") from None


def format_address(raw: bytes) -> str:
    return to_checksum_address(bytes(raw))


@dataclass(frozen=True, eq=False)
class Vote:
    """A single cast vote; two votes are equal when voter and proposal match."""

    choice: Choice
    voter: bytes
    proposal: int

    def __post_init__(self) -> None:
        if len(self.voter) != ADDRESS_LEN:
            raise InvalidAddress(f"Invalid voter address length: {len(self.voter)}")
        if not 0 <= int(self.proposal) <= MAX_PROPOSAL_NUMBER:
            raise ValueError(f"proposal number out of range: {self.proposal}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vote):
            return NotImplemented
        return self.voter == other.voter and self.proposal == other.proposal

    def __hash__(self) -> int:
        return hash((self.voter, self.proposal))

    def __str__(self) -> str:
        return f"{format_address(self.voter)} voted {self.choice.name.title()} on FIP-{self.proposal}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "choice": self.choice.label,
            "voter": format_address(self.voter),
            "fip_number": self.proposal,
        }
