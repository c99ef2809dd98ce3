"""Per-network set of addresses allowed to open new proposals."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from . import keys
from .models import Network, format_address
from .store import KeyValueStore


class VoteStarters:
    def __init__(self, store: KeyValueStore, logger: Optional[Callable[[str, str], None]] = None):
        self.store = store
        self._logger = logger

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def list_starters(self, network: Network) -> List[bytes]:
        return keys.decode_addresses(self.store.get(keys.starters_key(network)))

    def is_authorized_starter(self, address: bytes, network: Network) -> bool:
        return address in self.list_starters(network)

    def register_starter(self, address: bytes, network: Network) -> List[bytes]:
        """Add ``address``; the caller is responsible for authorizing the request."""
        key = keys.starters_key(network)
        with self.store.lock(key):
            starters = sorted(set(self.list_starters(network)) | {address})
            self.store.set(key, keys.encode_addresses(starters))
        self._log(f"fip-voting: vote starter {format_address(address)} added on {network.wire_name}")
        return starters

    def remove_starter(self, address: bytes, network: Network) -> List[bytes]:
        key = keys.starters_key(network)
        with self.store.lock(key):
            starters = self.list_starters(network)
            if address not in starters:
                return starters
            starters = sorted(set(starters) - {address})
            self.store.set(key, keys.encode_addresses(starters))
        self._log(f"fip-voting: vote starter {format_address(address)} removed on {network.wire_name}")
        return starters

    def seed(self, addresses: Iterable[bytes]) -> int:
        """Register every bootstrap address missing on either network."""
        added = 0
        addresses = list(addresses)
        for network in Network:
            existing = set(self.list_starters(network))
            for address in addresses:
                if address not in existing:
                    self.register_starter(address, network)
                    existing.add(address)
                    added += 1
        return added
