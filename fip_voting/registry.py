"""Voter registry: which storage providers an address may vote for."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from . import keys
from .models import Network, format_address
from .store import KeyValueStore


class VoterRegistry:
    """Maps (network, address) to provider ids, plus the address->network lookup.

    An address votes on one network at a time. Registering it on a new network
    replaces the previous association and drops the old forward record in the
    same commit.
    """

    def __init__(self, store: KeyValueStore, logger: Optional[Callable[[str, str], None]] = None):
        self.store = store
        self._logger = logger

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def network_of(self, address: bytes) -> Optional[Network]:
        raw = self.store.get(keys.network_lookup_key(address))
        if raw is None:
            return None
        return keys.decode_network(raw)

    def providers(self, address: bytes, network: Network) -> List[int]:
        return keys.decode_ids(self.store.get(keys.registration_key(address, network)))

    def is_registered(self, address: bytes, network: Network) -> bool:
        return bool(self.providers(address, network))

    def register(self, address: bytes, network: Network, provider_ids: Iterable[int]) -> List[int]:
        ids = sorted(set(int(provider_id) for provider_id in provider_ids))
        lookup = keys.network_lookup_key(address)
        with self.store.lock(lookup):
            deletes = []
            previous = self.network_of(address)
            if previous is not None and previous != network:
                deletes.append(keys.registration_key(address, previous))
                self._log(
                    f"fip-voting: {format_address(address)} moved from "
                    f"{previous.wire_name} to {network.wire_name}",
                    "warn",
                )
            self.store.commit(
                sets={
                    keys.registration_key(address, network): keys.encode_ids(ids),
                    lookup: keys.encode_network(network),
                },
                deletes=deletes,
            )
        self._log(f"fip-voting: registered {format_address(address)} on {network.wire_name} for {len(ids)} provider(s)")
        return ids

    def unregister(self, address: bytes, network: Network) -> None:
        lookup = keys.network_lookup_key(address)
        with self.store.lock(lookup):
            self.store.commit(deletes=[keys.registration_key(address, network), lookup])
        self._log(f"fip-voting: unregistered {format_address(address)} on {network.wire_name}")
