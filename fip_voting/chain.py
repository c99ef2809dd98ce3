"""Filecoin chain-data client and the storage-power oracle built on it."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from .errors import OracleUnavailable
from .models import Network

DEFAULT_MAINNET_RPC = "https://api.node.glif.io/rpc/v1"
DEFAULT_CALIBRATION_RPC = "https://api.calibration.node.glif.io/rpc/v1"


class FilecoinRpcClient:
    """Minimal JSON-RPC 2.0 client for a Lotus-compatible endpoint."""

    def __init__(self, endpoint: str, timeout_seconds: float = 10):
        parsed = urlparse(endpoint)
        if parsed.scheme not in ("https", "http") or not parsed.hostname:
            raise ValueError(f"invalid rpc endpoint: {endpoint}")
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._next_id = 1

    def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._next_id}
        self._next_id += 1
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        req = urllib.request.Request(
            self.endpoint,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except (urllib.error.URLError, OSError) as exc:
            raise OracleUnavailable(f"{method} request failed: {exc}") from exc
        try:
            data = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise OracleUnavailable(f"{method} returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise OracleUnavailable(f"{method} returned a non-object response")
        if data.get("error"):
            raise OracleUnavailable(f"{method} error: {data['error']}")
        if "result" not in data:
            raise OracleUnavailable(f"{method} returned no result")
        return data["result"]


class StoragePowerOracle:
    """Resolves raw byte power and worker-key control for storage providers."""

    def __init__(
        self,
        endpoints: Optional[Dict[Network, str]] = None,
        timeout_seconds: float = 10,
        logger: Optional[Callable[[str, str], None]] = None,
    ):
        endpoints = endpoints or {
            Network.MAINNET: DEFAULT_MAINNET_RPC,
            Network.TESTNET: DEFAULT_CALIBRATION_RPC,
        }
        self._clients = {
            network: FilecoinRpcClient(url, timeout_seconds=timeout_seconds)
            for network, url in endpoints.items()
        }
        self._logger = logger

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def _client(self, network: Network) -> FilecoinRpcClient:
        client = self._clients.get(network)
        if client is None:
            raise OracleUnavailable(f"no rpc endpoint configured for {network.wire_name}")
        return client

    def fetch_power(self, provider_id: int, network: Network) -> int:
        actor = network.actor_id(provider_id)
        try:
            result = self._client(network).call("Filecoin.StateMinerPower", [actor, None])
        except OracleUnavailable as exc:
            self._log(f"fip-voting: power lookup for {actor} failed: {exc}", "warn")
            raise
        try:
            return int(result["MinerPower"]["RawBytePower"])
        except (KeyError, TypeError, ValueError) as exc:
            raise OracleUnavailable(f"unexpected StateMinerPower result for {actor}: {result!r}") from exc

    def voting_power(self, provider_ids: Iterable[int], network: Network) -> int:
        return sum(self.fetch_power(provider_id, network) for provider_id in provider_ids)

    def verify_provider_control(self, provider_id: int, worker_address: str, network: Network) -> bool:
        """True only if the provider's worker key resolves to ``worker_address``."""
        actor = network.actor_id(provider_id)
        client = self._client(network)
        info = client.call("Filecoin.StateMinerInfo", [actor, None])
        worker = info.get("Worker") if isinstance(info, dict) else None
        if not isinstance(worker, str) or not worker:
            self._log(f"fip-voting: no worker reported for {actor}", "warn")
            return False
        key = client.call("Filecoin.StateAccountKey", [worker, None])
        if not isinstance(key, str) or len(key) < 3:
            return False
        claimed = str(worker_address or "").strip().lower()
        # The leading letter is only the network prefix (f/t).
        return len(claimed) == len(key) and claimed[1:] == key.lower()[1:]
