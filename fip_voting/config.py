"""Process configuration: defaults, then environment, then command-line flags."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .chain import DEFAULT_CALIBRATION_RPC, DEFAULT_MAINNET_RPC
from .models import Network, parse_address

BOOTSTRAP_STARTERS: Tuple[str, ...] = (
    "0x3B9705F0EF88Ee74B9924e34A5Af578d2E24F300",
    "0xf2361d2a9a0677e8ffd1515d65cf5190ea20eb56",
    "0x47f033Ed0F9485677008dC30507273607A74E92C",
    "0xe662D77E7e3096683BAC8f1Ad526FB033E3810eB",
)

DEFAULT_STORE_URL = "redis://127.0.0.1:6379"
DEFAULT_SERVE_ADDRESS = "http://127.0.0.1:51634"
DEFAULT_VOTE_LENGTH = 60
DEFAULT_RPC_TIMEOUT = 10


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Config:
    store_url: str = DEFAULT_STORE_URL
    vote_length: int = DEFAULT_VOTE_LENGTH
    serve_address: str = DEFAULT_SERVE_ADDRESS
    mainnet_rpc: str = DEFAULT_MAINNET_RPC
    calibration_rpc: str = DEFAULT_CALIBRATION_RPC
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    tls_cert: str = ""
    tls_key: str = ""
    log_level: str = "info"
    cors_enabled: bool = True
    bootstrap_starters: Tuple[str, ...] = field(default=BOOTSTRAP_STARTERS)

    @property
    def host(self) -> str:
        return urlparse(self.serve_address).hostname or "127.0.0.1"

    @property
    def port(self) -> int:
        parsed = urlparse(self.serve_address)
        if parsed.port:
            return parsed.port
        return 443 if parsed.scheme == "https" else 80

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert and self.tls_key)

    def rpc_endpoints(self) -> Dict[Network, str]:
        return {Network.MAINNET: self.mainnet_rpc, Network.TESTNET: self.calibration_rpc}

    def bootstrap_addresses(self) -> List[bytes]:
        return [parse_address(address) for address in self.bootstrap_starters]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        defaults = cls()
        starters = env.get("FIP_VOTING_BOOTSTRAP_STARTERS", "")
        return cls(
            store_url=env.get("FIP_VOTING_STORE_URL") or env.get("REDIS_PATH") or defaults.store_url,
            vote_length=max(1, _parse_int(env.get("VOTE_LENGTH"), defaults.vote_length)),
            serve_address=env.get("FIP_VOTING_SERVE_ADDRESS") or defaults.serve_address,
            mainnet_rpc=env.get("FIP_VOTING_MAINNET_RPC") or defaults.mainnet_rpc,
            calibration_rpc=env.get("FIP_VOTING_CALIBRATION_RPC") or defaults.calibration_rpc,
            rpc_timeout=_parse_float(env.get("FIP_VOTING_RPC_TIMEOUT"), defaults.rpc_timeout),
            tls_cert=env.get("FIP_VOTING_TLS_CERT", ""),
            tls_key=env.get("FIP_VOTING_TLS_KEY", ""),
            log_level=env.get("FIP_VOTING_LOG_LEVEL") or defaults.log_level,
            cors_enabled=_parse_bool(env.get("FIP_VOTING_CORS", "true")),
            bootstrap_starters=tuple(s.strip() for s in starters.split(",") if s.strip()) or defaults.bootstrap_starters,
        )

    @classmethod
    def from_args(
        cls,
        argv: Optional[Sequence[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        base = cls.from_env(environ)
        parser = argparse.ArgumentParser(prog="fip-voting", description="Filecoin FIP voting API")
        parser.add_argument("-s", "--serve-address", default=base.serve_address)
        parser.add_argument("-r", "--redis-path", "--store-url", dest="store_url", default=base.store_url)
        parser.add_argument("-v", "--vote-length", default=base.vote_length)
        parser.add_argument("--mainnet-rpc", default=base.mainnet_rpc)
        parser.add_argument("--calibration-rpc", default=base.calibration_rpc)
        parser.add_argument("--rpc-timeout", default=base.rpc_timeout)
        parser.add_argument("--tls-cert", default=base.tls_cert)
        parser.add_argument("--tls-key", default=base.tls_key)
        parser.add_argument("--log-level", default=base.log_level)
        parser.add_argument("--cors", default=str(base.cors_enabled))
        args = parser.parse_args(argv)

        return cls(
            store_url=args.store_url,
            vote_length=max(1, _parse_int(args.vote_length, base.vote_length)),
            serve_address=args.serve_address,
            mainnet_rpc=args.mainnet_rpc,
            calibration_rpc=args.calibration_rpc,
            rpc_timeout=_parse_float(args.rpc_timeout, base.rpc_timeout),
            tls_cert=args.tls_cert,
            tls_key=args.tls_key,
            log_level=args.log_level,
            cors_enabled=_parse_bool(args.cors),
            bootstrap_starters=base.bootstrap_starters,
        )
