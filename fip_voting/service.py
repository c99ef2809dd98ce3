"""Service API used by the fip-voting HTTP routes."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .config import Config
from .errors import InputError, NotAuthorized, ProposalNotFound, VotingError
from .ledger import CONCLUDED, DOES_NOT_EXIST, ProposalLedger
from .messages import MessageAuthenticator
from .models import Choice, Network, format_address, parse_address
from .registry import VoterRegistry
from .starters import VoteStarters
from .store import KeyValueStore


class VotingService:
    """Wires the core together and turns core exceptions into result dicts.

    Every method returns ``{"ok": True, ...}`` or ``{"error": ..., "kind": ...}``.
    """

    MAX_PROVIDERS_PER_VOTER = 256

    def __init__(
        self,
        store: KeyValueStore,
        oracle: Any,
        config: Config,
        authenticator: Optional[MessageAuthenticator] = None,
        logger: Optional[Callable[[str, str], None]] = None,
        time_fn: Callable[[], float] = time.time,
    ):
        self.store = store
        self.oracle = oracle
        self.config = config
        self.authenticator = authenticator or MessageAuthenticator()
        self._logger = logger
        self.registry = VoterRegistry(store, logger=logger)
        self.starters = VoteStarters(store, logger=logger)
        self.ledger = ProposalLedger(
            store,
            registry=self.registry,
            starters=self.starters,
            oracle=oracle,
            logger=logger,
            time_fn=time_fn,
        )

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def _guard(self, action: str, fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return fn()
        except InputError as exc:
            self._log(f"fip-voting: {action} rejected: {exc}", "info")
            return exc.as_dict()
        except VotingError as exc:
            self._log(f"fip-voting: {action} failed: {exc}", "error")
            return exc.as_dict()

    # Startup

    def seed_vote_starters(self, addresses: Optional[Iterable[bytes]] = None) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            bootstrap = list(addresses) if addresses is not None else self.config.bootstrap_addresses()
            added = self.starters.seed(bootstrap)
            return {"ok": True, "added": added}

        return self._guard("seed vote starters", run)

    # Signed mutations

    def cast_vote(self, fip_number: int, body: Mapping[str, Any]) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            vote = self.authenticator.vote(body)
            if vote.proposal != int(fip_number):
                raise InputError(
                    f"message is for FIP-{vote.proposal}, not FIP-{fip_number}",
                )
            power = self.ledger.add_vote(int(fip_number), vote, vote.voter, self.config.vote_length)
            return {"ok": True, "vote": vote.to_dict(), "power": power}

        return self._guard("vote", run)

    def start_vote(self, network: Any, body: Mapping[str, Any]) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            starter, fip_number = self.authenticator.vote_start(body)
            started = self.ledger.start_vote(fip_number, starter, ntw)
            return {
                "ok": True,
                "fip_number": fip_number,
                "network": ntw.wire_name,
                "started_at": started,
                "vote_length": self.config.vote_length,
            }

        return self._guard("vote start", run)

    def register_starter(self, network: Any, body: Mapping[str, Any]) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            signer, new_starter = self.authenticator.starter_authorization(body)
            if not self.starters.is_authorized_starter(signer, ntw):
                raise NotAuthorized(f"Voter not authorized to add new signers: {format_address(signer)}")
            starters = self.starters.register_starter(new_starter, ntw)
            return {
                "ok": True,
                "network": ntw.wire_name,
                "starters": [format_address(s) for s in starters],
            }

        return self._guard("starter registration", run)

    def _verified_registration(self, body: Mapping[str, Any]):
        registration = self.authenticator.registration(body)
        if len(registration.provider_ids) > self.MAX_PROVIDERS_PER_VOTER:
            raise InputError(f"too many storage providers (max {self.MAX_PROVIDERS_PER_VOTER})")
        for provider_id in registration.provider_ids:
            if not self.oracle.verify_provider_control(
                provider_id, registration.worker_address, registration.network
            ):
                raise NotAuthorized(
                    f"{registration.network.actor_id(provider_id)} is not controlled by "
                    f"{registration.worker_address}"
                )
        return registration

    def register_voter(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            registration = self._verified_registration(body)
            if not registration.provider_ids:
                raise InputError("registration must name at least one storage provider")
            ids = self.registry.register(
                registration.voter, registration.network, registration.provider_ids
            )
            return {
                "ok": True,
                "address": format_address(registration.voter),
                "network": registration.network.wire_name,
                "delegates": [registration.network.actor_id(i) for i in ids],
            }

        return self._guard("voter registration", run)

    def unregister_voter(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            registration = self._verified_registration(body)
            self.registry.unregister(registration.voter, registration.network)
            return {
                "ok": True,
                "address": format_address(registration.voter),
                "network": registration.network.wire_name,
            }

        return self._guard("voter unregistration", run)

    # Queries

    def vote(self, network: Any, fip_number: int) -> Dict[str, Any]:
        """Time left while a vote runs, results once it has concluded."""

        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            status = self.ledger.vote_status(int(fip_number), self.config.vote_length, ntw)
            if status.state == DOES_NOT_EXIST:
                raise ProposalNotFound(f"FIP-{fip_number} does not exist on {ntw.wire_name}")
            result: Dict[str, Any] = {"ok": True, "fip_number": int(fip_number), "status": status.state}
            if status.state == CONCLUDED:
                result["results"] = self.ledger.vote_results(int(fip_number), ntw).to_dict()
            else:
                result["time_left"] = status.seconds_remaining
            return result

        return self._guard("vote query", run)

    def results(self, network: Any, fip_number: int) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            results = self.ledger.vote_results(int(fip_number), ntw)
            return {"ok": True, "fip_number": int(fip_number), "results": results.to_dict()}

        return self._guard("results query", run)

    def storage(self, network: Any, fip_number: int) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            if self.ledger.start_timestamp(int(fip_number), ntw) is None:
                raise ProposalNotFound(f"FIP-{fip_number} does not exist on {ntw.wire_name}")
            totals = self.ledger.storage_totals(int(fip_number), ntw)
            storage = {choice.label: totals[choice] for choice in Choice}
            storage["total"] = sum(totals.values())
            return {"ok": True, "fip_number": int(fip_number), "storage": storage}

        return self._guard("storage query", run)

    def delegates(self, network: Any, address: str) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            voter = parse_address(address)
            ids = self.registry.providers(voter, ntw)
            return {"ok": True, "delegates": [ntw.actor_id(i) for i in ids]}

        return self._guard("delegates query", run)

    def voting_power(self, network: Any, address: str) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            voter = parse_address(address)
            power = self.oracle.voting_power(self.registry.providers(voter, ntw), ntw)
            return {"ok": True, "address": format_address(voter), "voting_power": power}

        return self._guard("voting power query", run)

    def vote_starters(self, network: Any) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            return {
                "ok": True,
                "starters": [format_address(s) for s in self.starters.list_starters(ntw)],
            }

        return self._guard("vote starters query", run)

    def active_votes(self, network: Any) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            self.ledger.sweep_expired(ntw, self.config.vote_length)
            return {"ok": True, "active": self.ledger.list_active(ntw)}

        return self._guard("active votes query", run)

    def concluded_votes(self, network: Any) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            self.ledger.sweep_expired(ntw, self.config.vote_length)
            return {"ok": True, "concluded": self.ledger.list_concluded(ntw)}

        return self._guard("concluded votes query", run)

    def all_concluded_votes(self, network: Any) -> Dict[str, Any]:
        def run() -> Dict[str, Any]:
            ntw = Network.parse(network)
            self.ledger.sweep_expired(ntw, self.config.vote_length)
            votes = [
                {
                    "fip_number": fip_number,
                    "results": self.ledger.vote_results(fip_number, ntw).to_dict(),
                }
                for fip_number in self.ledger.list_concluded(ntw)
            ]
            return {"ok": True, "votes": votes}

        return self._guard("concluded results query", run)
