"""Proposal lifecycle, vote admission and results aggregation."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from . import keys
from .errors import (
    AlreadyExists,
    DuplicateVote,
    InvalidMessageFormat,
    NoAuthorizedProviders,
    NotAuthorized,
    ProposalNotFound,
    VoteNotActive,
    VoterNotRegistered,
)
from .models import Choice, Network, Vote, format_address
from .registry import VoterRegistry
from .starters import VoteStarters
from .store import KeyValueStore

DOES_NOT_EXIST = "does_not_exist"
IN_PROGRESS = "in_progress"
CONCLUDED = "concluded"


@dataclass(frozen=True)
class VoteStatus:
    state: str
    seconds_remaining: int = 0


@dataclass(frozen=True)
class VoteResults:
    yay_count: int
    nay_count: int
    abstain_count: int
    yay_power: int
    nay_power: int
    abstain_power: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProposalLedger:
    """Per-(network, proposal) state stored in the flat key-value namespace.

    A proposal moves NotStarted -> Active on ``start_vote`` and Active ->
    Concluded when ``sweep_expired`` finds its vote length elapsed. Reads never
    mutate: ``vote_status`` and ``add_vote`` call ``sweep_expired`` explicitly
    before consulting the active index.

    Mutations of one proposal are serialized on its votes key; index updates
    are serialized on the network's active-index key. Locks are always taken in
    that order.
    """

    def __init__(
        self,
        store: KeyValueStore,
        registry: VoterRegistry,
        starters: VoteStarters,
        oracle: Any,
        logger: Optional[Callable[[str, str], None]] = None,
        time_fn: Callable[[], float] = time.time,
    ):
        self.store = store
        self.registry = registry
        self.starters = starters
        self.oracle = oracle
        self._logger = logger
        self._time_fn = time_fn

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def _now(self) -> int:
        return int(self._time_fn())

    # Reads

    def start_timestamp(self, proposal: int, network: Network) -> Optional[int]:
        raw = self.store.get(keys.timestamp_key(proposal, network))
        return keys.decode_u64(raw) if raw is not None else None

    def votes(self, proposal: int, network: Network) -> List[Vote]:
        return keys.decode_votes(self.store.get(keys.votes_key(proposal, network)))

    def list_active(self, network: Network) -> List[int]:
        return keys.decode_ids(self.store.get(keys.active_key(network)))

    def list_concluded(self, network: Network) -> List[int]:
        return keys.decode_ids(self.store.get(keys.concluded_key(network)))

    def storage_totals(self, proposal: int, network: Network) -> Dict[Choice, int]:
        return {
            choice: keys.decode_u128(self.store.get(keys.storage_key(proposal, choice, network)))
            for choice in Choice
        }

    # Lifecycle

    def start_vote(self, proposal: int, starter: bytes, network: Network) -> int:
        """Open ``proposal`` on ``network`` and return its start timestamp."""
        if not self.starters.is_authorized_starter(starter, network):
            raise NotAuthorized(f"{format_address(starter)} is not authorized to start votes")

        votes_key = keys.votes_key(proposal, network)
        active_key = keys.active_key(network)
        with self.store.lock(votes_key):
            if self.store.exists(keys.timestamp_key(proposal, network)):
                raise AlreadyExists(f"Vote already exists for FIP-{proposal}")
            with self.store.lock(active_key):
                active = self.list_active(network)
                if proposal not in active:
                    active.append(proposal)
                started = self._now()
                self.store.commit(
                    sets={
                        keys.timestamp_key(proposal, network): keys.encode_u64(started),
                        votes_key: keys.encode_votes([]),
                        active_key: keys.encode_ids(active),
                    }
                )

        self._log(f"fip-voting: FIP-{proposal} started on {network.wire_name} by {format_address(starter)}")
        return started

    def sweep_expired(self, network: Network, vote_length: int) -> List[int]:
        """Move every active proposal older than ``vote_length`` to concluded."""
        active_key = keys.active_key(network)
        with self.store.lock(active_key):
            active = self.list_active(network)
            if not active:
                return []
            now = self._now()
            remaining: List[int] = []
            expired: List[int] = []
            for proposal in active:
                started = self.start_timestamp(proposal, network)
                if started is not None and now - started >= vote_length:
                    expired.append(proposal)
                else:
                    remaining.append(proposal)
            if not expired:
                return []

            concluded = self.list_concluded(network)
            concluded.extend(proposal for proposal in expired if proposal not in concluded)
            self.store.commit(
                sets={
                    active_key: keys.encode_ids(remaining),
                    keys.concluded_key(network): keys.encode_ids(concluded),
                }
            )

        self._log(
            f"fip-voting: concluded {', '.join(f'FIP-{p}' for p in expired)} on {network.wire_name}"
        )
        return expired

    def vote_status(self, proposal: int, vote_length: int, network: Network) -> VoteStatus:
        started = self.start_timestamp(proposal, network)
        if started is None:
            return VoteStatus(DOES_NOT_EXIST)
        self.sweep_expired(network, vote_length)
        if proposal in self.list_active(network):
            remaining = vote_length - (self._now() - started)
            return VoteStatus(IN_PROGRESS, max(0, remaining))
        return VoteStatus(CONCLUDED)

    # Votes

    def add_vote(self, proposal: int, vote: Vote, voter: bytes, vote_length: int) -> int:
        """Admit ``vote`` and return the storage power it carried.

        Provider power is fetched in full before anything is written, so an
        oracle failure leaves the ledger untouched.
        """
        if vote.proposal != proposal or vote.voter != voter:
            raise InvalidMessageFormat("vote does not match the proposal or voter")

        network = self.registry.network_of(voter)
        if network is None:
            raise VoterNotRegistered(f"{format_address(voter)} is not registered for any network")

        status = self.vote_status(proposal, vote_length, network)
        if status.state != IN_PROGRESS:
            state = "not_started" if status.state == DOES_NOT_EXIST else CONCLUDED
            raise VoteNotActive(f"Vote is not active for FIP-{proposal}", status=state)

        providers = self.registry.providers(voter, network)
        if not providers:
            raise NoAuthorizedProviders(f"{format_address(voter)} has no authorized storage providers")

        if vote in self.votes(proposal, network):
            raise DuplicateVote(f"{format_address(voter)} already voted on FIP-{proposal}")

        power = sum(self.oracle.fetch_power(provider_id, network) for provider_id in providers)

        votes_key = keys.votes_key(proposal, network)
        storage_key = keys.storage_key(proposal, vote.choice, network)
        with self.store.lock(votes_key), self.store.lock(keys.active_key(network)):
            # The window may have closed while power was being fetched.
            started = self.start_timestamp(proposal, network)
            if (
                started is None
                or self._now() - started >= vote_length
                or proposal not in self.list_active(network)
            ):
                raise VoteNotActive(f"Vote is not active for FIP-{proposal}", status=CONCLUDED)
            votes = self.votes(proposal, network)
            if vote in votes:
                raise DuplicateVote(f"{format_address(voter)} already voted on FIP-{proposal}")
            votes.append(vote)
            total = keys.decode_u128(self.store.get(storage_key))
            self.store.commit(
                sets={
                    votes_key: keys.encode_votes(votes),
                    storage_key: keys.encode_u128(total + power),
                }
            )

        self._log(f"fip-voting: {vote} with {power} bytes on {network.wire_name}")
        return power

    # Results

    def vote_results(self, proposal: int, network: Network) -> VoteResults:
        if self.start_timestamp(proposal, network) is None:
            raise ProposalNotFound(f"FIP-{proposal} does not exist on {network.wire_name}")

        counts = {choice: 0 for choice in Choice}
        for vote in self.votes(proposal, network):
            counts[vote.choice] += 1
        totals = self.storage_totals(proposal, network)
        return VoteResults(
            yay_count=counts[Choice.YAY],
            nay_count=counts[Choice.NAY],
            abstain_count=counts[Choice.ABSTAIN],
            yay_power=totals[Choice.YAY],
            nay_power=totals[Choice.NAY],
            abstain_power=totals[Choice.ABSTAIN],
        )
