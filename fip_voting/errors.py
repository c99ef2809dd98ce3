"""Error taxonomy shared by the core, the service facade and the HTTP surface."""

from __future__ import annotations

from typing import Any, Dict


class VotingError(Exception):
    """Base class; ``kind`` is the stable machine-readable error name."""

    kind = "voting_error"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.context: Dict[str, Any] = context

    def as_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error": str(self), "kind": self.kind}
        result.update(self.context)
        return result


class InputError(VotingError):
    """Client-caused failure; never retried."""

    kind = "invalid_input"


class InvalidSignature(InputError):
    """Signature does not match message"""

    kind = "invalid_signature"


class InvalidMessageFormat(InputError):
    """Invalid message format"""

    kind = "invalid_message_format"


class InvalidNetwork(InputError):
    """Invalid network"""

    kind = "invalid_network"


class InvalidAddress(InputError):
    """Invalid address"""

    kind = "invalid_address"


class NotAuthorized(InputError):
    """Address is not an authorized vote starter"""

    kind = "not_authorized"


class VoterNotRegistered(InputError):
    """Voter is not registered for any network"""

    kind = "voter_not_registered"


class NoAuthorizedProviders(InputError):
    """Voter has no authorized storage providers"""

    kind = "no_authorized_providers"


class DuplicateVote(InputError):
    """Vote already exists for this voter and proposal"""

    kind = "duplicate_vote"


class VoteNotActive(InputError):
    """Vote is not active"""

    kind = "vote_not_active"


class AlreadyExists(InputError):
    """Vote is already started"""

    kind = "already_exists"


class ProposalNotFound(InputError):
    """Proposal does not exist"""

    kind = "not_found"


class CollaboratorError(VotingError):
    """Failure in the store or the chain oracle."""

    kind = "collaborator_error"


class OracleUnavailable(CollaboratorError):
    """Storage power oracle unavailable"""

    kind = "oracle_unavailable"


class StoreError(CollaboratorError):
    """Key-value store operation failed"""

    kind = "store_error"


class DecodeError(VotingError):
    """Stored record has a malformed byte layout"""

    kind = "decode_error"
