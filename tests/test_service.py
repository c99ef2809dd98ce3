"""Unit tests for the VotingService facade."""

import os
import sys

from eth_account import Account
from eth_account.messages import encode_defunct
from py_ecc.bls import G2Basic

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fip_voting.config import BOOTSTRAP_STARTERS, Config
from fip_voting.errors import OracleUnavailable
from fip_voting.messages import bls_worker_address
from fip_voting.models import Network, parse_address
from fip_voting.service import VotingService
from fip_voting.store import SqliteKeyValueStore

STARTER = Account.from_key("0x" + "11" * 32)
VOTER = Account.from_key("0x" + "22" * 32)
STRANGER = Account.from_key("0x" + "33" * 32)
BLS_SK = G2Basic.KeyGen(b"storage provider worker key for service tests")
WORKER = bls_worker_address(G2Basic.SkToPk(BLS_SK), Network.TESTNET)


class _FakeOracle:
    def __init__(self, powers=None, controlled=None):
        self.powers = dict(powers or {})
        self.controlled = set(controlled if controlled is not None else self.powers)
        self.down = False

    def fetch_power(self, provider_id, network):
        if self.down:
            raise OracleUnavailable("rpc down")
        return self.powers.get(provider_id, 0)

    def voting_power(self, provider_ids, network):
        return sum(self.fetch_power(i, network) for i in provider_ids)

    def verify_provider_control(self, provider_id, worker_address, network):
        return provider_id in self.controlled and worker_address == WORKER


def _signed(message, account):
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return {"message": message, "signature": "0x" + bytes(signed.signature).hex()}


def _registration(message):
    return {
        "message": message,
        "signature": G2Basic.Sign(BLS_SK, message.encode("utf-8")).hex(),
        "worker_address": WORKER,
    }


REGISTER_VOTER = _registration(f"{VOTER.address} t0100")


def _make_service(tmp_path, oracle=None, **kwargs):
    store = SqliteKeyValueStore(str(tmp_path / "service.db"))
    store.initialize()
    current_time = [1_700_000_000]
    service = VotingService(
        store=store,
        oracle=oracle or _FakeOracle({100: 5000}),
        config=Config(store_url=str(tmp_path / "service.db"), vote_length=60),
        time_fn=lambda: current_time[0],
        **kwargs,
    )
    service.seed_vote_starters([parse_address(STARTER.address)])
    return service, current_time


def test_seed_defaults_to_bootstrap_starters(tmp_path):
    store = SqliteKeyValueStore(str(tmp_path / "seed.db"))
    store.initialize()
    service = VotingService(store=store, oracle=_FakeOracle(), config=Config())

    result = service.seed_vote_starters()
    assert result == {"ok": True, "added": 2 * len(BOOTSTRAP_STARTERS)}

    listed = service.vote_starters("mainnet")
    assert {s.lower() for s in listed["starters"]} == {s.lower() for s in BOOTSTRAP_STARTERS}
    assert service.seed_vote_starters()["added"] == 0


def test_full_voting_flow(tmp_path):
    service, now = _make_service(tmp_path)

    started = service.start_vote("calibration", _signed("FIP-42", STARTER))
    assert started["ok"] is True
    assert started["fip_number"] == 42
    assert started["network"] == "calibration"

    registered = service.register_voter(REGISTER_VOTER)
    assert registered["ok"] is True
    assert registered["delegates"] == ["t0100"]
    assert registered["address"] == VOTER.address

    cast = service.cast_vote(42, _signed("YAY: FIP-42", VOTER))
    assert cast["ok"] is True
    assert cast["power"] == 5000
    assert cast["vote"]["choice"] == "yay"

    status = service.vote("calibration", 42)
    assert status["status"] == "in_progress"
    assert status["time_left"] == 60
    assert service.active_votes("calibration")["active"] == [42]

    now[0] += 60
    concluded = service.vote("calibration", 42)
    assert concluded["status"] == "concluded"
    assert concluded["results"]["yay_count"] == 1
    assert concluded["results"]["yay_power"] == 5000

    assert service.active_votes("calibration")["active"] == []
    assert service.concluded_votes("calibration")["concluded"] == [42]
    storage = service.storage("calibration", 42)["storage"]
    assert storage == {"yay": 5000, "nay": 0, "abstain": 0, "total": 5000}

    every = service.all_concluded_votes("calibration")["votes"]
    assert every == [{"fip_number": 42, "results": concluded["results"]}]

    late = service.cast_vote(42, _signed("NAY: FIP-42", STRANGER))
    assert late["kind"] == "voter_not_registered"


def test_vote_after_conclusion_reports_status(tmp_path):
    service, now = _make_service(tmp_path)
    service.start_vote("calibration", _signed("FIP-9", STARTER))
    service.register_voter(REGISTER_VOTER)
    now[0] += 600

    result = service.cast_vote(9, _signed("YAY: FIP-9", VOTER))
    assert result["kind"] == "vote_not_active"
    assert result["status"] == "concluded"


def test_cast_vote_rejects_mismatched_fip(tmp_path):
    service, _ = _make_service(tmp_path)
    result = service.cast_vote(43, _signed("YAY: FIP-42", VOTER))
    assert "error" in result
    assert result["kind"] == "invalid_input"


def test_duplicate_vote_is_reported(tmp_path):
    service, _ = _make_service(tmp_path)
    service.start_vote("calibration", _signed("FIP-42", STARTER))
    service.register_voter(REGISTER_VOTER)

    assert service.cast_vote(42, _signed("YAY: FIP-42", VOTER))["ok"] is True
    again = service.cast_vote(42, _signed("ABSTAIN: FIP-42", VOTER))
    assert again["kind"] == "duplicate_vote"


def test_start_vote_errors(tmp_path):
    service, _ = _make_service(tmp_path)

    assert service.start_vote("calibration", _signed("FIP-1", STRANGER))["kind"] == "not_authorized"
    assert service.start_vote("devnet", _signed("FIP-1", STARTER))["kind"] == "invalid_network"
    assert service.start_vote("calibration", _signed("FIP-one", STARTER))["kind"] == "invalid_message_format"

    assert service.start_vote("mainnet", _signed("FIP-1", STARTER))["ok"] is True
    assert service.start_vote("mainnet", _signed("FIP-1", STARTER))["kind"] == "already_exists"


def test_register_starter_requires_existing_starter(tmp_path):
    service, _ = _make_service(tmp_path)

    denied = service.register_starter("mainnet", _signed(VOTER.address, STRANGER))
    assert denied["kind"] == "not_authorized"

    added = service.register_starter("mainnet", _signed(STRANGER.address, STARTER))
    assert added["ok"] is True
    assert STRANGER.address in added["starters"]

    # The new starter can now start votes on that network only.
    assert service.start_vote("mainnet", _signed("FIP-3", STRANGER))["ok"] is True
    assert service.start_vote("calibration", _signed("FIP-3", STRANGER))["kind"] == "not_authorized"


def test_register_voter_requires_provider_control(tmp_path):
    oracle = _FakeOracle({100: 5000}, controlled=set())
    service, _ = _make_service(tmp_path, oracle=oracle)

    result = service.register_voter(REGISTER_VOTER)
    assert result["kind"] == "not_authorized"
    assert service.delegates("calibration", VOTER.address)["delegates"] == []


def test_register_voter_requires_providers(tmp_path):
    service, _ = _make_service(tmp_path)
    result = service.register_voter(_registration(VOTER.address))
    assert result["kind"] == "invalid_input"


def test_unregister_voter(tmp_path):
    service, _ = _make_service(tmp_path)
    service.register_voter(REGISTER_VOTER)
    assert service.delegates("calibration", VOTER.address)["delegates"] == ["t0100"]

    result = service.unregister_voter(REGISTER_VOTER)
    assert result["ok"] is True
    assert service.delegates("calibration", VOTER.address)["delegates"] == []


def test_voting_power_query(tmp_path):
    oracle = _FakeOracle({100: 5000})
    service, _ = _make_service(tmp_path, oracle=oracle)
    service.register_voter(REGISTER_VOTER)

    result = service.voting_power("calibration", VOTER.address)
    assert result["voting_power"] == 5000
    assert service.voting_power("mainnet", VOTER.address)["voting_power"] == 0
    assert service.voting_power("mainnet", "0xnope")["kind"] == "invalid_address"

    oracle.down = True
    assert service.voting_power("calibration", VOTER.address)["kind"] == "oracle_unavailable"


def test_queries_for_unknown_proposal(tmp_path):
    service, _ = _make_service(tmp_path)
    assert service.vote("mainnet", 77)["kind"] == "not_found"
    assert service.results("mainnet", 77)["kind"] == "not_found"
    assert service.storage("mainnet", 77)["kind"] == "not_found"
    assert service.all_concluded_votes("mainnet") == {"ok": True, "votes": []}


def test_errors_are_logged_by_level(tmp_path):
    messages = []
    oracle = _FakeOracle({100: 5000})
    service, _ = _make_service(
        tmp_path,
        oracle=oracle,
        logger=lambda msg, level="info": messages.append((level, msg)),
    )
    service.start_vote("calibration", _signed("FIP-42", STARTER))
    service.register_voter(REGISTER_VOTER)

    service.start_vote("calibration", _signed("FIP-2", STRANGER))
    oracle.down = True
    service.cast_vote(42, _signed("YAY: FIP-42", VOTER))

    assert any(level == "info" and "vote start rejected" in msg for level, msg in messages)
    assert any(level == "error" and "vote failed" in msg for level, msg in messages)
