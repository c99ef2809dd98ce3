"""Unit tests for signed-message parsing and authentication."""

import os
import sys

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from py_ecc.bls import G2Basic

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fip_voting.errors import InvalidAddress, InvalidMessageFormat, InvalidSignature
from fip_voting.messages import (
    MessageAuthenticator,
    bls_worker_address,
    decode_bls_address,
    parse_actor_id,
    parse_fip,
)
from fip_voting.models import Choice, Network, parse_address

SIGNER = Account.from_key("0x" + "4c" * 32)
OTHER = Account.from_key("0x" + "7e" * 32)
BLS_SK = G2Basic.KeyGen(b"fip-voting registration test key material!!")
BLS_PK = G2Basic.SkToPk(BLS_SK)


def _signed(message: str, account=SIGNER):
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return {"message": message, "signature": "0x" + bytes(signed.signature).hex()}


def _registration(message: str, network=Network.MAINNET, signature=None):
    sig = signature if signature is not None else G2Basic.Sign(BLS_SK, message.encode("utf-8"))
    return {
        "message": message,
        "signature": sig.hex(),
        "worker_address": bls_worker_address(BLS_PK, network),
    }


def test_vote_recovers_signer_and_choice():
    auth = MessageAuthenticator()

    vote = auth.vote(_signed("YAY: FIP-42"))
    assert vote.choice is Choice.YAY
    assert vote.proposal == 42
    assert vote.voter == parse_address(SIGNER.address)

    assert auth.vote(_signed("abstain FIP-7")).choice is Choice.ABSTAIN
    assert auth.vote(_signed("Nay: fip-0")).proposal == 0


def test_vote_rejects_malformed_messages():
    auth = MessageAuthenticator()
    for message in ("MAYBE: FIP-42", "YAY FIP-", "YAY: 42", "YAY: FIP-42 extra", "FIP-42"):
        with pytest.raises(InvalidMessageFormat):
            auth.vote(_signed(message))
    with pytest.raises(InvalidMessageFormat):
        auth.vote({"message": "YAY: FIP-42"})
    with pytest.raises(InvalidMessageFormat):
        auth.vote(None)


def test_vote_rejects_bad_signature():
    auth = MessageAuthenticator()
    with pytest.raises(InvalidSignature):
        auth.vote({"message": "YAY: FIP-42", "signature": "0x1234"})


def test_tampered_message_recovers_other_signer():
    auth = MessageAuthenticator()
    body = _signed("YAY: FIP-42")
    body["message"] = "NAY: FIP-42"
    vote = auth.vote(body)
    assert vote.voter != parse_address(SIGNER.address)


def test_vote_start_and_starter_authorization():
    auth = MessageAuthenticator()

    signer, fip = auth.vote_start(_signed("FIP-1234"))
    assert signer == parse_address(SIGNER.address)
    assert fip == 1234

    signer, new_starter = auth.starter_authorization(_signed(OTHER.address))
    assert signer == parse_address(SIGNER.address)
    assert new_starter == parse_address(OTHER.address)

    with pytest.raises(InvalidMessageFormat):
        auth.starter_authorization(_signed("not an address"))


def test_parse_fip_bounds():
    assert parse_fip("FIP-4294967295") == 0xFFFFFFFF
    with pytest.raises(InvalidMessageFormat):
        parse_fip("FIP-4294967296")
    with pytest.raises(InvalidMessageFormat):
        parse_fip("FIP--1")


def test_parse_actor_id_checks_network_prefix():
    assert parse_actor_id("f01234", Network.MAINNET) == 1234
    assert parse_actor_id("t0999", Network.TESTNET) == 999
    with pytest.raises(InvalidMessageFormat):
        parse_actor_id("t01234", Network.MAINNET)
    with pytest.raises(InvalidMessageFormat):
        parse_actor_id("f1abc", Network.MAINNET)


def test_bls_address_round_trip_and_checksum():
    address = bls_worker_address(BLS_PK, Network.TESTNET)
    assert address.startswith("t3")
    assert len(address) == 86

    pubkey, network = decode_bls_address(address)
    assert pubkey == BLS_PK
    assert network is Network.TESTNET

    middle = address[20]
    tampered = address[:20] + ("a" if middle != "a" else "b") + address[21:]
    with pytest.raises(InvalidMessageFormat):
        decode_bls_address(tampered)
    with pytest.raises(InvalidMessageFormat):
        decode_bls_address("f1abcdef")


def test_registration_verifies_bls_signature():
    auth = MessageAuthenticator()
    message = f"{SIGNER.address} f01000 f01001"

    registration = auth.registration(_registration(message))

    assert registration.voter == parse_address(SIGNER.address)
    assert registration.network is Network.MAINNET
    assert registration.provider_ids == [1000, 1001]
    assert registration.worker_address.startswith("f3")


def test_registration_accepts_lotus_type_prefix():
    auth = MessageAuthenticator()
    message = f"{SIGNER.address} t0100"
    body = _registration(message, network=Network.TESTNET)
    body["signature"] = "02" + body["signature"]

    registration = auth.registration(body)
    assert registration.network is Network.TESTNET
    assert registration.provider_ids == [100]


def test_registration_rejects_signature_over_other_message():
    auth = MessageAuthenticator()
    signature = G2Basic.Sign(BLS_SK, b"something else")
    with pytest.raises(InvalidSignature):
        auth.registration(_registration(f"{SIGNER.address} f01000", signature=signature))


def test_registration_rejects_malformed_fields():
    auth = MessageAuthenticator()
    body = _registration(f"{SIGNER.address} f01000")

    with pytest.raises(InvalidSignature):
        auth.registration(dict(body, signature="zz"))
    with pytest.raises(InvalidSignature):
        auth.registration(dict(body, signature="00" * 10))
    with pytest.raises(InvalidMessageFormat):
        auth.registration(dict(body, worker_address="f1" + "a" * 38))


def test_registration_rejects_wrong_network_ids():
    auth = MessageAuthenticator()
    with pytest.raises(InvalidMessageFormat):
        auth.registration(_registration(f"{SIGNER.address} t01000"))


def test_registration_rejects_bad_voter_address():
    auth = MessageAuthenticator()
    with pytest.raises(InvalidAddress):
        auth.registration(_registration("0x1234 f01000"))
