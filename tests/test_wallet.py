"""
Tests for wallet loading.
"""
import json

import base58
import pytest
from solders.keypair import Keypair

from wallet import load_keypair


def test_loads_base58():
    kp = Keypair()
    secret = base58.b58encode(bytes(kp)).decode()
    assert load_keypair(secret).pubkey() == kp.pubkey()


def test_loads_json_array():
    kp = Keypair()
    secret = json.dumps(list(bytes(kp)))
    assert load_keypair(secret).pubkey() == kp.pubkey()


@pytest.mark.parametrize("secret", [None, "", "   "])
def test_missing_secret(secret):
    with pytest.raises(RuntimeError):
        load_keypair(secret)


@pytest.mark.parametrize("secret", ["[1, 2, 3]", "abc"])
def test_invalid_secret(secret):
    with pytest.raises(RuntimeError):
        load_keypair(secret)
