import json

import pytest

from suipanel.tokens import TokenInMemory, TokenStore


def _data():
    return json.dumps(
        [
            {"Token": "token", "Expiry": 0, "Username": "admin"},
            {"token": "secret", "expiry": 100, "username": "bob"},
        ]
    )


def test_load_and_find():
    store = TokenStore()
    store.load(_data())
    assert len(store) == 2
    assert store.find_username("token", now=50) == "admin"
    assert store.find_username("secret", now=50) == "bob"


def test_unknown_token_gives_empty_name():
    store = TokenStore()
    store.load(_data())
    assert store.find_username("placeholder", now=50) == ""


def test_expired_tokens_are_removed():
    store = TokenStore()
    store.load(_data())
    assert store.find_username("secret", now=200) == ""
    assert len(store) == 1
    assert store.find_username("token", now=200) == "admin"


def test_zero_expiry_never_expires():
    store = TokenStore([TokenInMemory(token="token", expiry=0, username="admin")])
    assert store.find_username("token", now=10**12) == "admin"


def test_invalid_json_empties_store():
    store = TokenStore([TokenInMemory(token="token", expiry=0, username="admin")])
    with pytest.raises(ValueError):
        store.load("{not json")
    assert len(store) == 0


def test_null_loads_as_empty():
    store = TokenStore([TokenInMemory(token="token", expiry=0, username="admin")])
    store.load("null")
    assert len(store) == 0
    assert store.find_username("token", now=1) == ""