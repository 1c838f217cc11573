import pytest
from unittest.mock import patch
from command import CommandError
from errors import KeyGenFailure
from keys import KeyStore, WgKeyProvider


@patch('keys.wireguard.generate_keypair')
def test_provider_returns_keypair(mock_generate):
    mock_generate.return_value = ('priv', 'pub')
    assert WgKeyProvider(timeout=5).generate_keypair() == ('priv', 'pub')
    mock_generate.assert_called_once_with(timeout=5)


@patch('keys.wireguard.generate_keypair')
def test_provider_wraps_command_error(mock_generate):
    mock_generate.side_effect = CommandError("Command not found: wg")
    with pytest.raises(KeyGenFailure, match="wg"):
        WgKeyProvider().generate_keypair()


@patch('keys.wireguard.generate_keypair')
def test_provider_rejects_empty_key(mock_generate):
    mock_generate.return_value = ('priv', '')
    with pytest.raises(KeyGenFailure):
        WgKeyProvider().generate_keypair()


def test_store_save_and_load(tmp_path):
    store = KeyStore(tmp_path)
    store.save("alice", ("alicepriv=", "alicepub="))

    assert (tmp_path / "alice_private.key").read_text() == "alicepriv=\n"
    assert (tmp_path / "alice_public.key").read_text() == "alicepub=\n"
    assert store.load("alice") == ("alicepriv=", "alicepub=")
    assert store.created_at("alice") is not None


def test_store_load_incomplete(tmp_path):
    store = KeyStore(tmp_path)
    assert store.load("nobody") is None
    assert store.created_at("nobody") is None

    (tmp_path / "bob_public.key").write_text("bobpub=\n")
    assert store.load("bob") is None
    assert store.load_public("bob") == "bobpub="

    (tmp_path / "bob_private.key").write_text("\n")
    assert store.load("bob") is None


def test_store_names_and_delete(tmp_path):
    store = KeyStore(tmp_path)
    store.save("carol", ("c1", "c2"))
    store.save("alice", ("a1", "a2"))
    (tmp_path / "alice.conf").write_text("profile")

    assert list(store.names()) == ["alice", "carol"]
    assert store.delete("alice") is True
    assert store.delete("alice") is False
    assert list(store.names()) == ["carol"]
    assert (tmp_path / "alice.conf").exists()


def test_store_names_without_directory(tmp_path):
    assert list(KeyStore(tmp_path / "missing").names()) == []
