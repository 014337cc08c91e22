import base64

import pytest

from alps.config import SETTINGS
from alps.crypto import TokenCipher
from alps.exceptions import DecryptionError

KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


def test_encrypt_decrypt():
    cipher = TokenCipher(KEY)
    ciphertext = cipher.encrypt("ghp_secret")

    iv, data, tag = ciphertext.split(":")
    assert len(base64.b64decode(iv)) == 16
    assert len(base64.b64decode(tag)) == 16
    assert "ghp_secret" not in ciphertext

    assert cipher.decrypt(ciphertext) == "ghp_secret"
    # random iv per message
    assert cipher.encrypt("ghp_secret") != ciphertext


def test_from_settings():
    cipher = TokenCipher.from_settings(
        SETTINGS.model_copy(update={"ALPS_ENCRYPTION_KEY": KEY})
    )
    assert cipher.decrypt(cipher.encrypt("x")) == "x"


@pytest.mark.parametrize("key", [None, "", "abcd", "zz" * 32])
def test_invalid_key(key):
    with pytest.raises(ValueError):
        TokenCipher(key)


def test_tampered_ciphertext():
    cipher = TokenCipher(KEY)
    iv, data, tag = cipher.encrypt("ghp_secret").split(":")
    flipped = bytearray(base64.b64decode(data))
    flipped[0] ^= 0xFF
    tampered = ":".join([iv, base64.b64encode(bytes(flipped)).decode(), tag])

    with pytest.raises(DecryptionError):
        cipher.decrypt(tampered)


def test_wrong_key():
    ciphertext = TokenCipher(KEY).encrypt("ghp_secret")
    with pytest.raises(DecryptionError):
        TokenCipher("ff" * 32).decrypt(ciphertext)


@pytest.mark.parametrize("ciphertext", ["", "onlyone", "a:b", "a:b:c:d", "!!:??:**"])
def test_malformed_ciphertext(ciphertext):
    with pytest.raises(DecryptionError):
        TokenCipher(KEY).decrypt(ciphertext)
