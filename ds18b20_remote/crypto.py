"""
ds18b20-remote Crypto Module
Shared by the agent and the diagnostic controller.

AES-256-CBC with a random IV per message, PKCS#7 padded.

Wire format: <hex iv>:<hex ciphertext>

The output alphabet is [0-9a-f:], so it never contains the frame
delimiter. This is the format the controller side already speaks.
"""

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes
from Crypto.Util.Padding import pad, unpad

from .errors import DecryptError

KEY_SIZE = 32
IV_SIZE = 16


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")


def encrypt(text: str, key: bytes) -> str:
    """
    Encrypt a text string.

    Returns the hex encoded IV and ciphertext joined by a colon.
    """
    _check_key(key)

    iv = get_random_bytes(IV_SIZE)
    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    ciphertext = cipher.encrypt(pad(text.encode('utf-8'), AES.block_size))

    return iv.hex() + ':' + ciphertext.hex()


def decrypt(text: str, key: bytes) -> str:
    """
    Decrypt a string produced by encrypt().

    Raises DecryptError if the input is malformed or the padding does not
    verify (wrong key, corruption).
    """
    _check_key(key)

    iv_hex, sep, ciphertext_hex = text.partition(':')
    if not sep:
        raise DecryptError("Missing IV separator")

    try:
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError as e:
        raise DecryptError(f"Invalid hex encoding: {e}") from e

    if len(iv) != IV_SIZE:
        raise DecryptError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % AES.block_size:
        raise DecryptError("Ciphertext length is not a multiple of the block size")

    cipher = AES.new(key, AES.MODE_CBC, iv=iv)
    try:
        plaintext = unpad(cipher.decrypt(ciphertext), AES.block_size)
        return plaintext.decode('utf-8')
    except ValueError as e:
        raise DecryptError(f"Decryption failed: {e}") from e
