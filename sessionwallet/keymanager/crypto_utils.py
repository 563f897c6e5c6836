import hmac
import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from eth_utils import keccak

from ..config import (
    CIPHER, IVSIZE, KEYSIZE, MIN_PASSWORD_LENGTH,
    PBKDF2_PRF, SCRYPT_P, SCRYPT_R,
)


class CryptoError(Exception):
    code = 500


class PasswordTooShort(CryptoError):
    code = 405

    def __init__(self, message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."):
        super().__init__(message)


class BadCredentials(CryptoError):
    # wrong password and corrupted keystore are deliberately the same error
    code = 403

    def __init__(self, message="Incorrect login ID or password."):
        super().__init__(message)


def random_bytes(length: int) -> bytes:
    return os.urandom(length)


def kdf_params(kdf: str, rounds: int, salt: bytes, dklen: int = KEYSIZE) -> dict:
    """Build the kdfparams block recorded in a keystore."""
    params = {"dklen": dklen, "salt": salt.hex()}
    if kdf == "scrypt":
        params.update(n=rounds, r=SCRYPT_R, p=SCRYPT_P)
    elif kdf == "pbkdf2":
        params.update(c=rounds, prf=PBKDF2_PRF)
    else:
        raise CryptoError(f"Unsupported KDF: {kdf}")
    return params


def derive_key(password: str, kdf: str, params: dict) -> bytes:
    """Derive the secret key from a password using recorded KDF parameters."""
    salt = bytes.fromhex(params["salt"])
    dklen = int(params["dklen"])
    try:
        if kdf == "scrypt":
            deriver = Scrypt(
                salt=salt,
                length=dklen,
                n=int(params["n"]),
                r=int(params["r"]),
                p=int(params["p"]),
            )
        elif kdf == "pbkdf2":
            if params.get("prf", PBKDF2_PRF) != PBKDF2_PRF:
                raise CryptoError(f"Unsupported PBKDF2 PRF: {params['prf']}")
            deriver = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=dklen,
                salt=salt,
                iterations=int(params["c"]),
            )
        else:
            raise CryptoError(f"Unsupported KDF: {kdf}")
        return deriver.derive(password.encode("utf-8"))
    except CryptoError:
        raise
    except Exception as e:
        raise CryptoError(f"KDF key derivation failed: {e}") from e


def aes_ctr(data: bytes, key: bytes, iv: bytes) -> bytes:
    # CTR mode is symmetric: the same call encrypts and decrypts
    cipher = Cipher(algorithms.AES(key), modes.CTR(iv))
    transform = cipher.encryptor()
    return transform.update(data) + transform.finalize()


def get_mac(derived_key: bytes, ciphertext: bytes) -> str:
    """MAC = keccak256(derivedKey[16:32] || ciphertext)"""
    return keccak(derived_key[16:32] + ciphertext).hex()


def encrypt_private_key(private_key: bytes, password: str, kdf: str, rounds: int):
    """
    Encrypt a private key into the ``crypto`` section of a v3 keystore.

    Returns (crypto, derived_key).
    """
    try:
        salt = random_bytes(KEYSIZE)
        iv = random_bytes(IVSIZE)
        params = kdf_params(kdf, rounds, salt)
        derived_key = derive_key(password, kdf, params)
        ciphertext = aes_ctr(private_key, derived_key[:16], iv)
    except CryptoError:
        raise
    except Exception as e:
        raise CryptoError(f"AES encrypt failed: {e}") from e

    crypto = {
        "cipher": CIPHER,
        "ciphertext": ciphertext.hex(),
        "cipherparams": {"iv": iv.hex()},
        "kdf": kdf,
        "kdfparams": params,
        "mac": get_mac(derived_key, ciphertext),
    }
    return crypto, derived_key


def decrypt_private_key(password: str, crypto: dict):
    """
    Decrypt the ``crypto`` section of a v3 keystore.

    The MAC is checked before decrypting. Returns (private_key, derived_key).

    Raises:
        BadCredentials: wrong password, MAC mismatch or malformed record
    """
    try:
        if crypto["cipher"] != CIPHER:
            raise CryptoError(f"Unsupported cipher: {crypto['cipher']}")
        derived_key = derive_key(password, crypto["kdf"], crypto["kdfparams"])
        ciphertext = bytes.fromhex(crypto["ciphertext"])
        expected = get_mac(derived_key, ciphertext)
        if not hmac.compare_digest(expected, str(crypto["mac"]).lower()):
            raise BadCredentials()
        iv = bytes.fromhex(crypto["cipherparams"]["iv"])
        private_key = aes_ctr(ciphertext, derived_key[:16], iv)
    except BadCredentials:
        raise
    except Exception as e:
        raise BadCredentials() from e

    return private_key, derived_key
