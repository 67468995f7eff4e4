"""At-rest encryption for provider API keys.

Values are encrypted with :class:`cryptography.fernet.Fernet` and stored with
an ``ENC:`` prefix, so configs written before encryption was introduced are
read as plaintext and re-saved encrypted on the next load.

The key lives next to the config in ``.key`` with owner-only permissions.
"""

import logging
import os
import platform
import subprocess
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from . import config

logger = logging.getLogger(__name__)

ENC_PREFIX = "ENC:"

_fernet: Optional[Fernet] = None
_fernet_key_file: Optional[Path] = None


def set_strict_permissions(filepath: Path) -> None:
    """Restrict *filepath* to its owner. Failures are logged, not raised."""
    try:
        if platform.system() == "Windows":
            username = os.environ.get("USERNAME", "")
            if not username:
                logger.warning("Cannot set permissions on %s: USERNAME not set", filepath)
                return
            result = subprocess.run(
                ["icacls", str(filepath), "/inheritance:r", "/grant:r", f"{username}:F"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode != 0:
                logger.warning("icacls failed for %s: %s", filepath, result.stderr.strip())
        else:
            os.chmod(str(filepath), 0o600)
    except FileNotFoundError:
        logger.warning("Cannot set permissions: %s does not exist", filepath)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning("Failed to set permissions on %s: %s", filepath, e)


def _key_file() -> Path:
    return config.get_config_dir() / ".key"


def _get_or_create_key(key_file: Path) -> bytes:
    key_file.parent.mkdir(parents=True, exist_ok=True)
    if key_file.exists():
        key = key_file.read_bytes().strip()
        try:
            Fernet(key)
            return key
        except ValueError:
            logger.warning("Existing .key file is invalid, generating a new key")

    key = Fernet.generate_key()
    key_file.write_bytes(key)
    set_strict_permissions(key_file)
    logger.info("Generated new encryption key at %s", key_file)
    return key


def _get_fernet() -> Fernet:
    # Re-keyed whenever the config dir changes
    global _fernet, _fernet_key_file
    key_file = _key_file()
    if _fernet is None or _fernet_key_file != key_file:
        _fernet = Fernet(_get_or_create_key(key_file))
        _fernet_key_file = key_file
    return _fernet


def encrypt_value(plaintext: str) -> str:
    if not plaintext:
        return plaintext
    token = _get_fernet().encrypt(plaintext.encode("utf-8"))
    return ENC_PREFIX + token.decode("ascii")


def decrypt_value(ciphertext: str) -> str:
    """Decrypt an ``ENC:`` value; plaintext passes through unchanged.

    A value that cannot be decrypted (key changed, file corrupted) comes back
    empty so the user is asked for the key again instead of crashing startup.
    """
    if not ciphertext or not ciphertext.startswith(ENC_PREFIX):
        return ciphertext
    token = ciphertext[len(ENC_PREFIX):]
    try:
        return _get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.warning("Failed to decrypt a config value; re-enter it in settings")
        return ""
