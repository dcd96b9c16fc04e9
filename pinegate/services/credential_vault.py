"""AES-256-GCM vault for TradingView session cookies.

Ciphertext format: base64(nonce || ciphertext+tag) with a fresh 12-byte
random nonce per call, so a stored value decrypts with nothing but the key.

Key source precedence (resolved once at process start by load_vault_key):
    1. PINEGATE_VAULT_KEY env var (base64-encoded 32-byte key)
    2. PINEGATE_VAULT_KEY_FILE env var (path to raw key file)
    3. platformdirs local file (auto-generated on first use)

The key is injected into CredentialVault; nothing reads it from a global
at point of use.
"""

import base64
import binascii
import logging
import os
import platform
import stat

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pinegate.errors import CredentialError
from pinegate.services.platform_types import SessionCookies

logger = logging.getLogger(__name__)

KEY_FILENAME = ".pinegate_vault_key"
_REQUIRED_KEY_LENGTH = 32
_NONCE_LENGTH = 12
_TAG_LENGTH = 16


def get_default_key_dir() -> str:
    """Return the app-data directory for key storage (honors PINEGATE_DATA_DIR)."""
    from pinegate.utils.paths import ensure_dirs_exist, get_data_dir

    ensure_dirs_exist()
    return str(get_data_dir())


def get_key_source_info() -> dict:
    """Return metadata about the active key source (without revealing the key).

    Returns:
        {"source": "env"|"env_file"|"platformdirs", "path": str | None}
    """
    env_key = os.environ.get("PINEGATE_VAULT_KEY", "").strip()
    if env_key:
        return {"source": "env", "path": None}

    env_key_file = os.environ.get("PINEGATE_VAULT_KEY_FILE", "").strip()
    if env_key_file:
        return {"source": "env_file", "path": env_key_file}

    default_dir = get_default_key_dir()
    return {"source": "platformdirs", "path": os.path.join(default_dir, KEY_FILENAME)}


def _read_key_file(path: str) -> bytes:
    with open(path, "rb") as f:
        key = f.read()
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Key file {path} has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH}). "
            "Delete the file to regenerate."
        )
    return key


def load_vault_key(key_dir: str | None = None) -> bytes:
    """Load or generate the 32-byte vault key.

    Args:
        key_dir: Directory for the key file (source 3 only).
                 Defaults to platformdirs app-data.

    Returns:
        32-byte encryption key.

    Raises:
        ValueError: If the key has an invalid length from any source, or
            invalid base64.
    """
    env_key = os.environ.get("PINEGATE_VAULT_KEY", "").strip()
    if env_key:
        try:
            key = base64.b64decode(env_key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"PINEGATE_VAULT_KEY contains invalid base64: {e}") from e
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"PINEGATE_VAULT_KEY has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    env_key_file = os.environ.get("PINEGATE_VAULT_KEY_FILE", "").strip()
    if env_key_file:
        if not os.path.exists(env_key_file):
            raise ValueError(f"PINEGATE_VAULT_KEY_FILE path does not exist: {env_key_file}")
        if os.path.islink(env_key_file):
            raise ValueError(
                f"PINEGATE_VAULT_KEY_FILE is a symlink: {env_key_file}. Symlinks are rejected."
            )
        if not os.path.isfile(env_key_file):
            raise ValueError(f"PINEGATE_VAULT_KEY_FILE is not a regular file: {env_key_file}")
        return _read_key_file(env_key_file)

    directory = key_dir or get_default_key_dir()
    os.makedirs(directory, exist_ok=True)
    key_path = os.path.join(directory, KEY_FILENAME)

    if os.path.exists(key_path):
        key = _read_key_file(key_path)
        if platform.system() != "Windows":
            mode = stat.S_IMODE(os.stat(key_path).st_mode)
            if mode & (stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH):
                logger.warning(
                    "Vault key file %s has permissions %o — recommend chmod 600",
                    key_path, mode,
                )
        return key

    key = AESGCM.generate_key(bit_length=256)
    try:
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            os.write(fd, key)
        finally:
            os.close(fd)
    except FileExistsError:
        # Another process created the file between the exists() check and open().
        return _read_key_file(key_path)

    if platform.system() != "Windows":
        os.chmod(key_path, stat.S_IRUSR | stat.S_IWUSR)

    logger.info("Generated new vault key at %s", key_path)
    return key


class CredentialVault:
    """Symmetric authenticated encryption of session tokens.

    Args:
        key: 32-byte AES-256 key.

    Raises:
        ValueError: If key is not exactly 32 bytes.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"Vault key must be exactly {_REQUIRED_KEY_LENGTH} bytes "
                f"(got {len(key)}). AES-256-GCM requires a 256-bit key."
            )
        self._aesgcm = AESGCM(key)

    def __repr__(self) -> str:
        return "<CredentialVault(alg='AES-256-GCM')>"

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string with a fresh random nonce.

        Returns:
            base64(nonce || ciphertext+tag) as ASCII text.
        """
        nonce = os.urandom(_NONCE_LENGTH)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            CredentialError: If the value is malformed, was encrypted under
                another key, or was tampered with.
        """
        if not ciphertext or not isinstance(ciphertext, str):
            raise CredentialError("Stored credential is empty or not text", code="E-2002")
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialError(f"Stored credential is not valid base64: {e}", code="E-2002") from e

        if len(raw) < _NONCE_LENGTH + _TAG_LENGTH:
            raise CredentialError(
                f"Stored credential is too short ({len(raw)} bytes)", code="E-2002"
            )

        nonce, body = raw[:_NONCE_LENGTH], raw[_NONCE_LENGTH:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, body, None)
            return plaintext.decode("utf-8")
        except Exception as e:
            # InvalidTag carries no message; name the failure explicitly.
            raise CredentialError(
                "Credential decryption failed (wrong key or tampered ciphertext)",
                code="E-2002",
            ) from e

    def encrypt_session(self, cookies: SessionCookies) -> tuple[str, str]:
        """Encrypt both cookies of a session pair.

        Returns:
            (encrypted_session, encrypted_signed_session)
        """
        return self.encrypt(cookies.session), self.encrypt(cookies.signed_session)

    def decrypt_session(self, encrypted_session: str | None, encrypted_signed: str | None) -> SessionCookies:
        """Decrypt a stored cookie pair.

        Raises:
            CredentialError: If either value is missing or fails to decrypt.
        """
        if not encrypted_session or not encrypted_signed:
            raise CredentialError("Seller TradingView session is incomplete", code="E-2001")
        return SessionCookies(
            session=self.decrypt(encrypted_session),
            signed_session=self.decrypt(encrypted_signed),
        )


def build_default_vault(key_dir: str | None = None) -> CredentialVault:
    """Construct a vault from the process key source."""
    return CredentialVault(load_vault_key(key_dir))
