"""
Credential stores for tokens, session artifacts and state nonces.

All stores share a small key/value interface over strings plus a per-key
lock used by callers that need an atomic read-modify-write. Payload
encryption is layered on with EncryptedCredentialStore so any backing
store can hold secrets.
"""

import json
import logging
import os
import stat
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import redis

from spotctl.services.token_service import TokenCipher, TokenEncryptionError

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised when a credential store cannot be read or written."""

    pass


class CredentialStore:
    """
    Base class for key/value secret storage.

    Subclasses implement get/set/delete/keys. ``lock(key)`` serializes
    read-modify-write sequences on a single key within this process.
    """

    def __init__(self):
        self._locks: dict = {}
        self._locks_guard = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    def pop(self, key: str) -> Optional[str]:
        """Read and delete a key atomically."""
        with self.lock(key):
            value = self.get(key)
            if value is not None:
                self.delete(key)
            return value

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold the per-key lock for the duration of the block."""
        with self._locks_guard:
            key_lock = self._locks.setdefault(key, threading.RLock())
        with key_lock:
            yield

    # JSON helpers

    def get_json(self, key: str) -> Optional[dict]:
        """Load a JSON object, or None when absent or unreadable."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("Discarding unreadable entry %s: %s", key, e)
            return None
        return data if isinstance(data, dict) else None

    def set_json(
        self, key: str, data: dict, ttl: Optional[int] = None
    ) -> None:
        self.set(key, json.dumps(data), ttl=ttl)


class MemoryCredentialStore(CredentialStore):
    """In-process store, used in tests and by a single-process backend."""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, str] = {}
        self._data_guard = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._data_guard:
            return self._data.get(key)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        # TTL is enforced by the owners' sweeps for in-memory data.
        with self._data_guard:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._data_guard:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._data_guard:
            return [k for k in self._data if k.startswith(prefix)]


class FileCredentialStore(CredentialStore):
    """
    One file per key under a private directory.

    Files are chmod 0600 (owner-only read/write).
    """

    def __init__(self, directory: Path):
        super().__init__()
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self._directory, stat.S_IRWXU)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise CredentialStoreError(f"Invalid credential key: {key!r}")
        return self._directory / f"{key}.cred"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text()
        except OSError as e:
            raise CredentialStoreError(f"Failed to read {key}: {e}")

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            fd = os.open(
                tmp_path,
                os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                stat.S_IRUSR | stat.S_IWUSR,
            )
            with os.fdopen(fd, "w") as f:
                f.write(value)
            os.replace(tmp_path, path)
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            raise CredentialStoreError(f"Failed to write {key}: {e}")
        logger.debug("Saved credential %s", key)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CredentialStoreError(f"Failed to delete {key}: {e}")
        logger.info("Deleted credential %s", key)
        return True

    def keys(self, prefix: str = "") -> List[str]:
        return [
            p.stem for p in self._directory.glob("*.cred")
            if p.stem.startswith(prefix)
        ]


class RedisCredentialStore(CredentialStore):
    """
    Redis-backed store for the managed backend.

    Keys are namespaced with a prefix; TTLs use Redis expiry.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "spotctl:",
    ):
        super().__init__()
        self._redis = redis_client
        self._prefix = key_prefix

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            data = self._redis.get(self._make_key(key))
        except redis.RedisError as e:
            raise CredentialStoreError(f"Redis error reading {key}: {e}")
        if data is None:
            return None
        return data.decode("utf-8") if isinstance(data, bytes) else data

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            if ttl:
                self._redis.setex(self._make_key(key), ttl, value)
            else:
                self._redis.set(self._make_key(key), value)
        except redis.RedisError as e:
            raise CredentialStoreError(f"Redis error writing {key}: {e}")

    def delete(self, key: str) -> bool:
        try:
            return bool(self._redis.delete(self._make_key(key)))
        except redis.RedisError as e:
            raise CredentialStoreError(f"Redis error deleting {key}: {e}")

    def pop(self, key: str) -> Optional[str]:
        """GETDEL keeps single-use semantics across backend workers."""
        try:
            data = self._redis.getdel(self._make_key(key))
        except redis.RedisError as e:
            raise CredentialStoreError(f"Redis error popping {key}: {e}")
        if data is None:
            return None
        return data.decode("utf-8") if isinstance(data, bytes) else data

    def keys(self, prefix: str = "") -> List[str]:
        try:
            found = self._redis.scan_iter(match=f"{self._prefix}{prefix}*")
            result = []
            for raw in found:
                name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
                result.append(name[len(self._prefix):])
            return result
        except redis.RedisError as e:
            raise CredentialStoreError(f"Redis error listing keys: {e}")


class EncryptedCredentialStore(CredentialStore):
    """
    Wraps another store, encrypting every value with a TokenCipher.

    Values that fail to decrypt (corrupted, or the key changed) are
    treated as absent and removed.
    """

    def __init__(self, inner: CredentialStore, cipher: TokenCipher):
        super().__init__()
        self._inner = inner
        self._cipher = cipher

    def get(self, key: str) -> Optional[str]:
        ciphertext = self._inner.get(key)
        if ciphertext is None:
            return None
        try:
            return self._cipher.decrypt(ciphertext)
        except TokenEncryptionError as e:
            logger.warning("Dropping undecryptable credential %s: %s", key, e)
            self._inner.delete(key)
            return None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._inner.set(key, self._cipher.encrypt(value), ttl=ttl)

    def delete(self, key: str) -> bool:
        return self._inner.delete(key)

    def keys(self, prefix: str = "") -> List[str]:
        return self._inner.keys(prefix)

    def pop(self, key: str) -> Optional[str]:
        ciphertext = self._inner.pop(key)
        if ciphertext is None:
            return None
        try:
            return self._cipher.decrypt(ciphertext)
        except TokenEncryptionError as e:
            logger.warning("Dropping undecryptable credential %s: %s", key, e)
            return None

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._inner.lock(key):
            yield
