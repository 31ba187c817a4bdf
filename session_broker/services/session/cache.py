"""Credential cache with token-derived expiry and an optional durable record."""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Optional, Union

import jwt
from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from ...core.clock import SYSTEM_CLOCK, Clock
from .models import CachedCredential, CredentialBundle


def token_expiry_ms(token: Optional[str]) -> Optional[int]:
    """
    Read the ``exp`` claim of a JWT bearer token, in epoch milliseconds.

    The signature is not verified: the expiry is only used to decide when to
    log in again, not to authorize anything.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return int(exp * 1000)


class CredentialCache:
    """
    Holds the most recent credential bundle and answers whether it is usable.

    Entries are replaced wholesale and never mutated, so readers always see a
    complete entry. When a path is configured the entry is persisted so a
    process restart does not force a new interactive login; the file is read
    lazily on first use.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        fallback_ttl_ms: int = 30 * 60 * 1000,
        skew_ms: int = 60000,
        clock: Clock = SYSTEM_CLOCK,
        encryption_key: Optional[str] = None,
    ):
        """
        Initialize credential cache.

        Args:
            path: Durable record location (None keeps the cache in memory only)
            fallback_ttl_ms: Lifetime when the bearer token has no readable expiry
            skew_ms: Safety margin subtracted from the expiry
            clock: Clock used for timestamps and validity checks
            encryption_key: Optional Fernet key; the record is encrypted at rest when set
        """
        self.path = Path(path) if path else None
        self.fallback_ttl_ms = fallback_ttl_ms
        self.skew_ms = skew_ms
        self.clock = clock
        self._cipher = Fernet(encryption_key.encode()) if encryption_key else None

        self._entry: Optional[CachedCredential] = None
        self._loaded = self.path is None

    def expires_at_ms(self, bundle: CredentialBundle, acquired_at_ms: int) -> int:
        """Expiry from the token's claim when readable, otherwise fixed TTL."""
        from_token = token_expiry_ms(bundle.access_token)
        if from_token is not None:
            return from_token
        return acquired_at_ms + self.fallback_ttl_ms

    def get(self) -> Optional[CachedCredential]:
        """Return the cached credential if it is still valid."""
        self._ensure_loaded()
        entry = self._entry
        if entry is None:
            return None
        if not entry.is_valid(self.clock.now_ms(), self.skew_ms):
            logger.debug("Cached credential expired")
            return None
        return entry

    def peek(self) -> Optional[CachedCredential]:
        """Return the stored entry regardless of validity."""
        self._ensure_loaded()
        return self._entry

    def put(self, bundle: CredentialBundle) -> CachedCredential:
        """Store a freshly acquired bundle, replacing any previous entry."""
        acquired_at_ms = self.clock.now_ms()
        entry = CachedCredential(
            bundle=bundle,
            acquired_at_ms=acquired_at_ms,
            expires_at_ms=self.expires_at_ms(bundle, acquired_at_ms),
        )
        self._entry = entry
        self._loaded = True
        logger.info(
            f"Cached credential (expires in {(entry.expires_at_ms - acquired_at_ms) // 1000}s)"
        )
        self._save(entry)
        return entry

    def invalidate(self) -> None:
        """Drop the cached credential and its durable record."""
        self._entry = None
        self._loaded = True
        if self.path is None:
            return
        try:
            self.path.unlink(missing_ok=True)
            logger.info("Credential cache invalidated")
        except OSError as e:
            logger.error(f"Error deleting credential cache file: {e}")

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._entry = self._load()

    def _load(self) -> Optional[CachedCredential]:
        """Read the durable record; absent or corrupt means no cache."""
        assert self.path is not None
        try:
            if not self.path.exists():
                logger.info("No existing credential cache file found")
                return None
            raw = self.path.read_text(encoding="utf-8")
            if self._cipher is not None:
                raw = self._cipher.decrypt(raw.encode()).decode()
            record = json.loads(raw)
            acquired_at_ms = record["acquiredAtMs"]
            if isinstance(acquired_at_ms, bool) or not isinstance(acquired_at_ms, int):
                raise ValueError("acquiredAtMs must be an integer")
            bundle = CredentialBundle.from_dict(record["bundle"])
        except (OSError, ValueError, KeyError, TypeError, InvalidToken) as e:
            logger.warning(f"Ignoring unreadable credential cache file: {e}")
            return None

        entry = CachedCredential(
            bundle=bundle,
            acquired_at_ms=acquired_at_ms,
            expires_at_ms=self.expires_at_ms(bundle, acquired_at_ms),
        )
        logger.info("Credential cache loaded from disk")
        return entry

    def _save(self, entry: CachedCredential) -> bool:
        """Atomically write the durable record; failures are logged only."""
        if self.path is None:
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            data = json.dumps(entry.to_record())
            if self._cipher is not None:
                data = self._cipher.encrypt(data.encode()).decode()

            fd, temp_path = tempfile.mkstemp(dir=self.path.parent, text=True, prefix=".auth_cache_")
            try:
                # Secret material: owner read/write only, set before writing
                os.fchmod(fd, stat.S_IRUSR | stat.S_IWUSR)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(temp_path, self.path)
            except OSError:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
            logger.debug(f"Credential cache saved to {self.path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save credential cache: {e}")
            return False
