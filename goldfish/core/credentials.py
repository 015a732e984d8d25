"""
Per-user, per-source credential storage with an in-memory cache.

Tokens live on the user's profile row (canvas_token, google_access_token, ustep_token).
invalidate() writes a tombstone (state "invalid", token null) so the next sync asks
for new credentials instead of retrying a stale token. Tokens are never refreshed
silently; the user has to enter them again.

The needs-credential flag is observable (subscribe) and a sync can await the
user's answer with wait_for_credential(). At most one prompt per user and source
is open at a time.
"""
import asyncio
import logging
import threading
from collections import namedtuple
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple


from goldfish.core.db import session_scope
from goldfish.core.errors import CredentialStoreError
from goldfish.core.models import Source, UserProfile, _utc_now


class CredentialState(str, Enum):
    ABSENT = "absent"
    VALID = "valid"
    INVALID = "invalid"


TOKEN_FIELDS = {
    Source.CANVAS: "canvas_token",
    Source.GOOGLE_CLASSROOM: "google_access_token",
    Source.USTEP: "ustep_token",
}

CredentialEntry = namedtuple("CredentialEntry", ["token", "state"])

Key = Tuple[str, Source]


def _source(source) -> Source:
    source = Source(source)
    if source not in TOKEN_FIELDS:
        raise ValueError(f"Source {source.value} has no credential")
    return source


class CredentialStore:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._cache: Dict[Key, CredentialEntry] = {}
        self._needs: Dict[Key, bool] = {}
        self._prompts: set = set()
        self._waiters: Dict[Key, List[Tuple[asyncio.AbstractEventLoop, asyncio.Future]]] = {}
        self._listeners: List[Callable[[str, Source, bool], None]] = []
        self._lock = threading.RLock()

    # Persistence

    def _read(self, user_id: str, source: Source) -> CredentialEntry:
        with session_scope() as session:
            profile = session.get(UserProfile, user_id)
            if profile is None:
                return CredentialEntry(None, CredentialState.ABSENT)
            token = getattr(profile, TOKEN_FIELDS[source])
            state = (profile.credential_states or {}).get(source.value)
        if state == CredentialState.INVALID.value:
            return CredentialEntry(None, CredentialState.INVALID)
        if token:
            return CredentialEntry(token, CredentialState.VALID)
        return CredentialEntry(None, CredentialState.ABSENT)

    def _write(self, user_id: str, source: Source, token: Optional[str], state: CredentialState) -> None:
        with session_scope() as session:
            profile = session.get(UserProfile, user_id)
            if profile is None:
                profile = UserProfile(user_id=user_id, credential_states={})
                session.add(profile)
            setattr(profile, TOKEN_FIELDS[source], token)
            states = dict(profile.credential_states or {})
            states[source.value] = state.value
            profile.credential_states = states
            profile.updated_at = _utc_now()

    def _entry(self, user_id: str, source: Source) -> CredentialEntry:
        key = (user_id, source)
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            entry = self._read(user_id, source)
            with self._lock:
                self._cache.setdefault(key, entry)
                entry = self._cache[key]
        return entry

    # Public API

    def load(self, user_id: str, source) -> Optional[str]:
        """Token or None. First access per process reads the DB; later reads hit the cache."""
        return self._entry(user_id, _source(source)).token

    def state(self, user_id: str, source) -> CredentialState:
        return self._entry(user_id, _source(source)).state

    def save(self, user_id: str, source, token: str) -> None:
        """Store a token. DB failures are logged and raised as CredentialStoreError."""
        source = _source(source)
        if not token:
            raise ValueError("token must not be empty")
        try:
            self._write(user_id, source, token, CredentialState.VALID)
        except Exception as e:
            self.logger.error(f"Failed to save {source.value} credential for {user_id}: {e}")
            raise CredentialStoreError(f"Could not save {source.value} credential: {e}") from e
        with self._lock:
            self._cache[(user_id, source)] = CredentialEntry(token, CredentialState.VALID)
        self.logger.info(f"Saved {source.value} credential for {user_id}")
        self._set_needs(user_id, source, False)
        self._resolve_waiters(user_id, source, token)

    def invalidate(self, user_id: str, source) -> None:
        """Drop the cached token and persist a tombstone; raises the needs-credential flag."""
        source = _source(source)
        with self._lock:
            self._cache[(user_id, source)] = CredentialEntry(None, CredentialState.INVALID)
        try:
            self._write(user_id, source, None, CredentialState.INVALID)
        except Exception as e:
            self.logger.error(f"Failed to persist {source.value} tombstone for {user_id}: {e}")
            raise CredentialStoreError(f"Could not invalidate {source.value} credential: {e}") from e
        self.logger.info(f"Invalidated {source.value} credential for {user_id}")
        self._set_needs(user_id, source, True)

    # Needs-credential signal

    def needs_credential(self, user_id: str, source) -> bool:
        with self._lock:
            return self._needs.get((user_id, _source(source)), False)

    def subscribe(self, callback: Callable[[str, Source, bool], None]) -> Callable[[], None]:
        """callback(user_id, source, needed) on every flag change. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _set_needs(self, user_id: str, source: Source, needed: bool) -> None:
        key = (user_id, source)
        with self._lock:
            changed = self._needs.get(key, False) != needed
            self._needs[key] = needed
            if not needed:
                self._prompts.discard(key)
            listeners = list(self._listeners)
        if not changed:
            return
        for callback in listeners:
            try:
                callback(user_id, source, needed)
            except Exception as e:
                self.logger.error(f"Credential listener failed: {e}", exc_info=True)

    def request_credential(self, user_id: str, source) -> bool:
        """Ask the user for a credential. False when a prompt for it is already open."""
        source = _source(source)
        key = (user_id, source)
        with self._lock:
            if key in self._prompts:
                return False
            self._prompts.add(key)
        self._set_needs(user_id, source, True)
        return True

    def dismiss_request(self, user_id: str, source) -> None:
        """The user closed the prompt without answering; waiting syncs get None."""
        source = _source(source)
        with self._lock:
            self._prompts.discard((user_id, source))
        self._resolve_waiters(user_id, source, None)

    async def wait_for_credential(self, user_id: str, source, timeout: Optional[float] = None) -> Optional[str]:
        """Open (or join) the prompt and wait until save() or dismiss_request() answers it.
        Returns the new token, or None on dismissal or timeout."""
        source = _source(source)
        token = self.load(user_id, source)
        if token:
            return token

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        key = (user_id, source)
        with self._lock:
            self._waiters.setdefault(key, []).append((loop, future))
        self.request_credential(user_id, source)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self.logger.info(f"Timed out waiting for {source.value} credential for {user_id}")
            return None
        finally:
            with self._lock:
                waiters = self._waiters.get(key, [])
                if (loop, future) in waiters:
                    waiters.remove((loop, future))
                if not waiters:
                    self._waiters.pop(key, None)

    def _resolve_waiters(self, user_id: str, source: Source, token: Optional[str]) -> None:
        with self._lock:
            waiters = self._waiters.pop((user_id, source), [])
        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_set_result, future, token)
            except RuntimeError:
                self.logger.debug(f"Event loop closed before {source.value} waiter for {user_id} was answered")


def _set_result(future: asyncio.Future, value) -> None:
    if not future.done():
        future.set_result(value)
