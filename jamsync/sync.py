"""
Synchronization between the local StateStore and the shared row store.

Each logical key ('users', 'bands', 'history') is replicated as a whole value,
last writer wins. A fingerprint per key records the content this process last
read or wrote, which is how our own echoes and duplicate pushes are recognised
and dropped. The last few values written per key are remembered as well, so a
late echo of an earlier write cannot overwrite a newer local change.
"""

import hashlib
import json
import logging
from collections import deque
from typing import Any, Deque, Dict, FrozenSet, Optional

from .demo import generate_demo_users
from .loop import EventLoop
from .models import JamState
from .state import KEYS, USERS, StateStore, decode_collection, encode_collection
from .store import RowStore, StoreError, Subscription

RECENT_WRITES = 8


def fingerprint(value: Any) -> str:
    """Canonical content digest of a JSON-compatible value."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SyncEngine:
    """Keeps one StateStore eventually consistent with the shared row store."""

    def __init__(self, state_store: StateStore, row_store: RowStore, loop: EventLoop):
        """
        Initialize SyncEngine.

        Args:
            state_store: Local state to replicate
            row_store: Shared store and push channel
            loop: Event loop that all inbound changes are marshalled onto
        """
        self.state_store = state_store
        self.row_store = row_store
        self.loop = loop
        self.logger = logging.getLogger(__name__)

        self.last_fingerprints: Dict[str, Optional[str]] = {key: None for key in KEYS}
        self.recent_writes: Dict[str, Deque[str]] = {
            key: deque(maxlen=RECENT_WRITES) for key in KEYS
        }
        self.bootstrapping = False
        self.degraded = False
        self._subscription: Optional[Subscription] = None
        self._started = False

    # =========================================================================
    # Bootstrap
    # =========================================================================

    def bootstrap(self) -> bool:
        """
        Load every row once, then start listening for changes.

        Outbound writes are suppressed while loading. An empty roster is
        replaced by a demo roster that is only pushed once something else
        changes the users collection. Store failures leave the process running
        unsynchronized on the demo roster.

        Returns:
            True if the shared store was reached, False in degraded mode
        """
        self.bootstrapping = True
        self.state_store.add_listener(self._on_state_changed)
        self._started = True
        try:
            try:
                rows = self.row_store.fetch_all()
            except StoreError as e:
                self.logger.error("Shared store unreachable, running unsynchronized: %s", e, exc_info=True)
                self.degraded = True
                self._seed_demo_users()
                return False

            loaded = {}
            for key in KEYS:
                if key not in rows:
                    continue
                try:
                    items = decode_collection(key, rows[key])
                except (KeyError, TypeError, ValueError) as e:
                    self.logger.warning("Ignoring malformed %s row at startup: %s", key, e)
                    continue
                loaded[key] = items
                self.last_fingerprints[key] = fingerprint(encode_collection(key, items))

            if loaded:
                self.state_store.replace(source="bootstrap", **loaded)
            self.logger.info(
                "Loaded shared state: %s",
                ", ".join(f"{key}={len(items)}" for key, items in loaded.items()) or "empty",
            )

            if not loaded.get(USERS):
                self._seed_demo_users()

            self._subscription = self.row_store.subscribe(self._on_push)
            return True
        finally:
            self.bootstrapping = False

    def _seed_demo_users(self):
        users = generate_demo_users()
        self.logger.info("No roster available, seeding %d demo users", len(users))
        self.state_store.replace(source="bootstrap", users=users)

    # =========================================================================
    # Inbound
    # =========================================================================

    def _on_push(self, key: str, value: Any):
        """Push channel callback; may run on any thread."""
        self.loop.call_soon(self.apply_remote, key, value)

    def apply_remote(self, key: str, value: Any) -> bool:
        """
        Adopt a pushed row unless it matches what we already hold.

        Returns:
            True if the local state was updated
        """
        if key not in KEYS:
            self.logger.debug("Ignoring push for unknown key %s", key)
            return False
        try:
            items = decode_collection(key, value)
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning("Ignoring malformed %s push: %s", key, e)
            return False

        incoming = fingerprint(encode_collection(key, items))
        if incoming == self.last_fingerprints.get(key):
            self.logger.debug("Dropping echo for %s", key)
            return False
        if incoming in self.recent_writes[key]:
            self.logger.debug("Dropping stale echo for %s", key)
            return False

        self.last_fingerprints[key] = incoming
        # Our earlier writes are older than this row now
        self.recent_writes[key].clear()
        self.state_store.replace(source="remote", **{key: items})
        self.logger.info("Adopted remote %s (%d items)", key, len(items))
        return True

    # =========================================================================
    # Outbound
    # =========================================================================

    def _on_state_changed(
        self, old: JamState, new: JamState, changed: FrozenSet[str], source: str
    ):
        if self.bootstrapping or self.degraded:
            return
        for key in KEYS:
            if key in changed:
                self.push(key)

    def push(self, key: str) -> bool:
        """
        Write a collection upstream if its content differs from last known.

        Returns:
            True if a write was issued and succeeded
        """
        value = encode_collection(key, self.state_store.get(key))
        current = fingerprint(value)
        previous = self.last_fingerprints.get(key)
        if current == previous:
            return False
        # Recorded before writing: the echo can arrive before write() returns
        self.last_fingerprints[key] = current
        self.recent_writes[key].append(current)
        try:
            self.row_store.write(key, value)
        except StoreError as e:
            self.last_fingerprints[key] = previous
            if self.recent_writes[key] and self.recent_writes[key][-1] == current:
                self.recent_writes[key].pop()
            self.logger.error("Failed to write %s upstream: %s", key, e)
            return False
        self.logger.debug("Pushed %s (%d items)", key, len(value))
        return True

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self):
        """Stop listening to both the push channel and the local store."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._started:
            self.state_store.remove_listener(self._on_state_changed)
            self._started = False
        self.logger.info("Sync engine closed")
