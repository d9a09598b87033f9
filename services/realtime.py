# services/realtime.py
"""
Realtime change feed.

Inserts on a table, filtered to one scope (e.g. user_id=eq.<id>), are
delivered through a Subscription: an iterator the consumer pulls rows from
and closes when done. Every consumer of a scope holds its own subscription
and receives every row; the feed keeps one channel per scope.

SupabaseChangeFeed runs the async realtime client on a background event
loop thread and hands rows over through a thread-safe queue.
"""

import asyncio
import logging
import queue
import threading
from typing import Dict, List, Optional, Tuple

from supabase import acreate_client

logger = logging.getLogger(__name__)

ScopeKey = Tuple[str, str, str]

_CLOSED = object()


def scope_filter(column: str, value) -> str:
    """Realtime filter expression for an equality scope."""
    return f"{column}=eq.{value}"


def record_from_payload(payload) -> Optional[dict]:
    """
    Extract the inserted row from a postgres_changes payload.
    Payload layouts differ between realtime client versions.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get('data')
    if isinstance(data, dict) and isinstance(data.get('record'), dict):
        return data['record']
    for key in ('new', 'record'):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return None


class Subscription:
    """
    Live stream of inserted rows for one scope.

    Iterating blocks until a row arrives and stops once the subscription is
    closed. get(timeout) returns None on timeout or after close.
    """

    def __init__(self, key: ScopeKey, on_close=None):
        self.key = key
        self._queue = queue.Queue()
        self._closed = threading.Event()
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def push(self, row: dict):
        """Deliver a row. Rows pushed after close are dropped."""
        if not self.closed:
            self._queue.put(row)

    def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        if self.closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return None if item is _CLOSED else item

    def drain(self) -> list:
        """Return every row already delivered, without blocking."""
        rows = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return rows
            if item is not _CLOSED:
                rows.append(item)

    def close(self):
        """Release the subscription. Safe to call more than once."""
        if self.closed:
            return
        self._closed.set()
        self._queue.put(_CLOSED)
        if self._on_close:
            self._on_close(self)

    def __iter__(self):
        return self

    def __next__(self) -> dict:
        if self.closed and self._queue.empty():
            raise StopIteration
        item = self._queue.get()
        if item is _CLOSED:
            raise StopIteration
        return item

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ChangeFeed:
    """
    Base change feed: scope registry and subscription lifecycle.

    Any number of consumers may subscribe to the same scope, and each of
    them gets every row. Subclasses open the underlying channel with the
    first subscription on a scope and close it with the last one.
    on_idle(feed) is called once the feed has no subscription left.
    """

    def __init__(self, schema: str = 'public', on_idle=None):
        self.schema = schema
        self.on_idle = on_idle
        self._active: Dict[ScopeKey, List[Subscription]] = {}
        self._lock = threading.Lock()
        # Serializes channel open/close; reentrant so a failed open can release
        self._channel_lock = threading.RLock()

    def subscribe(self, table: str, column: str, value) -> Subscription:
        """Open an insert subscription on table filtered to column = value."""
        key = (self.schema, table, scope_filter(column, value))
        subscription = Subscription(key, on_close=self._release)

        with self._channel_lock:
            with self._lock:
                subscribers = self._active.setdefault(key, [])
                subscribers.append(subscription)
                first = len(subscribers) == 1
            if first:
                try:
                    self._open(key)
                except Exception:
                    for subscriber in self._subscribers(key):
                        subscriber.close()
                    raise
        return subscription

    def active_subscriptions(self, table: str = None) -> int:
        with self._lock:
            return sum(
                len(subscribers) for key, subscribers in self._active.items()
                if table is None or key[1] == table
            )

    def _subscribers(self, key: ScopeKey) -> List[Subscription]:
        with self._lock:
            return list(self._active.get(key, ()))

    def _deliver(self, key: ScopeKey, row: dict) -> int:
        subscribers = self._subscribers(key)
        for subscriber in subscribers:
            subscriber.push(row)
        return len(subscribers)

    def _release(self, subscription: Subscription):
        key = subscription.key
        with self._channel_lock:
            with self._lock:
                subscribers = self._active.get(key)
                if subscribers is None or subscription not in subscribers:
                    return
                subscribers.remove(subscription)
                last = not subscribers
                if last:
                    del self._active[key]
                idle = not self._active
            if last:
                self._close(key)
            if idle:
                self._idle()

    def _idle(self):
        if self.on_idle:
            self.on_idle(self)

    def _open(self, key: ScopeKey):
        raise NotImplementedError

    def _close(self, key: ScopeKey):
        pass

    def shutdown(self):
        with self._lock:
            subscriptions = [s for subscribers in self._active.values() for s in subscribers]
        for subscription in subscriptions:
            subscription.close()


class LocalChangeFeed(ChangeFeed):
    """
    In-process feed: rows are published by the application itself.
    Used when realtime is disabled and by the test suite.
    """

    def _open(self, key: ScopeKey):
        pass

    def publish(self, table: str, row: dict) -> int:
        """Deliver a row to every subscription whose scope matches it."""
        with self._lock:
            keys = list(self._active)
        delivered = 0
        for key in keys:
            schema, sub_table, expr = key
            if sub_table != table:
                continue
            column, _, value = expr.partition('=eq.')
            if str(row.get(column)) == value:
                delivered += self._deliver(key, row)
        return delivered


class SupabaseChangeFeed(ChangeFeed):
    """
    Feed backed by Supabase Realtime postgres_changes.

    The event loop thread and the realtime client are started by the first
    subscription and stopped when the feed goes idle.
    """

    def __init__(self, url: str, key: str, access_token: str = None,
                 schema: str = 'public', timeout: float = 10.0, on_idle=None):
        super().__init__(schema=schema, on_idle=on_idle)
        self.url = url
        self.key = key
        self.access_token = access_token
        self.timeout = timeout
        self._loop = None
        self._thread = None
        self._client = None
        self._channels = {}

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure_loop(self):
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._loop.run_forever, name='supabase-realtime', daemon=True
            )
            self._thread.start()

    def _run(self, coro):
        self._ensure_loop()
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(self.timeout)

    async def _get_client(self):
        if self._client is None:
            self._client = await acreate_client(self.url, self.key)
            if self.access_token:
                await self._client.realtime.set_auth(self.access_token)
        return self._client

    async def _subscribe(self, key: ScopeKey):
        client = await self._get_client()
        schema, table, expr = key

        def on_insert(payload):
            row = record_from_payload(payload)
            if row is None:
                logger.warning(f"Ignoring realtime payload without a record on {table}")
                return
            self._deliver(key, row)

        channel = client.channel(f"{table}:{expr}")
        channel.on_postgres_changes('INSERT', callback=on_insert, table=table, schema=schema, filter=expr)
        await channel.subscribe()
        return channel

    def _open(self, key: ScopeKey):
        try:
            self._channels[key] = self._run(self._subscribe(key))
        except Exception as e:
            logger.error(f"Realtime subscription to {key} failed: {e}", exc_info=True)
            raise
        logger.info(f"Realtime subscription opened for {key}")

    def _close(self, key: ScopeKey):
        channel = self._channels.pop(key, None)
        if channel is None or self._client is None:
            return
        try:
            self._run(self._client.remove_channel(channel))
        except Exception as e:
            logger.warning(f"Failed to remove realtime channel {key}: {e}")

    def _idle(self):
        self._stop_loop()
        super()._idle()

    def _stop_loop(self):
        with self._channel_lock:
            if self._loop is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=self.timeout)
            self._loop = None
            self._thread = None
            self._client = None
            self._channels = {}
        logger.debug("Realtime loop stopped")

    def shutdown(self):
        super().shutdown()
        self._stop_loop()


class ChangeFeedPool:
    """
    One change feed per access token, built on demand by factory(token).
    A feed leaves the pool once its last subscription is closed.
    """

    def __init__(self, factory):
        self.factory = factory
        self._feeds: Dict[Optional[str], ChangeFeed] = {}
        self._lock = threading.Lock()

    def __call__(self, token: Optional[str] = None) -> ChangeFeed:
        with self._lock:
            feed = self._feeds.get(token)
            if feed is None:
                feed = self.factory(token)
                feed.on_idle = self._evict
                self._feeds[token] = feed
            return feed

    def __len__(self) -> int:
        with self._lock:
            return len(self._feeds)

    def _evict(self, feed: ChangeFeed):
        with self._lock:
            for token, pooled in list(self._feeds.items()):
                if pooled is feed:
                    del self._feeds[token]

    def shutdown(self):
        with self._lock:
            feeds = list(self._feeds.values())
            self._feeds.clear()
        for feed in feeds:
            feed.shutdown()
