# services/notification_feed.py
"""
Live notification feed for one scope (a user, or a tenant on the king side).

open() loads the newest notifications and subscribes to inserts for the
same scope; load() only fetches, for one-shot requests. pump() merges what
the subscription delivered since the last call. Rows delivered twice
(realtime replays them after a reconnect) are merged once, by id.

Read state only moves forward: unread -> read.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from models import Notification, RecordError, load_records
from services.exceptions import NotificationError

logger = logging.getLogger(__name__)

DEFAULT_FEED_LIMIT = 50
DEFAULT_MARK_READ_ATTEMPTS = 2


@dataclass(frozen=True)
class NotificationScope:
    """Table and equality filter a feed is bound to."""
    table: str
    column: str
    value: str

    @classmethod
    def for_user(cls, user_id: str):
        return cls('notifications', 'user_id', user_id)

    @classmethod
    def for_tenant(cls, tenant_id: str):
        return cls('king_notifications', 'tenant_id', tenant_id)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationFeed:
    """
    In-memory, newest-first list of notifications with an unread counter.

    Args:
        client: Supabase client used for fetches and read-state writes
        change_feed: ChangeFeed providing insert subscriptions (only needed by open())
        scope: NotificationScope
        kinds: Only keep notifications of these kinds (optional)
        limit: Number of notifications loaded by open()
        mark_read_attempts: Remote attempts before mark_as_read gives up
    """

    def __init__(self, client, change_feed, scope: NotificationScope, kinds: Iterable[str] = None,
                 limit: int = DEFAULT_FEED_LIMIT, mark_read_attempts: int = DEFAULT_MARK_READ_ATTEMPTS):
        self.client = client
        self.change_feed = change_feed
        self.scope = scope
        self.kinds = tuple(kinds) if kinds else None
        self.limit = limit
        self.mark_read_attempts = max(1, mark_read_attempts)

        self.notifications: List[Notification] = []
        self.unread_count = 0
        self.loading = False
        self.error: Optional[str] = None

        self._ids = set()
        self._subscription = None
        self._generation = 0
        self._lock = threading.RLock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open(self):
        """Load the newest notifications, then subscribe to inserts."""
        return self._load(subscribe=True)

    def load(self):
        """Load the newest notifications without subscribing."""
        return self._load(subscribe=False)

    def _load(self, subscribe: bool):
        with self._lock:
            self._release_subscription()
            self._generation += 1
            generation = self._generation
            self.loading = True
            self.error = None

        rows = self._fetch()

        with self._lock:
            if generation != self._generation:
                # Scope changed or feed closed while fetching
                logger.debug(f"Discarding stale notification fetch for {self.scope}")
                return self

            if rows is not None:
                self._replace(load_records(Notification, rows))
            if subscribe:
                self._subscription = self.change_feed.subscribe(
                    self.scope.table, self.scope.column, self.scope.value
                )
            self.loading = False
        return self

    def close(self):
        """Release the live subscription. Later deliveries are discarded."""
        with self._lock:
            self._generation += 1
            self._release_subscription()

    def change_scope(self, scope: NotificationScope):
        """Rebind the feed to another scope."""
        with self._lock:
            self.close()
            self.scope = scope
            self._replace([])
        return self.open()

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _release_subscription(self):
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _fetch(self) -> Optional[list]:
        query = (
            self.client.table(self.scope.table)
            .select('*')
            .eq(self.scope.column, self.scope.value)
        )
        if self.kinds:
            query = query.in_('kind', list(self.kinds))
        try:
            response = query.order('created_at', desc=True).limit(self.limit).execute()
        except Exception as e:
            logger.error(f"Error fetching notifications for {self.scope}: {e}")
            self.error = 'Erreur lors du chargement des notifications'
            return None
        return response.data or []

    def _replace(self, notifications: List[Notification]):
        kept = [n for n in notifications if self._wanted(n)]
        self.notifications = kept
        self._ids = {n.id for n in kept}
        self.unread_count = sum(1 for n in kept if not n.is_read)

    def _wanted(self, notification: Notification) -> bool:
        return self.kinds is None or notification.kind in self.kinds

    # =========================================================================
    # LIVE UPDATES
    # =========================================================================

    def _merge(self, row) -> Optional[Notification]:
        try:
            notification = Notification.from_row(row)
        except RecordError as e:
            logger.warning(f"Dropping malformed realtime notification: {e}")
            return None

        if not self._wanted(notification) or notification.id in self._ids:
            return None

        self.notifications.insert(0, notification)
        self._ids.add(notification.id)
        if not notification.is_read:
            self.unread_count += 1
        return notification

    def pump(self, timeout: float = 0) -> List[Notification]:
        """
        Merge the rows delivered since the last call.

        Args:
            timeout: Seconds to wait for a first row when none is pending

        Returns:
            Notifications that were added, newest first
        """
        with self._lock:
            subscription = self._subscription
            generation = self._generation
        if subscription is None:
            return []

        rows = []
        if timeout:
            first = subscription.get(timeout=timeout)
            if first is not None:
                rows.append(first)
        rows.extend(subscription.drain())

        added = []
        with self._lock:
            if generation != self._generation:
                return []
            for row in rows:
                notification = self._merge(row)
                if notification is not None:
                    added.insert(0, notification)
        return added

    def __iter__(self):
        """Block on the subscription and yield each new notification."""
        subscription = self._subscription
        if subscription is None:
            return
        generation = self._generation
        for row in subscription:
            with self._lock:
                if generation != self._generation:
                    return
                notification = self._merge(row)
            if notification is not None:
                yield notification

    # =========================================================================
    # READ STATE
    # =========================================================================

    def get(self, notification_id: str) -> Optional[Notification]:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    def mark_as_read(self, notification_id: str) -> bool:
        """
        Mark one notification as read.

        A loaded notification is changed locally first and reverted if every
        remote attempt fails. One outside the loaded window (older than the
        newest `limit`) is only updated remotely, and only while unread.
        Already-read notifications are a no-op.

        Returns:
            True if a notification went from unread to read

        Raises:
            NotificationError: the backend never accepted the update
        """
        with self._lock:
            notification = self.get(notification_id)
            if notification is not None and notification.is_read:
                return False
            read_at = _now_iso()
            if notification is not None:
                notification.read_at = read_at
                self.unread_count = max(0, self.unread_count - 1)

        query = self.client.table(self.scope.table).update({'read_at': read_at}).eq('id', notification_id)
        if notification is None:
            query = query.eq(self.scope.column, self.scope.value).is_('read_at', 'null')

        last_error = None
        for attempt in range(1, self.mark_read_attempts + 1):
            try:
                response = query.execute()
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Mark notification {notification_id} as read failed "
                    f"(attempt {attempt}/{self.mark_read_attempts}): {e}"
                )
                continue
            if notification is not None:
                return True
            return bool(response is not None and response.data)

        if notification is not None:
            with self._lock:
                if notification.read_at == read_at:
                    notification.read_at = None
                    self.unread_count += 1

        raise NotificationError(
            'Impossible de marquer la notification comme lue', notification_id=notification_id
        ) from last_error

    def mark_all_as_read(self) -> int:
        """
        Mark every unread notification in scope as read with one update.

        The list and the counter only change once the backend accepted it.

        Returns:
            Number of local notifications that changed

        Raises:
            NotificationError: the batch update failed (nothing changed)
        """
        with self._lock:
            if not any(not n.is_read for n in self.notifications):
                self.unread_count = 0
                return 0

        read_at = _now_iso()
        query = (
            self.client.table(self.scope.table)
            .update({'read_at': read_at})
            .eq(self.scope.column, self.scope.value)
        )
        if self.kinds:
            query = query.in_('kind', list(self.kinds))
        try:
            query.is_('read_at', 'null').execute()
        except Exception as e:
            logger.error(f"Mark all as read failed for {self.scope}: {e}")
            raise NotificationError('Impossible de marquer les notifications comme lues') from e

        with self._lock:
            changed = 0
            for notification in self.notifications:
                if not notification.is_read:
                    notification.read_at = read_at
                    changed += 1
            self.unread_count = 0
        return changed

    def to_dict(self) -> dict:
        with self._lock:
            return {
                'notifications': [n.to_dict() for n in self.notifications],
                'unread_count': self.unread_count,
                'loading': self.loading,
                'error': self.error,
            }
