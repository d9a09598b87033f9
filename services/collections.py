# services/collections.py
"""
Base classes for CRUD services over remote collections.

Every mutation that succeeds shows a confirmation and re-fetches the list.
Every failure is translated, shown as an error toast and returned as a
failure indicator (None / False). Nothing raises past the service.
"""

import logging
import threading
from typing import List, Optional

from models import Record, RecordError, load_records
from services.error_translations import classify_error, error_message_from, translate_error, NOT_FOUND
from services.toasts import default_toaster

logger = logging.getLogger(__name__)

ERROR_TITLE = 'Erreur'
NOT_FOUND_MESSAGE = 'Enregistrement introuvable'


class CollectionReader:
    """
    Read side of a collection: list() and get().

    Subclasses set:
        table: Remote table name
        select: Column/join expression
        order_by: Column the list is ordered by
        order_desc: Newest first when True
        record_type: Record subclass rows are validated with
    """
    table: str = None
    select: str = '*'
    order_by: str = 'created_at'
    order_desc: bool = True
    record_type = Record

    def __init__(self, client, toaster=None):
        self.client = client
        self.toaster = toaster or default_toaster
        self.items: List[Record] = []
        self.loading = False
        self.error: Optional[str] = None
        self.error_kind: Optional[str] = None
        self._filters = {}
        self._generation = 0
        self._lock = threading.Lock()

    # =========================================================================
    # QUERY HOOKS
    # =========================================================================

    def build_query(self, **filters):
        """Base select for list(). Subclasses add their filters."""
        return self.client.table(self.table).select(self.select)

    def apply_order(self, query):
        return query.order(self.order_by, desc=self.order_desc)

    def load(self, rows, **filters) -> list:
        """Turn fetched rows into records. Subclasses may enrich rows first."""
        return load_records(self.record_type, rows)

    # =========================================================================
    # READ
    # =========================================================================

    def list(self, **filters) -> List[Record]:
        """
        Fetch the collection.

        A result that comes back after a newer list() call started is
        discarded. On failure the previous items are kept.
        """
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._filters = filters
            self.loading = True

        try:
            response = self.apply_order(self.build_query(**filters)).execute()
            items = self.load(response.data or [], **filters)
        except Exception as e:
            message = self.report_error(e, context='fetch')
            with self._lock:
                if generation == self._generation:
                    self.loading = False
                    self.error = message
            return list(self.items)

        with self._lock:
            if generation != self._generation:
                logger.debug(f"Discarding stale {self.table} fetch")
                return list(self.items)
            self.items = items
            self.loading = False
            self.error = None
            self.error_kind = None
        return list(items)

    def refresh(self) -> List[Record]:
        """Re-run the last list() with the same filters."""
        return self.list(**self._filters)

    def get(self, record_id: str) -> Optional[Record]:
        """Fetch one record by id, or None."""
        try:
            response = (
                self.client.table(self.table)
                .select(self.select)
                .eq('id', record_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            self.report_error(e, context='get')
            return None

        data = response.data if response is not None else None
        if not data:
            return None
        return self.to_record(data)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def to_record(self, row) -> Optional[Record]:
        try:
            return self.record_type.from_row(row)
        except RecordError as e:
            logger.warning(f"Malformed {self.table} row: {e}")
            return None

    def report_error(self, error, context: str = None) -> str:
        """Translate a backend error, toast it and remember it."""
        raw = error_message_from(error)
        message = translate_error(raw)
        self.error = message
        self.error_kind = classify_error(raw)
        logger.error(f"{self.table} {context or 'operation'} failed: {raw}")
        self.toaster.error(ERROR_TITLE, message)
        return message


class CollectionService(CollectionReader):
    """
    Read/write collection.

    Subclasses set messages: {'created'|'updated'|'deleted': (title, description)}
    """
    messages = {
        'created': ('Enregistrement créé', "L'enregistrement a été créé avec succès"),
        'updated': ('Enregistrement mis à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Enregistrement supprimé', "L'enregistrement a été supprimé avec succès"),
    }

    def confirm(self, action: str):
        title, description = self.messages[action]
        self.toaster.success(title, description)

    def prepare_insert(self, fields: dict) -> dict:
        return dict(fields)

    def after_create(self, record: Record, fields: dict):
        pass

    def create(self, fields: dict) -> Optional[Record]:
        """Insert a row. Returns the created record, or None on failure."""
        payload = self.prepare_insert(fields)
        try:
            response = self.client.table(self.table).insert([payload]).execute()
        except Exception as e:
            self.report_error(e, context='create')
            return None

        rows = response.data or []
        record = self.to_record(rows[0]) if rows else None

        self.confirm('created')
        if record is not None:
            self.after_create(record, payload)
        self.refresh()
        return record

    def update(self, record_id: str, fields: dict, action: str = 'updated') -> Optional[Record]:
        """Update a row. Returns the updated record, or None on failure."""
        try:
            response = (
                self.client.table(self.table)
                .update(fields)
                .eq('id', record_id)
                .execute()
            )
        except Exception as e:
            self.report_error(e, context='update')
            return None

        rows = response.data or []
        if not rows:
            # RLS hides rows the user may not touch, the update matched nothing
            self.error = NOT_FOUND_MESSAGE
            self.error_kind = NOT_FOUND
            logger.warning(f"{self.table} update matched no row for id {record_id}")
            self.toaster.error(ERROR_TITLE, NOT_FOUND_MESSAGE)
            return None

        self.confirm(action)
        self.refresh()
        return self.to_record(rows[0])

    def delete(self, record_id: str) -> bool:
        """Delete a row. Returns True on success."""
        try:
            self.client.table(self.table).delete().eq('id', record_id).execute()
        except Exception as e:
            self.report_error(e, context='delete')
            return False

        self.confirm('deleted')
        self.refresh()
        return True
