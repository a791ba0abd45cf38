"""
Cloud Firestore implementation of the document store.
"""

from __future__ import annotations

import logging
from typing import Optional

from firebase_admin import firestore
from google.cloud.firestore_v1 import ArrayUnion
from google.cloud.firestore_v1.base_query import FieldFilter

from taskflow.db import (
    ErrorCallback,
    ListenerRegistration,
    Query,
    SnapshotCallback,
    StoredDocument,
    Subscription,
)

logger = logging.getLogger(__name__)

# Firestore rejects write batches with more operations than this.
MAX_BATCH_WRITES = 500


class FirestoreDocumentStore:
    """Document store backed by a `google.cloud.firestore.Client`."""

    def __init__(self, client=None):
        self.client = client or firestore.client()

    def _doc_ref(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    def _build_query(self, query: Query):
        ref = self.client.collection(query.collection)
        for field_name, value in query.filters:
            ref = ref.where(filter=FieldFilter(field_name, "==", value))
        if query.array_contains is not None:
            field_name, value = query.array_contains
            ref = ref.where(filter=FieldFilter(field_name, "array_contains", value))
        if query.order_by:
            direction = (
                firestore.Query.DESCENDING if query.descending else firestore.Query.ASCENDING
            )
            ref = ref.order_by(query.order_by, direction=direction)
        if query.limit is not None:
            ref = ref.limit(query.limit)
        return ref

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._doc_ref(collection, doc_id).get()
        if not doc.exists:
            return None
        return doc.to_dict()

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._doc_ref(collection, doc_id).set(data, merge=merge)

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        self._doc_ref(collection, doc_id).update(updates)

    def delete(self, collection: str, doc_id: str) -> None:
        self._doc_ref(collection, doc_id).delete()

    def query(self, query: Query) -> list[StoredDocument]:
        return [
            StoredDocument(id=doc.id, data=doc.to_dict() or {})
            for doc in self._build_query(query).get()
        ]

    def array_union(
        self, collection: str, doc_id: str, field_name: str, values: list
    ) -> None:
        self._doc_ref(collection, doc_id).update({field_name: ArrayUnion(values)})

    def append_unique(
        self, collection: str, doc_id: str, field_name: str, item: dict, key: str
    ) -> bool:
        doc_ref = self._doc_ref(collection, doc_id)

        @firestore.transactional
        def _append_transaction(transaction) -> bool:
            snapshot = doc_ref.get(transaction=transaction)
            current = list((snapshot.to_dict() or {}).get(field_name) or [])
            if any(existing.get(key) == item.get(key) for existing in current):
                return False
            transaction.update(doc_ref, {field_name: current + [item]})
            return True

        return _append_transaction(self.client.transaction())

    def update_if(
        self, collection: str, doc_id: str, expected: dict, updates: dict
    ) -> bool:
        doc_ref = self._doc_ref(collection, doc_id)

        @firestore.transactional
        def _update_transaction(transaction) -> bool:
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            data = snapshot.to_dict() or {}
            if any(data.get(k) != v for k, v in expected.items()):
                return False
            transaction.update(doc_ref, updates)
            return True

        return _update_transaction(self.client.transaction())

    def insert_if_absent(
        self, collection: str, doc_id: str, data: dict, conflict: Query
    ) -> bool:
        doc_ref = self._doc_ref(collection, doc_id)
        conflict_ref = self._build_query(conflict).limit(1)

        @firestore.transactional
        def _create_doc_transaction(transaction) -> bool:
            if doc_ref.get(transaction=transaction).exists:
                return False
            if list(conflict_ref.get(transaction=transaction)):
                return False
            transaction.set(doc_ref, data)
            return True

        return _create_doc_transaction(self.client.transaction())

    def update_many(self, collection: str, doc_ids: list[str], updates: dict) -> int:
        for start in range(0, len(doc_ids), MAX_BATCH_WRITES):
            batch = self.client.batch()
            for doc_id in doc_ids[start : start + MAX_BATCH_WRITES]:
                batch.update(self._doc_ref(collection, doc_id), updates)
            batch.commit()
        return len(doc_ids)

    def listen(
        self,
        query: Query,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def _on_snapshot(docs, changes, read_time):
            # Runs on the Firestore watch thread.
            try:
                callback(
                    [StoredDocument(id=doc.id, data=doc.to_dict() or {}) for doc in docs]
                )
            except Exception as e:
                logger.exception("Snapshot listener for %s failed", query.collection)
                if on_error is not None:
                    on_error(e)

        watch = self._build_query(query).on_snapshot(_on_snapshot)
        return ListenerRegistration(watch.unsubscribe)
