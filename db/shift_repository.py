"""
Shift persistence.

The lifecycle only talks to the ``ShiftRepository`` interface. Documents are
parsed into typed ``Shift`` models here, at the storage boundary, so nothing
above this module ever touches raw Firestore dictionaries. Writes are
last-write-wins at document granularity.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from google.api_core.exceptions import NotFound

from core.errors import RepositoryError, ShiftNotFound
from core.settings import SHIFTS_COLLECTION
from models.shift import Shift, ShiftStatus

logger = logging.getLogger(__name__)


class ShiftRepository(ABC):
    @abstractmethod
    def create_shift(self, fields: Dict[str, Any]) -> str:
        """Store a new shift document and return its id."""

    @abstractmethod
    def update_shift(self, shift_id: str, partial_fields: Dict[str, Any]) -> None:
        """Overwrite the given top-level fields of a shift."""

    @abstractmethod
    def get_shift(self, shift_id: str) -> Shift:
        """Raises ShiftNotFound when the document does not exist."""

    @abstractmethod
    def list_active_shift(self, user_id: str) -> Optional[Shift]:
        ...

    @abstractmethod
    def list_shifts(self, user_id: str) -> List[Shift]:
        ...

    @abstractmethod
    def delete_shift(self, shift_id: str) -> None:
        ...


class FirestoreShiftRepository(ShiftRepository):
    def __init__(self, client, collection: str = SHIFTS_COLLECTION):
        self._client = client
        self._collection = collection

    def _shifts(self):
        return self._client.collection(self._collection)

    def create_shift(self, fields: Dict[str, Any]) -> str:
        try:
            _, doc_ref = self._shifts().add(fields)
        except Exception as e:
            logger.error(f"[REPO] Error creating shift: {e}")
            raise RepositoryError(f"Could not create shift: {e}") from e
        return doc_ref.id

    def update_shift(self, shift_id: str, partial_fields: Dict[str, Any]) -> None:
        try:
            self._shifts().document(shift_id).update(partial_fields)
        except NotFound:
            raise ShiftNotFound(shift_id)
        except Exception as e:
            logger.error(f"[REPO] Error updating shift {shift_id}: {e}")
            raise RepositoryError(f"Could not update shift {shift_id}: {e}") from e

    def get_shift(self, shift_id: str) -> Shift:
        try:
            snapshot = self._shifts().document(shift_id).get()
        except Exception as e:
            logger.error(f"[REPO] Error fetching shift {shift_id}: {e}")
            raise RepositoryError(f"Could not fetch shift {shift_id}: {e}") from e

        if not snapshot.exists:
            raise ShiftNotFound(shift_id)
        return Shift.from_document(snapshot.id, snapshot.to_dict())

    def list_active_shift(self, user_id: str) -> Optional[Shift]:
        try:
            docs = list(
                self._shifts()
                .where("userId", "==", user_id)
                .where("status", "==", ShiftStatus.ACTIVE.value)
                .limit(1)
                .stream()
            )
        except Exception as e:
            logger.error(f"[REPO] Error fetching active shift for {user_id}: {e}")
            raise RepositoryError(f"Could not fetch active shift: {e}") from e

        if not docs:
            return None
        return Shift.from_document(docs[0].id, docs[0].to_dict())

    def list_shifts(self, user_id: str) -> List[Shift]:
        try:
            docs = self._shifts().where("userId", "==", user_id).stream()
            return [Shift.from_document(doc.id, doc.to_dict()) for doc in docs]
        except Exception as e:
            logger.error(f"[REPO] Error listing shifts for {user_id}: {e}")
            raise RepositoryError(f"Could not list shifts: {e}") from e

    def delete_shift(self, shift_id: str) -> None:
        try:
            self._shifts().document(shift_id).delete()
        except Exception as e:
            logger.error(f"[REPO] Error deleting shift {shift_id}: {e}")
            raise RepositoryError(f"Could not delete shift {shift_id}: {e}") from e


# Process Local Store (tests, demos, single-device runs)
class InMemoryShiftRepository(ShiftRepository):
    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_shift(self, fields: Dict[str, Any]) -> str:
        shift_id = uuid.uuid4().hex
        with self._lock:
            self._docs[shift_id] = copy.deepcopy(fields)
        return shift_id

    def update_shift(self, shift_id: str, partial_fields: Dict[str, Any]) -> None:
        with self._lock:
            if shift_id not in self._docs:
                raise ShiftNotFound(shift_id)
            self._docs[shift_id].update(copy.deepcopy(partial_fields))

    def get_shift(self, shift_id: str) -> Shift:
        with self._lock:
            data = copy.deepcopy(self._docs.get(shift_id))
        if data is None:
            raise ShiftNotFound(shift_id)
        return Shift.from_document(shift_id, data)

    def list_active_shift(self, user_id: str) -> Optional[Shift]:
        for shift in self.list_shifts(user_id):
            if shift.status == ShiftStatus.ACTIVE:
                return shift
        return None

    def list_shifts(self, user_id: str) -> List[Shift]:
        with self._lock:
            items = [
                (shift_id, copy.deepcopy(data))
                for shift_id, data in self._docs.items()
                if data.get("userId") == user_id
            ]
        return [Shift.from_document(shift_id, data) for shift_id, data in items]

    def delete_shift(self, shift_id: str) -> None:
        with self._lock:
            if self._docs.pop(shift_id, None) is None:
                raise ShiftNotFound(shift_id)

    def raw_document(self, shift_id: str) -> Dict[str, Any]:
        """Stored dictionary exactly as written; used to inspect the wire shape."""
        with self._lock:
            return copy.deepcopy(self._docs[shift_id])
