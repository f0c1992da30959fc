"""
Document, transaction and preference stores.

The in-memory stores serialize writes per record id; the JSON-file variants
add persistence under a directory for the command line tool.
"""
import os
import json
import base64
import logging
import threading
from pathlib import Path
from typing import Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from schema import ExtractedTransaction, StatementDocument

logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)


class InMemoryStore(Generic[ModelT]):
    """Key-value store of pydantic models keyed by their ``id``."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._records: Dict[str, ModelT] = {}
        self._guard = threading.Lock()
        self._id_locks: Dict[str, threading.RLock] = {}

    def lock_for(self, record_id: str) -> threading.RLock:
        with self._guard:
            if record_id not in self._id_locks:
                self._id_locks[record_id] = threading.RLock()
            return self._id_locks[record_id]

    def get(self, record_id: str) -> Optional[ModelT]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    def put(self, record: ModelT) -> None:
        with self.lock_for(record.id):
            self._records[record.id] = record.model_copy(deep=True)
            self._persist()

    def delete(self, record_id: str) -> None:
        with self.lock_for(record_id):
            self._records.pop(record_id, None)
            self._persist()

    def get_all(self) -> List[ModelT]:
        with self._guard:
            records = list(self._records.values())
        return [record.model_copy(deep=True) for record in records]

    def clear(self) -> None:
        with self._guard:
            self._records.clear()
        self._persist()

    def _persist(self) -> None:
        pass


class InMemoryDocumentStore(InMemoryStore[StatementDocument]):

    def __init__(self):
        super().__init__()
        self._hash_lock = threading.Lock()

    def put_if_new(self, document: StatementDocument) -> Optional[StatementDocument]:
        """
        Store a document unless one with the same content hash is already stored.

        Returns:
            The already-stored document with that hash, or None if ``document`` was stored
        """
        with self._hash_lock:
            existing = self.find_by_hash(document.content_hash)
            if existing is not None:
                return existing
            self.put(document)
            return None

    def find_by_hash(self, content_hash: str) -> Optional[StatementDocument]:
        for document in self.get_all():
            if document.content_hash == content_hash:
                return document
        return None


class InMemoryTransactionStore(InMemoryStore[ExtractedTransaction]):

    def put_many(self, transactions: List[ExtractedTransaction]) -> None:
        for transaction in transactions:
            self.put(transaction)


class JsonFileMixin:
    """Persists the whole store to one JSON file after every write."""

    model: Type[BaseModel]

    def _init_file(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file_lock = threading.Lock()
        if self.path.exists():
            self._load()

    def _encode(self, record: BaseModel) -> dict:
        return json.loads(record.model_dump_json())

    def _decode(self, data: dict) -> BaseModel:
        return self.model.model_validate(data)

    def _load(self) -> None:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                items = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error(f"Error loading {self.path}: {e}")
            return

        if not isinstance(items, list):
            self.logger.error(f"Error loading {self.path}: expected a JSON array, got {type(items).__name__}")
            return

        for idx, item in enumerate(items):
            try:
                record = self._decode(item)
            except (ValidationError, ValueError, TypeError) as e:
                self.logger.warning(f"Skipping malformed record at index {idx} in {self.path}: {e}")
                continue
            self._records[record.id] = record
        self.logger.info(f"Loaded {len(self._records)} records from {self.path}")

    def _persist(self) -> None:
        with self._file_lock:
            payload = [self._encode(record) for record in list(self._records.values())]
            tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp_path, self.path)


class JsonFileDocumentStore(JsonFileMixin, InMemoryDocumentStore):
    model = StatementDocument

    def __init__(self, directory):
        super().__init__()
        self._init_file(Path(directory) / 'documents.json')

    def _encode(self, record: StatementDocument) -> dict:
        data = json.loads(record.model_dump_json(exclude={'content'}))
        data['content'] = base64.b64encode(record.content).decode('ascii')
        return data

    def _decode(self, data: dict) -> StatementDocument:
        data = dict(data)
        data['content'] = base64.b64decode(data.get('content') or '')
        return StatementDocument.model_validate(data)


class JsonFileTransactionStore(JsonFileMixin, InMemoryTransactionStore):
    model = ExtractedTransaction

    def __init__(self, directory):
        super().__init__()
        self._init_file(Path(directory) / 'transactions.json')


class InMemoryPreferenceStore:
    """String key-value preferences (category rules, smart categorization settings)."""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(items or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value
            self._persist()

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)
            self._persist()

    def _persist(self) -> None:
        pass


class JsonFilePreferenceStore(InMemoryPreferenceStore):

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    self._items = {str(k): str(v) for k, v in json.load(f).items()}
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"Error loading preferences from {self.path}: {e}")

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self._items, f, indent=2)
