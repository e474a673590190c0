from __future__ import annotations

from contextlib import AbstractContextManager, contextmanager
from typing import Any, Iterator, Mapping, Protocol, Sequence

import pymongo
from pymongo.database import Database
from pymongo.errors import OperationFailure

from tenant_restore.utils.error_taxonomy import NamespaceNotFoundError
from tenant_restore.utils.predicates import is_namespace_not_found

Document = dict[str, Any]


class DocumentSession(Protocol):
    def list_collection_names(self) -> list[str]: ...

    def rename_collection(self, source: str, target: str) -> None: ...

    def drop_collection(self, name: str) -> None: ...

    def find_one(
        self, collection: str, filter: Mapping[str, Any] | None = None
    ) -> Document | None: ...

    def find(
        self, collection: str, filter: Mapping[str, Any] | None = None
    ) -> list[Document]: ...

    def insert_many(self, collection: str, documents: Sequence[Document]) -> int: ...

    def update_many(
        self,
        collection: str,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> int: ...

    def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int: ...


class DocumentStore(Protocol):
    def session(self) -> AbstractContextManager[DocumentSession]: ...


class MongoDocumentSession:
    """Thin adapter over a pymongo database with the calls the pipeline needs."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def list_collection_names(self) -> list[str]:
        return sorted(self._db.list_collection_names())

    def rename_collection(self, source: str, target: str) -> None:
        self._db[source].rename(target)

    def drop_collection(self, name: str) -> None:
        # pymongo 4 drops a missing namespace silently.
        if name not in self._db.list_collection_names(filter={"name": name}):
            raise NamespaceNotFoundError(f"ns not found: {name}")
        try:
            self._db.command({"drop": name})
        except OperationFailure as error:
            if is_namespace_not_found(error):
                raise NamespaceNotFoundError(f"ns not found: {name}") from error
            raise

    def find_one(
        self, collection: str, filter: Mapping[str, Any] | None = None
    ) -> Document | None:
        return self._db[collection].find_one(dict(filter or {}))

    def find(
        self, collection: str, filter: Mapping[str, Any] | None = None
    ) -> list[Document]:
        return list(self._db[collection].find(dict(filter or {})))

    def insert_many(self, collection: str, documents: Sequence[Document]) -> int:
        if not documents:
            return 0
        result = self._db[collection].insert_many(list(documents), ordered=True)
        return len(result.inserted_ids)

    def update_many(
        self,
        collection: str,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> int:
        result = self._db[collection].update_many(dict(filter), dict(update))
        return result.modified_count

    def delete_many(self, collection: str, filter: Mapping[str, Any]) -> int:
        result = self._db[collection].delete_many(dict(filter))
        return result.deleted_count


class MongoDocumentStore:
    def __init__(self, *, uri: str, database: str) -> None:
        self.uri = uri
        self.database = database

    @contextmanager
    def session(self) -> Iterator[MongoDocumentSession]:
        client = pymongo.MongoClient(self.uri)
        try:
            yield MongoDocumentSession(client[self.database])
        finally:
            client.close()
