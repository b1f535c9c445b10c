"""
MongoDB access for the chat-query Lambda.

The connection is opened on first use and kept for the lifetime of the
Lambda container, so warm invocations reuse it. There is no explicit
teardown; the container going away closes it.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConfigurationError as PyMongoConfigurationError
from pymongo.errors import InvalidURI, PyMongoError

from config import load_settings
from errors import ConfigurationError, StoreConnectionError, StoreQueryError
from models import EventDocument

logger = logging.getLogger()

MONGODB_URI_SCHEMES = ("mongodb://", "mongodb+srv://")
DEFAULT_DB_NAME = "analytics"


def validate_mongodb_uri(uri: Optional[str]) -> str:
    """
    Check that a connection string is present and uses a MongoDB scheme.

    Raises:
        ConfigurationError: If the URI is missing, blank, or not a MongoDB URI
    """
    if not uri or not uri.strip():
        raise ConfigurationError("MONGODB_URI environment variable is not set")

    uri = uri.strip()
    if not uri.startswith(MONGODB_URI_SCHEMES):
        raise ConfigurationError(
            "MongoDB connection string must start with mongodb:// or mongodb+srv://"
        )
    return uri


class ConnectionCache:
    """
    Process-wide, lazily opened MongoDB database handle.

    get_store() opens the connection at most once; the lock makes concurrent
    first calls in the same process wait for a single connect.
    """

    def __init__(self, client_factory=MongoClient):
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._client = None
        self._db = None

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    def get_store(self) -> Database:
        """
        Return the cached database handle, connecting on first call.

        Raises:
            ConfigurationError: If the connection string is missing or malformed
            StoreConnectionError: If the server cannot be reached
        """
        if self._db is not None:
            return self._db

        with self._lock:
            if self._db is None:
                self._connect()
        return self._db

    def _connect(self) -> None:
        settings = load_settings()
        uri = validate_mongodb_uri(settings.mongodb_uri)

        client = None
        try:
            client = self._client_factory(
                uri,
                serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
                appname=settings.app_name,
            )
            client.admin.command("ping")
        except (InvalidURI, PyMongoConfigurationError) as e:
            self._close_quietly(client)
            logger.error(f"[store] Invalid MongoDB connection string: {e}")
            raise ConfigurationError(f"Invalid MongoDB connection string: {e}") from e
        except PyMongoError as e:
            self._close_quietly(client)
            logger.error(f"[store] MongoDB connection error: {e}")
            raise StoreConnectionError(f"MongoDB connection failed: {e}") from e

        db_name = settings.mongodb_db_name
        if not db_name:
            default_db = client.get_default_database(default=DEFAULT_DB_NAME)
            db_name = default_db.name

        self._client = client
        self._db = client[db_name]
        logger.info(f"[store] MongoDB connected successfully (database={db_name})")

    @staticmethod
    def _close_quietly(client) -> None:
        if client is None:
            return
        try:
            client.close()
        except PyMongoError as e:
            logger.warning(f"[store] Failed to close MongoDB client after connect error: {e}")

    def reset(self) -> None:
        """Close the client and forget the cached handle."""
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
            self._db = None


connection_cache = ConnectionCache()


def get_store() -> Database:
    return connection_cache.get_store()


# ============================================================================
# Queries
# ============================================================================


def _to_schema(documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [EventDocument.model_validate(doc).model_dump() for doc in documents]


def find_documents(
    db: Database,
    collection_name: str,
    query: Dict[str, Any],
    store_access: str = "raw",
    limit: int = 0
) -> List[Dict[str, Any]]:
    """
    Run a filter against a collection and load every match into memory.

    Args:
        db: Database handle from get_store()
        collection_name: Collection to query
        query: MongoDB filter
        store_access: "raw" returns documents as stored, "schema" projects
            them onto EventDocument
        limit: Maximum number of documents, 0 for no limit

    Returns:
        List of matching documents

    Raises:
        StoreQueryError: If MongoDB reports an error
    """
    try:
        cursor = db[collection_name].find(query)
        if limit:
            cursor = cursor.limit(limit)
        documents = list(cursor)
    except PyMongoError as e:
        logger.error(f"[store] find on {collection_name} failed: {e}")
        raise StoreQueryError(str(e)) from e

    logger.info(f"[store] find on {collection_name} returned {len(documents)} documents")
    return _to_schema(documents) if store_access == "schema" else documents


def aggregate_documents(
    db: Database,
    collection_name: str,
    pipeline: List[Dict[str, Any]],
    limit: int = 0
) -> List[Dict[str, Any]]:
    """
    Run an aggregation pipeline and load every result into memory.

    Output is returned as the pipeline produces it; schema projection does
    not apply to aggregations.

    Raises:
        StoreQueryError: If MongoDB reports an error
    """
    stages = list(pipeline)
    if limit:
        stages.append({"$limit": limit})

    try:
        documents = list(db[collection_name].aggregate(stages))
    except PyMongoError as e:
        logger.error(f"[store] aggregate on {collection_name} failed: {e}")
        raise StoreQueryError(str(e)) from e

    logger.info(f"[store] aggregate on {collection_name} returned {len(documents)} documents")
    return documents
