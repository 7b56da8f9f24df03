# Cosmos DB backend for the record store

import os
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import backoff
from azure.core import MatchConditions
from azure.cosmos import CosmosClient, exceptions
from azure.cosmos.container import ContainerProxy

from briefloop.shared.record_store import RecordStore, _matches
from briefloop.specs.common.errors import ConfigurationError, ExternalServiceError

T = TypeVar("T")


class RetryableCosmosError(Exception):
    """Indicates a Cosmos DB operation that should be retried"""
    pass


def cosmos_configured() -> bool:
    return bool(os.getenv("COSMOS_DB_CONNECTION_STRING") and os.getenv("COSMOS_DB_NAME"))


class CosmosRecordStore(RecordStore):
    """One container per record kind, partitioned on ``/id``.

    Container names default to the kind and can be overridden with
    ``COSMOS_DB_CONTAINER_<KIND>``.
    """

    MAX_RETRIES = 3
    OPERATION_TIMEOUT = 10.0    # 10s

    def __init__(self, client: CosmosClient, database_name: str):
        self.client = client
        self.database = client.get_database_client(database_name)
        self._containers: Dict[str, ContainerProxy] = {}

    @classmethod
    def from_env(cls) -> "CosmosRecordStore":
        connection_string = os.environ.get("COSMOS_DB_CONNECTION_STRING")
        database_name = os.environ.get("COSMOS_DB_NAME")
        if not connection_string or not database_name:
            raise ConfigurationError("Missing Cosmos DB connection string or database name")
        client = CosmosClient.from_connection_string(connection_string, retry_total=cls.MAX_RETRIES)
        return cls(client, database_name)

    def _container(self, kind: str) -> ContainerProxy:
        container = self._containers.get(kind)
        if container is None:
            name = os.environ.get(f"COSMOS_DB_CONTAINER_{kind.upper()}") or kind
            container = self.database.get_container_client(name)
            self._containers[kind] = container
        return container

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def _with_retry(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except exceptions.CosmosHttpResponseError as e:
            if e.status_code in (429, 503):  # Too Many Requests or Service Unavailable
                logging.warning(f"Retryable Cosmos error: {e}")
                raise RetryableCosmosError(str(e)) from e
            raise

    def _run(self, kind: str, operation: Callable[[], T]) -> T:
        try:
            return self._with_retry(operation)
        except (RetryableCosmosError, exceptions.CosmosHttpResponseError) as e:
            raise ExternalServiceError("record_store", f"cosmos {kind}: {e}") from e

    def _read(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        container = self._container(kind)
        try:
            return self._with_retry(lambda: container.read_item(item=record_id, partition_key=record_id))
        except exceptions.CosmosResourceNotFoundError:
            return None

    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self._read(kind, record_id)
        except (RetryableCosmosError, exceptions.CosmosHttpResponseError) as e:
            raise ExternalServiceError("record_store", f"cosmos {kind}: {e}") from e
        return _strip_system_fields(doc) if doc else None

    def put(self, kind: str, doc: Dict[str, Any]) -> None:
        container = self._container(kind)
        self._run(kind, lambda: container.upsert_item(body=doc))

    def replace_if(self, kind: str, record_id: str, expected: Mapping[str, Any], doc: Dict[str, Any]) -> bool:
        container = self._container(kind)
        try:
            current = self._read(kind, record_id)
        except (RetryableCosmosError, exceptions.CosmosHttpResponseError) as e:
            raise ExternalServiceError("record_store", f"cosmos {kind}: {e}") from e
        if current is None or not _matches(current, expected):
            return False
        try:
            self._with_retry(
                lambda: container.replace_item(
                    item=record_id,
                    body=doc,
                    etag=current.get("_etag"),
                    match_condition=MatchConditions.IfNotModified,
                )
            )
        except exceptions.CosmosAccessConditionFailedError:
            logging.info(f"Optimistic guard rejected write to {kind}/{record_id}")
            return False
        except (RetryableCosmosError, exceptions.CosmosHttpResponseError) as e:
            raise ExternalServiceError("record_store", f"cosmos {kind}: {e}") from e
        return True

    def query(self, kind: str, **equals: Any) -> List[Dict[str, Any]]:
        container = self._container(kind)
        clauses = []
        parameters: List[Dict[str, Any]] = []
        for index, (field, value) in enumerate(sorted(equals.items())):
            clauses.append(f"c.{field} = @p{index}")
            parameters.append({"name": f"@p{index}", "value": value})
        query = "SELECT * FROM c"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        items = self._run(
            kind,
            lambda: list(
                container.query_items(
                    query=query,
                    parameters=parameters,
                    enable_cross_partition_query=True,
                )
            ),
        )
        return [_strip_system_fields(item) for item in items]


def _strip_system_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if not k.startswith("_")}
