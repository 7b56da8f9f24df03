"""
Azure Storage Queue utilities
"""
import logging
from typing import Dict, Optional

from azure.core.exceptions import ResourceExistsError
from azure.storage.queue import QueueClient

from briefloop.specs.common.errors import ConfigurationError

_CLIENTS: Dict[str, QueueClient] = {}


def get_queue_client(queue_name: str, conn_str: Optional[str]) -> QueueClient:
    """
    Get or create a queue client for the specified queue.

    Args:
        queue_name (str): Name of the queue
        conn_str (str): Storage account connection string

    Returns:
        QueueClient: Azure Storage Queue client
    """
    if not conn_str:
        raise ConfigurationError("Storage connection string not found", details={"queue": queue_name})

    cached = _CLIENTS.get(queue_name)
    if cached is not None:
        return cached

    queue_client = QueueClient.from_connection_string(
        conn_str=conn_str,
        queue_name=queue_name
    )

    try:
        queue_client.create_queue()
        logging.info(f"Created queue: {queue_name}")
    except ResourceExistsError:
        pass
    except Exception as e:
        logging.error(f"Error creating queue {queue_name}: {str(e)}")
        raise

    _CLIENTS[queue_name] = queue_client
    return queue_client
