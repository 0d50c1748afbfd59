"""Transport-independent interface to the remote object store"""

from abc import ABC, abstractmethod
from typing import List


class RemoteStoreError(Exception):
    """Remote store operation failed"""


class RemoteObjectNotFound(RemoteStoreError):
    """Requested key does not exist"""

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


class RemoteStoreClient(ABC):
    """
    The four operations the orchestrator needs
    Writes are keyed by content or version, so repeating one is harmless
    """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether an object exists"""

    @abstractmethod
    async def put_object(self, key: str, data: bytes) -> None:
        """Upload an object, overwriting any previous one"""

    @abstractmethod
    async def get_object(self, key: str) -> bytes:
        """Download an object; raises RemoteObjectNotFound when absent"""

    @abstractmethod
    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> List[str]:
        """List the distinct key prefixes directly under `prefix`"""

    def describe(self) -> str:
        """Human-readable target, used in log messages"""
        return self.__class__.__name__
