from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Generic, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class LoadState(Generic[T]):
    """Three-state result of an asynchronous load (replaces loading flag + optional list)."""

    status: LoadStatus
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def pending(cls) -> "LoadState[T]":
        return cls(LoadStatus.PENDING)

    @classmethod
    def success(cls, value: T) -> "LoadState[T]":
        return cls(LoadStatus.SUCCESS, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "LoadState[T]":
        return cls(LoadStatus.FAILURE, error=error)

    @property
    def is_pending(self) -> bool:
        return self.status is LoadStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self.status is LoadStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.status is LoadStatus.FAILURE

    def unwrap(self) -> T:
        """Return the loaded value, re-raising the failure or rejecting a pending state."""
        if self.is_success:
            return self.value
        if self.is_failure:
            raise self.error
        raise RuntimeError("load still pending")


async def load(awaitable: Awaitable[T]) -> "LoadState[T]":
    """Await a collaborator call and fold the outcome into a LoadState."""
    try:
        return LoadState.success(await awaitable)
    except Exception as e:
        logger.warning(f"⚠️ Load failed: {e}")
        return LoadState.failure(e)
