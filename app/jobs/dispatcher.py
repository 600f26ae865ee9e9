"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Optional


class JobDispatcher(ABC):
    """Abstract interface for running jobs in the background."""

    @abstractmethod
    def submit(self, job_id: str) -> None:
        """Schedule a job for processing without waiting for it."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher."""
        ...

    @abstractmethod
    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop the dispatcher, cancelling whatever outlives the grace period."""
        ...

    @abstractmethod
    async def wait_idle(self) -> None:
        """Wait until every submitted job has finished."""
        ...
