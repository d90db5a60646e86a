"""Base class for application services.

Services own their resources: ``initialize`` acquires them and ``cleanup``
releases them. Use a service as an async context manager to pair the two.
"""

from abc import ABC, abstractmethod

from keyward.infrastructure.logging import get_logger


class ServiceBase(ABC):
    """Lifecycle and logging shared by application services."""

    def __init__(self):
        self.logger = get_logger(__name__).bind(component=self.__class__.__name__)

    @abstractmethod
    async def initialize(self) -> None:
        """Acquire service resources."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release service resources."""

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()
