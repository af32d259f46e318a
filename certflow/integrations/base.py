from abc import ABC, abstractmethod

from certflow.common.logging import get_logger


class BaseIntegration(ABC):
    """Common shape for outbound service clients.

    Subclasses get a namespaced logger and must say whether they are
    running against the real service or in mock mode.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = get_logger(f"integrations.{name}")

    @property
    @abstractmethod
    def is_mock(self) -> bool:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the service is reachable (always True in mock mode)."""
        ...
