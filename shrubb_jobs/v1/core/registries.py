from typing import Any, ClassVar, Generic, Protocol, TypeVar

from pydantic import BaseModel

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def has(self, name: str) -> bool:
        """Check whether an implementation is registered under ``name``."""
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background work."""

    payload_model: ClassVar[type[BaseModel]]

    async def handle(
        self,
        session: Any,  # AsyncSession
        ctx: Any,  # JobContext with owner/tenant attribution
        payload: Any,  # instance of payload_model
    ) -> dict[str, Any]:
        """
        Handle a background job.

        Args:
            session: Database session for job processing
            ctx: Job context carrying job id, owner id and resolved tenant id
            payload: Payload already validated against ``payload_model``

        Returns:
            JSON-serialisable result stored verbatim on the job
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry mapping job type tags to handlers.

    Built once at process start and handed to the worker; there is no
    module-level instance.
    """

    def __init__(self):
        super().__init__("Job")
