from typing import Any, Generic, Protocol, TypeVar

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
                "registry is frozen in production mode"
            )
        if not name or not name.strip():
            raise ValueError(f"{self.name} registry names must not be empty")
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def __contains__(self, name: object) -> bool:
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
    """Protocol for job handlers that process background tasks."""

    async def handle(self, payload: Any) -> Any:
        """
        Handle a background job.

        Args:
            payload: The job payload exactly as it was enqueued

        Returns:
            Optional JSON-compatible result stored with the completed job

        Raises:
            Any exception marks the attempt as failed; the job is retried
            with backoff until it runs out of attempts.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers, keyed by job type."""

    def __init__(self):
        super().__init__("Job")

    def register_callable(self, name: str, func: Any) -> None:
        """Register a plain sync or async function as the handler for ``name``."""
        from jobqueue.v1.infra.jobs.handlers import FunctionHandler

        self.register(name, FunctionHandler(func))


# Global registry instance, populated at startup by register_job_handlers()
job_registry = JobRegistry()
