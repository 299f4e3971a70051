"""Base classes for configuration and runtime state models.

- Closeable Protocol for resource cleanup
- BaseCloseable walks its fields and closes closeable children
- BaseConfig marks configuration sections
- BaseState marks runtime state sections

Kept in a separate module so config.py and log.py can both import
them without a cycle.
"""

from __future__ import annotations

import sys
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


@runtime_checkable
class Closeable(Protocol):
    """Protocol for objects that support close()."""

    def close(self) -> None:
        """Release resources."""
        ...


class BaseCloseable(BaseModel):
    """Pydantic model that closes its Closeable children on close().

    The cleanup cascade for a run is:
    Config.close() -> Logger.close() -> Sink.close()

    A failing child does not stop the remaining children from being
    closed; the failure is reported on stderr because the logger may
    already be gone at that point.
    """

    def close(self):
        for field_name in self.__class__.model_fields:
            child = getattr(self, field_name, None)
            if child is None:
                continue

            if isinstance(child, Closeable):
                try:
                    child.close()
                except Exception as e:
                    print(
                        f"Warning: Error closing {field_name}: {e}",
                        file=sys.stderr,
                    )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # noqa: U100
        self.close()
        return False


class BaseConfig(BaseCloseable):
    """Configuration loaded from YAML, environment or CLI."""
    pass


class BaseState(BaseCloseable):
    """Runtime state mutated while a backport runs."""
    pass


__all__ = ["Closeable", "BaseCloseable", "BaseConfig", "BaseState"]
