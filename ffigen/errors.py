"""Generator-time errors.

Anything raised from here aborts the whole generation run. Nothing is
written to disk once one of these escapes the engine.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for every defect that stops a generation run"""


class ModelError(GenerationError):
    """The Interface Model cannot be turned into FFI signatures"""


class ModelFormatError(ModelError):
    """The serialized model or a type expression is malformed"""


class UnresolvedTypeError(ModelError):
    """A named type reference has no definition in the type table"""

    def __init__(self, name: str, context: Optional[str] = None):
        self.name = name
        self.context = context
        where = f" (referenced from {context})" if context else ""
        super().__init__(f"unresolved type '{name}'{where}")


class RecursiveTypeError(ModelError):
    """A record or enum contains itself by value"""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle)
        super().__init__(
            f"recursive type without object or box indirection: {path}"
        )


class DuplicateNameError(ModelError):
    """Two definitions (or two derived symbols) share one name"""

    def __init__(self, name: str, kind: str = "type"):
        self.name = name
        self.kind = kind
        super().__init__(f"duplicate {kind} name '{name}'")


class EmissionError(GenerationError):
    """A backend cannot represent something it was asked to render"""

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class ConfigError(GenerationError):
    """Invalid generator configuration"""
