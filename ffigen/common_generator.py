"""Common Generator - shared plumbing for every backend"""

import re
from typing import Optional

from .config import GeneratorConfig
from .errors import EmissionError
from .ffi_types import FFIFunction, FFIType
from .protocol import STRUCTS, StructLayout
from .type_mapper import TypeMapper
from .types import InterfaceModel, Object

AUTOGEN_NOTICE = "AUTO-GENERATED - DO NOT EDIT"


def camel_case(name: str) -> str:
    """snake_case -> camelCase"""
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def class_name(name: str) -> str:
    """snake_case or camelCase -> PascalCase"""
    return ''.join(part[:1].upper() + part[1:] for part in name.split('_'))


def upper_snake(name: str) -> str:
    """PascalCase or camelCase -> UPPER_SNAKE"""
    name = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name)
    return name.upper()


class CommonGenerator:
    """Base class for backend generators.

    A backend gets the model, its type mapper and the derived FFI functions.
    It never re-derives boundary types: every declaration it renders comes
    from an FFIFunction or from the protocol struct tables.
    """

    name = ''
    FFI_TYPES: dict[FFIType, str] = {}

    def __init__(self, model: InterfaceModel, mapper: TypeMapper,
                 functions: list[FFIFunction], config: GeneratorConfig):
        self.model = model
        self.mapper = mapper
        self.functions = functions
        self.config = config
        self.namespace = model.namespace

    def generate(self) -> dict[str, str]:
        """Relative output path -> file content"""
        raise NotImplementedError

    def option(self, key: str, default=None):
        """Backend-specific setting from the ``[bindings.<backend>]`` table"""
        return self.config.bindings.get(self.name, {}).get(key, default)

    def ffi_type(self, ffi_type: FFIType) -> str:
        try:
            return self.FFI_TYPES[ffi_type]
        except KeyError:
            raise EmissionError(self.name, f"cannot represent FFI type '{ffi_type.value}'") from None

    def struct_layouts(self) -> list[StructLayout]:
        return list(STRUCTS.values())

    # ── function groups, each in derived order ──────────────────

    def top_level_functions(self) -> list[FFIFunction]:
        return [f for f in self.functions if f.source is not None and f.owner is None]

    def object_functions(self, obj: Object) -> list[FFIFunction]:
        """Constructors and methods of ``obj``"""
        return [f for f in self.functions
                if f.owner is not None and f.owner.name == obj.name and f.source is not None]

    def free_function(self, obj: Object) -> Optional[FFIFunction]:
        return next((f for f in self.functions
                     if f.owner is not None and f.owner.name == obj.name and f.source is None), None)
