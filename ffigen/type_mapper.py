"""Type mapping from interface types to FFI types"""

from enum import Enum
from typing import Iterator, Optional

from .errors import ModelError, RecursiveTypeError, UnresolvedTypeError
from .ffi_types import FFIType
from .types import (
    BoxedType, BytesType, Definition, ErrorType, Field, InterfaceModel,
    MapType, NamedType, Object, OptionalType, Primitive, Record,
    SequenceType, StringType, Type, child_types,
)


class Conversion(Enum):
    """How lowering/lifting code turns a value into its wire form"""
    DIRECT = 'direct'            # numeric scalar passed as is
    BOOL_BYTE = 'bool_byte'      # bool <-> 0/1 byte
    RAW_BUFFER = 'raw_buffer'    # top-level text/bytes, raw buffer contents
    SERIALIZED = 'serialized'    # wire encoding into a buffer
    HANDLE = 'handle'            # object <-> opaque handle


class TypeMapper:
    """Maps interface types of one model to FFI types.

    ``map`` is pure: results only depend on the type and the model. The
    instance remembers which named types were already checked so repeated
    calls stay cheap.
    """

    PRIMITIVE_FFI_TYPES = {
        'i8': FFIType.INT8,
        'u8': FFIType.UINT8,
        'i16': FFIType.INT16,
        'u16': FFIType.UINT16,
        'i32': FFIType.INT32,
        'u32': FFIType.UINT32,
        'i64': FFIType.INT64,
        'u64': FFIType.UINT64,
        'f32': FFIType.FLOAT32,
        'f64': FFIType.FLOAT64,
        'bool': FFIType.BOOL,
    }

    def __init__(self, model: InterfaceModel):
        self.model = model
        self._table = model.type_table()
        self._checked: set[str] = set()

    # ── resolution ──────────────────────────────────────────────

    def resolve(self, name: str, context: Optional[str] = None) -> Definition:
        try:
            return self._table[name]
        except KeyError:
            raise UnresolvedTypeError(name, context) from None

    def resolve_error(self, name: str, context: Optional[str] = None) -> ErrorType:
        """Resolve the declared throwing type of a callable"""
        d = self.resolve(name, context)
        if not isinstance(d, ErrorType):
            raise ModelError(f"'{name}' thrown by {context} is a {d.kind}, not an error type")
        return d

    # ── checking ────────────────────────────────────────────────

    def check(self, t: Type, context: Optional[str] = None) -> None:
        """Resolve every name reachable from ``t`` and reject value recursion.

        Only by-value edges can close a cycle. Types behind a box are queued
        and walked with an empty stack once the current by-value walk is
        done, so no name is ever cached while its own walk is unfinished.
        """
        done: set[str] = set()
        pending = [(t, context)]
        while pending:
            root, root_context = pending.pop()
            self._check(root, root_context, [], done, pending)
        self._checked |= done

    def _check(self, t: Type, context: Optional[str], stack: list[str],
               done: set[str], pending: list) -> None:
        if isinstance(t, BoxedType):
            pending.append((t.inner, context))
            return
        for child in child_types(t):
            self._check(child, context, stack, done, pending)
        if not isinstance(t, NamedType):
            return

        d = self.resolve(t.name, context)
        if isinstance(d, Object):
            return
        if t.name in stack:
            raise RecursiveTypeError(stack[stack.index(t.name):] + [t.name])
        if t.name in self._checked or t.name in done:
            return

        stack.append(t.name)
        try:
            for f in self.fields_of(d):
                self._check(f.type, f'{d.name}.{f.name}', stack, done, pending)
        finally:
            stack.pop()
        done.add(t.name)

    @staticmethod
    def fields_of(d: Definition) -> list[Field]:
        """Every field stored by value in a definition"""
        if isinstance(d, Record):
            return list(d.fields)
        if isinstance(d, Object):
            return []
        return [f for v in d.variants for f in v.fields]

    # ── mapping ─────────────────────────────────────────────────

    def map(self, t: Type, context: Optional[str] = None) -> FFIType:
        """FFI type crossing the boundary for a value of type ``t``"""
        self.check(t, context)
        return self._shape(t)

    def _shape(self, t: Type) -> FFIType:
        if isinstance(t, Primitive):
            return self.PRIMITIVE_FFI_TYPES[t.name]
        if isinstance(t, BoxedType):
            return self._shape(t.inner)
        if isinstance(t, NamedType):
            if isinstance(self.resolve(t.name), Object):
                return FFIType.HANDLE
            return FFIType.BUFFER
        # text, bytes, optional, sequence and map all travel serialized
        return FFIType.BUFFER

    def conversion(self, t: Type) -> Conversion:
        if isinstance(t, Primitive):
            return Conversion.BOOL_BYTE if t.name == 'bool' else Conversion.DIRECT
        if isinstance(t, (StringType, BytesType)):
            return Conversion.RAW_BUFFER
        if isinstance(t, BoxedType):
            return self.conversion(t.inner)
        if isinstance(t, NamedType) and isinstance(self.resolve(t.name), Object):
            return Conversion.HANDLE
        return Conversion.SERIALIZED

    # ── traversal ───────────────────────────────────────────────

    def iter_types(self) -> Iterator[Type]:
        """Every distinct type used by the model, dependencies first"""
        seen: set[Type] = set()

        def visit(t: Type) -> Iterator[Type]:
            for child in child_types(t):
                yield from visit(child)
            if t not in seen:
                seen.add(t)
                yield t

        for d in self.model.definitions():
            yield from visit(NamedType(d.name))
            for f in self.fields_of(d):
                yield from visit(f.type)
        for owner, fn in self.model.iter_callables():
            for p in fn.params:
                yield from visit(p.type)
            if fn.return_type is not None:
                yield from visit(fn.return_type)

    def iter_composites(self) -> Iterator[Type]:
        """Optional, sequence, map and box types, dependencies first"""
        for t in self.iter_types():
            if isinstance(t, (OptionalType, SequenceType, MapType, BoxedType)):
                yield t
