"""Interface Model: language-neutral description of a library surface"""

from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from .errors import DuplicateNameError


# ══════════════════════════════════════════════════════════════
# Interface types
# ══════════════════════════════════════════════════════════════

PRIMITIVE_NAMES = {
    'i8': 'Int8',
    'u8': 'UInt8',
    'i16': 'Int16',
    'u16': 'UInt16',
    'i32': 'Int32',
    'u32': 'UInt32',
    'i64': 'Int64',
    'u64': 'UInt64',
    'f32': 'Float32',
    'f64': 'Float64',
    'bool': 'Boolean',
}


@dataclass(frozen=True)
class Primitive:
    """Fixed-width integer, float or boolean"""
    name: str

    def __post_init__(self):
        if self.name not in PRIMITIVE_NAMES:
            raise ValueError(f"unknown primitive type '{self.name}'")

    @property
    def canonical_name(self) -> str:
        return PRIMITIVE_NAMES[self.name]

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class StringType:
    """UTF-8 text"""

    @property
    def canonical_name(self) -> str:
        return 'String'

    def __str__(self) -> str:
        return 'string'


@dataclass(frozen=True)
class BytesType:
    """Opaque byte sequence"""

    @property
    def canonical_name(self) -> str:
        return 'Bytes'

    def __str__(self) -> str:
        return 'bytes'


@dataclass(frozen=True)
class OptionalType:
    inner: 'Type'

    @property
    def canonical_name(self) -> str:
        return f'Optional{self.inner.canonical_name}'

    def __str__(self) -> str:
        return f'optional<{self.inner}>'


@dataclass(frozen=True)
class SequenceType:
    inner: 'Type'

    @property
    def canonical_name(self) -> str:
        return f'Sequence{self.inner.canonical_name}'

    def __str__(self) -> str:
        return f'sequence<{self.inner}>'


@dataclass(frozen=True)
class MapType:
    key: 'Type'
    value: 'Type'

    @property
    def canonical_name(self) -> str:
        # key length keeps map<A, BTypeC> and map<ATypeB, C> apart
        key = self.key.canonical_name
        return f'Map{len(key)}{key}{self.value.canonical_name}'

    def __str__(self) -> str:
        return f'map<{self.key}, {self.value}>'


@dataclass(frozen=True)
class NamedType:
    """Reference to a record, enum, error or object by name"""
    name: str

    @property
    def canonical_name(self) -> str:
        return f'Type{self.name}'

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class BoxedType:
    """Explicit indirection; the only by-value way to recurse"""
    inner: 'Type'

    @property
    def canonical_name(self) -> str:
        return f'Box{self.inner.canonical_name}'

    def __str__(self) -> str:
        return f'box<{self.inner}>'


Type = Union[
    Primitive, StringType, BytesType, OptionalType, SequenceType,
    MapType, NamedType, BoxedType,
]


def child_types(t: Type) -> tuple:
    """Directly nested types of a composite type"""
    if isinstance(t, (OptionalType, SequenceType, BoxedType)):
        return (t.inner,)
    if isinstance(t, MapType):
        return (t.key, t.value)
    return ()


# ══════════════════════════════════════════════════════════════
# Definitions
# ══════════════════════════════════════════════════════════════

@dataclass
class Field:
    """Record or variant field"""
    name: str
    type: Type


@dataclass
class Record:
    name: str
    fields: list[Field] = field(default_factory=list)

    kind = 'record'


@dataclass
class Variant:
    """Enum variant, optionally carrying fields"""
    name: str
    fields: list[Field] = field(default_factory=list)


@dataclass
class Enum:
    name: str
    variants: list[Variant] = field(default_factory=list)

    kind = 'enum'

    @property
    def is_flat(self) -> bool:
        """True when no variant carries data"""
        return not any(v.fields for v in self.variants)


@dataclass
class ErrorType:
    """Enum that functions may declare as their throwing type"""
    name: str
    variants: list[Variant] = field(default_factory=list)

    kind = 'error'

    @property
    def is_flat(self) -> bool:
        return not any(v.fields for v in self.variants)


@dataclass
class Param:
    """Callable parameter"""
    name: str
    type: Type
    consumed: bool = False


@dataclass
class Function:
    """Free function"""
    name: str
    params: list[Param] = field(default_factory=list)
    return_type: Optional[Type] = None
    throws: Optional[str] = None


@dataclass
class Constructor:
    """Object constructor; the one named 'new' is the primary constructor"""
    name: str = 'new'
    params: list[Param] = field(default_factory=list)
    throws: Optional[str] = None

    return_type = None

    @property
    def is_primary(self) -> bool:
        return self.name == 'new'


@dataclass
class Method:
    """Object method, called through the object's handle"""
    name: str
    params: list[Param] = field(default_factory=list)
    return_type: Optional[Type] = None
    throws: Optional[str] = None


@dataclass
class Object:
    """Opaque native object, passed across the boundary as a handle"""
    name: str
    constructors: list[Constructor] = field(default_factory=list)
    methods: list[Method] = field(default_factory=list)

    kind = 'object'

    @property
    def primary_constructor(self) -> Optional[Constructor]:
        return next((c for c in self.constructors if c.is_primary), None)


Definition = Union[Record, Enum, ErrorType, Object]
Callable = Union[Function, Constructor, Method]


@dataclass
class InterfaceModel:
    """Complete, validated description of one library surface"""
    namespace: str
    records: list[Record] = field(default_factory=list)
    enums: list[Enum] = field(default_factory=list)
    errors: list[ErrorType] = field(default_factory=list)
    objects: list[Object] = field(default_factory=list)
    functions: list[Function] = field(default_factory=list)

    def definitions(self) -> list[Definition]:
        """All named definitions, grouped by kind in declaration order"""
        return [*self.records, *self.enums, *self.errors, *self.objects]

    def type_table(self) -> dict[str, Definition]:
        table: dict[str, Definition] = {}
        for d in self.definitions():
            if d.name in table:
                raise DuplicateNameError(d.name)
            table[d.name] = d
        return table

    def iter_callables(self) -> Iterator[tuple[Optional[Object], Callable]]:
        """(owner, callable) pairs in declaration order"""
        for fn in self.functions:
            yield None, fn
        for obj in self.objects:
            for ctor in obj.constructors:
                yield obj, ctor
            for meth in obj.methods:
                yield obj, meth
