"""
FFI Binding Generator Package

Turns an Interface Model into:
  1. A C header declaring the native core's exports
  2. Python bindings using ctypes (with ffigen.runtime)
  3. Kotlin bindings using JNA
"""

from .types import (
    Primitive, StringType, BytesType, OptionalType, SequenceType, MapType,
    NamedType, BoxedType, Field, Record, Variant, Enum, ErrorType, Param,
    Function, Constructor, Method, Object, InterfaceModel,
)
from .errors import (
    GenerationError, ModelError, ModelFormatError, UnresolvedTypeError,
    RecursiveTypeError, DuplicateNameError, EmissionError, ConfigError,
)
from .loader import ModelLoader, parse_type
from .ffi_types import FFIType, Ownership, FFIArgument, FFIFunction
from .type_mapper import TypeMapper, Conversion
from .deriver import SignatureDeriver
from .config import GeneratorConfig, load_config
from .c_generator import CGenerator
from .python_generator import PythonGenerator
from .kotlin_generator import KotlinGenerator
from .generator import BindingGenerator

__all__ = [
    'Primitive', 'StringType', 'BytesType', 'OptionalType', 'SequenceType',
    'MapType', 'NamedType', 'BoxedType', 'Field', 'Record', 'Variant', 'Enum',
    'ErrorType', 'Param', 'Function', 'Constructor', 'Method', 'Object',
    'InterfaceModel',
    'GenerationError', 'ModelError', 'ModelFormatError', 'UnresolvedTypeError',
    'RecursiveTypeError', 'DuplicateNameError', 'EmissionError', 'ConfigError',
    'ModelLoader', 'parse_type',
    'FFIType', 'Ownership', 'FFIArgument', 'FFIFunction',
    'TypeMapper', 'Conversion', 'SignatureDeriver',
    'GeneratorConfig', 'load_config',
    'CGenerator', 'PythonGenerator', 'KotlinGenerator',
    'BindingGenerator',
]
