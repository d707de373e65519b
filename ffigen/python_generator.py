"""Python Generator - generates Python bindings using ctypes for shared library access"""

import keyword
from typing import Optional

from .common_generator import AUTOGEN_NOTICE, CommonGenerator, class_name, upper_snake
from .deriver import RECEIVER_NAME
from .ffi_types import FFIFunction, FFIType, Ownership
from .protocol import VARIANT_INDEX_BASE, buffer_free_name, buffer_from_bytes_name
from .type_mapper import Conversion
from .types import (
    BoxedType, BytesType, Constructor, Enum, ErrorType, Field, MapType,
    NamedType, Object, OptionalType, Primitive, Record, SequenceType,
    StringType, Type, Variant,
)

SECTION = "# ══════════════════════════════════════════════════════════════"


def _safe(name: str) -> str:
    """Escape Python keywords"""
    return f"{name}_" if keyword.iskeyword(name) else name


class PythonGenerator(CommonGenerator):
    """Generates Python bindings using ctypes"""

    name = 'python'

    FFI_TYPES = {
        FFIType.INT8: 'ctypes.c_int8',
        FFIType.UINT8: 'ctypes.c_uint8',
        FFIType.INT16: 'ctypes.c_int16',
        FFIType.UINT16: 'ctypes.c_uint16',
        FFIType.INT32: 'ctypes.c_int32',
        FFIType.UINT32: 'ctypes.c_uint32',
        FFIType.INT64: 'ctypes.c_int64',
        FFIType.UINT64: 'ctypes.c_uint64',
        FFIType.FLOAT32: 'ctypes.c_float',
        FFIType.FLOAT64: 'ctypes.c_double',
        FFIType.BOOL: 'ctypes.c_int8',
        FFIType.BUFFER: '_rt.BufferRecord',
        FFIType.BYTE_VIEW: '_rt.ByteView',
        FFIType.HANDLE: 'ctypes.c_uint64',
        FFIType.ERROR_RECORD: 'ctypes.POINTER(_rt.ErrorRecord)',
    }

    PYTHON_TYPES = {
        'i8': 'int',
        'u8': 'int',
        'i16': 'int',
        'u16': 'int',
        'i32': 'int',
        'u32': 'int',
        'i64': 'int',
        'u64': 'int',
        'f32': 'float',
        'f64': 'float',
        'bool': 'bool',
    }

    def generate(self) -> dict[str, str]:
        return {f"{self.namespace}.py": self.generate_module()}

    def generate_module(self) -> str:
        """Generate complete Python module"""
        library = self.config.library_for(self.namespace)
        lines = [
            '"""',
            f"{AUTOGEN_NOTICE}",
            f"Python bindings for {self.namespace}",
            '"""',
            "",
            "import ctypes",
            "import dataclasses",
            "import enum",
            "import typing",
            "",
            "from ffigen import runtime as _rt",
            "",
            f"__all__ = {self._public_names()!r}",
            "",
            "",
            SECTION,
            "# Library Loading",
            SECTION,
            "",
            f'_lib = _rt.load_library("{library}")',
            "",
        ]

        lines.extend(self._generate_function_decls())
        lines.extend(self._generate_records())
        lines.extend(self._generate_enums())
        lines.extend(self._generate_errors())
        lines.extend(self._generate_objects())
        lines.extend(self._generate_converters())
        lines.extend(self._generate_functions())

        return "\n".join(lines)

    def _public_names(self) -> list[str]:
        names = [d.name for d in self.model.definitions()]
        names.extend(_safe(f.name) for f in self.model.functions)
        return names

    # ── declarations ────────────────────────────────────────────

    def _generate_function_decls(self) -> list[str]:
        """Generate ctypes function declarations"""
        lines = [
            SECTION,
            "# C API Function Declarations",
            SECTION,
            "",
        ]
        for func in self.functions:
            lines.extend(self.function_decl(func))

        from_bytes = buffer_from_bytes_name(self.namespace)
        free = buffer_free_name(self.namespace)
        lines.append(f"_protocol = _rt.BufferProtocol(_lib.{from_bytes}, _lib.{free})")
        lines.append("")
        lines.append("")
        return lines

    def function_decl(self, func: FFIFunction) -> list[str]:
        restype = self.ffi_type(func.return_type) if func.return_type else "None"
        argtypes = ", ".join(self.ffi_type(a.type) for a in func.arguments)
        return [
            f"_lib.{func.name}.restype = {restype}",
            f"_lib.{func.name}.argtypes = [{argtypes}]",
            "",
        ]

    # ── type definitions ────────────────────────────────────────

    def _generate_records(self) -> list[str]:
        if not self.model.records:
            return []
        lines = [SECTION, "# Records", SECTION, ""]
        for record in self.model.records:
            lines.append("@dataclasses.dataclass")
            lines.append(f"class {record.name}:")
            if record.fields:
                for f in record.fields:
                    lines.append(f"    {_safe(f.name)}: {self._annotation(f.type)}")
            else:
                lines.append("    pass")
            lines.extend(["", ""])
        return lines

    def _generate_enums(self) -> list[str]:
        if not self.model.enums:
            return []
        lines = [SECTION, "# Enums", SECTION, ""]
        for e in self.model.enums:
            if e.is_flat:
                lines.append(f"class {e.name}(enum.Enum):")
                for index, v in enumerate(e.variants, start=VARIANT_INDEX_BASE):
                    lines.append(f"    {upper_snake(v.name)} = {index}")
                if not e.variants:
                    lines.append("    pass")
                lines.extend(["", ""])
                continue

            lines.append(f"class {e.name}:")
            lines.append(f'    """Base class of every {e.name} variant"""')
            lines.extend(["", ""])
            for v in e.variants:
                variant_class = self._variant_class(e, v)
                lines.append("@dataclasses.dataclass")
                lines.append(f"class {variant_class}({e.name}):")
                for f in v.fields:
                    lines.append(f"    {_safe(f.name)}: {self._annotation(f.type)}")
                if not v.fields:
                    lines.append("    pass")
                lines.extend(["", ""])
                lines.append(f"{e.name}.{class_name(v.name)} = {variant_class}")
                lines.extend(["", ""])
        return lines

    def _generate_errors(self) -> list[str]:
        if not self.model.errors:
            return []
        lines = [SECTION, "# Errors", SECTION, ""]
        for err in self.model.errors:
            lines.append(f"class {err.name}(_rt.NativeError):")
            lines.append(f'    """Failure declared by {err.name}-throwing calls"""')
            lines.extend(["", ""])
            for code, v in enumerate(err.variants, start=VARIANT_INDEX_BASE):
                lines.extend(self._error_variant(err, v, code))
            entries = ", ".join(f"{code}: {err.name}.{class_name(v.name)}"
                                for code, v in enumerate(err.variants, start=VARIANT_INDEX_BASE))
            lines.append(f"{err.name}._VARIANTS = {{{entries}}}")
            lines.extend(["", ""])
        return lines

    def _error_variant(self, err: ErrorType, v: Variant, code: int) -> list[str]:
        variant_class = self._variant_class(err, v)
        params = ['message: str = ""']
        if v.fields:
            params.append("*")
            params.extend(f"{_safe(f.name)}: {self._annotation(f.type, optional=True)} = None"
                          for f in v.fields)
        lines = [
            f"class {variant_class}({err.name}):",
            f"    CODE = {code}",
            "",
            f"    def __init__(self, {', '.join(params)}):",
            "        super().__init__(self.CODE, message)",
        ]
        for f in v.fields:
            lines.append(f"        self.{_safe(f.name)} = {_safe(f.name)}")
        lines.extend(["", ""])
        lines.append(f"{err.name}.{class_name(v.name)} = {variant_class}")
        lines.extend(["", ""])
        return lines

    def _variant_class(self, d, v: Variant) -> str:
        return f"_{d.name}_{class_name(v.name)}"

    # ── objects ─────────────────────────────────────────────────

    def _generate_objects(self) -> list[str]:
        lines = []
        for obj in self.model.objects:
            lines.extend(self._generate_class(obj))
        return lines

    def _generate_class(self, obj: Object) -> list[str]:
        """Generate Python wrapper class for an object"""
        lines = [
            SECTION,
            f"# {obj.name} Object",
            SECTION,
            "",
            f"class {obj.name}(_rt.NativeObject):",
            f'    """Python wrapper for the native {obj.name} object"""',
            "",
        ]

        for func in self.object_functions(obj):
            if isinstance(func.source, Constructor):
                lines.extend(self._generate_constructor(obj, func))
            else:
                lines.extend(self._generate_method(func))

        free = self.free_function(obj)
        lines.extend([
            "    def _release(self, handle):",
            f"        _lib.{free.name}(handle)",
            "",
            "",
        ])
        return lines

    def _generate_constructor(self, obj: Object, func: FFIFunction) -> list[str]:
        ctor = func.source
        params = self._params_decl(ctor.params)
        prelude, call = self._call(func)
        if ctor.is_primary:
            lines = [f"    def __init__({', '.join(['self'] + params)}):"]
            lines.extend(f"        {stmt}" for stmt in prelude)
            lines.extend([f"        self._handle = _rt.check_handle({call})", ""])
            return lines
        lines = [
            "    @classmethod",
            f"    def {_safe(ctor.name)}({', '.join(['cls'] + params)}) -> \"{obj.name}\":",
        ]
        lines.extend(f"        {stmt}" for stmt in prelude)
        lines.extend([f"        return cls._make_instance(_rt.check_handle({call}))", ""])
        return lines

    def _generate_method(self, func: FFIFunction) -> list[str]:
        meth = func.source
        params = self._params_decl(meth.params)
        ret = self._return_annotation(meth.return_type)
        lines = [f"    def {_safe(meth.name)}({', '.join(['self'] + params)}) -> {ret}:"]
        lines.extend(self._body(func, meth.return_type, "        ", receiver="self._require_handle()"))
        lines.append("")
        return lines

    # ── free functions ──────────────────────────────────────────

    def _generate_functions(self) -> list[str]:
        funcs = self.top_level_functions()
        if not funcs:
            return []
        lines = [SECTION, "# Functions", SECTION, ""]
        for func in funcs:
            fn = func.source
            params = self._params_decl(fn.params)
            ret = self._return_annotation(fn.return_type)
            lines.append(f"def {_safe(fn.name)}({', '.join(params)}) -> {ret}:")
            lines.extend(self._body(func, fn.return_type, "    "))
            lines.extend(["", ""])
        return lines

    # ── lowering / lifting ──────────────────────────────────────

    def _call(self, func: FFIFunction, receiver: Optional[str] = None) -> tuple[list[str], str]:
        """Statements lowering the arguments, and the native call expression.

        Arguments are lowered inline unless a consumed buffer is involved.
        Then every other argument is lowered into a local first and the
        consumed buffers are copied last, so a rejected argument never leaves
        a native buffer behind.
        """
        params = {p.name: p for p in func.source.params}
        args = []
        lowered = []
        owned = []
        for a in func.value_arguments:
            local = f"_{a.name}"
            args.append(local)
            if a.name == RECEIVER_NAME and receiver is not None and a.type == FFIType.HANDLE:
                lowered.append((local, receiver))
                receiver = None
                continue
            p = params[a.name]
            if a.ownership == Ownership.TRANSFERRED and self._is_buffer(p.type):
                owned.append((local, f"({self.converter(p.type)}, {_safe(p.name)})"))
            else:
                lowered.append((local, self._lower_expr(p.type, _safe(p.name))))

        prelude = []
        if owned:
            prelude.extend(f"{local} = {expr}" for local, expr in lowered)
            if len(owned) == 1:
                local, pair = owned[0]
                prelude.append(f"{local} = _protocol.lower_owned{pair}")
            else:
                targets = ", ".join(local for local, _ in owned)
                pairs = ", ".join(pair for _, pair in owned)
                prelude.append(f"{targets} = _protocol.lower_owned_all({pairs})")
        else:
            inline = dict(lowered)
            args = [inline[local] for local in args]

        call_args = [f"_lib.{func.name}", *args]
        if func.error_type:
            call_args.append(f"error={func.error_type}")
        return prelude, f"_protocol.call({', '.join(call_args)})"

    def _is_buffer(self, t: Type) -> bool:
        return self.mapper.conversion(t) in (Conversion.RAW_BUFFER, Conversion.SERIALIZED)

    def _lower_expr(self, t: Type, value: str) -> str:
        if self._is_buffer(t):
            return f"_rt.lower_borrowed({self.converter(t)}, {value})"
        return f"{self.converter(t)}.lower({value})"

    def _lift_expr(self, t: Type, value: str) -> str:
        if self._is_buffer(t):
            return f"_protocol.lift({self.converter(t)}, {value})"
        return f"{self.converter(t)}.lift({value})"

    def _body(self, func: FFIFunction, t: Optional[Type], indent: str, receiver: Optional[str] = None) -> list[str]:
        prelude, call = self._call(func, receiver)
        lines = [f"{indent}{stmt}" for stmt in prelude]
        if t is None:
            lines.append(f"{indent}{call}")
        else:
            lines.append(f"{indent}return {self._lift_expr(t, call)}")
        return lines

    # ── converters ──────────────────────────────────────────────

    def converter(self, t: Type) -> str:
        """Expression naming the runtime converter for ``t``"""
        if isinstance(t, BoxedType):
            return self.converter(t.inner)
        if isinstance(t, (Primitive, StringType, BytesType)):
            return f"_rt.{t.canonical_name.upper()}"
        return f"_converter_{t.canonical_name}"

    def _generate_converters(self) -> list[str]:
        lines = [SECTION, "# Converters", SECTION, ""]
        for record in self.model.records:
            lines.extend(self._record_converter(record))
        for e in self.model.enums:
            lines.extend(self._enum_converter(e))
        for err in self.model.errors:
            lines.extend(self._enum_converter(err))
        for obj in self.model.objects:
            lines.extend(self._object_converter(obj))

        for t in self.mapper.iter_composites():
            if isinstance(t, OptionalType):
                expr = f"_rt.OptionalConverter({self.converter(t.inner)})"
            elif isinstance(t, SequenceType):
                expr = f"_rt.SequenceConverter({self.converter(t.inner)})"
            elif isinstance(t, MapType):
                expr = f"_rt.MapConverter({self.converter(t.key)}, {self.converter(t.value)})"
            else:
                continue
            lines.append(f"{self.converter(t)} = {expr}")
        lines.extend(["", ""])
        return lines

    def _converter_class(self, name: str) -> str:
        return f"_Converter{NamedType(name).canonical_name}"

    def _record_converter(self, record: Record) -> list[str]:
        cls = self._converter_class(record.name)
        field_reads = [f"{_safe(f.name)}={self.converter(f.type)}.read(stream)" for f in record.fields]
        lines = [
            f"class {cls}(_rt.Converter):",
            "    def check(self, value):",
            f"        if not isinstance(value, {record.name}):",
            f'            raise TypeError(f"expected {record.name}, got {{type(value).__name__}}")',
        ]
        lines.extend(self._field_calls("check", record.fields, "value", indent=8))
        lines.extend([
            "",
            "    def read(self, stream):",
            f"        return {record.name}({', '.join(field_reads)})",
            "",
            "    def write(self, value, stream):",
        ])
        lines.extend(self._field_calls("write", record.fields, "value", indent=8) or ["        pass"])
        lines.extend([
            "",
            "",
            f"{self.converter(NamedType(record.name))} = {cls}()",
            "",
            "",
        ])
        return lines

    def _enum_converter(self, e) -> list[str]:
        cls = self._converter_class(e.name)
        lines = [f"class {cls}(_rt.Converter):"]

        if isinstance(e, Enum) and e.is_flat:
            lines.extend([
                "    def check(self, value):",
                f"        if not isinstance(value, {e.name}):",
                f'            raise TypeError(f"expected {e.name}, got {{type(value).__name__}}")',
                "",
                "    def read(self, stream):",
                "        index = stream.read_i32()",
                "        try:",
                f"            return {e.name}(index)",
                "        except ValueError:",
                f'            raise _rt.InternalError(f"invalid {e.name} variant index {{index}}") from None',
                "",
                "    def write(self, value, stream):",
                "        stream.write_i32(value.value)",
            ])
        else:
            variants = list(enumerate(e.variants, start=VARIANT_INDEX_BASE))
            lines.append("    def check(self, value):")
            for _, v in variants:
                lines.append(f"        if isinstance(value, {e.name}.{class_name(v.name)}):")
                lines.extend(self._field_calls("check", v.fields, "value", indent=12))
                lines.append("            return")
            lines.append(f'        raise TypeError(f"expected {e.name}, got {{type(value).__name__}}")')
            lines.append("")

            lines.append("    def read(self, stream):")
            lines.append("        index = stream.read_i32()")
            for index, v in variants:
                reads = [f"{_safe(f.name)}={self.converter(f.type)}.read(stream)" for f in v.fields]
                lines.append(f"        if index == {index}:")
                lines.append(f"            return {e.name}.{class_name(v.name)}({', '.join(reads)})")
            lines.append(f'        raise _rt.InternalError(f"invalid {e.name} variant index {{index}}")')
            lines.append("")

            lines.append("    def write(self, value, stream):")
            for index, v in variants:
                lines.append(f"        if isinstance(value, {e.name}.{class_name(v.name)}):")
                lines.append(f"            stream.write_i32({index})")
                lines.extend(self._field_calls("write", v.fields, "value", indent=12))
                lines.append("            return")
            lines.append(f'        raise TypeError(f"expected {e.name}, got {{type(value).__name__}}")')

        lines.extend([
            "",
            "",
            f"{self.converter(NamedType(e.name))} = {cls}()",
            "",
            "",
        ])
        return lines

    def _object_converter(self, obj: Object) -> list[str]:
        cls = self._converter_class(obj.name)
        return [
            f"class {cls}(_rt.HandleConverter):",
            "    def object_class(self):",
            f"        return {obj.name}",
            "",
            "",
            f"{self.converter(NamedType(obj.name))} = {cls}()",
            "",
            "",
        ]

    def _field_calls(self, method: str, fields: list[Field], value: str, indent: int) -> list[str]:
        pad = " " * indent
        lines = []
        for f in fields:
            attr = f"{value}.{_safe(f.name)}"
            if method == "write":
                lines.append(f"{pad}{self.converter(f.type)}.write({attr}, stream)")
            else:
                lines.append(f"{pad}{self.converter(f.type)}.check({attr})")
        return lines

    # ── type hints ──────────────────────────────────────────────

    def _params_decl(self, params) -> list[str]:
        return [f"{_safe(p.name)}: {self._annotation(p.type)}" for p in params]

    def _return_annotation(self, t: Optional[Type]) -> str:
        return "None" if t is None else self._annotation(t)

    def _annotation(self, t: Type, optional: bool = False) -> str:
        """Type hint, quoted when it refers to generated classes"""
        hint = self._to_python_type(t)
        if optional and not isinstance(t, OptionalType):
            hint = f"typing.Optional[{hint}]"
        if self._refers_to_named(t):
            return f'"{hint}"'
        return hint

    def _to_python_type(self, t: Type) -> str:
        """Convert interface type to Python type hint"""
        if isinstance(t, Primitive):
            return self.PYTHON_TYPES[t.name]
        if isinstance(t, StringType):
            return "str"
        if isinstance(t, BytesType):
            return "bytes"
        if isinstance(t, OptionalType):
            return f"typing.Optional[{self._to_python_type(t.inner)}]"
        if isinstance(t, SequenceType):
            return f"typing.List[{self._to_python_type(t.inner)}]"
        if isinstance(t, MapType):
            return f"typing.Dict[{self._to_python_type(t.key)}, {self._to_python_type(t.value)}]"
        if isinstance(t, BoxedType):
            return self._to_python_type(t.inner)
        return t.name

    def _refers_to_named(self, t: Type) -> bool:
        if isinstance(t, NamedType):
            return True
        if isinstance(t, (OptionalType, SequenceType, BoxedType)):
            return self._refers_to_named(t.inner)
        if isinstance(t, MapType):
            return self._refers_to_named(t.key) or self._refers_to_named(t.value)
        return False
