"""Kotlin Generator - generates Kotlin bindings over JNA with inline helper code"""

from typing import Optional

from .common_generator import AUTOGEN_NOTICE, CommonGenerator, camel_case, class_name, upper_snake
from .deriver import RECEIVER_NAME
from .ffi_types import FFIFunction, FFIType, Ownership
from .protocol import (
    CALL_SUCCESS, CALL_UNEXPECTED_ERROR, OPTIONAL_ABSENT, OPTIONAL_PRESENT,
    VARIANT_INDEX_BASE, StructLayout, buffer_free_name, buffer_from_bytes_name,
)
from .type_mapper import Conversion
from .types import (
    BoxedType, BytesType, Constructor, ErrorType, Field, MapType,
    NamedType, Object, OptionalType, Primitive, SequenceType,
    StringType, Type,
)

KOTLIN_KEYWORDS = {
    'as', 'break', 'class', 'continue', 'do', 'else', 'false', 'for', 'fun',
    'if', 'in', 'interface', 'is', 'null', 'object', 'package', 'return',
    'super', 'this', 'throw', 'true', 'try', 'typealias', 'typeof', 'val',
    'var', 'when', 'while',
}

# (Kotlin type, ByteBuffer getter, DataOutputStream writer, JNA type, to JNA, from JNA)
PRIMITIVES = {
    'i8': ('Byte', 'buf.get()', 'out.writeByte(value.toInt())', 'Byte', '', ''),
    'u8': ('UByte', 'buf.get().toUByte()', 'out.writeByte(value.toInt())', 'Byte', '.toByte()', '.toUByte()'),
    'i16': ('Short', 'buf.getShort()', 'out.writeShort(value.toInt())', 'Short', '', ''),
    'u16': ('UShort', 'buf.getShort().toUShort()', 'out.writeShort(value.toInt())', 'Short', '.toShort()', '.toUShort()'),
    'i32': ('Int', 'buf.getInt()', 'out.writeInt(value)', 'Int', '', ''),
    'u32': ('UInt', 'buf.getInt().toUInt()', 'out.writeInt(value.toInt())', 'Int', '.toInt()', '.toUInt()'),
    'i64': ('Long', 'buf.getLong()', 'out.writeLong(value)', 'Long', '', ''),
    'u64': ('ULong', 'buf.getLong().toULong()', 'out.writeLong(value.toLong())', 'Long', '.toLong()', '.toULong()'),
    'f32': ('Float', 'buf.getFloat()', 'out.writeFloat(value)', 'Float', '', ''),
    'f64': ('Double', 'buf.getDouble()', 'out.writeDouble(value)', 'Double', '', ''),
    'bool': ('Boolean', 'liftBoolean(buf.get())', 'out.writeByte(if (value) 1 else 0)', 'Byte', '', ''),
}

STATUS = "_status"


def _safe(name: str) -> str:
    """Back-quote Kotlin hard keywords"""
    return f"`{name}`" if name in KOTLIN_KEYWORDS else name


def _block(indent: str, text: str) -> list[str]:
    return [f"{indent}{line}" for line in text.split("\n")]


class KotlinGenerator(CommonGenerator):
    """Generates Kotlin bindings using JNA"""

    name = 'kotlin'

    FFI_TYPES = {
        FFIType.INT8: 'Byte',
        FFIType.UINT8: 'Byte',
        FFIType.INT16: 'Short',
        FFIType.UINT16: 'Short',
        FFIType.INT32: 'Int',
        FFIType.UINT32: 'Int',
        FFIType.INT64: 'Long',
        FFIType.UINT64: 'Long',
        FFIType.FLOAT32: 'Float',
        FFIType.FLOAT64: 'Double',
        FFIType.BOOL: 'Byte',
        FFIType.BUFFER: 'BufferRecord.ByValue',
        FFIType.BYTE_VIEW: 'ByteView.ByValue',
        FFIType.HANDLE: 'Long',
        FFIType.ERROR_RECORD: 'ErrorRecord.ByReference',
    }

    FIELD_TYPES = {
        'i8': ('Byte', '0'),
        'i16': ('Short', '0'),
        'i32': ('Int', '0'),
        'i64': ('Long', '0'),
        'ptr': ('Pointer?', 'null'),
    }

    @property
    def package_name(self) -> str:
        return self.option('package_name') or f"ffigen.{self.namespace}"

    @property
    def lib_interface(self) -> str:
        return f"_{class_name(self.namespace)}Lib"

    def generate(self) -> dict[str, str]:
        path = "/".join(self.package_name.split("."))
        return {f"{path}/{self.namespace}.kt": self.generate_source()}

    def generate_source(self) -> str:
        lines = [
            f"// {AUTOGEN_NOTICE}",
            "",
            '@file:Suppress("NAME_SHADOWING", "unused", "ClassName", "FunctionName")',
            "",
            f"package {self.package_name}",
            "",
            "import com.sun.jna.Library",
            "import com.sun.jna.Memory",
            "import com.sun.jna.Native",
            "import com.sun.jna.Pointer",
            "import com.sun.jna.Structure",
            "import java.io.ByteArrayOutputStream",
            "import java.io.DataOutputStream",
            "import java.nio.BufferUnderflowException",
            "import java.nio.ByteBuffer",
            "import java.nio.ByteOrder",
            "import java.nio.charset.CharacterCodingException",
            "import java.nio.charset.CodingErrorAction",
            "import java.util.concurrent.atomic.AtomicLong",
            "",
        ]
        lines.extend(self._generate_structs())
        lines.extend(self._generate_library())
        lines.extend(self._generate_helpers())
        lines.extend(self._generate_builtin_converters())
        lines.extend(self._generate_records())
        lines.extend(self._generate_enums())
        lines.extend(self._generate_errors())
        lines.extend(self._generate_objects())
        lines.extend(self._generate_composite_converters())
        lines.extend(self._generate_functions())
        return "\n".join(lines)

    # ── structs and declarations ────────────────────────────────

    def _generate_structs(self) -> list[str]:
        lines = ["// Boundary structs, layout-compatible with the C header", ""]
        for layout in self.struct_layouts():
            lines.extend(self._struct_decl(layout))
        return lines

    def _struct_decl(self, layout: StructLayout) -> list[str]:
        order = ", ".join(f'"{f.name}"' for f in layout.fields)
        lines = [
            f"@Structure.FieldOrder({order})",
            f"open class {layout.name} : Structure() {{",
        ]
        for f in layout.fields:
            if f.kind in self.FIELD_TYPES:
                kt_type, default = self.FIELD_TYPES[f.kind]
            else:
                kt_type, default = f"{f.kind}.ByValue", f"{f.kind}.ByValue()"
            lines.append(f"    @JvmField var {f.name}: {kt_type} = {default}")
        lines.extend([
            "",
            f"    class ByValue : {layout.name}(), Structure.ByValue",
            f"    class ByReference : {layout.name}(), Structure.ByReference",
            "}",
            "",
        ])
        return lines

    def _generate_library(self) -> list[str]:
        library = self.config.library_for(self.namespace)
        lines = [
            f"internal interface {self.lib_interface} : Library {{",
            "    companion object {",
            f"        internal val INSTANCE: {self.lib_interface} by lazy {{",
            f'            Native.load("{library}", {self.lib_interface}::class.java)',
            "        }",
            "    }",
            "",
        ]
        for func in self.functions:
            lines.append(f"    {self.function_decl(func)}")
        lines.extend(["}", ""])
        return lines

    def function_decl(self, func: FFIFunction) -> str:
        params = ", ".join(f"{_safe(a.name)}: {self.ffi_type(a.type)}" for a in func.arguments)
        ret = self.ffi_type(func.return_type) if func.return_type else "Unit"
        return f"fun {func.name}({params}): {ret}"

    # ── inline helpers ──────────────────────────────────────────

    def _generate_helpers(self) -> list[str]:
        lib = f"{self.lib_interface}.INSTANCE"
        from_bytes = buffer_from_bytes_name(self.namespace)
        free = buffer_free_name(self.namespace)
        return [
            "open class NativeException(val code: Int, message: String) : Exception(message)",
            "",
            f"class InternalException(message: String) : NativeException({CALL_UNEXPECTED_ERROR}, message)",
            "",
            "interface ErrorHandler<E : NativeException> {",
            "    fun lift(code: Int, message: String): E",
            "}",
            "",
            "internal fun checkBuffer(buf: BufferRecord) {",
            "    if (buf.capacity < 0 || buf.len < 0 || buf.len > buf.capacity) {",
            '        throw InternalException("invalid buffer lengths: capacity=${buf.capacity} len=${buf.len}")',
            "    }",
            "    if ((buf.data != null) != (buf.capacity > 0)) {",
            '        throw InternalException("buffer data does not match capacity")',
            "    }",
            "}",
            "",
            "internal fun readBuffer(buf: BufferRecord): ByteArray {",
            "    checkBuffer(buf)",
            "    if (buf.len == 0) return ByteArray(0)",
            "    return buf.data!!.getByteArray(0, buf.len)",
            "}",
            "",
            "internal fun freeBuffer(buf: BufferRecord.ByValue) {",
            f"    {lib}.{free}(buf)",
            "}",
            "",
            "internal fun <T> liftBuffer(converter: FfiConverter<T>, buf: BufferRecord.ByValue): T {",
            "    val data = try {",
            "        readBuffer(buf)",
            "    } finally {",
            "        freeBuffer(buf)",
            "    }",
            "    return converter.fromBytes(data)",
            "}",
            "",
            "internal fun <T> lowerOwned(converter: FfiConverter<T>, value: T): BufferRecord.ByValue {",
            "    val data = converter.toBytes(value)",
            "    val view = ByteView.ByValue()",
            "    if (data.isNotEmpty()) {",
            "        val memory = Memory(data.size.toLong())",
            "        memory.write(0, data, 0, data.size)",
            "        view.len = data.size",
            "        view.data = memory",
            "    }",
            f"    val buf = {lib}.{from_bytes}(view)",
            "    try {",
            "        checkBuffer(buf)",
            "        if (buf.len != data.size) {",
            '            throw InternalException("native copy holds ${buf.len} bytes, expected ${data.size}")',
            "        }",
            "        return buf",
            "    } catch (e: Throwable) {",
            "        freeBuffer(buf)",
            "        throw e",
            "    }",
            "}",
            "",
            "internal fun lowerOwnedAll(vararg lowerings: () -> BufferRecord.ByValue): List<BufferRecord.ByValue> {",
            "    val bufs = ArrayList<BufferRecord.ByValue>(lowerings.size)",
            "    try {",
            "        lowerings.forEach { bufs.add(it()) }",
            "    } catch (e: Throwable) {",
            "        bufs.forEach { freeBuffer(it) }",
            "        throw e",
            "    }",
            "    return bufs",
            "}",
            "",
            "internal fun <T> lowerBorrowed(converter: FfiConverter<T>, value: T): BufferRecord.ByValue {",
            "    val data = converter.toBytes(value)",
            "    val buf = BufferRecord.ByValue()",
            "    if (data.isNotEmpty()) {",
            "        val memory = Memory(data.size.toLong())",
            "        memory.write(0, data, 0, data.size)",
            "        buf.capacity = data.size",
            "        buf.len = data.size",
            "        buf.data = memory",
            "    }",
            "    return buf",
            "}",
            "",
            "internal fun checkStatus(status: ErrorRecord, handler: ErrorHandler<*>) {",
            f"    if (status.code == {CALL_SUCCESS}) return",
            '    var message = ""',
            "    if (status.message.capacity > 0) {",
            "        try {",
            "            message = String(readBuffer(status.message), Charsets.UTF_8)",
            "        } finally {",
            "            freeBuffer(status.message)",
            "        }",
            "    }",
            f"    if (status.code == {CALL_UNEXPECTED_ERROR}) throw InternalException(message)",
            "    throw handler.lift(status.code, message)",
            "}",
            "",
            "internal inline fun <T> callWithError(handler: ErrorHandler<*>, call: (ErrorRecord.ByReference) -> T): T {",
            "    val status = ErrorRecord.ByReference()",
            "    val result = call(status)",
            "    checkStatus(status, handler)",
            "    return result",
            "}",
            "",
            "internal fun checkHandle(handle: Long): Long {",
            '    if (handle == 0L) throw InternalException("native core returned a null handle")',
            "    return handle",
            "}",
            "",
            "internal fun decodeUtf8(bytes: ByteArray): String = try {",
            "    Charsets.UTF_8.newDecoder()",
            "        .onMalformedInput(CodingErrorAction.REPORT)",
            "        .onUnmappableCharacter(CodingErrorAction.REPORT)",
            "        .decode(ByteBuffer.wrap(bytes))",
            "        .toString()",
            "} catch (e: CharacterCodingException) {",
            '    throw InternalException("invalid UTF-8 text: ${e.message}")',
            "}",
            "",
            "internal fun lowerBoolean(value: Boolean): Byte = if (value) 1 else 0",
            "",
            "internal fun liftBoolean(value: Byte): Boolean = when (value.toInt()) {",
            "    0 -> false",
            "    1 -> true",
            '    else -> throw InternalException("invalid boolean byte $value")',
            "}",
            "",
            "interface FfiConverter<T> {",
            "    fun read(buf: ByteBuffer): T",
            "    fun write(value: T, out: DataOutputStream)",
            "",
            "    fun toBytes(value: T): ByteArray {",
            "        val bytes = ByteArrayOutputStream()",
            "        write(value, DataOutputStream(bytes))",
            "        return bytes.toByteArray()",
            "    }",
            "",
            "    fun fromBytes(data: ByteArray): T {",
            "        val buf = ByteBuffer.wrap(data).order(ByteOrder.BIG_ENDIAN)",
            "        val value = try {",
            "            read(buf)",
            "        } catch (e: BufferUnderflowException) {",
            '            throw InternalException("buffer underflow while lifting")',
            "        }",
            "        if (buf.hasRemaining()) {",
            '            throw InternalException("junk remaining in buffer after lifting (${buf.remaining()} bytes)")',
            "        }",
            "        return value",
            "    }",
            "}",
            "",
        ]

    def _generate_builtin_converters(self) -> list[str]:
        lines = []
        for name, (kt_type, getter, writer, *_) in PRIMITIVES.items():
            conv = self.converter(Primitive(name))
            lines.extend(self._converter_object(conv, kt_type, [f"return {getter}"], [writer]))

        lines.extend([
            "object FfiConverterString : FfiConverter<String> {",
            "    override fun read(buf: ByteBuffer): String {",
            "        val bytes = ByteArray(buf.getInt())",
            "        buf.get(bytes)",
            "        return decodeUtf8(bytes)",
            "    }",
            "",
            "    override fun write(value: String, out: DataOutputStream) {",
            "        val bytes = value.toByteArray(Charsets.UTF_8)",
            "        out.writeInt(bytes.size)",
            "        out.write(bytes)",
            "    }",
            "",
            "    override fun toBytes(value: String): ByteArray = value.toByteArray(Charsets.UTF_8)",
            "",
            "    override fun fromBytes(data: ByteArray): String = decodeUtf8(data)",
            "}",
            "",
            "object FfiConverterBytes : FfiConverter<ByteArray> {",
            "    override fun read(buf: ByteBuffer): ByteArray {",
            "        val bytes = ByteArray(buf.getInt())",
            "        buf.get(bytes)",
            "        return bytes",
            "    }",
            "",
            "    override fun write(value: ByteArray, out: DataOutputStream) {",
            "        out.writeInt(value.size)",
            "        out.write(value)",
            "    }",
            "",
            "    override fun toBytes(value: ByteArray): ByteArray = value.copyOf()",
            "",
            "    override fun fromBytes(data: ByteArray): ByteArray = data",
            "}",
            "",
        ])
        return lines

    def _converter_object(self, name: str, kt_type: str, read: list[str], write: list[str],
                          extra: Optional[list[str]] = None) -> list[str]:
        lines = [
            f"object {name} : FfiConverter<{kt_type}> {{",
            f"    override fun read(buf: ByteBuffer): {kt_type} {{",
        ]
        lines.extend(f"        {line}" for line in read)
        lines.extend([
            "    }",
            "",
            f"    override fun write(value: {kt_type}, out: DataOutputStream) {{",
        ])
        lines.extend(f"        {line}" for line in write)
        lines.append("    }")
        if extra:
            lines.append("")
            lines.extend(f"    {line}" if line else "" for line in extra)
        lines.extend(["}", ""])
        return lines

    # ── type definitions ────────────────────────────────────────

    def _generate_records(self) -> list[str]:
        lines = []
        for record in self.model.records:
            if record.fields:
                lines.append(f"data class {record.name}(")
                for f in record.fields:
                    lines.append(f"    val {self._field_name(f)}: {self.kotlin_type(f.type)},")
                lines.extend([")", ""])
            else:
                lines.extend([f"class {record.name}", ""])
            reads = self._field_reads(record.fields)
            lines.extend(self._converter_object(
                self.converter(NamedType(record.name)),
                record.name,
                [f"return {record.name}({', '.join(reads)})"],
                self._field_writes(record.fields, "value"),
            ))
        return lines

    def _generate_enums(self) -> list[str]:
        lines = []
        for e in self.model.enums:
            conv = self.converter(NamedType(e.name))
            if e.is_flat:
                members = ", ".join(upper_snake(v.name) for v in e.variants)
                lines.extend([f"enum class {e.name} {{", f"    {members};", "}", ""])
                lines.extend(self._converter_object(
                    conv, e.name,
                    [
                        "val index = buf.getInt()",
                        f"return {e.name}.values().getOrNull(index - {VARIANT_INDEX_BASE})",
                        f'    ?: throw InternalException("invalid {e.name} variant index $index")',
                    ],
                    [f"out.writeInt(value.ordinal + {VARIANT_INDEX_BASE})"],
                ))
                continue

            lines.append(f"sealed class {e.name} {{")
            for v in e.variants:
                variant = class_name(v.name)
                if v.fields:
                    params = ", ".join(f"val {self._field_name(f)}: {self.kotlin_type(f.type)}" for f in v.fields)
                    lines.append(f"    data class {variant}({params}) : {e.name}()")
                else:
                    lines.append(f"    object {variant} : {e.name}()")
            lines.extend(["}", ""])
            lines.extend(self._converter_object(conv, e.name, self._variant_reads(e), self._variant_writes(e)))
        return lines

    def _generate_errors(self) -> list[str]:
        lines = []
        for err in self.model.errors:
            lines.append(f"open class {err.name}(code: Int, message: String) : NativeException(code, message) {{")
            for code, v in enumerate(err.variants, start=VARIANT_INDEX_BASE):
                params = ['message: String = ""']
                params.extend(f"val {self._field_name(f)}: {self._nullable(f.type)} = null" for f in v.fields)
                lines.append(f"    class {class_name(v.name)}({', '.join(params)}) : {err.name}({code}, message)")
            lines.extend([
                "",
                f"    companion object : ErrorHandler<{err.name}> {{",
                f"        override fun lift(code: Int, message: String): {err.name} = when (code) {{",
            ])
            for code, v in enumerate(err.variants, start=VARIANT_INDEX_BASE):
                lines.append(f"            {code} -> {class_name(v.name)}(message)")
            lines.extend([
                f"            else -> {err.name}(code, message)",
                "        }",
                "    }",
                "}",
                "",
            ])
            lines.extend(self._converter_object(
                self.converter(NamedType(err.name)), err.name,
                self._variant_reads(err), self._variant_writes(err),
            ))
        return lines

    def _variant_reads(self, e) -> list[str]:
        lines = ["return when (val index = buf.getInt()) {"]
        for index, v in enumerate(e.variants, start=VARIANT_INDEX_BASE):
            variant = f"{e.name}.{class_name(v.name)}"
            if isinstance(e, ErrorType):
                reads = [f"{self._field_name(f)} = {r}" for f, r in zip(v.fields, self._field_reads(v.fields))]
                lines.append(f"    {index} -> {variant}({', '.join(reads)})")
            elif v.fields:
                lines.append(f"    {index} -> {variant}({', '.join(self._field_reads(v.fields))})")
            else:
                lines.append(f"    {index} -> {variant}")
        lines.append(f'    else -> throw InternalException("invalid {e.name} variant index $index")')
        lines.append("}")
        return lines

    def _variant_writes(self, e) -> list[str]:
        lines = ["when (value) {"]
        for index, v in enumerate(e.variants, start=VARIANT_INDEX_BASE):
            lines.append(f"    is {e.name}.{class_name(v.name)} -> {{")
            lines.append(f"        out.writeInt({index})")
            nullable = isinstance(e, ErrorType)
            lines.extend(f"        {line}" for line in self._field_writes(v.fields, "value", nullable))
            lines.append("    }")
        if isinstance(e, ErrorType):
            lines.append(f'    else -> throw IllegalArgumentException("{e.name} code ${{value.code}} has no variant")')
        lines.append("}")
        return lines

    def _field_reads(self, fields: list[Field]) -> list[str]:
        return [f"{self.converter(f.type)}.read(buf)" for f in fields]

    def _field_writes(self, fields: list[Field], value: str, nullable: bool = False) -> list[str]:
        lines = []
        for f in fields:
            attr = f"{value}.{self._field_name(f)}"
            if nullable and not isinstance(f.type, OptionalType):
                attr = f'({attr} ?: throw IllegalArgumentException("{f.name} is not set"))'
            lines.append(f"{self.converter(f.type)}.write({attr}, out)")
        return lines

    # ── objects ─────────────────────────────────────────────────

    def _generate_objects(self) -> list[str]:
        lines = []
        for obj in self.model.objects:
            lines.extend(self._generate_class(obj))
        return lines

    def _generate_class(self, obj: Object) -> list[str]:
        funcs = self.object_functions(obj)
        ctors = [f for f in funcs if isinstance(f.source, Constructor)]
        methods = [f for f in funcs if not isinstance(f.source, Constructor)]
        free = self.free_function(obj)

        lines = [
            f"class {obj.name} internal constructor(private val handle: AtomicLong) : AutoCloseable {{",
        ]
        for func in ctors:
            if func.source.is_primary:
                params = self._params_decl(func.source.params)
                lines.extend(_block("    ", f"constructor({params}) : this(AtomicLong(checkHandle({self._call_expr(func)})))"))
                lines.append("")

        lines.extend([
            "    internal fun requireHandle(): Long {",
            "        val handle = this.handle.get()",
            f'        if (handle == 0L) throw IllegalStateException("{obj.name} has already been closed")',
            "        return handle",
            "    }",
            "",
            "    override fun close() {",
            "        val handle = this.handle.getAndSet(0L)",
            f"        if (handle != 0L) {self.lib_interface}.INSTANCE.{free.name}(handle)",
            "    }",
        ])

        for func in methods:
            meth = func.source
            ret = self._return_decl(meth.return_type)
            call = self._call_expr(func, receiver="requireHandle()")
            lines.append("")
            lines.append(f"    fun {_safe(camel_case(meth.name))}({self._params_decl(meth.params)}){ret} {{")
            lines.extend(_block("        ", self._return_stmt(meth.return_type, call)))
            lines.append("    }")

        alternates = [f for f in ctors if not f.source.is_primary]
        if alternates:
            lines.extend(["", "    companion object {"])
            for func in alternates:
                ctor = func.source
                lines.append(
                    f"        fun {_safe(camel_case(ctor.name))}({self._params_decl(ctor.params)}): {obj.name} ="
                )
                lines.extend(_block("            ", f"{obj.name}(AtomicLong(checkHandle({self._call_expr(func)})))"))
            lines.append("    }")
        lines.extend(["}", ""])

        lines.extend(self._converter_object(
            self.converter(NamedType(obj.name)), obj.name,
            ["return lift(buf.getLong())"],
            ["out.writeLong(lower(value))"],
            extra=[
                f"fun lower(value: {obj.name}): Long = value.requireHandle()",
                "",
                f"fun lift(handle: Long): {obj.name} = {obj.name}(AtomicLong(checkHandle(handle)))",
            ],
        ))
        return lines

    # ── composite converters ────────────────────────────────────

    def _generate_composite_converters(self) -> list[str]:
        lines = []
        for t in self.mapper.iter_composites():
            name = self.converter(t)
            kt_type = self.kotlin_type(t)
            if isinstance(t, OptionalType):
                inner = self.converter(t.inner)
                lines.extend(self._converter_object(name, kt_type, [
                    "return when (val tag = buf.get().toInt()) {",
                    f"    {OPTIONAL_ABSENT} -> null",
                    f"    {OPTIONAL_PRESENT} -> {inner}.read(buf)",
                    '    else -> throw InternalException("invalid optional tag $tag")',
                    "}",
                ], [
                    "if (value == null) {",
                    f"    out.writeByte({OPTIONAL_ABSENT})",
                    "} else {",
                    f"    out.writeByte({OPTIONAL_PRESENT})",
                    f"    {inner}.write(value, out)",
                    "}",
                ]))
            elif isinstance(t, SequenceType):
                inner = self.converter(t.inner)
                lines.extend(self._converter_object(name, kt_type, [
                    "val count = buf.getInt()",
                    'if (count < 0) throw InternalException("negative sequence length $count")',
                    f"return List(count) {{ {inner}.read(buf) }}",
                ], [
                    "out.writeInt(value.size)",
                    f"value.forEach {{ {inner}.write(it, out) }}",
                ]))
            elif isinstance(t, MapType):
                key, value = self.converter(t.key), self.converter(t.value)
                lines.extend(self._converter_object(name, kt_type, [
                    "val count = buf.getInt()",
                    'if (count < 0) throw InternalException("negative map length $count")',
                    f"val result = LinkedHashMap<{self.kotlin_type(t.key)}, {self.kotlin_type(t.value)}>(count)",
                    "repeat(count) {",
                    f"    val key = {key}.read(buf)",
                    f"    result[key] = {value}.read(buf)",
                    "}",
                    "return result",
                ], [
                    "out.writeInt(value.size)",
                    "value.forEach { (k, v) ->",
                    f"    {key}.write(k, out)",
                    f"    {value}.write(v, out)",
                    "}",
                ]))
        return lines

    # ── free functions ──────────────────────────────────────────

    def _generate_functions(self) -> list[str]:
        lines = []
        for func in self.top_level_functions():
            fn = func.source
            ret = self._return_decl(fn.return_type)
            lines.append(f"fun {_safe(camel_case(fn.name))}({self._params_decl(fn.params)}){ret} {{")
            lines.extend(_block("    ", self._return_stmt(fn.return_type, self._call_expr(func))))
            lines.extend(["}", ""])
        return lines

    # ── lowering / lifting ──────────────────────────────────────

    def _call_expr(self, func: FFIFunction, receiver: Optional[str] = None) -> str:
        """Native call expression with its arguments lowered.

        With consumed buffers the call is wrapped in ``run { }``: the other
        arguments are lowered into locals first, then the consumed buffers
        are copied, so a rejected argument never leaves a native buffer behind.
        """
        params = {p.name: p for p in func.source.params}
        args = []
        lowered = []
        owned = []
        for a in func.value_arguments:
            local = f"lowered{class_name(a.name)}"
            args.append(local)
            if a.name == RECEIVER_NAME and receiver is not None and a.type == FFIType.HANDLE:
                lowered.append((local, receiver))
                receiver = None
                continue
            p = params[a.name]
            value = _safe(camel_case(p.name))
            if a.ownership == Ownership.TRANSFERRED and self._is_buffer(p.type):
                owned.append((local, f"lowerOwned({self.converter(p.type)}, {value})"))
            else:
                lowered.append((local, self._lower_expr(p.type, value)))

        if not owned:
            inline = dict(lowered)
            return self._invoke(func, [inline[local] for local in args])

        lines = ["run {"]
        lines.extend(f"    val {local} = {expr}" for local, expr in lowered)
        if len(owned) == 1:
            local, expr = owned[0]
            lines.append(f"    val {local} = {expr}")
        else:
            lowerings = ", ".join(f"{{ {expr} }}" for _, expr in owned)
            lines.append(f"    val owned = lowerOwnedAll({lowerings})")
            lines.extend(f"    val {local} = owned[{i}]" for i, (local, _) in enumerate(owned))
        lines.append(f"    {self._invoke(func, args)}")
        lines.append("}")
        return "\n".join(lines)

    def _invoke(self, func: FFIFunction, args: list[str]) -> str:
        target = f"{self.lib_interface}.INSTANCE.{func.name}"
        if func.error_type:
            return f"callWithError({func.error_type}) {{ {STATUS} -> {target}({', '.join(args + [STATUS])}) }}"
        return f"{target}({', '.join(args)})"

    def _is_buffer(self, t: Type) -> bool:
        return self.mapper.conversion(t) in (Conversion.RAW_BUFFER, Conversion.SERIALIZED)

    def _lower_expr(self, t: Type, value: str) -> str:
        conversion = self.mapper.conversion(t)
        if conversion == Conversion.DIRECT:
            return f"{value}{PRIMITIVES[self._primitive(t).name][4]}"
        if conversion == Conversion.BOOL_BYTE:
            return f"lowerBoolean({value})"
        if conversion == Conversion.HANDLE:
            return f"{self.converter(t)}.lower({value})"
        return f"lowerBorrowed({self.converter(t)}, {value})"

    def _lift_expr(self, t: Type, value: str) -> str:
        conversion = self.mapper.conversion(t)
        if conversion == Conversion.DIRECT:
            suffix = PRIMITIVES[self._primitive(t).name][5]
            return f"{value}{suffix}" if not suffix else f"({value}){suffix}"
        if conversion == Conversion.BOOL_BYTE:
            return f"liftBoolean({value})"
        if conversion == Conversion.HANDLE:
            return f"{self.converter(t)}.lift({value})"
        return f"liftBuffer({self.converter(t)}, {value})"

    def _return_stmt(self, t: Optional[Type], call: str) -> str:
        if t is None:
            return call
        return f"return {self._lift_expr(t, call)}"

    def _return_decl(self, t: Optional[Type]) -> str:
        return "" if t is None else f": {self.kotlin_type(t)}"

    @staticmethod
    def _primitive(t: Type) -> Primitive:
        while isinstance(t, BoxedType):
            t = t.inner
        return t

    # ── naming ──────────────────────────────────────────────────

    def converter(self, t: Type) -> str:
        if isinstance(t, BoxedType):
            return self.converter(t.inner)
        return f"FfiConverter{t.canonical_name}"

    def kotlin_type(self, t: Type) -> str:
        """Convert interface type to Kotlin type"""
        if isinstance(t, Primitive):
            return PRIMITIVES[t.name][0]
        if isinstance(t, StringType):
            return "String"
        if isinstance(t, BytesType):
            return "ByteArray"
        if isinstance(t, OptionalType):
            return f"{self.kotlin_type(t.inner)}?"
        if isinstance(t, SequenceType):
            return f"List<{self.kotlin_type(t.inner)}>"
        if isinstance(t, MapType):
            return f"Map<{self.kotlin_type(t.key)}, {self.kotlin_type(t.value)}>"
        if isinstance(t, BoxedType):
            return self.kotlin_type(t.inner)
        return t.name

    def _nullable(self, t: Type) -> str:
        kt_type = self.kotlin_type(t)
        return kt_type if kt_type.endswith("?") else f"{kt_type}?"

    def _field_name(self, f: Field) -> str:
        return _safe(camel_case(f.name))

    def _params_decl(self, params) -> str:
        return ", ".join(f"{_safe(camel_case(p.name))}: {self.kotlin_type(p.type)}" for p in params)
