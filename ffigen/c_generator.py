"""C Generator - generates the C header declaring the native core's exports"""

from .common_generator import AUTOGEN_NOTICE, CommonGenerator
from .ffi_types import FFIFunction, FFIType
from .protocol import BYTE_VIEW, StructLayout


class CGenerator(CommonGenerator):
    """Generates a C header: protocol structs plus one prototype per symbol"""

    name = 'c'

    FFI_TYPES = {
        FFIType.INT8: 'int8_t',
        FFIType.UINT8: 'uint8_t',
        FFIType.INT16: 'int16_t',
        FFIType.UINT16: 'uint16_t',
        FFIType.INT32: 'int32_t',
        FFIType.UINT32: 'uint32_t',
        FFIType.INT64: 'int64_t',
        FFIType.UINT64: 'uint64_t',
        FFIType.FLOAT32: 'float',
        FFIType.FLOAT64: 'double',
        FFIType.BOOL: 'int8_t',
        FFIType.BUFFER: 'BufferRecord',
        FFIType.BYTE_VIEW: 'ByteView',
        FFIType.HANDLE: 'uint64_t',
        FFIType.ERROR_RECORD: 'ErrorRecord*',
    }

    FIELD_TYPES = {
        'i8': 'int8_t',
        'i16': 'int16_t',
        'i32': 'int32_t',
        'i64': 'int64_t',
        'ptr': 'uint8_t*',
    }

    @property
    def api_macro(self) -> str:
        return self.option('api_macro') or f"{self.namespace.upper()}_API"

    @property
    def export_macro(self) -> str:
        return self.api_macro.replace("_API", "_EXPORTS")

    def generate(self) -> dict[str, str]:
        return {f"{self.namespace}.h": self.generate_header()}

    def generate_header(self) -> str:
        lines = self._header_preamble()
        lines.extend(self._generate_structs())
        lines.extend(self._generate_function_decls())
        lines.extend(self._header_postamble())
        return "\n".join(lines)

    def _header_preamble(self) -> list[str]:
        guard = f"{self.namespace.upper()}_H"
        return [
            f"// {AUTOGEN_NOTICE}",
            f"#ifndef {guard}",
            f"#define {guard}",
            "",
            "#include <stdint.h>",
            "",
            "#ifdef __cplusplus",
            'extern "C" {',
            "#endif",
            "",
            "#ifdef _WIN32",
            f"    #ifdef {self.export_macro}",
            f"        #define {self.api_macro} __declspec(dllexport)",
            "    #else",
            f"        #define {self.api_macro} __declspec(dllimport)",
            "    #endif",
            "#else",
            f'    #define {self.api_macro} __attribute__((visibility("default")))',
            "#endif",
            "",
        ]

    def _header_postamble(self) -> list[str]:
        return [
            "#ifdef __cplusplus",
            "}",
            "#endif",
            "",
            f"#endif // {self.namespace.upper()}_H",
            "",
        ]

    def _generate_structs(self) -> list[str]:
        # Shared by every generated header, so guard against redefinition
        lines = [
            "#ifndef FFIGEN_PROTOCOL_STRUCTS",
            "#define FFIGEN_PROTOCOL_STRUCTS",
            "",
        ]
        for layout in self.struct_layouts():
            lines.extend(self._struct_decl(layout))
        lines.extend([
            "#endif // FFIGEN_PROTOCOL_STRUCTS",
            "",
        ])
        return lines

    def _struct_decl(self, layout: StructLayout) -> list[str]:
        lines = [f"typedef struct {layout.name} {{"]
        for f in layout.fields:
            c_type = self.FIELD_TYPES.get(f.kind, f.kind)
            if f.kind == 'ptr' and layout.name == BYTE_VIEW:
                c_type = f"const {c_type}"
            lines.append(f"    {c_type} {f.name};")
        lines.append(f"}} {layout.name};")
        lines.append("")
        return lines

    def _generate_function_decls(self) -> list[str]:
        lines = []
        for func in self.functions:
            lines.append(self.function_decl(func))
        if self.functions:
            lines.append("")
        return lines

    def function_decl(self, func: FFIFunction) -> str:
        ret = self.ffi_type(func.return_type) if func.return_type else "void"
        params = ", ".join(f"{self.ffi_type(a.type)} {a.name}" for a in func.arguments) or "void"
        return f"{self.api_macro} {ret} {func.name}({params});"
