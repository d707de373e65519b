"""FFI Signature Deriver"""

import logging
from typing import Optional

from .errors import DuplicateNameError
from .ffi_types import FFIArgument, FFIFunction, FFIType, Ownership
from .protocol import support_functions
from .type_mapper import TypeMapper
from .types import Callable, Constructor, Method, Object

logger = logging.getLogger(__name__)

ERROR_OUT_NAME = 'out_err'
RECEIVER_NAME = 'handle'


class SignatureDeriver:
    """Derives one FFIFunction per interface callable"""

    def __init__(self, mapper: TypeMapper):
        self.mapper = mapper
        self.namespace = mapper.model.namespace

    def symbol_name(self, fn: Callable, owner: Optional[Object] = None) -> str:
        if owner is None:
            return f'{self.namespace}_fn_{fn.name}'
        return f'{self.namespace}_{owner.name}_{fn.name}'

    def free_name(self, owner: Object) -> str:
        return f'{self.namespace}_{owner.name}_free'

    def derive(self, fn: Callable, owner: Optional[Object] = None) -> FFIFunction:
        context = fn.name if owner is None else f'{owner.name}.{fn.name}'
        args = []

        if isinstance(fn, Method):
            args.append(FFIArgument(RECEIVER_NAME, FFIType.HANDLE, Ownership.BORROWED))

        for p in fn.params:
            ffi_type = self.mapper.map(p.type, f'{context}({p.name})')
            ownership = Ownership.TRANSFERRED if p.consumed else Ownership.BORROWED
            args.append(FFIArgument(p.name, ffi_type, ownership))

        if isinstance(fn, Constructor):
            return_type = FFIType.HANDLE
        elif fn.return_type is not None:
            return_type = self.mapper.map(fn.return_type, f'{context} return')
        else:
            return_type = None

        if fn.throws is not None:
            self.mapper.resolve_error(fn.throws, context)
            args.append(FFIArgument(ERROR_OUT_NAME, FFIType.ERROR_RECORD, Ownership.CALLER_OWNED))

        return FFIFunction(
            name=self.symbol_name(fn, owner),
            arguments=tuple(args),
            return_type=return_type,
            error_type=fn.throws,
            source=fn,
            owner=owner,
        )

    def derive_free(self, owner: Object) -> FFIFunction:
        """Release function for an object's handle"""
        return FFIFunction(
            name=self.free_name(owner),
            arguments=(FFIArgument(RECEIVER_NAME, FFIType.HANDLE, Ownership.TRANSFERRED),),
            owner=owner,
        )

    def derive_all(self) -> list[FFIFunction]:
        """Support functions, then every callable in declaration order.

        Each object's release function follows its methods.
        """
        model = self.mapper.model
        functions = support_functions(self.namespace)
        for fn in model.functions:
            functions.append(self.derive(fn))
        for obj in model.objects:
            for ctor in obj.constructors:
                functions.append(self.derive(ctor, obj))
            for meth in obj.methods:
                functions.append(self.derive(meth, obj))
            functions.append(self.derive_free(obj))

        seen = set()
        for f in functions:
            if f.name in seen:
                raise DuplicateNameError(f.name, 'symbol')
            seen.add(f.name)
            logger.debug("derived %s%s -> %s", f.name,
                         [a.type.value for a in f.arguments],
                         f.return_type.value if f.return_type else 'void')
        return functions
