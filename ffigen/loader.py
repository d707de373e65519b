"""Loader for the serialized (JSON) Interface Model"""

import json
import re
from typing import Any, Optional

from .errors import ModelFormatError
from .types import (
    PRIMITIVE_NAMES, BoxedType, BytesType, Constructor, Enum, ErrorType,
    Field, Function, InterfaceModel, MapType, Method, NamedType, Object,
    OptionalType, Param, Primitive, Record, SequenceType, StringType, Type,
    Variant,
)

_TOKEN = re.compile(r'\s*(?:(\w+)|(.))')


def parse_type(expr: str) -> Type:
    """Parse a type expression such as ``map<string, sequence<Point>>``"""
    tokens = _tokenize(expr)
    t, pos = _parse_type(tokens, 0, expr)
    if pos != len(tokens):
        raise ModelFormatError(f"unexpected '{tokens[pos]}' in type '{expr}'")
    return t


def _tokenize(expr: str) -> list[str]:
    tokens = []
    for m in _TOKEN.finditer(expr):
        word, punct = m.groups()
        if word:
            tokens.append(word)
        elif punct and not punct.isspace():
            if punct not in '<>,':
                raise ModelFormatError(f"invalid character '{punct}' in type '{expr}'")
            tokens.append(punct)
    if not tokens:
        raise ModelFormatError("empty type expression")
    return tokens


def _expect(tokens: list[str], pos: int, tok: str, expr: str) -> int:
    if pos >= len(tokens) or tokens[pos] != tok:
        raise ModelFormatError(f"expected '{tok}' in type '{expr}'")
    return pos + 1


def _parse_type(tokens: list[str], pos: int, expr: str) -> tuple[Type, int]:
    if pos >= len(tokens):
        raise ModelFormatError(f"truncated type '{expr}'")
    head = tokens[pos]
    pos += 1
    if head in ('<', '>', ','):
        raise ModelFormatError(f"unexpected '{head}' in type '{expr}'")

    if head in ('optional', 'sequence', 'box'):
        pos = _expect(tokens, pos, '<', expr)
        inner, pos = _parse_type(tokens, pos, expr)
        pos = _expect(tokens, pos, '>', expr)
        wrapper = {'optional': OptionalType, 'sequence': SequenceType, 'box': BoxedType}[head]
        return wrapper(inner), pos
    if head == 'map':
        pos = _expect(tokens, pos, '<', expr)
        key, pos = _parse_type(tokens, pos, expr)
        pos = _expect(tokens, pos, ',', expr)
        value, pos = _parse_type(tokens, pos, expr)
        pos = _expect(tokens, pos, '>', expr)
        return MapType(key, value), pos

    if head in PRIMITIVE_NAMES:
        return Primitive(head), pos
    if head == 'string':
        return StringType(), pos
    if head == 'bytes':
        return BytesType(), pos
    return NamedType(head), pos


class ModelLoader:
    """Builds an InterfaceModel from its JSON hand-off form"""

    def __init__(self, content: str):
        try:
            self.data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ModelFormatError(f"invalid model JSON: {e}") from e
        if not isinstance(self.data, dict):
            raise ModelFormatError("model root must be an object")

    def load(self) -> InterfaceModel:
        namespace = self._require(self.data, 'namespace', 'model')
        return InterfaceModel(
            namespace=namespace,
            records=[self._record(d) for d in self.data.get('records', [])],
            enums=[Enum(d['name'], self._variants(d)) for d in self._named(self.data.get('enums', []), 'enum')],
            errors=[ErrorType(d['name'], self._variants(d)) for d in self._named(self.data.get('errors', []), 'error')],
            objects=[self._object(d) for d in self.data.get('objects', [])],
            functions=[self._function(d) for d in self.data.get('functions', [])],
        )

    def _require(self, d: dict, key: str, context: str) -> Any:
        if not isinstance(d, dict) or key not in d:
            raise ModelFormatError(f"missing '{key}' in {context}")
        return d[key]

    def _named(self, items: list, context: str) -> list[dict]:
        for d in items:
            self._require(d, 'name', context)
        return items

    def _type(self, expr: Any, context: str) -> Type:
        if not isinstance(expr, str):
            raise ModelFormatError(f"type of {context} must be a string")
        return parse_type(expr)

    def _optional_type(self, expr: Optional[str], context: str) -> Optional[Type]:
        if expr is None:
            return None
        return self._type(expr, context)

    def _fields(self, d: dict, context: str) -> list[Field]:
        fields = []
        for f in d.get('fields', []):
            name = self._require(f, 'name', context)
            fields.append(Field(name, self._type(self._require(f, 'type', context), f'{context}.{name}')))
        return fields

    def _record(self, d: dict) -> Record:
        name = self._require(d, 'name', 'record')
        return Record(name, self._fields(d, name))

    def _variants(self, d: dict) -> list[Variant]:
        variants = []
        for v in d.get('variants', []):
            if isinstance(v, str):
                variants.append(Variant(v))
            else:
                name = self._require(v, 'name', d['name'])
                variants.append(Variant(name, self._fields(v, f"{d['name']}.{name}")))
        return variants

    def _params(self, d: dict, context: str) -> list[Param]:
        params = []
        for p in d.get('params', []):
            name = self._require(p, 'name', context)
            params.append(Param(
                name=name,
                type=self._type(self._require(p, 'type', context), f'{context}({name})'),
                consumed=bool(p.get('consumed', False)),
            ))
        return params

    def _function(self, d: dict) -> Function:
        name = self._require(d, 'name', 'function')
        return Function(
            name=name,
            params=self._params(d, name),
            return_type=self._optional_type(d.get('returns'), f'{name} return'),
            throws=d.get('throws'),
        )

    def _object(self, d: dict) -> Object:
        name = self._require(d, 'name', 'object')
        obj = Object(name)
        for c in d.get('constructors', []):
            ctor_name = c.get('name', 'new')
            obj.constructors.append(Constructor(
                name=ctor_name,
                params=self._params(c, f'{name}.{ctor_name}'),
                throws=c.get('throws'),
            ))
        for m in d.get('methods', []):
            meth_name = self._require(m, 'name', name)
            obj.methods.append(Method(
                name=meth_name,
                params=self._params(m, f'{name}.{meth_name}'),
                return_type=self._optional_type(m.get('returns'), f'{name}.{meth_name} return'),
                throws=m.get('throws'),
            ))
        return obj
