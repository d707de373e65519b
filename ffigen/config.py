"""Generator configuration.

Settings come from an optional TOML file::

    [ffigen]
    namespace = "arith"
    library_name = "arith"
    backends = ["c", "python", "kotlin"]
    out_dir = "generated"

    [bindings.c]
    api_macro = "ARITH_API"

    [bindings.kotlin]
    package_name = "com.example.arith"

and command-line flags override the file.
"""

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigError

DEFAULT_BACKENDS = ('c', 'python', 'kotlin')

_GENERAL_KEYS = {'namespace', 'library_name', 'backends', 'out_dir'}


@dataclass
class GeneratorConfig:
    namespace: Optional[str] = None
    library_name: Optional[str] = None
    backends: list[str] = field(default_factory=lambda: list(DEFAULT_BACKENDS))
    out_dir: Path = Path('generated')
    bindings: dict[str, dict[str, Any]] = field(default_factory=dict)

    def library_for(self, namespace: str) -> str:
        return self.library_name or namespace

    def with_overrides(self, **overrides) -> 'GeneratorConfig':
        """Copy with every non-None override applied"""
        values = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(values) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigError(f"unknown setting(s): {', '.join(sorted(unknown))}")
        if 'out_dir' in values:
            values['out_dir'] = Path(values['out_dir'])
        return replace(self, **values)

    def with_binding_option(self, backend: str, key: str, value: Any) -> 'GeneratorConfig':
        if value is None:
            return self
        bindings = {name: dict(opts) for name, opts in self.bindings.items()}
        bindings.setdefault(backend, {})[key] = value
        return replace(self, bindings=bindings)


def load_config(path: Optional[Path]) -> GeneratorConfig:
    """Read a TOML config file; no path means all defaults"""
    if path is None:
        return GeneratorConfig()
    try:
        with open(path, 'rb') as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid config {path}: {e}") from e
    return config_from_dict(data, str(path))


def config_from_dict(data: dict, source: str = '<config>') -> GeneratorConfig:
    general = data.get('ffigen', {})
    if not isinstance(general, dict):
        raise ConfigError(f"{source}: [ffigen] must be a table")
    unknown = set(general) - _GENERAL_KEYS
    if unknown:
        raise ConfigError(f"{source}: unknown key(s) in [ffigen]: {', '.join(sorted(unknown))}")

    backends = general.get('backends', list(DEFAULT_BACKENDS))
    if not isinstance(backends, list) or not all(isinstance(b, str) for b in backends):
        raise ConfigError(f"{source}: 'backends' must be a list of strings")

    bindings = data.get('bindings', {})
    if not isinstance(bindings, dict) or not all(isinstance(v, dict) for v in bindings.values()):
        raise ConfigError(f"{source}: [bindings.<backend>] entries must be tables")

    for key in ('namespace', 'library_name', 'out_dir'):
        if key in general and not isinstance(general[key], str):
            raise ConfigError(f"{source}: '{key}' must be a string")

    return GeneratorConfig(
        namespace=general.get('namespace'),
        library_name=general.get('library_name'),
        backends=list(backends),
        out_dir=Path(general.get('out_dir', 'generated')),
        bindings={name: dict(opts) for name, opts in bindings.items()},
    )
