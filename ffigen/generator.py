"""Code Emission Engine: checks, derives and renders every backend before writing"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .c_generator import CGenerator
from .common_generator import CommonGenerator
from .config import GeneratorConfig
from .deriver import SignatureDeriver
from .errors import ConfigError
from .ffi_types import FFIFunction
from .kotlin_generator import KotlinGenerator
from .python_generator import PythonGenerator
from .type_mapper import TypeMapper
from .types import InterfaceModel, NamedType

logger = logging.getLogger(__name__)

BACKENDS: dict[str, type[CommonGenerator]] = {
    CGenerator.name: CGenerator,
    PythonGenerator.name: PythonGenerator,
    KotlinGenerator.name: KotlinGenerator,
}


class BindingGenerator:
    """One all-or-nothing generation run over a model"""

    def __init__(self, model: InterfaceModel, config: Optional[GeneratorConfig] = None):
        self.config = config or GeneratorConfig()
        if self.config.namespace and self.config.namespace != model.namespace:
            model = replace(model, namespace=self.config.namespace)
        self.model = model
        self.mapper: Optional[TypeMapper] = None
        self.functions: list[FFIFunction] = []

    def check(self) -> None:
        """Resolve every type the model uses; the first defect aborts"""
        self.mapper = TypeMapper(self.model)
        for d in self.model.definitions():
            self.mapper.check(NamedType(d.name), d.name)
        for owner, fn in self.model.iter_callables():
            context = fn.name if owner is None else f"{owner.name}.{fn.name}"
            for p in fn.params:
                self.mapper.check(p.type, f"{context}({p.name})")
            if fn.return_type is not None:
                self.mapper.check(fn.return_type, f"{context} return")
            if fn.throws is not None:
                self.mapper.resolve_error(fn.throws, context)

    def derive(self) -> list[FFIFunction]:
        if self.mapper is None:
            self.check()
        self.functions = SignatureDeriver(self.mapper).derive_all()
        return self.functions

    def render(self) -> dict[str, str]:
        """Every output file of every configured backend, in memory"""
        unknown = [b for b in self.config.backends if b not in BACKENDS]
        if unknown:
            raise ConfigError(
                f"unknown backend(s): {', '.join(unknown)} "
                f"(available: {', '.join(BACKENDS)})"
            )
        functions = self.derive()

        outputs: dict[str, str] = {}
        for name in self.config.backends:
            backend = BACKENDS[name](self.model, self.mapper, functions, self.config)
            for path, content in backend.generate().items():
                outputs[path] = content
            logger.debug("rendered %s backend", name)
        return outputs

    def write(self, out_dir: Optional[Path] = None) -> list[Path]:
        """Render, then write the files whose content changed"""
        outputs = self.render()
        out_dir = Path(out_dir or self.config.out_dir)

        written = []
        for rel_path, content in outputs.items():
            path = out_dir / rel_path
            if path.exists() and path.read_text() == content:
                logger.debug("Unchanged: %s", path)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            logger.info("Generated: %s", path)
            written.append(path)
        return written
