# bootstrap/bundling/manifest.py
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

ROLE_RUNTIME = 'runtime'
ROLE_INSTRUCTIONS = 'instructions'
ROLE_MAIN = 'main'


class BundleModule(BaseModel):
    """One statically inlined module of a bundle."""
    specifier: str
    role: str
    filename: Optional[str] = None
    source: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class ExposeBinding(BaseModel):
    specifier: str
    alias: str = Field(description="Public name the module is requireable by after bundling")

    model_config = ConfigDict(frozen=True, extra="forbid")


class BundleManifest(BaseModel):
    """Bundler-facing description of a compiled application."""
    modules: Tuple[BundleModule, ...] = ()
    exposes: Tuple[ExposeBinding, ...] = ()
    main: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    def module(self, specifier: str) -> BundleModule:
        for module in self.modules:
            if module.specifier == specifier:
                return module
        raise KeyError(specifier)

    def specifiers(self, role: Optional[str] = None) -> List[str]:
        return [m.specifier for m in self.modules if role is None or m.role == role]

    def dependencies(self) -> List[Tuple[str, str]]:
        """Enumerable ``(specifier, role)`` pairs, in bundle order."""
        return [(m.specifier, m.role) for m in self.modules]
