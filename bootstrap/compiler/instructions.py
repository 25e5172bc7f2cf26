# bootstrap/compiler/instructions.py

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

ROLE_BOOT_SCRIPT = 'boot-script'
ROLE_MODEL_SCRIPT = 'model-script'

DOMAIN_APP = 'app'
DOMAIN_DATASOURCES = 'datasources'
DOMAIN_MODELS = 'models'
DOMAIN_MIDDLEWARE = 'middleware'

# Later domains may reference names defined by earlier ones.
DOMAIN_PRECEDENCE: Tuple[str, ...] = (DOMAIN_APP, DOMAIN_DATASOURCES, DOMAIN_MODELS, DOMAIN_MIDDLEWARE)

DEFINE_KIND_BY_DOMAIN: Dict[str, str] = {
    DOMAIN_DATASOURCES: 'datasource',
    DOMAIN_MODELS: 'model',
    DOMAIN_MIDDLEWARE: 'middleware',
}


class ScriptRef(BaseModel):
    """A script file referenced by an instruction."""
    path: str
    specifier: str = Field(description="Relative POSIX specifier, stable after bundling")

    model_config = ConfigDict(frozen=True, extra="forbid")


class BootScriptRef(ScriptRef):
    ordinal: Optional[int] = Field(None, description="None places the script in the unordered tier")
    relative_path: str

    @property
    def sort_key(self) -> Tuple[bool, int, str]:
        return (self.ordinal is None, self.ordinal or 0, self.relative_path)


class ConfigureInstruction(BaseModel):
    type: Literal['configure'] = 'configure'
    domain: str
    entries: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")

    def describe(self) -> str:
        return f"configure {self.domain} ({len(self.entries)} entries)"


class DefineInstruction(BaseModel):
    type: Literal['define'] = 'define'
    kind: Literal['datasource', 'model', 'middleware']
    name: str
    definition: Dict[str, Any] = Field(default_factory=dict)
    script: Optional[ScriptRef] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    def describe(self) -> str:
        return f"define {self.kind} '{self.name}'"


class ExecuteScriptInstruction(BaseModel):
    type: Literal['execute'] = 'execute'
    script: BootScriptRef

    model_config = ConfigDict(frozen=True, extra="forbid")

    def describe(self) -> str:
        return f"execute {self.script.specifier}"


Instruction = Annotated[
    Union[ConfigureInstruction, DefineInstruction, ExecuteScriptInstruction],
    Field(discriminator='type'),
]


class InstructionSet(BaseModel):
    """Ordered, immutable boot instructions produced by one compile invocation."""
    app_root: str
    env: Optional[str] = None
    instructions: Tuple[Instruction, ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __len__(self) -> int:
        return len(self.instructions)

    def to_json(self) -> str:
        return self.model_dump_json()

    def to_data(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> 'InstructionSet':
        return cls.model_validate(data)

    def scripts(self) -> List[BootScriptRef]:
        return [i.script for i in self.instructions if isinstance(i, ExecuteScriptInstruction)]

    def definitions(self, kind: Optional[str] = None) -> List[DefineInstruction]:
        return [
            i for i in self.instructions
            if isinstance(i, DefineInstruction) and (kind is None or i.kind == kind)
        ]

    def module_refs(self) -> List[Tuple[ScriptRef, str]]:
        """Every script the set references, paired with its role, in instruction order."""
        refs: List[Tuple[ScriptRef, str]] = []
        for instruction in self.instructions:
            if isinstance(instruction, DefineInstruction) and instruction.script is not None:
                refs.append((instruction.script, ROLE_MODEL_SCRIPT))
            elif isinstance(instruction, ExecuteScriptInstruction):
                refs.append((instruction.script, ROLE_BOOT_SCRIPT))
        return refs
