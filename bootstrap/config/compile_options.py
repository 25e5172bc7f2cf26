from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from configs.config_utils import ARRAY_MERGE_POLICIES, ARRAY_REPLACE


@dataclass(frozen=True)
class CompileOptions:
    """Options for a single compile invocation."""
    env: Optional[str] = None
    array_merge: str = ARRAY_REPLACE
    boot_dir: str = 'boot'
    boot_scripts: Optional[List[Path]] = None
    recursive: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.array_merge not in ARRAY_MERGE_POLICIES:
            raise ValueError(f"array_merge must be one of {ARRAY_MERGE_POLICIES}, got '{self.array_merge}'")

    @classmethod
    def from_params(cls, **kwargs) -> 'CompileOptions':
        """Create CompileOptions from keyword parameters; unknown keys land in ``extra``."""
        boot_scripts = kwargs.pop('boot_scripts', None)
        known = {k: kwargs.pop(k) for k in ('env', 'array_merge', 'boot_dir', 'recursive') if k in kwargs}
        return cls(
            boot_scripts=[Path(p) for p in boot_scripts] if boot_scripts is not None else None,
            extra=kwargs,
            **known,
        )
