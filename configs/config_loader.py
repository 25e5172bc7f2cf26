from __future__ import annotations
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Final, List, Optional, Sequence, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field

from bootstrap.exceptions import ConfigParseError
from configs.config_utils import ARRAY_REPLACE, ConfigMerger

__all__: Sequence[str] = ('ConfigDocument', 'ConfigResolver', 'DOMAIN_FILES', 'ENV_VARIABLE')
logger = logging.getLogger(__name__)

ENV_VARIABLE: Final[str] = 'BOOT_ENV'
LOCAL_OVERLAY: Final[str] = 'local'

# domain -> file stem under the application root
DOMAIN_FILES: Final[Dict[str, str]] = {
    'app': 'config',
    'datasources': 'datasources',
    'models': 'models',
    'middleware': 'middleware',
}
_SUFFIXES: Final[Tuple[str, ...]] = ('.yaml', '.yml', '.json')
_MODEL_DIR: Final[str] = 'models'

_RE_ENV_DEFAULT: Final[re.Pattern[str]] = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*):?-(.*?)\}')
_RE_CAMEL: Final[re.Pattern[str]] = re.compile('(?<=[a-z0-9])(?=[A-Z])')


def _substitute_default(match: re.Match[str]) -> str:
    # `${VAR:-default}` falls back when VAR is unset or empty
    return os.environ.get(match.group(1)) or match.group(2)


def _interpolate_env(value: str) -> str:
    expanded = os.path.expandvars(_RE_ENV_DEFAULT.sub(_substitute_default, value))
    if expanded != value:
        logger.debug("Env expand: '%s' -> '%s'", value, expanded)
    elif '${' in value:
        logger.warning("Unresolved env var in '%s'", value)
    return expanded


def _expand_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: _expand_tree(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_expand_tree(v) for v in node]
    if isinstance(node, str):
        return _interpolate_env(node)
    return node


def _load_document(path: Path, domain: str) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigParseError(f'Cannot read configuration file: {exc}', domain=domain, path=str(path)) from exc

    try:
        if path.suffix.lower() == '.json':
            data = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigParseError(f'Malformed configuration file: {exc}', domain=domain, path=str(path)) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParseError(
            f'Configuration file must contain a top-level mapping, got {type(data).__name__}',
            domain=domain, path=str(path),
        )
    _check_entry_names(data, domain, path)
    return data


def _find_file(directory: Path, stem: str) -> Optional[Path]:
    for suffix in _SUFFIXES:
        candidate = directory / f'{stem}{suffix}'
        if candidate.is_file():
            return candidate
    return None


def _check_entry_names(entries: Dict[Any, Any], domain: str, path: Path) -> None:
    invalid = [name for name in entries if not isinstance(name, str)]
    if invalid:
        raise ConfigParseError(
            f'Entry names must be strings, got {invalid!r}', domain=domain, path=str(path),
        )


def _model_file_stems(name: str) -> List[str]:
    snake = _RE_CAMEL.sub('_', name).lower()
    stems = [name, name.lower(), snake.replace('_', '-'), snake]
    return list(dict.fromkeys(stems))


class ConfigDocument(BaseModel):
    """Merged configuration for one domain."""
    domain: str
    entries: Dict[str, Any] = Field(default_factory=dict)
    source_path: Optional[str] = None
    overlay_paths: Tuple[str, ...] = ()
    env: Optional[str] = None
    scripts: Dict[str, str] = Field(default_factory=dict, description="Entry name -> customization script path")

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_empty(self) -> bool:
        return not self.entries


class ConfigResolver:
    """
    Resolve the per-domain configuration of an application root.

    For every domain the base file is loaded first, then the ``local`` overlay,
    then the ``<env>`` overlay. Overlays are deep-merged over the base; all
    files are optional.
    """

    def __init__(self, app_root: Path | str, env: Optional[str] = None, array_merge: str = ARRAY_REPLACE) -> None:
        self.app_root = Path(app_root).resolve()
        self.env = env if env is not None else os.environ.get(ENV_VARIABLE) or None
        self.array_merge = array_merge

    def resolve(self) -> Dict[str, ConfigDocument]:
        logger.info("Resolving configuration in %s (env=%s)", self.app_root, self.env or 'base')
        documents = {domain: self.resolve_domain(domain) for domain in DOMAIN_FILES}
        logger.info("✓ Configuration resolved: %s",
                    {d: len(doc.entries) for d, doc in documents.items()})
        return documents

    def resolve_domain(self, domain: str) -> ConfigDocument:
        stem = DOMAIN_FILES.get(domain)
        if stem is None:
            raise ValueError(f"Unknown configuration domain '{domain}'. Known: {list(DOMAIN_FILES)}")

        base_path = _find_file(self.app_root, stem)
        entries: Dict[str, Any] = {}
        if base_path is not None:
            entries = ConfigMerger.merge(entries, _load_document(base_path, domain), f'{domain}_base', self.array_merge)
            logger.debug('Loaded base %s config: %s', domain, base_path)
        else:
            logger.debug('No base %s config in %s', domain, self.app_root)

        overlays: List[str] = []
        for overlay in self._overlay_names():
            path = _find_file(self.app_root, f'{stem}.{overlay}')
            if path is None:
                continue
            entries = ConfigMerger.merge(entries, _load_document(path, domain), f'{domain}_{overlay}', self.array_merge)
            overlays.append(str(path))
            logger.info('Merged %s overlay (%s): %s', domain, overlay, path)

        entries = _expand_tree(entries)
        scripts: Dict[str, str] = {}
        if domain == 'models':
            entries, scripts = self._attach_model_definitions(entries)

        return ConfigDocument(
            domain=domain,
            entries=entries,
            source_path=str(base_path) if base_path else None,
            overlay_paths=tuple(overlays),
            env=self.env,
            scripts=scripts,
        )

    def _overlay_names(self) -> List[str]:
        names = [LOCAL_OVERLAY]
        if self.env and self.env != LOCAL_OVERLAY:
            names.append(self.env)
        return names

    def _attach_model_definitions(self, entries: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, str]]:
        model_dir = self.app_root / _MODEL_DIR
        if not model_dir.is_dir():
            return entries, {}

        attached: Dict[str, Any] = {}
        scripts: Dict[str, str] = {}
        for name, entry in entries.items():
            if str(name).startswith('_') or not isinstance(entry, (dict, type(None))):
                attached[name] = entry
                continue

            definition: Dict[str, Any] = {}
            for stem in _model_file_stems(name):
                path = _find_file(model_dir, stem)
                if path is not None:
                    definition = _expand_tree(_load_document(path, 'models'))
                    logger.debug("Loaded model definition for '%s': %s", name, path)
                    break
            attached[name] = ConfigMerger.merge(definition, entry or {}, f'model_{name}', self.array_merge)

            for stem in _model_file_stems(name):
                script = model_dir / f'{stem}.py'
                if script.is_file():
                    scripts[name] = str(script)
                    break

        return attached, scripts
