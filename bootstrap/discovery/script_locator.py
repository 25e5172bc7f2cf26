# bootstrap/discovery/script_locator.py
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from bootstrap.compiler.instructions import BootScriptRef
from bootstrap.exceptions import DiscoveryError

logger = logging.getLogger(__name__)

DEFAULT_BOOT_DIR = 'boot'
SCRIPT_SUFFIX = '.py'

_RE_ORDINAL = re.compile(r'^(\d+)\.')


def parse_ordinal(filename: str) -> Optional[int]:
    """Leading ``<digits>.`` prefix of a file name, e.g. ``10.setup.py`` -> 10."""
    match = _RE_ORDINAL.match(filename)
    return int(match.group(1)) if match else None


def make_specifier(path: Path, app_root: Path) -> Optional[str]:
    try:
        relative = path.relative_to(app_root)
    except ValueError:
        return None
    return f'./{relative.as_posix()}'


class BootScriptLocator:
    """Discover boot scripts under ``<app_root>/<directory>`` in a total, deterministic order."""

    def __init__(self, app_root: Path | str, directory: str = DEFAULT_BOOT_DIR, recursive: bool = True) -> None:
        self.app_root = Path(app_root).resolve()
        self.directory = self.app_root / directory
        self.recursive = recursive

    # ------------------------------------------------------------------ #
    def locate(self) -> List[BootScriptRef]:
        if not self.directory.exists():
            logger.debug("Boot script directory not found: %s", self.directory)
            return []
        if not self.directory.is_dir():
            raise DiscoveryError('Boot script location is not a directory', path=str(self.directory))

        try:
            # rglob skips unreadable directories silently; probe the top level first
            next(self.directory.iterdir(), None)
            candidates = sorted(self.directory.rglob('*') if self.recursive else self.directory.iterdir())
        except OSError as exc:
            raise DiscoveryError(f'Cannot read boot script directory: {exc}', path=str(self.directory)) from exc

        refs = [self._make_ref(fp, parse_ordinal(fp.name)) for fp in candidates if self._is_script(fp)]
        refs.sort(key=lambda r: r.sort_key)
        logger.info("%d boot script(s) found in %s", len(refs), self.directory)
        return refs

    # ------------------------------------------------------------------ #
    def locate_explicit(self, paths: Iterable[Path | str]) -> List[BootScriptRef]:
        """Explicit manifest ordering: the ordinal is the position in ``paths``."""
        refs: List[BootScriptRef] = []
        for position, raw in enumerate(paths):
            fp = Path(raw)
            if not fp.is_absolute():
                fp = self.app_root / fp
            fp = fp.resolve()
            if not fp.is_file():
                raise DiscoveryError('Boot script listed explicitly does not exist', path=str(fp))
            refs.append(self._make_ref(fp, position))
        logger.info("%d boot script(s) taken from explicit list", len(refs))
        return refs

    # ------------------------------------------------------------------ #
    def _is_script(self, fp: Path) -> bool:
        if fp.suffix != SCRIPT_SUFFIX or fp.name.startswith(('_', '.')):
            return False
        # skips __pycache__ and hidden directories
        if any(part.startswith(('_', '.')) for part in fp.relative_to(self.directory).parts[:-1]):
            return False
        return fp.is_file()

    def _make_ref(self, fp: Path, ordinal: Optional[int]) -> BootScriptRef:
        specifier = make_specifier(fp, self.app_root)
        relative = specifier[2:] if specifier else fp.as_posix()
        return BootScriptRef(
            path=str(fp),
            specifier=specifier or fp.as_posix(),
            ordinal=ordinal,
            relative_path=relative,
        )
