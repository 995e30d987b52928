"""Loading test artifacts (Python modules) from disk.

Artifacts are executed through :class:`ArtifactLoader`. While artifacts
are loaded, :class:`ArtifactFinder` sits on ``sys.meta_path`` and resolves
top-level imports relative to the directory of the artifact that makes
them, so an artifact can import its sibling modules without any
``sys.path`` setup.
"""

from __future__ import annotations

import importlib.abc
import importlib.machinery
import importlib.util
import logging
import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType

from runtests.config import read_artifact_settings
from runtests.errors import ArtifactLoadError


logger = logging.getLogger(__name__)


@dataclass
class TestArtifact:
    """A loaded test module and its settings."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    name: str
    path: Path
    module: ModuleType
    settings: dict[str, str] = field(default_factory=dict)


class ArtifactLoader(importlib.abc.SourceLoader):
    """Source loader for artifact modules and the modules they import."""

    def __init__(self, fullname: str, path: Path) -> None:
        self.fullname = fullname
        self.path = path

    def get_filename(self, fullname: str) -> str:
        return str(self.path)

    def get_data(self, path: str) -> bytes:
        return Path(path).read_bytes()


def _requesting_directory() -> Path | None:
    """Directory of the artifact module whose code is importing right now."""
    frame = sys._getframe(1)
    while frame is not None:
        loader = frame.f_globals.get("__loader__")
        if isinstance(loader, ArtifactLoader):
            return loader.path.parent
        frame = frame.f_back
    return None


class ArtifactFinder(importlib.abc.MetaPathFinder):
    """Finds modules next to the artifact that imports them."""

    def find_spec(
        self,
        fullname: str,
        path: Sequence[str] | None,
        target: ModuleType | None = None,
    ) -> importlib.machinery.ModuleSpec | None:
        if path is not None or "." in fullname:
            return None
        directory = _requesting_directory()
        if directory is None:
            return None
        for candidate, is_package in (
            (directory / f"{fullname}.py", False),
            (directory / fullname / "__init__.py", True),
        ):
            if candidate.is_file():
                logger.debug("Resolved module %s to %s", fullname, candidate)
                return importlib.util.spec_from_file_location(
                    fullname,
                    candidate,
                    loader=ArtifactLoader(fullname, candidate),
                    submodule_search_locations=[str(candidate.parent)] if is_package else None,
                )
        return None


@contextmanager
def artifact_imports() -> Iterator[ArtifactFinder]:
    """Install an :class:`ArtifactFinder` for the duration of the block."""
    finder = ArtifactFinder()
    sys.meta_path.append(finder)
    try:
        yield finder
    finally:
        sys.meta_path.remove(finder)


def load_artifact(path: Path | str, settings_path: Path | None = None) -> TestArtifact:
    """Load the module at ``path``.

    Raises ArtifactLoadError if the file, or a module it imports, is missing.
    Other errors raised while executing the module propagate unchanged.
    """
    path = Path(path).resolve()
    if not path.is_file():
        msg = f"Artifact not found: {path}"
        raise ArtifactLoadError(msg, path)

    name = path.stem
    loader = ArtifactLoader(name, path)
    spec = importlib.util.spec_from_file_location(name, path, loader=loader)
    if spec is None:
        msg = f"Cannot load module from {path}"
        raise ArtifactLoadError(msg, path)
    module = importlib.util.module_from_spec(spec)
    previous = sys.modules.get(name)
    sys.modules[name] = module
    try:
        loader.exec_module(module)
    except ModuleNotFoundError as err:
        if previous is None:
            sys.modules.pop(name, None)
        else:
            sys.modules[name] = previous
        msg = f"Dependent module '{err.name}' of {path.name} not found in {path.parent}"
        raise ArtifactLoadError(msg, path.parent / f"{err.name}.py") from err

    logger.debug("Loaded artifact %s from %s", name, path)
    return TestArtifact(name=name, path=path, module=module, settings=read_artifact_settings(path, settings_path))
