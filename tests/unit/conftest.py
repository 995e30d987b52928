import sys
import textwrap
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolate_artifact_modules(tmp_path_factory):
    """Forget modules loaded from temporary directories so names can be reused."""
    base = str(tmp_path_factory.getbasetemp().resolve())
    yield
    for name, module in list(sys.modules.items()):
        if (getattr(module, "__file__", None) or "").startswith(base):
            del sys.modules[name]


@pytest.fixture
def write_module(tmp_path):
    """Write a dedented Python module into tmp_path and return its path."""

    def _write(name: str, source: str, directory: Path | None = None) -> Path:
        path = (directory or tmp_path) / f"{name}.py"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write
