"""Runner settings, target lists and the run-scoped configuration store."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path

from dotenv import dotenv_values
from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from runtests.errors import ArtifactLoadError


logger = logging.getLogger(__name__)

SHOULDLY_HINT = (
    "Shouldly uses your source code to generate its great error messages, "
    "build your test project with full debug information to get better error messages"
)
PYTEST_DIFF_HINT = "Use -v to get more diff"


class RunnerSettings(BaseSettings):
    """Settings for a run.

    Loads from ``RUNTESTS_*`` environment variables and a ``.env`` file in
    the working directory; command-line options override both.
    """

    log_path: Path = Field(default=Path("testoutput.log"), description="Shared log file, truncated at start")
    assertion_error_names: list[str] = Field(
        default_factory=lambda: ["ShouldAssertException", "XunitException", "Failed"],
        description="Exception class names reported like assertion failures",
    )
    unhelpful_message_suffixes: list[str] = Field(
        default_factory=lambda: [SHOULDLY_HINT, PYTEST_DIFF_HINT],
        description="Text removed from assertion messages before display",
    )
    fail_on_configuration_error: bool = Field(
        default=True, description="Count methods whose parameters cannot be expanded as failures"
    )
    trace: bool = Field(default=False, description="Record an OpenTelemetry span per invocation")
    trace_output: Path = Field(default=Path("traces.jsonl"), description="JSONL file for spans")

    model_config = SettingsConfigDict(
        env_prefix="RUNTESTS_",
        env_file=".env",
        extra="ignore",
    )


class TestTarget(BaseModel):
    """One entry of the targets file."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    module: Path = Field(validation_alias=AliasChoices("module", "assembly", "Assembly"))
    settings: Path | None = Field(default=None, description="Settings file; defaults to <module>.env")


_TARGETS = TypeAdapter(list[TestTarget])


def load_targets(path: Path | str) -> list[TestTarget]:
    """Read a JSON array of targets; relative paths resolve against its directory."""
    path = Path(path)
    if not path.is_file():
        msg = f"Targets file not found: {path}"
        raise ArtifactLoadError(msg, path)
    try:
        targets = _TARGETS.validate_json(path.read_bytes())
    except ValidationError as err:
        msg = f"Invalid targets file {path}: {err}"
        raise ArtifactLoadError(msg, path) from err

    base = path.parent
    resolved = []
    for target in targets:
        module = target.module if target.module.is_absolute() else base / target.module
        settings = target.settings
        if settings is not None and not settings.is_absolute():
            settings = base / settings
        resolved.append(TestTarget(module=module, settings=settings))
    return resolved


def read_artifact_settings(module_path: Path, settings_path: Path | None = None) -> dict[str, str]:
    """Key/value settings for an artifact, from its dotenv sidecar file."""
    path = settings_path or module_path.with_suffix(".env")
    if not path.is_file():
        if settings_path is not None:
            logger.warning("Settings file %s not found", path)
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


class ConfigurationStore(Mapping[str, str]):
    """Key/value configuration shared by every fixture in one run.

    Artifact settings are merged in as artifacts start contributing tests;
    later values for a key replace earlier ones.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def merge(self, values: Mapping[str, str]) -> None:
        for key, value in values.items():
            logger.debug("Setting %s", key)
            self._values[key] = value

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)
