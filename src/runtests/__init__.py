"""runtests - a standalone runner for xUnit-style test fixtures."""

from .config import ConfigurationStore, RunnerSettings, TestTarget, load_targets
from .discovery import Invocation, NameFilter, ParameterSet, discover, register_fixture
from .errors import ArtifactLoadError, ConfigurationError, ResolutionError
from .markers import (
    fact,
    inline_data,
    member_data,
    one_time_setup,
    retry_skippable_fact,
    setup,
    test,
    test_case,
    theory,
)
from .output import OutputCollector, OutputHelper
from .resolver import Resolver, constructor
from .runner import ExecutionTally, Runner, run
from .version import __version__


__all__ = [
    # Markers
    "fact",
    "inline_data",
    "member_data",
    "one_time_setup",
    "retry_skippable_fact",
    "setup",
    "test",
    "test_case",
    "theory",
    # Fixture dependencies
    "ConfigurationStore",
    "OutputHelper",
    "constructor",
    # Engine
    "ArtifactLoadError",
    "ConfigurationError",
    "ExecutionTally",
    "Invocation",
    "NameFilter",
    "OutputCollector",
    "ParameterSet",
    "ResolutionError",
    "Resolver",
    "Runner",
    "RunnerSettings",
    "TestTarget",
    "discover",
    "load_targets",
    "register_fixture",
    "run",
]
