"""Execution engine: runs discovered invocations one at a time.

Each invocation moves through PENDING -> CONSTRUCTING -> SETTING_UP ->
INVOKING -> PASSED | FAILED -> REPORTED. Failures at any stage are
isolated to the invocation; only artifact load errors end the run.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
import traceback
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

import httpx
from rich.console import Console
from rich.control import Control
from rich.markup import escape
from rich.segment import ControlType

from runtests.artifacts import TestArtifact, artifact_imports, load_artifact
from runtests.config import ConfigurationStore, RunnerSettings, TestTarget, load_targets
from runtests.discovery import CandidateMethod, FixtureType, Invocation, NameFilter, discover, fixture_types, register_fixture
from runtests.errors import PROCESS_EXITS, ConfigurationError, InvocationError, ResolutionError, qualified_name
from runtests.markers import MarkerRegistry, default_registry
from runtests.output import OutputCollector, OutputHelper
from runtests.resolver import Resolver
from runtests.tracing import init_tracing, invocation_span


logger = logging.getLogger(__name__)

RESPONSE_HEADER = "======Response follows======"
RESPONSE_FOOTER = "============================"

_RESPONSE_LINE_BREAK = re.compile(r"\\r\\n|\r\n")
_WHITESPACE = re.compile(r"\s+")


class InvocationState(Enum):
    """Stages an invocation passes through."""

    PENDING = "pending"
    CONSTRUCTING = "constructing"
    SETTING_UP = "setting_up"
    INVOKING = "invoking"
    PASSED = "passed"
    FAILED = "failed"
    REPORTED = "reported"


@dataclass
class InvocationResult:
    """Outcome of one invocation.

    ``stage`` is the last state entered before the outcome, so a failure
    records whether it happened while constructing, setting up or invoking.
    """

    invocation: Invocation
    state: InvocationState
    stage: InvocationState
    duration_ms: float
    message: str | None = None
    error: BaseException | None = None

    @property
    def passed(self) -> bool:
        return self.state == InvocationState.PASSED


@dataclass
class ExecutionTally:
    """Pass/fail counters for a run."""

    passed: int = 0
    failed: int = 0
    results: list[InvocationResult] = field(default_factory=list)

    def record(self, result: InvocationResult) -> None:
        self.results.append(result)
        if result.passed:
            self.passed += 1
        else:
            self.failed += 1

    @property
    def total(self) -> int:
        return self.passed + self.failed


@dataclass
class _OneTimeSetup:
    done: bool = False
    error: BaseException | None = None


def invoke(method: CandidateMethod, instance: Any, arguments: Sequence[Any] = ()) -> None:
    """Call ``method`` on ``instance``; coroutine methods run to completion.

    Whatever the method raises, short of an interrupt or exit, is wrapped
    in an InvocationError.
    """
    try:
        outcome = method.function(instance, *arguments)
        if inspect.iscoroutine(outcome):
            asyncio.run(outcome)
    except PROCESS_EXITS:
        raise
    except BaseException as err:
        raise InvocationError(f"{qualified_name(type(instance))}.{method.name}") from err


def unwrap(error: BaseException) -> BaseException:
    """Strip one level of invocation wrapping."""
    if isinstance(error, InvocationError) and error.__cause__ is not None:
        return error.__cause__
    return error


def response_content(error: BaseException) -> str | None:
    """Response body carried by an HTTP-style error, if any."""
    content = getattr(error, "response_content", None)
    if isinstance(content, str):
        return content
    if isinstance(error, httpx.HTTPStatusError):
        try:
            return error.response.text
        except httpx.ResponseNotRead:
            return None
    return None


class Runner:
    """Runs test artifacts and reports results to the console and shared log.

    Examples:
        runner = Runner(name_filter=NameFilter(["Calculator"]))
        tally = runner.run("targets.json")
    """

    def __init__(
        self,
        console: Console | None = None,
        *,
        settings: RunnerSettings | None = None,
        name_filter: Callable[[str], bool] | None = None,
        registry: MarkerRegistry | None = None,
        configuration: ConfigurationStore | None = None,
    ) -> None:
        self.console = console or Console()
        self.settings = settings or RunnerSettings()
        self.name_filter = name_filter
        self.registry = registry or default_registry()
        self.configuration = configuration if configuration is not None else ConfigurationStore()
        self._assertion_names = set(self.settings.assertion_error_names)

    def run(self, targets: Sequence[TestTarget] | Path | str) -> ExecutionTally:
        """Load and run every target in order.

        ``targets`` may also be the path of a targets file, which is read
        after the shared log has been truncated. The log is closed on every
        exit path; an ArtifactLoadError stops the run and propagates.
        """
        tally = ExecutionTally()
        if self.settings.trace:
            init_tracing(self.settings.trace_output)

        with open(self.settings.log_path, "w", encoding="utf-8") as log, artifact_imports():
            if isinstance(targets, (str, Path)):
                targets = load_targets(targets)
            for target in targets:
                artifact = load_artifact(target.module, target.settings)
                self.run_artifact(artifact, log, tally)

        self._print_summary(tally)
        return tally

    def run_artifact(self, artifact: TestArtifact, log: TextIO, tally: ExecutionTally) -> None:
        """Run every fixture type of one artifact."""
        merged = False
        for cls in fixture_types(artifact.module):
            fixture = register_fixture(cls, self.registry)
            invocations = discover(fixture, self.name_filter, self.registry)
            if not invocations:
                continue
            if not merged:
                self.configuration.merge(artifact.settings)
                merged = True
            self.run_fixture(fixture, invocations, log, tally)

    def run_fixture(
        self,
        fixture: FixtureType,
        invocations: Sequence[Invocation],
        log: TextIO,
        tally: ExecutionTally,
    ) -> None:
        """Run the invocations of one fixture type with a fresh resolver."""
        self.console.print(f"[bold white]{escape(fixture.name)}:[/bold white]")

        resolver = Resolver()
        resolver.override(ConfigurationStore, lambda: self.configuration)
        once = _OneTimeSetup()

        for invocation in invocations:
            if invocation.error is not None and not self.settings.fail_on_configuration_error:
                logger.warning("Skipping %s: %s", invocation.full_name, invocation.error)
                self.console.print(
                    f"  [yellow]-[/yellow] {escape(invocation.display_name)} [dim]skipped ({escape(str(invocation.error))})[/dim]"
                )
                continue

            collector = OutputCollector(fixture.full_name, invocation.method.name, invocation.parameters.suffix)
            resolver.override(OutputHelper, lambda collector=collector: collector)
            resolver.override(OutputCollector, lambda collector=collector: collector)
            resolver.invalidate(fixture.cls)

            result = self.run_invocation(invocation, resolver, collector, once)
            tally.record(result)
            collector.collect(log)
            log.flush()
            collector.close()
        self.console.print()

    def run_invocation(
        self,
        invocation: Invocation,
        resolver: Resolver,
        collector: OutputCollector,
        once: _OneTimeSetup | None = None,
    ) -> InvocationResult:
        if not self.settings.trace:
            return self._execute(invocation, resolver, collector, once or _OneTimeSetup())

        with invocation_span(
            invocation.full_name,
            {"test.name": invocation.display_name, "test.fixture": invocation.fixture.full_name},
        ) as span:
            result = self._execute(invocation, resolver, collector, once or _OneTimeSetup())
            span.set_attribute("test.status", result.state.value)
            span.set_attribute("test.duration_ms", result.duration_ms)
            if result.error is not None:
                span.record_exception(result.error)
                span.set_attribute("test.failed_while", result.stage.value)
            return result

    def _execute(
        self,
        invocation: Invocation,
        resolver: Resolver,
        collector: OutputCollector,
        once: _OneTimeSetup,
    ) -> InvocationResult:
        stage = InvocationState.PENDING
        start = time.perf_counter()
        self._print_started(invocation)
        try:
            if invocation.error is not None:
                raise invocation.error

            stage = InvocationState.CONSTRUCTING
            instance = resolver.get(invocation.fixture.cls)

            stage = InvocationState.SETTING_UP
            self._run_setups(invocation.fixture, instance, once)

            stage = InvocationState.INVOKING
            invoke(invocation.method, instance, invocation.parameters.arguments)

            duration = (time.perf_counter() - start) * 1000
            self._print_passed(invocation)
            return InvocationResult(invocation, InvocationState.PASSED, stage, duration)

        except Exception as raised:
            error = unwrap(raised)
            duration = (time.perf_counter() - start) * 1000
            message = self.classify(error)
            self._write_failure(collector, error)
            self._print_failed(invocation, message)
            return InvocationResult(invocation, InvocationState.FAILED, stage, duration, message, error)

        finally:
            collector.write_line()
            collector.write_line()

    def _run_setups(self, fixture: FixtureType, instance: Any, once: _OneTimeSetup) -> None:
        if not once.done:
            once.done = True
            try:
                for method in fixture.setups_once:
                    invoke(method, instance)
            except InvocationError as err:
                once.error = err
                raise
        elif once.error is not None:
            raise once.error
        for method in fixture.setups_each:
            invoke(method, instance)

    def is_assertion(self, error: BaseException) -> bool:
        if isinstance(error, AssertionError):
            return True
        return any(klass.__name__ in self._assertion_names for klass in type(error).__mro__)

    def classify(self, error: BaseException) -> str:
        """Short console message for a failure."""
        if self.is_assertion(error):
            message = _WHITESPACE.sub(" ", str(error))
            for suffix in self.settings.unhelpful_message_suffixes:
                message = message.replace(suffix, "")
            return message.strip() or type(error).__name__
        if isinstance(error, ResolutionError):
            innermost = error
            while isinstance(innermost.__cause__, ResolutionError):
                innermost = innermost.__cause__
            return str(innermost)
        if isinstance(error, ConfigurationError):
            return str(error)
        return type(error).__name__

    def _write_failure(self, collector: OutputCollector, error: BaseException) -> None:
        collector.write_line("".join(traceback.format_exception(error)).rstrip("\n"))
        content = response_content(error)
        if content is None:
            return
        collector.write_line(RESPONSE_HEADER)
        for line in _RESPONSE_LINE_BREAK.split(content):
            collector.write_line(line)
        collector.write_line(RESPONSE_FOOTER)

    def _print_started(self, invocation: Invocation) -> None:
        self.console.print(f"  {escape(invocation.display_name)}...", style="cyan", end="", highlight=False)

    def _print_passed(self, invocation: Invocation) -> None:
        self.console.control(Control(ControlType.CARRIAGE_RETURN))
        self.console.print(f"[green]✓[/green] [white]{escape(invocation.display_name)}[/white]   ", highlight=False)

    def _print_failed(self, invocation: Invocation, message: str) -> None:
        self.console.control(Control(ControlType.CARRIAGE_RETURN))
        self.console.print(
            f"[red]X[/red] [white]{escape(invocation.display_name)}[/white] [red]{escape(message)}[/red]",
            highlight=False,
        )

    def _print_summary(self, tally: ExecutionTally) -> None:
        style = "red" if tally.failed else "green"
        self.console.print(f"Passed: {tally.passed} Failed: {tally.failed}", style=style, highlight=False)


def run(
    targets_path: Path | str,
    filters: Sequence[str] = (),
    *,
    console: Console | None = None,
    settings: RunnerSettings | None = None,
) -> ExecutionTally:
    """Run the targets listed in a targets file (convenience wrapper)."""
    runner = Runner(console, settings=settings, name_filter=NameFilter(filters) if filters else None)
    return runner.run(targets_path)
