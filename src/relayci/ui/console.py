"""Console output formatting utilities for RelayCI."""

from __future__ import annotations

import sys
import threading
from typing import Callable, List, Optional

from ..errors import PipelineError
from ..model import RunResult, StageResult, StageStatus


class Console:
    """Centralized console output formatting. Every line goes through the secret masker."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        self._mask: Callable[[str], str] = lambda s: s
        self._lock = threading.Lock()

    def set_masker(self, mask: Optional[Callable[[str], str]]) -> Optional[Callable[[str], str]]:
        """Install the active run's SecretProvider.mask (None to reset). Returns the previous one."""
        previous, self._mask = self._mask, mask or (lambda s: s)
        return previous

    def _out(self, text: str = "", *, err: bool = False) -> None:
        stream = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            print(self._mask(text), file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}")
        self._out("-" * len(title))

    def print_run_started(self, pipeline: str, source: str, stage_count: int, run_id: str) -> None:
        """Print run start information."""
        self._out("\nRUN STARTED")
        self._out(f"Pipeline: {pipeline}")
        self._out(f"Definition: {source}")
        self._out(f"Stages: {stage_count}")
        self._out(f"Run ID: {run_id}")
        self._out()

    def print_trigger_skipped(self, pipeline: str, event: str, branch: Optional[str]) -> None:
        self._out(f"Pipeline '{pipeline}' not triggered by event={event} branch={branch or '-'}")

    def print_stage_start(self, name: str) -> None:
        self._out(f"\nSTAGE STARTED: {name}")

    def print_step(self, stage: str, step: str) -> None:
        self._out(f"[{stage}] STEP: {step}")

    def print_retry(self, stage: str, step: str, attempt: int, attempts: int, delay: float, kind: str) -> None:
        self._out(f"[{stage}] RETRY: {step} ({kind}, attempt {attempt}/{attempts}, next in {delay:.1f}s)")

    def print_failure(self, stage: str, step: str, exc: PipelineError) -> None:
        """Print a step failure. Captured output only in debug mode."""
        self._out(f"[{stage}] STEP FAILED: {step}")
        self._out(f"[{stage}] Error: {exc.kind}: {exc.message}")
        exit_code = getattr(exc, "exit_code", None)
        if exit_code is not None:
            self._out(f"[{stage}] Exit code: {exit_code}")
        hint = exc.details.get("hint")
        if hint:
            self._out(f"[{stage}] Hint: {hint}")
        output = getattr(exc, "output", "")
        if self.debug and output:
            for line in output.splitlines():
                self._out(f"[{stage}] | {line}")

    def print_stage_done(self, result: StageResult) -> None:
        self._out(f"STAGE {result.status.value.upper()}: {result.name} ({result.duration:.1f}s)")

    def print_stage_skipped(self, name: str, reason: str) -> None:
        """Print stage skipped message."""
        self._out(f"STAGE SKIPPED: {name} ({reason})")

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the topological execution plan."""
        for idx, level in enumerate(levels, start=1):
            self._out(f"  level {idx}: {', '.join(level)}")

    def print_results(self, result: RunResult) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40)
        self._out("RESULTS")
        self._out("=" * 40)
        for name, stage in result.stages.items():
            line = f"  {name}: {stage.status.value.upper()}"
            if stage.status is not StageStatus.SUCCESS and stage.error:
                line += f" ({stage.error.splitlines()[0]})"
            self._out(line)
        self._out(f"\nRUN {'SUCCEEDED' if result.ok else 'FAILED'}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._out(f"\nERROR: {title}", err=True)
        self._out(f"{message}", err=True)
        if details:
            for detail in details:
                self._out(f"  {detail}", err=True)
        if suggestion:
            self._out(f"\n{suggestion}", err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
