"""
Process — thin, injectable wrapper around subprocess.run.

Every external tool (cargo, wasm2wat, wasm-tools, wasmtime, rwasm, git,
rustc) is spawned through a ``Runner``.  The default runner is
``run_process``; tests substitute a scripted fake so no toolchain is
needed.

A runner raises ``FileNotFoundError`` when the executable does not exist
and ``subprocess.TimeoutExpired`` when the timeout elapses.  Every other
outcome, including a non-zero exit, is returned as a ProcessResult.
"""
from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external process."""

    argv: List[str]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace").strip()

    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()


# run(argv, cwd=..., env=..., input=..., timeout=..., capture=...)
Runner = Callable[..., ProcessResult]


def run_process(
    argv: List[str],
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    input: Optional[bytes] = None,
    timeout: Optional[int] = None,
    capture: bool = True,
) -> ProcessResult:
    """
    Run *argv* synchronously.

    With ``capture=False`` stdout/stderr are inherited from the parent so
    long-running builds stream their progress to the terminal.
    """
    t0 = time.monotonic()
    result = subprocess.run(
        argv,
        cwd=str(cwd) if cwd is not None else None,
        env=env,
        input=input,
        capture_output=capture,
        timeout=timeout,
    )
    duration = int((time.monotonic() - t0) * 1000)
    return ProcessResult(
        argv=list(argv),
        returncode=result.returncode,
        stdout=result.stdout or b"",
        stderr=result.stderr or b"",
        duration_ms=duration,
    )


def run_quiet(
    runner: Runner,
    argv: List[str],
    cwd: Optional[Path] = None,
    timeout: int = 10,
) -> Optional[str]:
    """Run a query command; return stripped stdout, or None on any failure."""
    try:
        r = runner(argv, cwd=cwd, timeout=timeout)
    except (OSError, subprocess.SubprocessError):
        return None
    if not r.ok:
        return None
    out = r.stdout_text()
    return out or None
