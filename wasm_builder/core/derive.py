"""
Derivation pipeline — primary .wasm → rwasm / wat / stripped / cwasm.

Every stage is an action ``(stage_name, input_path, output_path) ->
StageResult`` bound to a StageSpec.  Best-effort actions never raise: a missing tool is
TOOL_UNAVAILABLE, a non-zero exit or a missing output is TOOL_FAILED, and
a stage whose input was not produced is SKIPPED.  The fatal rwasm action
raises BytecodeCompilationFailed; the pipeline lets the current wave
settle first, then re-raises.

Stages of one wave have no data dependency and may run on a thread pool.
"""
from __future__ import annotations

import logging
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from wasm_builder.core.build_context import BuildEnvironment
from wasm_builder.core.process import Runner, run_process
from wasm_builder.core.wasm_module import WasmFormatError, parse_module
from wasm_builder.errors import BytecodeCompilationFailed
from wasm_builder.io.schema import StageResult, StageStatus
from wasm_builder.policy.stages import PRIMARY, STAGE_TABLE, StageSpec, stage_waves

logger = logging.getLogger(__name__)

StageAction = Callable[[str, Path, Path], StageResult]
BytecodeCompiler = Callable[[bytes], bytes]


# =============================================================================
# Bytecode compilation (fatal)
# =============================================================================

class ExternalBytecodeCompiler:
    """
    Pipe a wasm module through an external rwasm compiler.

    The command reads the module on stdin and writes the bytecode on
    stdout.  Raises RuntimeError on a non-zero exit or empty output.
    """

    def __init__(self, command: str, runner: Runner = run_process, timeout: int = 300):
        self.command = command
        self.runner = runner
        self.timeout = timeout

    def __call__(self, wasm: bytes) -> bytes:
        result = self.runner([self.command], input=wasm, timeout=self.timeout)
        if not result.ok:
            raise RuntimeError(
                f"{self.command} exited with code {result.returncode}: "
                f"{result.stderr_text()}"
            )
        if not result.stdout:
            raise RuntimeError(f"{self.command} produced no bytecode")
        return result.stdout


def compile_rwasm(input_path: Path, output_path: Path, compiler: BytecodeCompiler) -> Path:
    """
    Read *input_path* fully, validate it, compile it, write *output_path*.

    Raises
    ------
    BytecodeCompilationFailed
        Unreadable input, malformed module, or compiler failure.
    """
    try:
        wasm = Path(input_path).read_bytes()
    except OSError as e:
        raise BytecodeCompilationFailed(input_path, f"cannot read module: {e}") from e

    try:
        module = parse_module(wasm)
    except WasmFormatError as e:
        raise BytecodeCompilationFailed(input_path, f"malformed module: {e}") from e
    logger.info(
        "Primary module %s: %d bytes, %d sections",
        input_path.name, module.size_bytes, len(module.sections),
    )

    try:
        bytecode = compiler(wasm)
    except Exception as e:
        raise BytecodeCompilationFailed(input_path, str(e)) from e

    output_path.write_bytes(bytecode)
    return output_path


# =============================================================================
# Best-effort external tools
# =============================================================================

def run_tool(
    stage: str,
    attempts: Sequence[List[str]],
    output_path: Path,
    runner: Runner,
    timeout: int,
) -> StageResult:
    """
    Try each argv in *attempts* until one executable exists.

    Only the first available tool is run; a failing tool does not fall
    through to the next candidate.
    """
    missing: List[str] = []
    for argv in attempts:
        cmd_str = " ".join(argv)
        t0 = time.monotonic()
        try:
            result = runner(argv, timeout=timeout)
        except FileNotFoundError:
            missing.append(argv[0])
            continue
        except subprocess.TimeoutExpired:
            return StageResult(
                stage=stage,
                status=StageStatus.TOOL_FAILED,
                command=cmd_str,
                diagnostic=f"TIMEOUT after {timeout}s",
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
        except OSError as e:
            return StageResult(
                stage=stage,
                status=StageStatus.TOOL_FAILED,
                command=cmd_str,
                diagnostic=str(e),
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

        if not result.ok:
            return StageResult(
                stage=stage,
                status=StageStatus.TOOL_FAILED,
                command=cmd_str,
                exit_code=result.returncode,
                diagnostic=result.stderr_text() or None,
                duration_ms=result.duration_ms,
            )
        if not output_path.exists():
            return StageResult(
                stage=stage,
                status=StageStatus.TOOL_FAILED,
                command=cmd_str,
                exit_code=result.returncode,
                diagnostic=f"{argv[0]} exited 0 but wrote no {output_path.name}",
                duration_ms=result.duration_ms,
            )
        return StageResult(
            stage=stage,
            status=StageStatus.PRODUCED,
            path=str(output_path),
            command=cmd_str,
            exit_code=result.returncode,
            duration_ms=result.duration_ms,
        )

    return StageResult(
        stage=stage,
        status=StageStatus.TOOL_UNAVAILABLE,
        diagnostic=f"not found: {', '.join(missing)}",
    )


# =============================================================================
# DerivationPipeline
# =============================================================================

class DerivationPipeline:
    """
    Runs the declared stages against one primary module.

    Outputs land in *work_dir*; the Provenance Recorder later copies the
    produced ones into the run's output directory.
    """

    def __init__(
        self,
        env: BuildEnvironment,
        runner: Runner = run_process,
        bytecode_compiler: Optional[BytecodeCompiler] = None,
        stages: Sequence[StageSpec] = STAGE_TABLE,
        parallel: bool = True,
        actions: Optional[Dict[str, StageAction]] = None,
    ):
        """
        Args:
            env: Captured build environment (tool names, timeouts).
            runner: Process runner used by every external tool.
            bytecode_compiler: bytes → bytes rwasm compiler; defaults to
                piping through ``env.tools.rwasm``.
            stages: Stage declarations (default: STAGE_TABLE).
            parallel: Run the stages of a wave on a thread pool.
            actions: Overrides for individual stage actions, by name.
        """
        self.env = env
        self.runner = runner
        self.bytecode_compiler = bytecode_compiler or ExternalBytecodeCompiler(
            env.tools.rwasm, runner=runner, timeout=env.tool_timeout
        )
        self.stages = list(stages)
        self.waves = stage_waves(self.stages)
        self.parallel = parallel

        self.actions: Dict[str, StageAction] = {
            "rwasm": self._rwasm,
            "wat": self._disassemble,
            "strip": self._strip,
            "stripped_wat": self._disassemble,
            "cwasm": self._precompile,
        }
        if actions:
            self.actions.update(actions)
        for spec in self.stages:
            if spec.name not in self.actions:
                raise ValueError(f"no action bound to stage {spec.name}")

    # -----------------------------------------------------------------
    # Stage actions
    # -----------------------------------------------------------------

    def _rwasm(self, stage: str, src: Path, out: Path) -> StageResult:
        t0 = time.monotonic()
        compile_rwasm(src, out, self.bytecode_compiler)
        return StageResult(
            stage=stage,
            status=StageStatus.PRODUCED,
            path=str(out),
            command=f"{self.env.tools.rwasm} < {src.name}",
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

    def _disassemble(self, stage: str, src: Path, out: Path) -> StageResult:
        tools = self.env.tools
        return run_tool(
            stage,
            [
                [tools.wasm2wat, str(src), "-o", str(out)],
                [tools.wasm_tools, "print", str(src), "-o", str(out)],
            ],
            out,
            self.runner,
            self.env.tool_timeout,
        )

    def _strip(self, stage: str, src: Path, out: Path) -> StageResult:
        return run_tool(
            stage,
            [[self.env.tools.wasm_tools, "strip", "-a", str(src), "-o", str(out)]],
            out,
            self.runner,
            self.env.tool_timeout,
        )

    def _precompile(self, stage: str, src: Path, out: Path) -> StageResult:
        return run_tool(
            stage,
            [[self.env.tools.wasmtime, "compile", str(src), "-o", str(out)]],
            out,
            self.runner,
            self.env.tool_timeout,
        )

    # -----------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------

    def _run_stage(
        self,
        spec: StageSpec,
        inputs: Dict[str, Optional[Path]],
        work_dir: Path,
    ) -> StageResult:
        """Run one stage.  Only fatal stages may raise."""
        src = inputs.get(spec.source)
        if src is None:
            return StageResult(
                stage=spec.name,
                status=StageStatus.SKIPPED,
                diagnostic=f"input `{spec.source}` was not produced",
            )

        out = work_dir / spec.output
        # a stale file from an earlier run must not pass for this run's output
        if out.exists():
            out.unlink()

        logger.info("Stage %s: %s → %s", spec.name, src.name, out.name)
        action = self.actions[spec.name]
        if spec.fatal:
            return action(spec.name, src, out)
        try:
            return action(spec.name, src, out)
        except Exception as e:
            logger.warning("Stage %s raised: %s", spec.name, e, exc_info=True)
            return StageResult(
                stage=spec.name,
                status=StageStatus.TOOL_FAILED,
                diagnostic=str(e),
            )

    def _run_wave(
        self,
        wave: List[StageSpec],
        inputs: Dict[str, Optional[Path]],
        work_dir: Path,
    ) -> Dict[str, object]:
        """Run a wave; map stage name → StageResult or the raised exception."""
        outcomes: Dict[str, object] = {}
        if self.parallel and len(wave) > 1:
            with ThreadPoolExecutor(max_workers=len(wave)) as pool:
                futures = {
                    spec.name: pool.submit(self._run_stage, spec, inputs, work_dir)
                    for spec in wave
                }
            for name, fut in futures.items():
                exc = fut.exception()
                outcomes[name] = exc if exc is not None else fut.result()
        else:
            for spec in wave:
                try:
                    outcomes[spec.name] = self._run_stage(spec, inputs, work_dir)
                except Exception as e:
                    outcomes[spec.name] = e
        return outcomes

    def run(self, primary: Path, work_dir: Path) -> List[StageResult]:
        """
        Run every stage against *primary*, writing into *work_dir*.

        Returns results in declaration order.

        Raises
        ------
        BytecodeCompilationFailed
            (or any exception of a fatal stage) once its wave has settled.
        """
        work_dir.mkdir(parents=True, exist_ok=True)
        inputs: Dict[str, Optional[Path]] = {PRIMARY: Path(primary)}
        results: Dict[str, StageResult] = {}

        for wave in self.waves:
            outcomes = self._run_wave(wave, inputs, work_dir)
            fatal_error: Optional[BaseException] = None
            for spec in wave:
                outcome = outcomes[spec.name]
                if isinstance(outcome, BaseException):
                    logger.error("Fatal stage %s failed: %s", spec.name, outcome)
                    if fatal_error is None:
                        fatal_error = outcome
                    continue
                results[spec.name] = outcome
                inputs[spec.name] = Path(outcome.path) if outcome.produced else None
                if not outcome.produced:
                    logger.warning(
                        "Stage %s %s (non-fatal): %s",
                        spec.name, outcome.status.value, outcome.diagnostic,
                    )
            if fatal_error is not None:
                raise fatal_error

        return [results[spec.name] for spec in self.stages]
