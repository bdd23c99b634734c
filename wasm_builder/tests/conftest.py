"""
Shared pytest fixtures for wasm_builder tests.

All fixtures are pure-Python: no cargo, no wabt, no wasmtime.  External
processes go through ``FakeToolchain``, a scripted runner that mimics
each tool's observable behaviour (exit code, output file, stdout).
"""
import hashlib
import json
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from wasm_builder.config import Settings
from wasm_builder.core.process import ProcessResult

# ═══════════════════════════════════════════════════════════════════════════════
# Hand-assembled modules
# ═══════════════════════════════════════════════════════════════════════════════

WASM_HEADER = b"\x00asm\x01\x00\x00\x00"

# (type (func)) (func (type 0)) with an empty body, plus a custom "name" section.
MINIMAL_WASM = (
    WASM_HEADER
    + b"\x01\x04\x01\x60\x00\x00"        # type: 1 entry, func () -> ()
    + b"\x03\x02\x01\x00"                # function: 1 entry, type 0
    + b"\x0a\x04\x01\x02\x00\x0b"        # code: 1 body, no locals, end
    + b"\x00\x05\x04name"                # custom "name", empty payload
)

GIT_SHA = "3f2a9c0d1e4b5a6978877665544332211000ffee"
RUSTC_VERSION = "rustc 1.87.0 (17067e9ac 2025-05-09)"
CARGO_VERSION = "cargo 1.87.0 (99624be96 2025-05-06)"


def fake_rwasm(wasm: bytes) -> bytes:
    """Deterministic stand-in for the rwasm compiler."""
    return b"RWASM\x00" + hashlib.sha256(wasm).digest()


def make_target(name: str, kind: List[str], crate_types: Optional[List[str]] = None) -> Dict:
    return {
        "name": name,
        "kind": kind,
        "crate_types": crate_types if crate_types is not None else list(kind),
        "src_path": f"/src/{name}.rs",
    }


def make_metadata(
    packages: Dict[str, List[Dict]],
    default_members: Optional[List[str]] = None,
    target_directory: str = "/work/target",
) -> Dict:
    """Build a ``cargo metadata`` document: package name → targets."""
    pkgs = []
    for name, targets in packages.items():
        pkgs.append({
            "id": f"path+file:///work/{name}#{name}@0.1.0",
            "name": name,
            "version": "0.1.0",
            "targets": targets,
        })
    ids = [p["id"] for p in pkgs]
    doc = {
        "packages": pkgs,
        "workspace_members": ids,
        "workspace_default_members": ids if default_members is None else [
            f"path+file:///work/{n}#{n}@0.1.0" for n in default_members
        ],
        "target_directory": target_directory,
        "workspace_root": "/work",
        "version": 1,
    }
    return doc


# ═══════════════════════════════════════════════════════════════════════════════
# Fake toolchain
# ═══════════════════════════════════════════════════════════════════════════════

def _arg_after(argv: List[str], flag: str) -> str:
    return argv[argv.index(flag) + 1]


class FakeToolchain:
    """
    Callable runner emulating cargo, wasm2wat, wasm-tools, wasmtime,
    rwasm, git and rustc.

    ``missing``  — program names that raise FileNotFoundError.
    ``failing``  — tool keys (``wasmtime``, ``wasm-tools strip``, ``git``,
                   ``cargo build`` …) that exit with code 1.
    """

    def __init__(self, metadata: Dict, artifact_name: str = "power_calc.wasm",
                 module: bytes = MINIMAL_WASM):
        self.metadata = metadata
        self.artifact_name = artifact_name
        self.module = module
        self.missing: Set[str] = set()
        self.failing: Set[str] = set()
        self.calls: List[Dict] = []

    @staticmethod
    def key(argv: List[str]) -> str:
        prog = argv[0]
        if prog in ("cargo", "wasm-tools", "wasmtime") and len(argv) > 1:
            return f"{prog} {argv[1]}"
        return prog

    def called(self, key: str) -> bool:
        return any(self.key(c["argv"]) == key for c in self.calls)

    def call_for(self, key: str) -> Dict:
        for c in self.calls:
            if self.key(c["argv"]) == key:
                return c
        raise AssertionError(f"{key} was never called")

    def __call__(self, argv, cwd=None, env=None, input=None, timeout=None, capture=True):
        argv = list(argv)
        self.calls.append({"argv": argv, "cwd": cwd, "env": env, "input": input})
        prog, key = argv[0], self.key(argv)

        if prog in self.missing:
            raise FileNotFoundError(2, "No such file or directory", prog)
        if key in self.failing or prog in self.failing:
            return ProcessResult(argv=argv, returncode=1, stderr=f"{key}: boom".encode())

        if key == "cargo metadata":
            return ProcessResult(argv=argv, returncode=0,
                                 stdout=json.dumps(self.metadata).encode())
        if key == "cargo build":
            out = (Path(_arg_after(argv, "--target-dir"))
                   / _arg_after(argv, "--target") / "release" / self.artifact_name)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(self.module)
            return ProcessResult(argv=argv, returncode=0)
        if key == "cargo --version":
            return ProcessResult(argv=argv, returncode=0, stdout=CARGO_VERSION.encode())
        if prog == "rustc":
            return ProcessResult(argv=argv, returncode=0, stdout=RUSTC_VERSION.encode())
        if prog == "git":
            return ProcessResult(argv=argv, returncode=0, stdout=(GIT_SHA + "\n").encode())
        if prog == "rwasm":
            return ProcessResult(argv=argv, returncode=0, stdout=fake_rwasm(input))
        if prog == "wasm2wat" or key == "wasm-tools print":
            src = Path(argv[2] if key == "wasm-tools print" else argv[1])
            out = Path(_arg_after(argv, "-o"))
            out.write_text(f";; {src.name}\n(module)\n")
            return ProcessResult(argv=argv, returncode=0)
        if key == "wasm-tools strip":
            src, out = Path(argv[3]), Path(_arg_after(argv, "-o"))
            # drop the trailing custom section
            out.write_bytes(src.read_bytes()[:-len(b"\x00\x05\x04name")])
            return ProcessResult(argv=argv, returncode=0)
        if key == "wasmtime compile":
            src, out = Path(argv[2]), Path(_arg_after(argv, "-o"))
            out.write_bytes(b"\x7fELF" + src.read_bytes())
            return ProcessResult(argv=argv, returncode=0)
        raise AssertionError(f"unexpected command: {argv}")


# ═══════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def wasm_bytes() -> bytes:
    return MINIMAL_WASM


@pytest.fixture
def primary_wasm(tmp_path) -> Path:
    p = tmp_path / "in" / "power_calc.wasm"
    p.parent.mkdir()
    p.write_bytes(MINIMAL_WASM)
    return p


@pytest.fixture
def single_bin_metadata() -> Dict:
    return make_metadata({
        "power_calc": [
            make_target("power_calc", ["lib"], ["lib"]),
            make_target("power_calc", ["bin"]),
        ],
    })


@pytest.fixture
def toolchain(single_bin_metadata) -> FakeToolchain:
    return FakeToolchain(single_bin_metadata)


@pytest.fixture
def settings() -> Settings:
    """Explicit settings so host environment variables never leak in."""
    return Settings(
        CARGO_HOME="/home/builder/.cargo",
        RUSTUP_HOME="/home/builder/.rustup",
        WASM_FEATURES=[],
        WASM_NO_DEFAULT_FEATURES=False,
        CARGO_BIN="cargo",
        RUSTC_BIN="rustc",
        GIT_BIN="git",
        WASM2WAT_BIN="wasm2wat",
        WASM_TOOLS_BIN="wasm-tools",
        WASMTIME_BIN="wasmtime",
        RWASM_BIN="rwasm",
        PARALLEL_STAGES=True,
    )


@pytest.fixture
def project(tmp_path) -> Path:
    """A workspace directory holding a Cargo.toml."""
    d = tmp_path / "project"
    d.mkdir()
    (d / "Cargo.toml").write_text('[package]\nname = "power_calc"\nversion = "0.1.0"\n')
    return d
