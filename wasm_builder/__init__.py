"""
wasm_builder — Deterministic Rust → WebAssembly builder.

Compile a Cargo workspace to wasm32 with a reproducible flag set, derive
secondary artifacts (rwasm bytecode, wat text, stripped module, wasmtime
precompiled module) and emit a BUILD-INFO.md provenance record.

Profile: wasm32-unknown-unknown-reproducible
"""

__version__ = "1.0.0"
BUILDER_NAME = "wasm_builder"
BUILDER_VERSION = "v1"
PROFILE_ID = "wasm32-unknown-unknown-reproducible"
