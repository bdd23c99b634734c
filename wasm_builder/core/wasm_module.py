"""
WASM module reader — structural validation of a binary module.

Checks exactly what the bytecode stage needs before handing the bytes to
the rwasm compiler:

  - magic ``\\0asm`` and version 1
  - every section header (id + LEB128 size) fits inside the file
  - known section ids only, non-custom sections at most once and in
    canonical order
  - custom section names are valid UTF-8

This module intentionally does NOT decode section payloads (types, code,
etc.).  Instruction-level validation is the compiler's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

WASM_MAGIC = b"\x00asm"
WASM_VERSION = b"\x01\x00\x00\x00"

SECTION_CUSTOM = 0

SECTION_NAMES = {
    0: "custom",
    1: "type",
    2: "import",
    3: "function",
    4: "table",
    5: "memory",
    6: "global",
    7: "export",
    8: "start",
    9: "element",
    10: "code",
    11: "data",
    12: "datacount",
    13: "tag",
}

# Canonical position of each non-custom section; datacount sits before
# code and tag between memory and global.
_SECTION_RANK = {
    1: 1, 2: 2, 3: 3, 4: 4, 5: 5, 13: 6, 6: 7,
    7: 8, 8: 9, 9: 10, 12: 11, 10: 12, 11: 13,
}

# A u32 LEB128 never needs more than 5 bytes.
_MAX_U32_LEB_BYTES = 5


class WasmFormatError(ValueError):
    """The bytes are not a structurally valid WASM module."""


@dataclass(frozen=True)
class Section:
    id: int
    offset: int        # offset of the payload within the file
    size: int
    name: str = ""     # custom sections only

    @property
    def kind(self) -> str:
        return SECTION_NAMES.get(self.id, f"unknown({self.id})")


@dataclass(frozen=True)
class WasmModule:
    size_bytes: int
    sections: List[Section] = field(default_factory=list)

    @property
    def custom_section_names(self) -> List[str]:
        return [s.name for s in self.sections if s.id == SECTION_CUSTOM]

    def has_section(self, kind: str) -> bool:
        return any(s.kind == kind for s in self.sections)


def read_varuint32(data: bytes, offset: int) -> Tuple[int, int]:
    """Decode an unsigned LEB128 u32 at *offset*; return (value, new_offset)."""
    result = 0
    shift = 0
    for i in range(_MAX_U32_LEB_BYTES):
        if offset >= len(data):
            raise WasmFormatError("unexpected EOF while reading varuint")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if byte & 0x80 == 0:
            if result > 0xFFFFFFFF:
                raise WasmFormatError("varuint32 out of range")
            return result, offset
        shift += 7
    raise WasmFormatError("varuint32 longer than 5 bytes")


def parse_module(data: bytes) -> WasmModule:
    """
    Parse section headers of a binary module.

    Raises
    ------
    WasmFormatError
        On any structural defect.
    """
    if len(data) < 8:
        raise WasmFormatError("file too short for a wasm header")
    if data[:4] != WASM_MAGIC:
        raise WasmFormatError("bad magic, not a wasm module")
    if data[4:8] != WASM_VERSION:
        raise WasmFormatError(f"unsupported wasm version {data[4:8].hex()}")

    sections: List[Section] = []
    last_rank = 0
    offset = 8
    while offset < len(data):
        section_id = data[offset]
        offset += 1
        if section_id not in SECTION_NAMES:
            raise WasmFormatError(f"unknown section id {section_id} at {offset - 1}")
        size, offset = read_varuint32(data, offset)
        end = offset + size
        if end > len(data):
            raise WasmFormatError(
                f"{SECTION_NAMES[section_id]} section overruns end of file"
            )

        name = ""
        if section_id == SECTION_CUSTOM:
            name_len, name_off = read_varuint32(data, offset)
            if name_off + name_len > end:
                raise WasmFormatError("custom section name overruns section")
            try:
                name = data[name_off:name_off + name_len].decode("utf-8")
            except UnicodeDecodeError as e:
                raise WasmFormatError(f"custom section name is not UTF-8: {e}") from e
        else:
            rank = _SECTION_RANK[section_id]
            if rank <= last_rank:
                raise WasmFormatError(
                    f"{SECTION_NAMES[section_id]} section out of order or duplicated"
                )
            last_rank = rank

        sections.append(Section(id=section_id, offset=offset, size=size, name=name))
        offset = end

    return WasmModule(size_bytes=len(data), sections=sections)
