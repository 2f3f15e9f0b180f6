"""Decoded program model consumed by the C source generator.

The decoder hands the generator a flat, already-resolved view of a program:
every call carries its copy-in writes, its direct arguments and its copy-out
reads. Argument kinds form a closed set; anything else reaching the emitter
is a defect in the decoder, not an input error.

The ``Prog`` / ``ExecTarget`` protocols describe the external collaborators
that own the abstract program and its execution encoding.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence, Union


# Result slot value meaning "the return value is not captured".
NO_COPYOUT = (1 << 64) - 1


class CsumKind(Enum):
    INET = "inet"


class CsumChunkKind(Enum):
    DATA = "data"
    CONST = "const"


@dataclass(frozen=True)
class ConstArg:
    size: int
    value: int
    bitfield_offset: int = 0
    bitfield_length: int = 0
    pid_stride: int = 0
    big_endian: bool = False

    @property
    def is_bitfield(self) -> bool:
        return self.bitfield_offset != 0 or self.bitfield_length != 0


@dataclass(frozen=True)
class ResultArg:
    size: int
    index: int
    div_op: int = 0
    add_op: int = 0


@dataclass(frozen=True)
class DataArg:
    data: bytes


@dataclass(frozen=True)
class CsumChunk:
    kind: CsumChunkKind
    # Address of the region for DATA chunks, the constant itself for CONST.
    value: int
    size: int


@dataclass(frozen=True)
class CsumArg:
    size: int
    kind: CsumKind
    chunks: tuple[CsumChunk, ...] = ()


ExecArg = Union[ConstArg, ResultArg, DataArg, CsumArg]


@dataclass(frozen=True)
class Copyin:
    addr: int
    arg: ExecArg


@dataclass(frozen=True)
class Copyout:
    index: int
    addr: int
    size: int


@dataclass(frozen=True)
class CallMeta:
    call_name: str
    nr: int = 0

    @property
    def is_pseudo(self) -> bool:
        return self.call_name.startswith("syz_")


@dataclass(frozen=True)
class DecodedCall:
    meta: CallMeta
    index: int = NO_COPYOUT
    args: tuple[ExecArg, ...] = ()
    copyin: tuple[Copyin, ...] = ()
    copyout: tuple[Copyout, ...] = ()

    @property
    def captures_result(self) -> bool:
        return self.index != NO_COPYOUT


@dataclass(frozen=True)
class DecodedProgram:
    calls: tuple[DecodedCall, ...] = ()
    # Initial values of the result table; its length is the table size.
    vars: tuple[int, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class ProgCall(Protocol):
    meta: CallMeta


class ExecTarget(Protocol):
    os: str
    arch: str
    ptr_size: int

    def deserialize_exec(self, data: bytes) -> DecodedProgram: ...

    def generate_uber_mmap_prog(self) -> "Prog": ...


class Prog(Protocol):
    target: ExecTarget

    @property
    def calls(self) -> Sequence[ProgCall]: ...

    def serialize_for_exec(self) -> bytes: ...
