"""JSON documents describing already-decoded programs.

A document looks like::

    {
      "target": "linux/amd64",
      "vars": [18446744073709551615],
      "calls": [
        {"name": "socket", "nr": 41, "index": 0,
         "args": [{"kind": "const", "size": 8, "value": 2}, ...]},
        {"name": "write", "nr": 1,
         "copyin": [{"addr": 536870912, "arg": {"kind": "data", "hex": "6869"}}],
         "args": [{"kind": "result", "size": 8, "index": 0}, ...]}
      ]
    }

``JsonProg`` / ``JsonTarget`` plug such documents into the generator through
the same serialize/decode round trip used for real programs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from csource_prog import (
    NO_COPYOUT,
    CallMeta,
    ConstArg,
    Copyin,
    Copyout,
    CsumArg,
    CsumChunk,
    CsumChunkKind,
    CsumKind,
    DataArg,
    DecodedCall,
    DecodedProgram,
    ResultArg,
)
from sys_targets import SysTarget, get_target


class ProgramFormatError(ValueError):
    pass


U64 = Annotated[int, Field(ge=0, lt=1 << 64)]
ArgSize = Literal[1, 2, 4, 8]


# ────────────────────────────────────────────────────────────────────────────
# Wire models
# ────────────────────────────────────────────────────────────────────────────

class ConstArgModel(BaseModel):
    kind: Literal["const"] = "const"
    size: ArgSize
    value: U64
    bitfield_offset: int = Field(default=0, ge=0, lt=64)
    bitfield_length: int = Field(default=0, ge=0, le=64)
    pid_stride: U64 = 0
    big_endian: bool = False

    def to_arg(self) -> ConstArg:
        return ConstArg(
            size=self.size,
            value=self.value,
            bitfield_offset=self.bitfield_offset,
            bitfield_length=self.bitfield_length,
            pid_stride=self.pid_stride,
            big_endian=self.big_endian,
        )


class ResultArgModel(BaseModel):
    kind: Literal["result"] = "result"
    size: ArgSize
    index: int = Field(ge=0)
    div_op: U64 = 0
    add_op: U64 = 0

    def to_arg(self) -> ResultArg:
        return ResultArg(size=self.size, index=self.index, div_op=self.div_op, add_op=self.add_op)


class DataArgModel(BaseModel):
    kind: Literal["data"] = "data"
    hex: str = ""

    @field_validator("hex")
    @classmethod
    def _valid_hex(cls, v: str) -> str:
        bytes.fromhex(v)
        return v

    def to_arg(self) -> DataArg:
        return DataArg(data=bytes.fromhex(self.hex))


class CsumChunkModel(BaseModel):
    kind: Literal["data", "const"]
    value: U64
    size: U64

    @model_validator(mode="after")
    def _const_chunk_width(self) -> "CsumChunkModel":
        if self.kind == "const" and self.size not in (1, 2, 4, 8):
            raise ValueError(f"const checksum chunk size {self.size} is not 1, 2, 4 or 8")
        return self


class CsumArgModel(BaseModel):
    kind: Literal["csum"] = "csum"
    size: Literal[2] = 2
    csum_kind: Literal["inet"] = "inet"
    chunks: List[CsumChunkModel] = Field(default_factory=list)

    def to_arg(self) -> CsumArg:
        return CsumArg(
            size=self.size,
            kind=CsumKind(self.csum_kind),
            chunks=tuple(CsumChunk(CsumChunkKind(c.kind), c.value, c.size) for c in self.chunks),
        )


CopyinArgModel = Annotated[
    Union[ConstArgModel, ResultArgModel, DataArgModel, CsumArgModel],
    Field(discriminator="kind"),
]
DirectArgModel = Annotated[Union[ConstArgModel, ResultArgModel], Field(discriminator="kind")]


class CopyinModel(BaseModel):
    addr: U64
    arg: CopyinArgModel


class CopyoutModel(BaseModel):
    index: int = Field(ge=0)
    addr: U64
    size: ArgSize


class CallModel(BaseModel):
    name: str
    nr: int = Field(default=0, ge=0)
    index: Optional[int] = Field(default=None, ge=0)
    args: List[DirectArgModel] = Field(default_factory=list)
    copyin: List[CopyinModel] = Field(default_factory=list)
    copyout: List[CopyoutModel] = Field(default_factory=list)

    def to_call(self) -> DecodedCall:
        return DecodedCall(
            meta=CallMeta(self.name, self.nr),
            index=NO_COPYOUT if self.index is None else self.index,
            args=tuple(a.to_arg() for a in self.args),
            copyin=tuple(Copyin(c.addr, c.arg.to_arg()) for c in self.copyin),
            copyout=tuple(Copyout(c.index, c.addr, c.size) for c in self.copyout),
        )


class ProgramModel(BaseModel):
    target: str = ""
    vars: List[U64] = Field(default_factory=list)
    calls: List[CallModel] = Field(default_factory=list)

    @model_validator(mode="after")
    def _result_indices_in_range(self) -> "ProgramModel":
        n = len(self.vars)

        def _check(idx: int, where: str) -> None:
            if not 0 <= idx < n:
                raise ValueError(f"{where}: result index {idx} out of range (vars={n})")

        for ci, call in enumerate(self.calls):
            if call.index is not None:
                _check(call.index, f"calls[{ci}].index")
            for co in call.copyout:
                _check(co.index, f"calls[{ci}].copyout")
            refs = list(call.args) + [c.arg for c in call.copyin]
            for arg in refs:
                if isinstance(arg, ResultArgModel):
                    _check(arg.index, f"calls[{ci}] result arg")
        return self

    def to_decoded(self) -> DecodedProgram:
        return DecodedProgram(
            calls=tuple(c.to_call() for c in self.calls),
            vars=tuple(self.vars),
        )


# ────────────────────────────────────────────────────────────────────────────
# Prog / ExecTarget adapters
# ────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JsonCall:
    meta: CallMeta


class JsonTarget:
    def __init__(self, sys_target: SysTarget) -> None:
        self.sys_target = sys_target
        self.os = sys_target.os
        self.arch = sys_target.arch
        self.ptr_size = sys_target.ptr_size

    def deserialize_exec(self, data: bytes) -> DecodedProgram:
        try:
            model = ProgramModel.model_validate_json(data)
        except ValidationError as e:
            raise ProgramFormatError(f"failed to decode program: {e}") from e
        return model.to_decoded()

    def generate_uber_mmap_prog(self) -> "JsonProg":
        """Program mapping the whole data area the fuzzer addresses."""
        t = self.sys_target
        size = 8 if t.ptr_size == 8 else 4
        args = [
            ConstArgModel(size=size, value=t.data_offset),
            ConstArgModel(size=size, value=t.num_pages * t.page_size),
            ConstArgModel(size=size, value=0x3),  # PROT_READ|PROT_WRITE
            ConstArgModel(size=size, value=0x32),  # MAP_ANONYMOUS|MAP_PRIVATE|MAP_FIXED
            ConstArgModel(size=size, value=(1 << (size * 8)) - 1),
            ConstArgModel(size=size, value=0),
        ]
        model = ProgramModel(
            target=t.name,
            calls=[CallModel(name="mmap", nr=t.mmap_nr, args=args)],
        )
        return JsonProg(model, self)


class JsonProg:
    def __init__(self, model: ProgramModel, target: JsonTarget) -> None:
        self.model = model
        self.target = target

    @property
    def calls(self) -> list[JsonCall]:
        return [JsonCall(CallMeta(c.name, c.nr)) for c in self.model.calls]

    def serialize_for_exec(self) -> bytes:
        return self.model.model_dump_json().encode("utf-8")


def parse_program(text: str | bytes, *, default_os: str = "linux", default_arch: str = "amd64") -> JsonProg:
    try:
        model = ProgramModel.model_validate_json(text)
    except ValidationError as e:
        raise ProgramFormatError(f"invalid program document: {e}") from e
    target_name = model.target.strip() or f"{default_os}/{default_arch}"
    os_name, _, arch = target_name.partition("/")
    try:
        sys_target = get_target(os_name, arch)
    except KeyError as e:
        raise ProgramFormatError(str(e.args[0])) from e
    return JsonProg(model, JsonTarget(sys_target))
