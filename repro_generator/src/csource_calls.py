#!/usr/bin/env python3

#────────────
#
# Copyright 2025 Artificial Intelligence Cyber Challenge
#
# Permission is hereby granted, free of charge, to any person obtaining a copy of
# this software and associated documentation files (the “Software”), to deal in the
# Software without restriction, including without limitation the rights to use,
# copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the
# Software, and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED,
# INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A
# PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT
# HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE
# SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
#
# ────────────

"""
csource_calls.py
────────────────

Turns decoded calls into C statement fragments.

Each call becomes one fragment:
  • copy-in writes (plain, bit-field, data blocks, inet checksums),
  • optional fault-injection arming,
  • the invocation itself,
  • copy-out reads into the result table, guarded by a success check.

Statements are kept as tagged nodes rather than text so that guard markers
and debug output can be filtered per options before rendering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Sequence, Tuple

from csource_format import arg_to_str, const_arg_to_str, result_arg_to_str, to_c_string
from csource_options import Options
from csource_prog import (
    ConstArg,
    CsumArg,
    CsumChunkKind,
    CsumKind,
    DataArg,
    DecodedCall,
    DecodedProgram,
    ResultArg,
)


LOGGER = logging.getLogger(__name__)

# Pseudo-calls that only behave when the tun device has been brought up.
TUN_ONLY_CALLS = frozenset({"syz_emit_ethernet", "syz_extract_tcp_res"})

FAULT_ARMING_FILES = (
    "/sys/kernel/debug/failslab/ignore-gfp-wait",
    "/sys/kernel/debug/fail_futex/ignore-private",
)


# ────────────────────────────────────────────────────────────────────────────
# Statement nodes
# ────────────────────────────────────────────────────────────────────────────

class StmtKind(Enum):
    PLAIN = "plain"
    GUARDED = "guarded"
    DEBUG = "debug"


@dataclass(frozen=True)
class Stmt:
    kind: StmtKind
    # GUARDED statements hold the bare expression, without the trailing ';'.
    text: str
    depth: int = 1


def plain(text: str, depth: int = 1) -> Stmt:
    return Stmt(StmtKind.PLAIN, text, depth)


def guarded(expr: str, depth: int = 1) -> Stmt:
    return Stmt(StmtKind.GUARDED, expr, depth)


def debug(text: str, depth: int = 1) -> Stmt:
    return Stmt(StmtKind.DEBUG, text, depth)


@dataclass
class Fragment:
    stmts: List[Stmt] = field(default_factory=list)
    # True when the fragment assigns the local `res` variable.
    uses_res: bool = False

    def add(self, stmt: Stmt) -> None:
        self.stmts.append(stmt)


def render_stmt(stmt: Stmt, opts: Options, extra_depth: int = 0) -> str:
    """Render one node, or return "" when the options filter it out."""
    if stmt.kind is StmtKind.DEBUG and not opts.debug:
        return ""
    if stmt.kind is StmtKind.GUARDED:
        body = f"NONFAILING({stmt.text});" if opts.handle_segv else f"{stmt.text};"
    else:
        body = stmt.text
    return "\t" * (stmt.depth + extra_depth) + body + "\n"


def render_fragment(fragment: Fragment, opts: Options, extra_depth: int = 0) -> str:
    return "".join(render_stmt(s, opts, extra_depth) for s in fragment.stmts)


# ────────────────────────────────────────────────────────────────────────────
# Call emitter
# ────────────────────────────────────────────────────────────────────────────

class CallEmitter:
    """Emit fragments for the calls of one decoded program.

    Checksum accumulators are numbered across the whole program so that two
    calls never declare the same local.
    """

    def __init__(self, opts: Options, syscall_prefix: str = "__NR_", *, inject_faults: bool = True) -> None:
        self.opts = opts
        self.syscall_prefix = syscall_prefix
        self.inject_faults = inject_faults
        self.csum_seq = 0

    def emit(self, ci: int, call: DecodedCall) -> Fragment:
        frag = Fragment()
        for copyin in call.copyin:
            self._emit_copyin(frag, copyin.addr, copyin.arg)

        if self.inject_faults and self.opts.fault and self.opts.fault_call == ci:
            for path in FAULT_ARMING_FILES:
                frag.add(plain(f'write_file("{path}", "N");'))
            frag.add(plain(f"inject_fault({self.opts.fault_nth});"))

        call_name = call.meta.call_name
        res_copyout = call.captures_result
        arg_copyout = len(call.copyout) != 0
        emit_call = self.opts.enable_tun or call_name not in TUN_ONLY_CALLS
        if not emit_call:
            LOGGER.debug("skipping %s: requires tun", call_name)
            return frag

        frag.add(plain(self._invocation(call, res_copyout or arg_copyout)))
        if res_copyout or arg_copyout:
            frag.uses_res = True
            self._emit_copyout(frag, call)
        return frag

    def _emit_copyin(self, frag: Fragment, addr: int, arg) -> None:
        if isinstance(arg, ConstArg):
            bits = arg.size * 8
            if not arg.is_bitfield:
                frag.add(guarded(f"*(uint{bits}_t*)0x{addr:x} = {const_arg_to_str(arg, self.opts)}"))
            else:
                frag.add(guarded(
                    f"STORE_BY_BITMASK(uint{bits}_t, 0x{addr:x}, {const_arg_to_str(arg, self.opts)}, "
                    f"{arg.bitfield_offset}, {arg.bitfield_length})"
                ))
        elif isinstance(arg, ResultArg):
            frag.add(guarded(f"*(uint{arg.size * 8}_t*)0x{addr:x} = {result_arg_to_str(arg)}"))
        elif isinstance(arg, DataArg):
            frag.add(guarded(f'memcpy((void*)0x{addr:x}, "{to_c_string(arg.data)}", {len(arg.data)})'))
        elif isinstance(arg, CsumArg):
            self._emit_csum(frag, addr, arg)
        else:
            raise TypeError(f"bad argument type: {arg!r}")

    def _emit_csum(self, frag: Fragment, addr: int, arg: CsumArg) -> None:
        if arg.kind is not CsumKind.INET:
            raise TypeError(f"unknown csum kind {arg.kind!r}")
        self.csum_seq += 1
        seq = self.csum_seq
        frag.add(plain(f"struct csum_inet csum_{seq};"))
        frag.add(plain(f"csum_inet_init(&csum_{seq});"))
        for i, chunk in enumerate(arg.chunks):
            if chunk.kind is CsumChunkKind.DATA:
                frag.add(guarded(
                    f"csum_inet_update(&csum_{seq}, (const uint8_t*)0x{chunk.value:x}, {chunk.size})"
                ))
            elif chunk.kind is CsumChunkKind.CONST:
                frag.add(plain(f"uint{chunk.size * 8}_t csum_{seq}_chunk_{i} = 0x{chunk.value:x};"))
                frag.add(plain(
                    f"csum_inet_update(&csum_{seq}, (const uint8_t*)&csum_{seq}_chunk_{i}, {chunk.size});"
                ))
            else:
                raise TypeError(f"unknown checksum chunk kind {chunk.kind!r}")
        frag.add(guarded(f"*(uint16_t*)0x{addr:x} = csum_inet_digest(&csum_{seq})"))

    def _invocation(self, call: DecodedCall, assign_res: bool) -> str:
        call_name = call.meta.call_name
        native = not call.meta.is_pseudo
        args = [arg_to_str(a, self.opts) for a in call.args]
        if native:
            head = f"syscall({self.syscall_prefix}{call_name}"
            body = "".join(f", {a}" for a in args)
        else:
            head = f"{call_name}("
            body = ", ".join(args)
        prefix = "res = " if assign_res else ""
        return f"{prefix}{head}{body});"

    def _emit_copyout(self, frag: Fragment, call: DecodedCall) -> None:
        res_copyout = call.captures_result
        multiple = len(call.copyout) > 1 or (res_copyout and len(call.copyout) > 0)
        frag.add(plain("if (res != -1) {" if multiple else "if (res != -1)"))
        if res_copyout:
            frag.add(plain(f"r[{call.index}] = res;", depth=2))
        for copyout in call.copyout:
            frag.add(guarded(f"r[{copyout.index}] = *(uint{copyout.size * 8}_t*)0x{copyout.addr:x}", depth=2))
        if multiple:
            frag.add(plain("}"))


# ────────────────────────────────────────────────────────────────────────────
# Program emitter
# ────────────────────────────────────────────────────────────────────────────

def generate_calls(
    decoded: DecodedProgram,
    opts: Options,
    *,
    syscall_prefix: str = "__NR_",
    inject_faults: bool = True,
) -> Tuple[List[Fragment], Tuple[int, ...]]:
    """Return one fragment per decoded call, in order, plus the result table."""
    emitter = CallEmitter(opts, syscall_prefix, inject_faults=inject_faults)
    fragments = [emitter.emit(ci, call) for ci, call in enumerate(decoded.calls)]
    LOGGER.debug("emitted %d call fragments, %d result slots", len(fragments), len(decoded.vars))
    return fragments, tuple(decoded.vars)


def fragments_use_res(fragments: Sequence[Fragment]) -> bool:
    return any(f.uses_res for f in fragments)
