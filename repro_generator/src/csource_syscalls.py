from __future__ import annotations

from typing import Iterable, Mapping

from csource_prog import CallMeta
from sys_targets import SysTarget


def collect_call_numbers(*call_lists: Iterable[CallMeta]) -> dict[str, int]:
    """Union of call name -> number over several programs."""
    calls: dict[str, int] = {}
    for metas in call_lists:
        for meta in metas:
            calls[meta.call_name] = meta.nr
    return calls


def generate_syscall_defines(calls: Mapping[str, int], target: SysTarget) -> str:
    """Fallback syscall number definitions for headers that may lack them.

    Names are visited sorted so the output is identical from run to run.
    """
    prefix = target.syscall_prefix
    out: list[str] = []
    for name in sorted(calls):
        if name.startswith("syz_") or not target.need_syscall_define(name):
            continue
        out.append(f"#ifndef {prefix}{name}\n")
        out.append(f"#define {prefix}{name} {calls[name]}\n")
        out.append("#endif\n")
    if target.os == "linux" and target.ptr_size == 4:
        # 32-bit libc maps mmap onto old_mmap, which takes a struct pointer.
        # mmap2 has the signature the program was built against.
        out.append("#undef __NR_mmap\n")
        out.append("#define __NR_mmap __NR_mmap2\n")
    out.append("\n")
    return "".join(out)
