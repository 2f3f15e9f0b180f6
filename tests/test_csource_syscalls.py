from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "repro_generator" / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from csource_prog import CallMeta
from csource_syscalls import collect_call_numbers, generate_syscall_defines
from sys_targets import get_target


def test_collect_call_numbers_is_union():
    calls = collect_call_numbers(
        [CallMeta("mmap", 9)],
        [CallMeta("pipe", 22), CallMeta("mmap", 9), CallMeta("syz_open_dev", 0)],
    )
    assert calls == {"mmap": 9, "pipe": 22, "syz_open_dev": 0}


def test_defines_sorted_and_filtered():
    target = get_target("linux", "amd64")
    out = generate_syscall_defines(
        {"pipe": 22, "bpf": 321, "mmap": 9, "syz_open_dev": 0},
        target,
    )
    assert out == (
        "#ifndef __NR_bpf\n"
        "#define __NR_bpf 321\n"
        "#endif\n"
        "#ifndef __NR_pipe\n"
        "#define __NR_pipe 22\n"
        "#endif\n"
        "\n"
    )


def test_defines_are_byte_stable_regardless_of_insertion_order():
    target = get_target("linux", "arm64")
    a = generate_syscall_defines({"pipe2": 59, "bpf": 280, "open": 1024}, target)
    b = generate_syscall_defines({"open": 1024, "bpf": 280, "pipe2": 59}, target)
    assert a == b
    assert "#define __NR_open 1024\n" in a


@pytest.mark.parametrize("arch", ["386", "arm"])
def test_32bit_linux_aliases_mmap_to_mmap2(arch: str):
    out = generate_syscall_defines({"mmap": 192}, get_target("linux", arch))
    assert out.endswith("#undef __NR_mmap\n#define __NR_mmap __NR_mmap2\n\n")


def test_64bit_linux_has_no_mmap_alias():
    out = generate_syscall_defines({"mmap": 9}, get_target("linux", "amd64"))
    assert "mmap2" not in out


def test_unknown_target():
    with pytest.raises(KeyError):
        get_target("plan9", "amd64")
