from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SysTarget:
    os: str
    arch: str
    ptr_size: int
    syscall_prefix: str = "__NR_"
    page_size: int = 4 << 10
    num_pages: int = 4 << 10
    data_offset: int = 512 << 20
    # Number of the mmap flavour the auxiliary setup program calls.
    mmap_nr: int = 9
    # Call names the target's own headers always define.
    known_syscalls: frozenset[str] = field(default_factory=frozenset)

    @property
    def name(self) -> str:
        return f"{self.os}/{self.arch}"

    def need_syscall_define(self, call_name: str) -> bool:
        return call_name not in self.known_syscalls


# Syscalls every libc header set we target is guaranteed to define.
_LINUX_BASELINE = frozenset({
    "read",
    "write",
    "open",
    "close",
    "mmap",
    "munmap",
    "ioctl",
    "socket",
    "exit",
})


TARGETS: dict[str, SysTarget] = {
    t.name: t
    for t in (
        SysTarget("linux", "amd64", 8, mmap_nr=9, known_syscalls=_LINUX_BASELINE),
        SysTarget("linux", "386", 4, mmap_nr=192, known_syscalls=_LINUX_BASELINE),
        SysTarget("linux", "arm64", 8, mmap_nr=222, known_syscalls=_LINUX_BASELINE - {"open"}),
        SysTarget("linux", "arm", 4, mmap_nr=192, known_syscalls=_LINUX_BASELINE),
        SysTarget("linux", "ppc64le", 8, mmap_nr=90, known_syscalls=_LINUX_BASELINE),
    )
}


def get_target(os_name: str, arch: str) -> SysTarget:
    key = f"{os_name}/{arch}"
    try:
        return TARGETS[key]
    except KeyError:
        raise KeyError(f"unknown target {key}") from None
