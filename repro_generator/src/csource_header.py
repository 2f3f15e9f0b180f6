"""Shared preamble placed between the banner and the generated code.

The runtime routines referenced by generated statements (NONFAILING,
sandbox setup, checksum helpers, ...) live in an external header. Feature
macros tell that header which parts the program actually needs.
"""

from __future__ import annotations

from typing import Iterable

from csource_options import Options


DEFAULT_RUNTIME_HEADER = "common_linux.h"

_BASE_INCLUDES = (
    "#define _GNU_SOURCE",
    "",
    "#include <endian.h>",
    "#include <stdint.h>",
    "#include <string.h>",
    "#include <sys/syscall.h>",
    "#include <unistd.h>",
)


def feature_defines(opts: Options) -> list[str]:
    defines: list[str] = []
    if opts.sandbox:
        defines.append("SYZ_SANDBOX_" + opts.sandbox.upper())
    if opts.threaded:
        defines.append("SYZ_THREADED")
    if opts.collide:
        defines.append("SYZ_COLLIDE")
    if opts.repeat:
        defines.append("SYZ_REPEAT")
    if opts.fault:
        defines.append("SYZ_FAULT_INJECTION")
    if opts.enable_tun:
        defines.append("SYZ_TUN_ENABLE")
    if opts.use_tmp_dir:
        defines.append("SYZ_USE_TMP_DIR")
    if opts.handle_segv:
        defines.append("SYZ_HANDLE_SEGV")
    if opts.debug:
        defines.append("SYZ_DEBUG")
    return defines


def create_common_header(call_names: Iterable[str], opts: Options, runtime_header: str | None = None) -> str:
    """Build the preamble.

    ``runtime_header`` is the text of the runtime header to inline; when it
    is missing the program includes ``common_linux.h`` instead.
    """
    lines = list(_BASE_INCLUDES)
    lines.append("")
    for name in feature_defines(opts):
        lines.append(f"#define {name} 1")
    # Pseudo-syscall implementations are compiled in only when used.
    for name in sorted({n for n in call_names if n.startswith("syz_")}):
        lines.append(f"#define __NR_{name} 1")
    lines.append("")
    if runtime_header:
        lines.append(runtime_header.rstrip("\n"))
    else:
        lines.append(f'#include "{DEFAULT_RUNTIME_HEADER}"')
    return "\n".join(lines) + "\n"
