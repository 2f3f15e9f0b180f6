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
csource_skeleton.py
───────────────────

Execution skeleton of the generated program: result table, dispatch
function(s) and `main`.

`main` takes exactly one of three shapes:
  • run-once: set up, run the calls a single time, exit;
  • repeat, one process: set up, then loop forever;
  • repeat, several processes: fork `procs` children that each loop forever
    while the parent sleeps until the process group is torn down.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Sequence

from csource_calls import Fragment, debug, plain, render_fragment, render_stmt
from csource_options import Options


class MainShape(Enum):
    RUN_ONCE = "run-once"
    REPEAT = "repeat"
    REPEAT_PROCS = "repeat-procs"


REPRO_MARKER = "executing program\\n"


def select_shape(opts: Options) -> MainShape:
    if not opts.repeat:
        return MainShape.RUN_ONCE
    if opts.procs <= 1:
        return MainShape.REPEAT
    return MainShape.REPEAT_PROCS


def dispatch_func_name(opts: Options) -> str:
    # In repeat mode the runtime's loop() drives execute_one().
    return "execute_one" if opts.repeat else "loop"


# ────────────────────────────────────────────────────────────────────────────
# Declarations
# ────────────────────────────────────────────────────────────────────────────

def result_table_decl(vars: Sequence[int]) -> str:
    if not vars:
        return ""
    values = ", ".join(f"0x{v:x}" for v in vars)
    return f"uint64_t r[{len(vars)}] = {{{values}}};\n"


def procid_decl(opts: Options) -> str:
    return "unsigned long long procid;\n" if opts.procs > 1 else ""


# ────────────────────────────────────────────────────────────────────────────
# Dispatch
# ────────────────────────────────────────────────────────────────────────────

def _prologue(name: str, opts: Options) -> str:
    # debug() keeps the runtime's debug helper referenced in debug builds.
    out = render_stmt(debug(f'debug("{name}\\n");'), opts)
    if opts.repro:
        out += render_stmt(
            plain(f'syscall(SYS_write, 1, "{REPRO_MARKER}", strlen("{REPRO_MARKER}"));'),
            opts,
        )
    return out


def generate_test_func(fragments: Sequence[Fragment], uses_res: bool, name: str, opts: Options) -> str:
    out: List[str] = []
    if not opts.threaded and not opts.collide:
        out.append(f"void {name}()\n{{\n")
        if uses_res:
            out.append("\tlong res = 0;\n")
        out.append(_prologue(name, opts))
        for frag in fragments:
            out.append(render_fragment(frag, opts))
        out.append("}\n\n")
        return "".join(out)

    out.append("void execute_call(int call)\n{\n")
    if uses_res:
        out.append("\tlong res = 0;\n")
    out.append("\tswitch (call) {\n")
    for i, frag in enumerate(fragments):
        out.append(f"\tcase {i}:\n")
        out.append(render_fragment(frag, opts, extra_depth=1))
        out.append("\t\tbreak;\n")
    out.append("\t}\n")
    out.append("}\n\n")

    out.append(f"void {name}()\n{{\n")
    out.append(_prologue(name, opts))
    out.append(f"\texecute({len(fragments)});\n")
    if opts.collide:
        out.append("\tcollide = 1;\n")
        out.append(f"\texecute({len(fragments)});\n")
    out.append("}\n\n")
    return "".join(out)


# ────────────────────────────────────────────────────────────────────────────
# main
# ────────────────────────────────────────────────────────────────────────────

def _run_block(opts: Options, depth: int) -> List[str]:
    """Either hand the run to a sandboxed child and reap it, or run inline."""
    ind = "\t" * depth
    if opts.sandbox:
        return [
            f"{ind}int pid = do_sandbox_{opts.sandbox}();\n",
            f"{ind}int status = 0;\n",
            f"{ind}while (waitpid(pid, &status, __WALL) != pid) {{}}\n",
        ]
    lines: List[str] = []
    if opts.enable_tun:
        lines.append(f"{ind}initialize_tun();\n")
        lines.append(f"{ind}initialize_netdevices();\n")
    lines.append(f"{ind}loop();\n")
    return lines


def _iteration(opts: Options, depth: int) -> List[str]:
    ind = "\t" * depth
    lines: List[str] = []
    if opts.use_tmp_dir:
        lines.append(f"{ind}if (chdir(cwd))\n")
        lines.append(f'{ind}\tfail("failed to chdir");\n')
        lines.append(f"{ind}use_temporary_dir();\n")
    lines.extend(_run_block(opts, depth))
    return lines


def generate_main(mmap_fragments: Sequence[Fragment], opts: Options) -> str:
    shape = select_shape(opts)
    out: List[str] = ["int main()\n{\n"]
    for frag in mmap_fragments:
        out.append(render_fragment(frag, opts))

    if shape is MainShape.RUN_ONCE:
        if opts.handle_segv:
            out.append("\tinstall_segv_handler();\n")
        if opts.use_tmp_dir:
            out.append("\tuse_temporary_dir();\n")
        out.extend(_run_block(opts, 1))
        out.append("\treturn 0;\n}\n")
    elif shape is MainShape.REPEAT:
        if opts.handle_segv:
            out.append("\tinstall_segv_handler();\n")
        if opts.use_tmp_dir:
            out.append("\tchar *cwd = get_current_dir_name();\n")
        out.append("\tfor (;;) {\n")
        out.extend(_iteration(opts, 2))
        out.append("\t}\n}\n")
    else:
        if opts.use_tmp_dir:
            out.append("\tchar *cwd = get_current_dir_name();\n")
        out.append(f"\tfor (procid = 0; procid < {opts.procs}; procid++) {{\n")
        out.append("\t\tif (fork() == 0) {\n")
        if opts.handle_segv:
            out.append("\t\t\tinstall_segv_handler();\n")
        out.append("\t\t\tfor (;;) {\n")
        out.extend(_iteration(opts, 4))
        out.append("\t\t\t}\n")
        out.append("\t\t}\n")
        out.append("\t}\n")
        out.append("\tsleep(1000000);\n")
        out.append("\treturn 0;\n}\n")
    return "".join(out)
