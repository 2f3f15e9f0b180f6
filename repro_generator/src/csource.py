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
csource.py
──────────

Generates [almost] equivalent standalone C programs from fuzz programs.

The program is serialized into its execution encoding and decoded back into
a flat list of calls, twice: once for the auxiliary mmap setup program and
once for the program itself. The decoded calls are rendered into statement
fragments and stitched into a skeleton chosen by the options:
  • run once,
  • repeat forever in one process,
  • repeat forever in `procs` forked processes.

Usage:
    syz-csource prog.json --repeat --procs 4 --sandbox none -o repro.c
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from csource_calls import Fragment, fragments_use_res, generate_calls
from csource_header import create_common_header
from csource_options import Options, OptionsError
from csource_post import postprocess
from csource_prog import DecodedProgram, Prog
from csource_skeleton import (
    dispatch_func_name,
    generate_main,
    generate_test_func,
    procid_decl,
    result_table_decl,
    select_shape,
)
from csource_syscalls import collect_call_numbers, generate_syscall_defines
from generator_config import DEFAULT_BANNER, load_config, read_runtime_header
from prog_json import ProgramFormatError, parse_program
from sys_targets import SysTarget, get_target


LOGGER = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Exceptions
# ────────────────────────────────────────────────────────────────────────────

class CSourceError(RuntimeError):
    pass


# ────────────────────────────────────────────────────────────────────────────
# Generation
# ────────────────────────────────────────────────────────────────────────────

def _decode(prog: Prog) -> DecodedProgram:
    try:
        data = prog.serialize_for_exec()
    except Exception as e:
        raise CSourceError(f"failed to serialize program: {e}") from e
    try:
        return prog.target.deserialize_exec(data)
    except Exception as e:
        raise CSourceError(str(e)) from e


def generate_prog_calls(
    prog: Prog,
    opts: Options,
    sys_target: SysTarget,
    *,
    inject_faults: bool = True,
) -> Tuple[List[Fragment], Tuple[int, ...]]:
    decoded = _decode(prog)
    return generate_calls(
        decoded,
        opts,
        syscall_prefix=sys_target.syscall_prefix,
        inject_faults=inject_faults,
    )


def write(
    prog: Prog,
    opts: Options,
    *,
    runtime_header: Optional[str] = None,
    banner: str = DEFAULT_BANNER,
) -> str:
    """Return the complete C source reproducing ``prog``.

    Raises CSourceError when the options are invalid or the program cannot
    be serialized/decoded; nothing partial is ever returned.
    """
    try:
        opts.check()
    except OptionsError as e:
        raise CSourceError(f"csource: invalid opts: {e}") from e

    target = prog.target
    try:
        sys_target = get_target(target.os, target.arch)
    except KeyError as e:
        raise CSourceError(str(e.args[0])) from e

    calls, vars = generate_prog_calls(prog, opts, sys_target)
    mmap_prog = target.generate_uber_mmap_prog()
    # Fault injection targets an ordinal of the program, not of the setup.
    mmap_calls, _ = generate_prog_calls(mmap_prog, opts, sys_target, inject_faults=False)

    call_numbers = collect_call_numbers(
        (c.meta for c in mmap_prog.calls),
        (c.meta for c in prog.calls),
    )
    LOGGER.debug(
        "target=%s calls=%d mmap_calls=%d vars=%d shape=%s",
        sys_target.name, len(calls), len(mmap_calls), len(vars), select_shape(opts).value,
    )

    out: List[str] = [banner.rstrip("\n") + "\n\n"]
    out.append(create_common_header(call_numbers.keys(), opts, runtime_header))
    out.append("\n")
    out.append(generate_syscall_defines(call_numbers, sys_target))
    out.append(result_table_decl(vars))
    out.append(procid_decl(opts))
    out.append("\n")
    out.append(generate_test_func(calls, fragments_use_res(calls), dispatch_func_name(opts), opts))
    out.append(generate_main(mmap_calls, opts))
    return postprocess("".join(out), opts)


# ────────────────────────────────────────────────────────────────────────────
# CLI
# ────────────────────────────────────────────────────────────────────────────

def _options_from_args(args: argparse.Namespace) -> Options:
    fault = args.fault_call is not None
    return Options(
        threaded=args.threaded or args.collide,
        collide=args.collide,
        repeat=args.repeat,
        procs=args.procs,
        sandbox=args.sandbox,
        fault=fault,
        fault_call=args.fault_call if fault else -1,
        fault_nth=args.fault_nth,
        enable_tun=args.tun,
        use_tmp_dir=args.tmpdir,
        handle_segv=args.segv,
        debug=args.debug,
        repro=args.repro,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate a standalone C reproducer from a decoded fuzz program (JSON).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("program", type=Path, help="Decoded program document (JSON)")
    parser.add_argument("-o", "--output", type=Path, help="Write the C source here instead of stdout")
    parser.add_argument("--env-file", type=Path, default="./.env", help="Optional .env with REPRO_* settings")
    parser.add_argument("--procs", type=int, default=1, help="Number of parallel processes (requires --repeat)")
    parser.add_argument("--repeat", action="store_true", help="Repeat the program forever")
    parser.add_argument("--threaded", action="store_true", help="Emit an addressable per-call dispatch function")
    parser.add_argument("--collide", action="store_true", help="Re-run the calls overlapping with themselves (implies --threaded)")
    parser.add_argument("--sandbox", default="", choices=["", "none", "setuid", "namespace"], help="Sandbox to run the program in")
    parser.add_argument("--fault-call", type=int, default=None, help="Inject a fault into this call ordinal")
    parser.add_argument("--fault-nth", type=int, default=0, help="Fail the Nth eligible site of the faulted call")
    parser.add_argument("--tun", action="store_true", help="Bring up the tun device and network interfaces")
    parser.add_argument("--tmpdir", action="store_true", help="Run inside a fresh temporary directory")
    parser.add_argument("--segv", action="store_true", help="Tolerate faults on program memory accesses")
    parser.add_argument("--debug", action="store_true", help="Keep debug output in the generated program")
    parser.add_argument("--repro", action="store_true", help="Print a marker before every program run")
    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    load_dotenv(os.path.expanduser(str(args.env_file)))
    cfg = load_config()

    try:
        text = args.program.read_text(encoding="utf-8")
        prog = parse_program(text, default_os=cfg.default_os, default_arch=cfg.default_arch)
        source = write(
            prog,
            _options_from_args(args),
            runtime_header=read_runtime_header(cfg),
            banner=cfg.banner,
        )
    except (OSError, ProgramFormatError, CSourceError) as e:
        LOGGER.error("%s", e)
        return 1

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(source, encoding="utf-8")
        LOGGER.info("wrote %s (%d bytes)", args.output, len(source))
    else:
        sys.stdout.write(source)
    return 0


if __name__ == "__main__":
    sys.exit(main())
