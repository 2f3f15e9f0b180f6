"""Rendering of single arguments and raw data blocks as C expressions."""

from __future__ import annotations

from csource_options import Options
from csource_prog import ConstArg, ResultArg


def const_arg_to_str(arg: ConstArg, opts: Options) -> str:
    mask = (1 << (arg.size * 8)) - 1
    v = arg.value & mask
    if v == mask:
        val = "-1"
    elif v >= 10:
        val = f"0x{v:x}"
    else:
        val = str(v)
    if opts.procs > 1 and arg.pid_stride != 0:
        val += f" + procid*{arg.pid_stride}"
    if arg.big_endian:
        val = f"htobe{arg.size * 8}({val})"
    return val


def result_arg_to_str(arg: ResultArg) -> str:
    res = f"r[{arg.index}]"
    if arg.div_op != 0:
        res = f"{res}/{arg.div_op}"
    if arg.add_op != 0:
        res = f"{res}+{arg.add_op}"
    return res


def arg_to_str(arg, opts: Options) -> str:
    if isinstance(arg, ConstArg):
        return const_arg_to_str(arg, opts)
    if isinstance(arg, ResultArg):
        return result_arg_to_str(arg)
    raise TypeError(f"unknown arg type: {arg!r}")


_ESCAPES = {
    ord("\t"): "\\t",
    ord("\r"): "\\r",
    ord("\n"): "\\n",
    ord("\\"): "\\\\",
    ord('"'): '\\"',
}


def _is_readable(v: int) -> bool:
    return 0x20 <= v < 0x7F or v in (0x09, 0x0D, 0x0A)


def to_c_string(data: bytes) -> str:
    """Body of a C string literal holding ``data``.

    Text-looking blocks stay readable; anything else is fully hex escaped.
    A single trailing NUL is allowed in a readable block and dropped, since
    the literal is NUL-terminated anyway.
    """
    if not data:
        return ""
    last = len(data) - 1
    readable = all(_is_readable(v) or (i == last and v == 0) for i, v in enumerate(data))
    if not readable:
        return "".join(f"\\x{v:02x}" for v in data)
    if data[last] == 0:
        data = data[:last]
    out: list[str] = []
    for v in data:
        esc = _ESCAPES.get(v)
        if esc is not None:
            out.append(esc)
            continue
        if v < 0x20 or v >= 0x7F:
            raise ValueError("unexpected char during data serialization")
        out.append(chr(v))
    return "".join(out)
