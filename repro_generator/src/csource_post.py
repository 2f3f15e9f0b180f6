from __future__ import annotations

import re

from csource_options import Options


_NONFAILING_RE = re.compile(r"(\t*)NONFAILING\((.*)\);\n")
# A debug(...) / debug_dump_data(...) call statement; string literals may hold ';'.
_DEBUG_CALL = r'(?<![\w.>])(?<!void )debug(?:_dump_data)?\((?:[^;"\n]|"(?:[^"\\\n]|\\.)*")*\);'
_DEBUG_LINE_RE = re.compile(r"^[ \t]*" + _DEBUG_CALL + r"[ \t]*\n", re.MULTILINE)
_DEBUG_INLINE_RE = re.compile(_DEBUG_CALL)
_COSMETIC_TOKENS = ("NORETURN", "PRINTF")


def unwrap_nonfailing(text: str) -> str:
    return _NONFAILING_RE.sub(lambda m: m.group(1) + m.group(2) + ";\n", text)


def strip_debug(text: str) -> str:
    """Delete debug statement lines; calls sharing a line become empty statements."""
    text = _DEBUG_LINE_RE.sub("", text)
    return _DEBUG_INLINE_RE.sub(";", text)


def strip_cosmetic_tokens(text: str) -> str:
    for token in _COSMETIC_TOKENS:
        text = text.replace(token, "")
    return text


def collapse_blank_lines(text: str) -> str:
    while True:
        out = text.replace("\n\n\n", "\n\n").replace("\n\n#include", "\n#include")
        if len(out) == len(text):
            return out
        text = out


def postprocess(text: str, opts: Options) -> str:
    """Final text clean-up of a complete document."""
    if not opts.handle_segv:
        text = unwrap_nonfailing(text)
    if not opts.debug:
        text = strip_debug(text)
    text = strip_cosmetic_tokens(text)
    return collapse_blank_lines(text)
