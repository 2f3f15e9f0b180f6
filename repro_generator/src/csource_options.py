from __future__ import annotations

from pydantic import BaseModel, Field


SANDBOXES = ("", "none", "setuid", "namespace")


class OptionsError(ValueError):
    pass


class Options(BaseModel):
    """Knobs that shape the generated program.

    An instance is validated once with ``check()``; the generator itself
    trusts whatever it is given.
    """

    threaded: bool = False
    collide: bool = False
    repeat: bool = False
    procs: int = 1
    sandbox: str = ""

    fault: bool = False
    fault_call: int = -1
    fault_nth: int = 0

    enable_tun: bool = False
    use_tmp_dir: bool = False
    handle_segv: bool = False
    debug: bool = False
    # Print "executing program" before each run so that log-based
    # reproduction can spot program boundaries.
    repro: bool = False

    version: int = Field(default=1, description="Schema version")

    def check(self) -> None:
        if not self.threaded and self.collide:
            raise OptionsError("Collide without Threaded")
        if self.procs < 1:
            raise OptionsError(f"bad Procs value: {self.procs}")
        if not self.repeat and self.procs > 1:
            raise OptionsError("Procs>1 without Repeat")
        if self.sandbox not in SANDBOXES:
            raise OptionsError(f"unknown sandbox {self.sandbox!r}")
        if self.sandbox == "namespace" and not self.use_tmp_dir:
            raise OptionsError("Sandbox=namespace without UseTmpDir")
        if self.fault and (self.fault_call < 0 or self.fault_nth < 0):
            raise OptionsError(
                f"bad fault injection target call={self.fault_call} nth={self.fault_nth}"
            )


def default_options() -> Options:
    return Options()
