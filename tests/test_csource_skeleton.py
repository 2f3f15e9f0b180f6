from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "repro_generator" / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

import csource_skeleton as sk
from csource_calls import Fragment, plain
from csource_options import Options


def _frags(n: int) -> list[Fragment]:
    return [Fragment(stmts=[plain(f"syscall(__NR_call{i});")]) for i in range(n)]


def test_result_table_only_when_slots_exist():
    assert sk.result_table_decl(()) == ""
    assert sk.result_table_decl((0xFFFFFFFFFFFFFFFF, 0)) == "uint64_t r[2] = {0xffffffffffffffff, 0x0};\n"


def test_procid_declared_only_for_several_procs():
    assert sk.procid_decl(Options()) == ""
    assert sk.procid_decl(Options(repeat=True, procs=2)) == "unsigned long long procid;\n"


@pytest.mark.parametrize(
    "opts,shape",
    [
        (Options(), sk.MainShape.RUN_ONCE),
        (Options(repeat=True), sk.MainShape.REPEAT),
        (Options(repeat=True, procs=1), sk.MainShape.REPEAT),
        (Options(repeat=True, procs=5), sk.MainShape.REPEAT_PROCS),
    ],
)
def test_select_shape(opts: Options, shape: sk.MainShape):
    assert sk.select_shape(opts) is shape


def test_flat_dispatch_runs_fragments_in_order():
    out = sk.generate_test_func(_frags(2), False, "loop", Options())
    assert out == (
        "void loop()\n{\n"
        "\tsyscall(__NR_call0);\n"
        "\tsyscall(__NR_call1);\n"
        "}\n\n"
    )
    assert "execute_call" not in out


def test_flat_dispatch_declares_res_when_used():
    out = sk.generate_test_func(_frags(1), True, "execute_one", Options(repeat=True))
    assert out.startswith("void execute_one()\n{\n\tlong res = 0;\n")


def test_debug_and_repro_prologue():
    out = sk.generate_test_func(_frags(1), False, "loop", Options(debug=True, repro=True))
    lines = out.splitlines()
    assert lines[2] == '\tdebug("loop\\n");'
    assert lines[3] == '\tsyscall(SYS_write, 1, "executing program\\n", strlen("executing program\\n"));'


def test_threaded_dispatch_is_indexed_without_collide():
    out = sk.generate_test_func(_frags(2), True, "loop", Options(threaded=True))
    assert "void execute_call(int call)\n{\n\tlong res = 0;\n\tswitch (call) {\n" in out
    assert "\tcase 0:\n\t\tsyscall(__NR_call0);\n\t\tbreak;\n" in out
    assert "\tcase 1:\n\t\tsyscall(__NR_call1);\n\t\tbreak;\n" in out
    assert out.count("execute(2);") == 1
    assert "collide" not in out


def test_collide_toggles_then_reruns():
    out = sk.generate_test_func(_frags(3), False, "loop", Options(threaded=True, collide=True))
    assert out.endswith("\texecute(3);\n\tcollide = 1;\n\texecute(3);\n}\n\n")
    assert out.count("execute(3);") == 2


def test_run_once_main():
    out = sk.generate_main(_frags(1), Options())
    assert out == (
        "int main()\n{\n"
        "\tsyscall(__NR_call0);\n"
        "\tloop();\n"
        "\treturn 0;\n}\n"
    )


def test_run_once_with_sandbox_waits_for_child():
    out = sk.generate_main([], Options(sandbox="setuid", handle_segv=True, use_tmp_dir=True, enable_tun=True))
    assert out == (
        "int main()\n{\n"
        "\tinstall_segv_handler();\n"
        "\tuse_temporary_dir();\n"
        "\tint pid = do_sandbox_setuid();\n"
        "\tint status = 0;\n"
        "\twhile (waitpid(pid, &status, __WALL) != pid) {}\n"
        "\treturn 0;\n}\n"
    )
    assert "initialize_tun" not in out


def test_run_once_without_sandbox_brings_up_network_first():
    out = sk.generate_main([], Options(enable_tun=True))
    assert "\tinitialize_tun();\n\tinitialize_netdevices();\n\tloop();\n" in out


def test_repeat_single_process_main():
    out = sk.generate_main([], Options(repeat=True, use_tmp_dir=True, sandbox="none"))
    assert out == (
        "int main()\n{\n"
        "\tchar *cwd = get_current_dir_name();\n"
        "\tfor (;;) {\n"
        "\t\tif (chdir(cwd))\n"
        '\t\t\tfail("failed to chdir");\n'
        "\t\tuse_temporary_dir();\n"
        "\t\tint pid = do_sandbox_none();\n"
        "\t\tint status = 0;\n"
        "\t\twhile (waitpid(pid, &status, __WALL) != pid) {}\n"
        "\t}\n}\n"
    )
    assert "fork()" not in out


def test_three_procs_fork_without_waiting():
    out = sk.generate_main([], Options(repeat=True, procs=3))
    assert out == (
        "int main()\n{\n"
        "\tfor (procid = 0; procid < 3; procid++) {\n"
        "\t\tif (fork() == 0) {\n"
        "\t\t\tfor (;;) {\n"
        "\t\t\t\tloop();\n"
        "\t\t\t}\n"
        "\t\t}\n"
        "\t}\n"
        "\tsleep(1000000);\n"
        "\treturn 0;\n}\n"
    )
    assert out.count("fork()") == 1
    assert "waitpid" not in out


def test_procs_children_install_segv_handler_and_reenter_tmpdir():
    out = sk.generate_main([], Options(repeat=True, procs=2, handle_segv=True, use_tmp_dir=True))
    assert out.index("char *cwd") < out.index("fork()") < out.index("install_segv_handler")
    assert "\t\t\t\tif (chdir(cwd))\n\t\t\t\t\tfail(\"failed to chdir\");\n\t\t\t\tuse_temporary_dir();\n" in out


@pytest.mark.parametrize(
    "opts",
    [
        Options(),
        Options(repeat=True),
        Options(repeat=True, procs=4),
        Options(repeat=True, procs=4, threaded=True, collide=True, sandbox="namespace", use_tmp_dir=True),
    ],
)
def test_exactly_one_main_shape(opts: Options):
    out = sk.generate_main([], opts)
    markers = {
        sk.MainShape.RUN_ONCE: "return 0;\n}\n" in out and "for (" not in out,
        sk.MainShape.REPEAT: "\tfor (;;) {\n" in out and "fork()" not in out,
        sk.MainShape.REPEAT_PROCS: "fork()" in out,
    }
    assert [shape for shape, hit in markers.items() if hit] == [sk.select_shape(opts)]
