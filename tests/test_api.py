from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "repro_generator" / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

import repro_api
from generator_config import GeneratorConfig


_PROGRAM = {
    "target": "linux/amd64",
    "vars": [],
    "calls": [{"name": "foo", "nr": 500, "args": [{"kind": "const", "size": 4, "value": 7}]}],
}


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("REPRO_CONFIG_DIR", str(tmp_path))
    monkeypatch.setattr(repro_api, "load_dotenv", lambda *a, **k: False)
    for name in ("REPRO_DEFAULT_OS", "REPRO_DEFAULT_ARCH", "REPRO_RUNTIME_HEADER", "REPRO_BANNER"):
        monkeypatch.setenv(name, "")
    yield
    repro_api._cfg_set(GeneratorConfig())


def test_generate_csource():
    with TestClient(repro_api.app) as client:
        response = client.post("/api/csource", json={"program": _PROGRAM})

    assert response.status_code == 200
    data = response.json()
    assert data["target"] == "linux/amd64"
    assert data["calls"] == 1
    assert "\tsyscall(__NR_foo, 7);\n" in data["source"]
    assert "uint64_t r[" not in data["source"]


def test_generate_csource_with_options():
    with TestClient(repro_api.app) as client:
        response = client.post(
            "/api/csource",
            json={"program": _PROGRAM, "options": {"repeat": True, "procs": 3}},
        )

    assert response.status_code == 200
    source = response.json()["source"]
    assert "procid < 3" in source
    assert "void execute_one()" in source


def test_invalid_options_return_400():
    with TestClient(repro_api.app) as client:
        response = client.post(
            "/api/csource",
            json={"program": _PROGRAM, "options": {"collide": True}},
        )

    assert response.status_code == 400
    assert "invalid opts" in response.json()["detail"]


def test_unknown_target_returns_400():
    program = dict(_PROGRAM, target="linux/sparc")
    with TestClient(repro_api.app) as client:
        response = client.post("/api/csource", json={"program": program})

    assert response.status_code == 400
    assert "unknown target" in response.json()["detail"]


def test_malformed_program_is_rejected():
    program = dict(_PROGRAM, calls=[{"name": "foo", "index": 3}])
    with TestClient(repro_api.app) as client:
        response = client.post("/api/csource", json={"program": program})

    assert response.status_code == 400
    assert "invalid program document" in response.json()["detail"]


def test_missing_runtime_header_returns_500(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REPRO_RUNTIME_HEADER", str(tmp_path / "absent.h"))
    with TestClient(repro_api.app) as client:
        response = client.post("/api/csource", json={"program": _PROGRAM})

    assert response.status_code == 500


def test_default_options_and_targets():
    with TestClient(repro_api.app) as client:
        options = client.get("/api/options").json()
        targets = client.get("/api/targets").json()
        root = client.get("/").json()

    assert options["procs"] == 1
    assert options["sandbox"] == ""
    assert "linux/amd64" in targets["items"]
    assert root["service"] == "repro-csource"


@pytest.mark.parametrize(
    "arg",
    [
        {"kind": "const", "size": -1, "value": 7},
        {"kind": "const", "size": 3, "value": 7},
        {"kind": "const", "size": 4, "value": -1},
        {"kind": "result", "size": 8, "index": 0, "add_op": 1 << 64},
    ],
)
def test_out_of_range_args_return_400(arg):
    program = dict(_PROGRAM, vars=[0], calls=[{"name": "foo", "nr": 500, "args": [arg]}])
    with TestClient(repro_api.app) as client:
        response = client.post("/api/csource", json={"program": program})

    assert response.status_code == 400
    assert "invalid program document" in response.json()["detail"]


def test_bad_copyin_address_and_checksum_width_return_400():
    csum = {"kind": "csum", "size": 4, "chunks": [{"kind": "const", "value": 1, "size": 2}]}
    for copyin in (
        {"addr": -16, "arg": {"kind": "const", "size": 2, "value": 1}},
        {"addr": 0x20000000, "arg": csum},
        {"addr": 0x20000000, "arg": dict(csum, size=2, chunks=[{"kind": "const", "value": 1, "size": 3}])},
    ):
        program = dict(_PROGRAM, calls=[{"name": "foo", "nr": 500, "copyin": [copyin]}])
        with TestClient(repro_api.app) as client:
            response = client.post("/api/csource", json={"program": program})
        assert response.status_code == 400


def test_startup_exports_config_to_env(tmp_path: Path):
    (tmp_path / "config.json").write_text('{"default_arch": "arm64"}', encoding="utf-8")
    with TestClient(repro_api.app) as client:
        response = client.post("/api/csource", json={"program": dict(_PROGRAM, target="")})

    assert os.environ["REPRO_DEFAULT_ARCH"] == "arm64"
    assert response.json()["target"] == "linux/arm64"
