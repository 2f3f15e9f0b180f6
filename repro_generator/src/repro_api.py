# repro_api.py
from __future__ import annotations
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import json
import logging
import os
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict

from dotenv import load_dotenv

from csource import CSourceError, write
from csource_options import Options, default_options
from generator_config import GeneratorConfig, apply_config_to_env, load_config, read_runtime_header
from prog_json import ProgramFormatError, parse_program
from sys_targets import TARGETS


LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    load_dotenv()
    cfg = load_config()
    _cfg_set(cfg)
    apply_config_to_env(cfg)
    yield


app = FastAPI(title="C Reproducer API", version="1.0", lifespan=_lifespan)


_CFG_LOCK = threading.Lock()
_CFG: GeneratorConfig = GeneratorConfig()


def _cfg_get() -> GeneratorConfig:
    with _CFG_LOCK:
        return _CFG


def _cfg_set(cfg: GeneratorConfig) -> None:
    global _CFG
    with _CFG_LOCK:
        _CFG = cfg


class csource_request(BaseModel):
    # Validated by parse_program.
    program: Dict[str, Any]
    options: Options = Options()


@app.post("/api/csource")
def generate_csource(request: csource_request):
    cfg = _cfg_get()
    try:
        prog = parse_program(
            json.dumps(request.program),
            default_os=cfg.default_os,
            default_arch=cfg.default_arch,
        )
        source = write(
            prog,
            request.options,
            runtime_header=read_runtime_header(cfg),
            banner=cfg.banner,
        )
    except (ProgramFormatError, CSourceError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        LOGGER.error("runtime header unavailable: %s", e)
        raise HTTPException(status_code=500, detail=f"runtime header unavailable: {e}")
    return {
        "target": prog.target.sys_target.name,
        "calls": len(prog.calls),
        "source": source,
    }


@app.get("/api/options")
def get_default_options():
    return default_options().model_dump()


@app.get("/api/targets")
def list_targets():
    return {"items": sorted(TARGETS)}


@app.get("/")
def service_root():
    return {
        "service": "repro-csource",
        "role": "api-backend-only",
        "entrypoint": "POST /api/csource with {program, options}",
    }


if __name__ == "__main__":
    import uvicorn
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(app, host=host, port=port)
