# web_monitor.py
#
# MIT License
#
# Copyright (c) 2025 Chris Cullin

import logging
import threading

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

import constants as c
from engine_simulator import EngineMode

logger = logging.getLogger("SIM.MONITOR")

router = APIRouter(prefix="/api", tags=["monitor"])
pages = APIRouter()

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class SetModeRequest(BaseModel):
    mode: str


def _get_simulator(request: Request):
    sim = getattr(request.app.state, "simulator", None)
    if sim is None:
        raise HTTPException(503, "Engine simulator not available")
    return sim


# =================================================================
# ROUTES
# =================================================================
@router.get("/status")
async def get_status(request: Request):
    sim = _get_simulator(request)
    return {
        "mode": sim.get_mode().api_name,
        "runtime": sim.get_runtime_seconds(),
    }


@router.get("/realtime")
async def get_realtime(request: Request):
    """Headline gauges from the latest wire record."""
    snapshot = _get_simulator(request).get_snapshot().as_dict()
    return {
        "rpm": snapshot["rpm"],
        "clt": snapshot["clt"],
        "iat": snapshot["iat"],
        "map": snapshot["map"],
        "tps": snapshot["tps"],
        "afr": snapshot["afr"],
        "advance": snapshot["advance"],
        "pw": snapshot["pw"],
        "battery": snapshot["battery"],
        "ve": snapshot["ve"],
    }


@router.get("/statistics")
async def get_statistics(request: Request):
    sim = _get_simulator(request)
    protocol = getattr(request.app.state, "protocol", None)
    stats = protocol.get_statistics() if protocol is not None else {"commands": 0, "errors": 0}
    return {
        "mode": sim.get_mode().label,
        "runtime": sim.get_runtime_seconds(),
        **stats,
    }


@router.post("/setmode")
async def set_mode(request: Request):
    """Accepts the form field `mode=<name>` or a JSON body {"mode": "<name>"}."""
    sim = _get_simulator(request)

    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(FORM_CONTENT_TYPES):
            form = await request.form()
            body = SetModeRequest(mode=form.get("mode"))
        else:
            body = SetModeRequest.model_validate(await request.json())
    except ValueError:
        # bad JSON and pydantic ValidationError both land here
        raise HTTPException(422, "Missing mode parameter")

    try:
        mode = EngineMode.from_api_name(body.mode)
    except ValueError as exc:
        raise HTTPException(400, str(exc))

    sim.set_mode(mode)
    logger.info(f"[MONITOR] Mode forced to {mode.label}")
    return {"success": True, "mode": mode.api_name}


HOME_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>Speeduino Simulator</title>
<style>
body { font-family: Arial, sans-serif; background: #1a1a1a; color: #fff; padding: 20px; }
h1 { color: #00ff88; }
.grid { display: grid; grid-template-columns: repeat(5, 1fr); gap: 10px; }
.gauge { background: #2a2a2a; border-radius: 8px; padding: 12px; text-align: center; }
.value { font-size: 1.6em; color: #00ff88; }
button { background: #00ff88; border: none; padding: 8px 14px; margin: 4px; cursor: pointer; }
</style>
</head>
<body>
<h1>Speeduino Simulator</h1>
<p>Mode: <span id="mode">-</span> | Runtime: <span id="runtime">0</span> s</p>
<div class="grid" id="gauges"></div>
<p>
<button onclick="setMode('idle')">Idle</button>
<button onclick="setMode('light_load')">Light Load</button>
<button onclick="setMode('acceleration')">Acceleration</button>
<button onclick="setMode('high_rpm')">High RPM</button>
<button onclick="setMode('wot')">WOT</button>
</p>
<script>
function refresh() {
  fetch('/api/status').then(r => r.json()).then(s => {
    document.getElementById('mode').textContent = s.mode;
    document.getElementById('runtime').textContent = s.runtime;
  });
  fetch('/api/realtime').then(r => r.json()).then(d => {
    document.getElementById('gauges').innerHTML = Object.entries(d).map(([k, v]) =>
      `<div class="gauge"><div>${k.toUpperCase()}</div><div class="value">${v}</div></div>`).join('');
  });
}
function setMode(mode) {
  fetch('/api/setmode', {method: 'POST', body: new URLSearchParams({mode: mode})}).then(refresh);
}
setInterval(refresh, 500);
refresh();
</script>
</body>
</html>
"""


@pages.get("/", response_class=HTMLResponse, include_in_schema=False)
async def home():
    return HOME_PAGE


# =================================================================
# APP / SERVER
# =================================================================
def create_app(simulator, protocol=None):
    app = FastAPI(title="Speeduino Simulator Monitor", version=c.FIRMWARE_VERSION)
    app.include_router(router)
    app.include_router(pages)
    app.state.simulator = simulator
    app.state.protocol = protocol
    return app


def run_in_background(app, host=c.MONITOR_HOST, port=c.MONITOR_PORT):
    """Serve `app` from a daemon thread. Returns the uvicorn.Server so callers can stop it."""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, name="web-monitor", daemon=True)
    thread.start()
    logger.info(f"[MONITOR] Listening on http://{host}:{port}")
    return server
