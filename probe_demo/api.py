"""
FastAPI 接口模块 - 将 HTTP 请求映射到 ProbeStateMachine 操作
"""
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field
import logging

from .config import PodInfo
from .machine import ProbeKind, ProbeStateMachine

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    """状态快照"""
    started: bool
    live: bool
    ready: bool
    uptime: str
    uptime_seconds: float
    pod_name: str
    pod_ip: str
    node_name: str


class StartedResponse(BaseModel):
    started: bool


class LiveResponse(BaseModel):
    live: bool


class ReadyResponse(BaseModel):
    ready: bool


class LivenessTestResponse(BaseModel):
    """随机 liveness 故障测试响应"""
    duration_seconds: int = Field(..., description="自动恢复前的秒数")


class HealthResponse(BaseModel):
    status: str


def format_uptime(seconds: float) -> str:
    """将秒数格式化为 1h2m3s 形式"""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


DASHBOARD_HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Probe Demo - {pod_name}</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
.flag {{ display: inline-block; width: 12em; padding: 1em; margin: .5em; border-radius: 6px; color: #fff; }}
.on {{ background: #2e7d32; }} .off {{ background: #c62828; }}
</style>
</head>
<body>
<h1>Kubernetes Probe Demo</h1>
<p>Pod: <b>{pod_name}</b> &middot; IP: {pod_ip} &middot; Node: {node_name} &middot; Uptime: <span id="uptime"></span></p>
<div id="started" class="flag"></div>
<div id="live" class="flag"></div>
<div id="ready" class="flag"></div>
<p>
<button onclick="post('/api/toggle/startup')">Toggle startup</button>
<button onclick="post('/api/toggle/liveness')">Toggle liveness</button>
<button onclick="post('/api/toggle/readiness')">Toggle readiness</button>
<button onclick="post('/api/test/liveness')">Random liveness failure</button>
</p>
<p id="message"></p>
<script>
function render(s) {{
  for (const k of ["started", "live", "ready"]) {{
    const el = document.getElementById(k);
    el.className = "flag " + (s[k] ? "on" : "off");
    el.textContent = k + ": " + s[k];
  }}
  document.getElementById("uptime").textContent = s.uptime;
}}
function refresh() {{ fetch("/api/status").then(r => r.json()).then(render); }}
function post(url) {{
  fetch(url, {{method: "POST"}}).then(r => r.json()).then(d => {{
    document.getElementById("message").textContent = JSON.stringify(d);
    refresh();
  }});
}}
refresh();
setInterval(refresh, 2000);
</script>
</body>
</html>
"""


def create_app(machine: ProbeStateMachine, pod: PodInfo = None) -> FastAPI:
    """创建并返回 FastAPI 应用，状态机由调用方注入"""
    pod = pod or PodInfo()

    app = FastAPI(
        title="Probe Demo API",
        description="Kubernetes startup/liveness/readiness 探针演示服务",
        version="1.0.0"
    )

    @app.get("/", response_class=HTMLResponse)
    def dashboard():
        """状态面板"""
        return DASHBOARD_HTML.format(
            pod_name=pod.pod_name,
            pod_ip=pod.pod_ip,
            node_name=pod.node_name,
        )

    @app.get("/health")
    def health_check():
        """服务自检接口"""
        return {"status": "healthy"}

    @app.get("/api/status", response_model=StatusResponse)
    def status():
        snap = machine.snapshot()
        return StatusResponse(
            started=snap.started,
            live=snap.live,
            ready=snap.ready,
            uptime=format_uptime(snap.uptime),
            uptime_seconds=round(snap.uptime, 3),
            pod_name=pod.pod_name,
            pod_ip=pod.pod_ip,
            node_name=pod.node_name,
        )

    @app.post("/api/toggle/startup", response_model=StartedResponse)
    def toggle_startup():
        logger.info("收到请求: 切换 startup")
        return StartedResponse(started=machine.toggle_started())

    @app.post("/api/toggle/liveness", response_model=LiveResponse)
    def toggle_liveness():
        logger.info("收到请求: 切换 liveness")
        return LiveResponse(live=machine.toggle_liveness())

    @app.post("/api/toggle/readiness", response_model=ReadyResponse)
    def toggle_readiness():
        logger.info("收到请求: 切换 readiness")
        return ReadyResponse(ready=machine.toggle_readiness())

    @app.post("/api/test/liveness", response_model=LivenessTestResponse)
    def liveness_test():
        logger.info("收到请求: 随机 liveness 故障测试")
        return LivenessTestResponse(duration_seconds=machine.trigger_random_liveness_failure())

    def probe_endpoint(kind: ProbeKind):
        result = machine.check(kind)
        if not result.healthy:
            logger.debug(f"{kind} 探针返回 {result.status_code}: {result.status}")
        return JSONResponse(
            status_code=result.status_code,
            content=HealthResponse(status=result.status).model_dump()
        )

    @app.get("/startup", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
    def startup_probe():
        return probe_endpoint("startup")

    @app.get("/liveness", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
    def liveness_probe():
        return probe_endpoint("liveness")

    @app.get("/readiness", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
    def readiness_probe():
        return probe_endpoint("readiness")

    return app
