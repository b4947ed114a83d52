"""
探针运行器 - 在本地模拟 kubelet 对 startup/liveness/readiness 的轮询

按 ProbeSpec 的 initial_delay / period / timeout / 阈值 轮询目标服务，
连续失败达到 failure_threshold 判定失败，连续成功达到 success_threshold 判定恢复，
并在日志中给出编排器届时会采取的动作。
"""
import logging
import urllib.request
import urllib.error
from threading import Thread, Event, Lock
from typing import Callable, Dict, List, Optional

from .config import ProbeSpec, get_config

logger = logging.getLogger(__name__)

KINDS = ("startup", "liveness", "readiness")

# 判定变化时编排器的反应 {(kind, healthy): 描述}
REACTIONS = {
    ("startup", False): "startup 探针失败，容器将被重启",
    ("startup", True): "startup 探针通过，开始执行 liveness/readiness 探针",
    ("liveness", False): "liveness 探针失败，容器将被重启",
    ("liveness", True): "liveness 探针恢复",
    ("readiness", False): "readiness 探针失败，Pod 已从 Service endpoints 中移除",
    ("readiness", True): "readiness 探针恢复，Pod 已重新加入 Service endpoints",
}


def check_http(url: str, timeout: float) -> bool:
    """HTTP 探针：200-399 视为成功，其余（包括连接失败/超时）视为失败"""
    try:
        req = urllib.request.Request(url)
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return 200 <= response.status < 400
    except urllib.error.HTTPError as e:
        logger.debug(f"{url} 返回 HTTP {e.code}")
        return False
    except urllib.error.URLError as e:
        logger.warning(f"{url} 连接失败: {e.reason}")
        return False
    except Exception as e:
        logger.warning(f"{url} 检查异常: {e}")
        return False


class ProbeRunner:
    """kubelet 风格的探针运行器"""

    def __init__(
        self,
        base_url: str,
        probes: Optional[Dict[str, ProbeSpec]] = None,
        checker: Callable[[str, float], bool] = check_http,
    ):
        self.base_url = base_url.rstrip("/")
        self.probes = probes or get_config().probes
        self.checker = checker
        self.stop_event = Event()
        self.threads: List[Thread] = []
        self.lock = Lock()

        self.started = False
        self._verdicts: Dict[str, bool] = {kind: True for kind in KINDS}
        self._successes: Dict[str, int] = {kind: 0 for kind in KINDS}
        self._failures: Dict[str, int] = {kind: 0 for kind in KINDS}

    def verdicts(self) -> Dict[str, bool]:
        with self.lock:
            return dict(self._verdicts)

    def evaluate(self, kind: str, ok: bool) -> Optional[bool]:
        """
        记录一次探测结果并更新判定

        Returns:
            判定发生变化时返回新判定，否则返回 None
        """
        spec = self.probes[kind]
        with self.lock:
            if ok:
                self._successes[kind] += 1
                self._failures[kind] = 0
            else:
                self._failures[kind] += 1
                self._successes[kind] = 0

            changed = None
            if kind == "startup":
                # startup 只需成功一次；失败达到阈值时容器被重启，计数从头开始
                if ok and self._successes[kind] >= spec.success_threshold:
                    self.started = True
                    changed = True
                elif not ok and self._failures[kind] >= spec.failure_threshold:
                    self._failures[kind] = 0
                    changed = False
                if changed is not None:
                    self._verdicts[kind] = changed
            elif ok and not self._verdicts[kind] and self._successes[kind] >= spec.success_threshold:
                self._verdicts[kind] = changed = True
            elif not ok and self._verdicts[kind] and self._failures[kind] >= spec.failure_threshold:
                self._verdicts[kind] = changed = False

        if changed is not None:
            log = logger.info if changed else logger.warning
            log(f"[ProbeRunner] {REACTIONS[(kind, changed)]}")
        return changed

    def probe_once(self, kind: str) -> Optional[bool]:
        spec = self.probes[kind]
        ok = self.checker(self.base_url + spec.path, spec.timeout_seconds)
        logger.debug(f"[ProbeRunner] {kind} -> {'成功' if ok else '失败'}")
        return self.evaluate(kind, ok)

    def start(self):
        """启动轮询"""
        logger.info(f"启动探针运行器: {self.base_url}")
        for kind in KINDS:
            thread = Thread(target=self._probe_loop, args=(kind,), name=f"Probe-{kind}", daemon=True)
            thread.start()
            self.threads.append(thread)

    def stop(self):
        """停止轮询"""
        logger.info("停止探针运行器...")
        self.stop_event.set()
        for thread in self.threads:
            thread.join(timeout=5)
        self.threads = []
        logger.info("探针运行器已停止")

    def _probe_loop(self, kind: str):
        spec = self.probes[kind]
        if self.stop_event.wait(spec.initial_delay_seconds):
            return

        while not self.stop_event.is_set():
            if kind == "startup" and self.started:
                return
            # liveness/readiness 在 startup 通过之前不执行
            if kind == "startup" or self.started:
                try:
                    self.probe_once(kind)
                except Exception as e:
                    logger.error(f"{kind} 探针执行异常: {e}")
            self.stop_event.wait(spec.period_seconds)
