"""
探针状态机 - 组合 ProbeState 与 TimerRegistry，对外提供切换/故障注入/读取操作

状态转换规则：
    started   切换即翻转，无定时器
    live      手动切换翻转后，总是取消待执行的 liveness 恢复任务
              随机故障测试强制 live=False，随机 [min, max] 秒后恢复
    ready     切换为 False 时调度固定延迟的恢复任务
              切换为 True 时取消待执行的恢复任务
"""
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

from .config import RecoveryConfig
from .state import ProbeState
from .timers import TimerRegistry, TimerHandle, READINESS_RESTORE, LIVENESS_RESTORE

logger = logging.getLogger(__name__)

ProbeKind = Literal["startup", "liveness", "readiness"]


@dataclass
class Snapshot:
    started: bool
    live: bool
    ready: bool
    uptime: float  # 秒


@dataclass
class HealthResult:
    """探针检查结果，healthy 对应 HTTP 200，否则 503"""
    healthy: bool
    status: str

    @property
    def status_code(self) -> int:
        return 200 if self.healthy else 503


# (健康, 不健康) 时的状态文本
_HEALTH_MESSAGES = {
    "startup": ("Started", "Not started"),
    "liveness": ("Alive", "Not alive"),
    "readiness": ("Ready", "Not ready"),
}


class ProbeStateMachine:
    """
    探针状态机

    所有变更都在 ProbeState 写锁内完成，包括定时器的调度与取消；
    定时器回调在独立线程中重新获取写锁，与外部请求走同一条路径。
    """

    def __init__(
        self,
        state: Optional[ProbeState] = None,
        recovery: Optional[RecoveryConfig] = None,
        timers: Optional[TimerRegistry] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state = state or ProbeState()
        self.recovery = recovery or RecoveryConfig()
        self.timers = timers or TimerRegistry()
        self.rng = rng or random.Random()
        self.clock = clock
        self.started_at = clock()

    # ------------------------------------------------------------
    # 切换操作
    # ------------------------------------------------------------

    def toggle_started(self) -> bool:
        with self.state.lock.write():
            value = self.state._flip("started")
        logger.info(f"startup 切换为 {value}")
        return value

    def toggle_liveness(self) -> bool:
        """翻转 live；手动操作总是覆盖待执行的随机恢复"""
        with self.state.lock.write():
            value = self.state._flip("live")
            self.timers.cancel(LIVENESS_RESTORE)
        logger.info(f"liveness 切换为 {value}")
        return value

    def toggle_readiness(self) -> bool:
        with self.state.lock.write():
            value = self.state._flip("ready")
            if value:
                self.timers.cancel(READINESS_RESTORE)
            else:
                self.timers.arm(
                    READINESS_RESTORE,
                    self.recovery.readiness_restore_seconds,
                    self._restore_readiness,
                )
        logger.info(f"readiness 切换为 {value}")
        return value

    def trigger_random_liveness_failure(self) -> int:
        """
        强制 live=False，并在随机秒数后自动恢复

        已在测试中时重新触发会以新的时长重新计时。

        Returns:
            抽取到的恢复时长（秒）
        """
        duration = self.rng.randint(
            self.recovery.liveness_restore_min_seconds,
            self.recovery.liveness_restore_max_seconds,
        )
        with self.state.lock.write():
            self.state._set("live", False)
            self.timers.arm(LIVENESS_RESTORE, duration, self._restore_liveness)
        logger.warning(f"liveness 随机故障已触发，{duration} 秒后自动恢复")
        return duration

    # ------------------------------------------------------------
    # 定时器回调
    # ------------------------------------------------------------

    def _restore_readiness(self, handle: TimerHandle):
        with self.state.lock.write():
            if not self.timers.is_current(handle):
                logger.debug("readiness 恢复任务已被替换，跳过")
                return
            self.state._set("ready", True)
            self.timers.release(handle)
        logger.info("readiness 已自动恢复")

    def _restore_liveness(self, handle: TimerHandle):
        with self.state.lock.write():
            if not self.timers.is_current(handle):
                logger.debug("liveness 恢复任务已被替换，跳过")
                return
            self.state._set("live", True)
            self.timers.release(handle)
        logger.info("liveness 已自动恢复")

    # ------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        started, live, ready = self.state.read()
        return Snapshot(
            started=started,
            live=live,
            ready=ready,
            uptime=self.clock() - self.started_at,
        )

    def check(self, kind: ProbeKind) -> HealthResult:
        """
        探针检查：kind 为 startup / liveness / readiness

        kind 来自路由层的固定取值，传入其他值属于调用方的编程错误，
        抛出 KeyError，不会转换为 503。
        """
        started, live, ready = self.state.read()
        flags = {"startup": started, "liveness": live, "readiness": ready}
        if kind not in flags:
            raise KeyError(f"未知探针类型: {kind}")

        ok_text, fail_text = _HEALTH_MESSAGES[kind]
        healthy = flags[kind]
        return HealthResult(healthy=healthy, status=ok_text if healthy else fail_text)

    def pending(self) -> List[str]:
        with self.state.lock.read():
            return self.timers.pending()

    def shutdown(self):
        """进程退出前取消所有待执行的恢复任务"""
        with self.state.lock.write():
            self.timers.cancel_all()
        logger.info("所有恢复任务已取消")

