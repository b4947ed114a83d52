"""
定时器注册表 - 管理 "恢复 readiness" / "恢复 liveness" 两个可替换的延迟任务槽
"""
import logging
from threading import Timer
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

READINESS_RESTORE = "readiness_restore"
LIVENESS_RESTORE = "liveness_restore"

SLOTS = (READINESS_RESTORE, LIVENESS_RESTORE)


class TimerHandle:
    """单个已调度任务：Timer 线程 + 取消标记"""

    def __init__(self, slot: str, delay: float, timer: Timer):
        self.slot = slot
        self.delay = delay
        self.timer = timer

    def cancel(self):
        self.timer.cancel()

    def __repr__(self):
        return f"TimerHandle(slot={self.slot}, delay={self.delay})"


class TimerRegistry:
    """
    每个槽位同一时刻最多一个待执行任务

    arm / cancel 由调用方在 ProbeState 写锁内调用，注册表本身不加锁。
    任务触发时在独立线程中运行，回调自己负责重新获取写锁，
    并通过 is_current() 确认自己仍是该槽位的当前任务，
    被替换或取消后才开始运行的回调不会生效。
    """

    def __init__(self, timer_factory: Callable[..., Timer] = Timer):
        self._timer_factory = timer_factory
        self._slots: Dict[str, Optional[TimerHandle]] = {slot: None for slot in SLOTS}

    def arm(self, slot: str, delay: float, action: Callable[[TimerHandle], None]) -> TimerHandle:
        """
        在 slot 中调度 action，delay 秒后执行

        已有任务会先被取消。action 接收自己的 TimerHandle，
        便于触发时判断是否已被替换。立即返回，不阻塞。
        """
        self.cancel(slot)

        handle = TimerHandle(slot, delay, None)
        timer = self._timer_factory(delay, action, args=(handle,))
        timer.daemon = True
        handle.timer = timer
        self._slots[slot] = handle
        timer.start()

        logger.info(f"[TimerRegistry] {slot} 已调度，{delay} 秒后执行")
        return handle

    def cancel(self, slot: str) -> bool:
        """取消 slot 中的待执行任务；没有任务时什么也不做"""
        handle = self._slots.get(slot)
        if handle is None:
            return False

        handle.cancel()
        self._slots[slot] = None
        logger.info(f"[TimerRegistry] {slot} 已取消")
        return True

    def is_current(self, handle: TimerHandle) -> bool:
        return self._slots.get(handle.slot) is handle

    def release(self, handle: TimerHandle):
        """任务触发后清空自己的槽位引用（仅当仍是当前任务时）"""
        if self.is_current(handle):
            self._slots[handle.slot] = None

    def pending(self) -> List[str]:
        """当前持有待执行任务的槽位"""
        return [slot for slot, handle in self._slots.items() if handle is not None]

    def cancel_all(self):
        for slot in SLOTS:
            self.cancel(slot)
