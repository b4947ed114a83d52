"""
探针状态模块 - 三个健康标志及其读写锁
"""
from contextlib import contextmanager
from threading import Condition, Lock
from typing import Tuple

# 标志名 -> 字段名
FLAGS = {"started": "_started", "live": "_live", "ready": "_ready"}


class ReadWriteLock:
    """
    读写锁：读者共享，写者独占

    写者等待期间不再放入新的读者，避免写者饿死。
    不可重入，持有写锁时不能再获取读锁。
    """

    def __init__(self):
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ProbeState:
    """
    进程内唯一的探针状态记录

    三个标志互相独立，任何组合都是合法的。
    字段的读写都必须在 lock 保护下进行；
    _get / _set / _flip 不加锁，调用方必须已持有写锁（ProbeStateMachine 在同一临界区内还要调度定时器）。
    """

    def __init__(self, started: bool = True, live: bool = True, ready: bool = True):
        self.lock = ReadWriteLock()
        self._started = started
        self._live = live
        self._ready = ready

    def read(self) -> Tuple[bool, bool, bool]:
        """返回 (started, live, ready) 快照"""
        with self.lock.read():
            return self._started, self._live, self._ready

    def set_started(self, value: bool):
        with self.lock.write():
            self._set("started", value)

    def set_live(self, value: bool):
        with self.lock.write():
            self._set("live", value)

    def set_ready(self, value: bool):
        with self.lock.write():
            self._set("ready", value)

    def _get(self, name: str) -> bool:
        return getattr(self, FLAGS[name])

    def _set(self, name: str, value: bool):
        setattr(self, FLAGS[name], value)

    def _flip(self, name: str) -> bool:
        """翻转并返回新值"""
        value = not self._get(name)
        self._set(name, value)
        return value

    def __repr__(self):
        started, live, ready = self.read()
        return f"ProbeState(started={started}, live={live}, ready={ready})"
