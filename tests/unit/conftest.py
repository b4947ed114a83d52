#!/usr/bin/env python3
"""
pytest 配置文件

提供共享的 fixtures 和配置
"""
import os
import sys
import random
import pytest
from pathlib import Path

# 添加项目路径
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from probe_demo.config import RecoveryConfig
from probe_demo.machine import ProbeStateMachine
from probe_demo.timers import TimerRegistry


class FakeTimer:
    """
    手动触发的 Timer 替身，接口与 threading.Timer 一致

    所有实例记录在 FakeTimer.created 中，测试通过 fire() 模拟到期。
    """
    created = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """模拟到期；已取消的 Timer 不会执行"""
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


@pytest.fixture(autouse=True)
def reset_config():
    """每个测试前重置配置"""
    import probe_demo.config as config_module
    config_module._config = None
    yield
    config_module._config = None


@pytest.fixture
def fake_timers():
    """使用 FakeTimer 的定时器注册表"""
    FakeTimer.created = []
    yield TimerRegistry(timer_factory=FakeTimer)
    FakeTimer.created = []


@pytest.fixture
def machine(fake_timers):
    """使用 FakeTimer 与固定随机种子的状态机"""
    return ProbeStateMachine(timers=fake_timers, rng=random.Random(42))


@pytest.fixture
def fast_recovery():
    """亚秒级恢复延迟，用于真实 Timer 的时序测试"""
    return RecoveryConfig(
        readiness_restore_seconds=0.5,
        liveness_restore_min_seconds=1,
        liveness_restore_max_seconds=1,
    )


@pytest.fixture
def real_machine(fast_recovery):
    """使用真实 threading.Timer 的状态机"""
    m = ProbeStateMachine(recovery=fast_recovery)
    yield m
    m.shutdown()


@pytest.fixture
def clean_env():
    """清理本测试会设置的环境变量"""
    keys = ['PORT', 'POD_NAME', 'POD_IP', 'NODE_NAME', 'TEST_LOG_FILE']
    saved = {k: os.environ.pop(k, None) for k in keys}
    yield
    for k, v in saved.items():
        os.environ.pop(k, None)
        if v is not None:
            os.environ[k] = v
