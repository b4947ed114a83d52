#!/usr/bin/env python3
"""
单元4: 探针状态机测试 (ProbeStateMachine)

测试内容：
- 三个标志的切换
- readiness 固定延迟自动恢复
- liveness 随机故障与自动恢复
- 手动操作覆盖待执行的恢复任务
- 并发切换串行化
- 快照与探针检查
"""
import sys
import time
import random
import pytest
from pathlib import Path
from threading import Thread, Barrier

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from probe_demo.config import RecoveryConfig
from probe_demo.machine import ProbeStateMachine, HealthResult
from probe_demo.timers import READINESS_RESTORE, LIVENESS_RESTORE
from conftest import FakeTimer


def flags(m):
    snap = m.snapshot()
    return snap.started, snap.live, snap.ready


class TestToggle:
    """切换测试"""

    def test_initial_snapshot(self, machine):
        """测试初始状态全部健康"""
        assert flags(machine) == (True, True, True)

    @pytest.mark.parametrize("op", ["toggle_started", "toggle_liveness", "toggle_readiness"])
    def test_double_toggle_restores(self, machine, op):
        """测试切换两次回到原值"""
        before = flags(machine)
        first = getattr(machine, op)()
        second = getattr(machine, op)()
        assert first is False
        assert second is True
        assert flags(machine) == before

    def test_toggle_started_no_timer(self, machine):
        machine.toggle_started()
        assert machine.pending() == []
        assert FakeTimer.created == []


class TestReadinessRecovery:
    """readiness 自动恢复测试"""

    def test_off_arms_restore(self, machine):
        """测试置为 False 时调度 30 秒恢复"""
        assert machine.toggle_readiness() is False
        assert machine.pending() == [READINESS_RESTORE]
        assert FakeTimer.created[-1].interval == 30

    def test_restore_fires(self, machine):
        machine.toggle_readiness()
        FakeTimer.created[-1].fire()

        assert machine.snapshot().ready is True
        assert machine.pending() == []

    def test_manual_on_cancels_restore(self, machine):
        """测试手动恢复取消待执行任务"""
        machine.toggle_readiness()
        timer = FakeTimer.created[-1]
        machine.toggle_readiness()

        assert timer.cancelled
        assert machine.pending() == []

    def test_retoggle_off_restarts_countdown(self, machine):
        machine.toggle_readiness()
        machine.toggle_readiness()
        machine.toggle_readiness()

        assert len(FakeTimer.created) == 2
        assert FakeTimer.created[0].cancelled
        assert not FakeTimer.created[1].cancelled

    def test_stale_callback_ignored(self, machine):
        """测试被取消后才开始运行的回调不生效"""
        machine.toggle_readiness()
        stale = FakeTimer.created[-1]
        machine.toggle_readiness()  # 手动恢复
        machine.toggle_readiness()  # 再次置为 False

        # 模拟旧回调在取消前已进入执行
        stale.function(*stale.args)

        assert machine.snapshot().ready is False
        assert machine.pending() == [READINESS_RESTORE]


class TestLivenessRecovery:
    """liveness 随机故障测试"""

    def test_trigger_forces_failure(self, machine):
        duration = machine.trigger_random_liveness_failure()

        assert 5 <= duration <= 60
        assert machine.snapshot().live is False
        assert machine.pending() == [LIVENESS_RESTORE]
        assert FakeTimer.created[-1].interval == duration

    def test_duration_bounds(self, machine):
        """测试随机时长始终在闭区间 [5, 60] 内"""
        durations = {machine.trigger_random_liveness_failure() for _ in range(3000)}
        assert min(durations) >= 5
        assert max(durations) <= 60
        # 闭区间两端都能取到
        assert 5 in durations
        assert 60 in durations

    def test_restore_fires(self, machine):
        machine.trigger_random_liveness_failure()
        FakeTimer.created[-1].fire()

        assert machine.snapshot().live is True
        assert machine.pending() == []

    def test_trigger_while_already_failing(self, machine):
        """测试已失败时再次触发仍强制失败并重新计时"""
        machine.toggle_liveness()
        assert machine.snapshot().live is False

        machine.trigger_random_liveness_failure()
        assert machine.snapshot().live is False
        assert machine.pending() == [LIVENESS_RESTORE]

    def test_retrigger_replaces_timer(self, machine):
        """测试重复触发时只有最后一次的定时器生效"""
        machine.trigger_random_liveness_failure()
        first = FakeTimer.created[-1]
        machine.trigger_random_liveness_failure()
        second = FakeTimer.created[-1]

        assert first.cancelled
        first.fire()
        assert machine.snapshot().live is False

        second.fire()
        assert machine.snapshot().live is True

    def test_manual_toggle_cancels_test(self, machine):
        """测试手动切换后不会再被自动恢复"""
        machine.trigger_random_liveness_failure()
        timer = FakeTimer.created[-1]

        assert machine.toggle_liveness() is True
        assert timer.cancelled
        assert machine.pending() == []

        # 手动再置为失败，不会自动恢复
        assert machine.toggle_liveness() is False
        timer.fire()
        assert machine.snapshot().live is False
        assert machine.pending() == []

    def test_manual_off_does_not_arm(self, machine):
        machine.toggle_liveness()
        assert FakeTimer.created == []

    def test_custom_range(self, fake_timers):
        m = ProbeStateMachine(
            recovery=RecoveryConfig(liveness_restore_min_seconds=7, liveness_restore_max_seconds=7),
            timers=fake_timers,
        )
        assert m.trigger_random_liveness_failure() == 7

    def test_seeded_rng_is_deterministic(self, fake_timers):
        m1 = ProbeStateMachine(timers=fake_timers, rng=random.Random(7))
        m2 = ProbeStateMachine(timers=fake_timers, rng=random.Random(7))
        assert m1.trigger_random_liveness_failure() == m2.trigger_random_liveness_failure()


class TestConcurrency:
    """并发测试"""

    @pytest.mark.parametrize("n", [50, 51])
    def test_concurrent_toggles_serialized(self, machine, n):
        """测试并发切换无丢失更新"""
        barrier = Barrier(n)

        def worker():
            barrier.wait()
            machine.toggle_started()

        threads = [Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert machine.snapshot().started is (n % 2 == 0)

    def test_concurrent_readiness_one_timer(self, machine):
        """测试并发切换后最多只有一个待执行任务"""
        threads = [Thread(target=machine.toggle_readiness) for _ in range(21)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert machine.snapshot().ready is False
        live_timers = [t for t in FakeTimer.created if not t.cancelled]
        assert len(live_timers) == 1
        assert machine.pending() == [READINESS_RESTORE]


class TestSnapshotAndCheck:
    """快照与探针检查测试"""

    def test_uptime_uses_clock(self, fake_timers):
        now = [100.0]
        m = ProbeStateMachine(timers=fake_timers, clock=lambda: now[0])
        now[0] = 165.5
        assert m.snapshot().uptime == pytest.approx(65.5)

    @pytest.mark.parametrize("kind,toggle,ok_text,fail_text", [
        ("startup", "toggle_started", "Started", "Not started"),
        ("liveness", "toggle_liveness", "Alive", "Not alive"),
        ("readiness", "toggle_readiness", "Ready", "Not ready"),
    ])
    def test_check(self, machine, kind, toggle, ok_text, fail_text):
        result = machine.check(kind)
        assert result == HealthResult(healthy=True, status=ok_text)
        assert result.status_code == 200

        getattr(machine, toggle)()
        result = machine.check(kind)
        assert result == HealthResult(healthy=False, status=fail_text)
        assert result.status_code == 503

    def test_check_unknown_kind(self, machine):
        with pytest.raises(KeyError):
            machine.check("bogus")

    def test_shutdown_cancels_all(self, machine):
        machine.toggle_readiness()
        machine.trigger_random_liveness_failure()
        machine.shutdown()

        assert machine.pending() == []
        assert all(t.cancelled for t in FakeTimer.created)


class TestRealTimers:
    """真实 Timer 时序测试（亚秒级延迟）"""

    def test_readiness_restores_after_delay(self, real_machine):
        """测试 readiness 在延迟到期前不恢复，到期后恢复"""
        assert real_machine.toggle_readiness() is False

        time.sleep(0.2)
        assert real_machine.snapshot().ready is False

        time.sleep(0.8)
        assert real_machine.snapshot().ready is True

    def test_liveness_restores_after_duration(self, real_machine):
        duration = real_machine.trigger_random_liveness_failure()
        assert duration == 1
        assert real_machine.snapshot().live is False

        time.sleep(1.5)
        assert real_machine.snapshot().live is True

    def test_manual_liveness_override_stays(self, real_machine):
        """测试手动恢复后定时器不会再改动状态"""
        real_machine.trigger_random_liveness_failure()
        real_machine.toggle_liveness()
        real_machine.toggle_liveness()

        time.sleep(1.5)
        assert real_machine.snapshot().live is False

    def test_scenario(self, real_machine):
        """完整流程：readiness 自动恢复后再触发 liveness 测试"""
        assert flags(real_machine) == (True, True, True)

        assert real_machine.toggle_readiness() is False
        assert real_machine.snapshot().ready is False
        time.sleep(1.0)
        assert flags(real_machine) == (True, True, True)

        real_machine.trigger_random_liveness_failure()
        assert flags(real_machine) == (True, False, True)
        time.sleep(1.5)
        assert flags(real_machine) == (True, True, True)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
