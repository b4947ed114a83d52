"""
配置加载模块
"""
import os
import socket
import yaml
from pathlib import Path
from typing import Dict, Any
from dataclasses import dataclass, field


@dataclass
class SystemConfig:
    log_level: str = "INFO"
    log_file: str = ""


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class RecoveryConfig:
    """自动恢复定时器配置"""
    readiness_restore_seconds: float = 30
    liveness_restore_min_seconds: int = 5
    liveness_restore_max_seconds: int = 60


@dataclass
class ProbeSpec:
    """单个探针的轮询参数（与 Kubernetes probe 字段一一对应）"""
    path: str
    initial_delay_seconds: float = 0
    period_seconds: float = 10
    timeout_seconds: float = 1
    success_threshold: int = 1
    failure_threshold: int = 3


def _default_probes() -> Dict[str, ProbeSpec]:
    # 与 deploy/k8s-probes.yaml 保持一致
    return {
        "startup": ProbeSpec(path="/startup", initial_delay_seconds=0, period_seconds=5, timeout_seconds=3),
        "liveness": ProbeSpec(path="/liveness", initial_delay_seconds=10, period_seconds=10, timeout_seconds=3),
        "readiness": ProbeSpec(path="/readiness", initial_delay_seconds=5, period_seconds=5, timeout_seconds=3),
    }


@dataclass
class PodInfo:
    """Pod 描述信息，来自 Downward API 注入的环境变量"""
    pod_name: str = "unknown"
    pod_ip: str = "unknown"
    node_name: str = "unknown"

    @classmethod
    def from_env(cls) -> "PodInfo":
        return cls(
            pod_name=os.environ.get("POD_NAME") or socket.gethostname() or "unknown",
            pod_ip=os.environ.get("POD_IP", "unknown"),
            node_name=os.environ.get("NODE_NAME", "unknown"),
        )


class Config:
    """全局配置类"""

    def __init__(self, config_dir: str = None):
        if config_dir is None:
            # 默认配置目录
            config_dir = Path(__file__).parent.parent / "config"

        self.config_dir = Path(config_dir)
        self.system = SystemConfig()
        self.server = ServerConfig()
        self.recovery = RecoveryConfig()
        self.probes: Dict[str, ProbeSpec] = _default_probes()
        self.pod = PodInfo.from_env()

        self._load_config()
        self._apply_env_overrides()
        self._validate()

    def _load_config(self):
        """加载主配置文件"""
        config_file = self.config_dir / "config.yml"
        if not config_file.exists():
            print(f"警告: 配置文件不存在 {config_file}")
            return

        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # 系统配置
        sys_cfg = data.get('system', {})
        self.system.log_level = sys_cfg.get('log_level', 'INFO')
        self.system.log_file = self._resolve_env(sys_cfg.get('log_file', ''))

        # 服务配置
        server_cfg = data.get('server', {})
        self.server.host = server_cfg.get('host', '0.0.0.0')
        self.server.port = int(self._resolve_env(server_cfg.get('port', 8080)) or 8080)

        # 自动恢复配置
        rec_cfg = data.get('recovery', {})
        self.recovery.readiness_restore_seconds = rec_cfg.get('readiness_restore_seconds', 30)
        # 随机区间用于 randint，只接受整数秒（5.0 这类整数值浮点数会被转换）
        self.recovery.liveness_restore_min_seconds = self._whole_seconds(
            'liveness_restore_min_seconds', rec_cfg.get('liveness_restore_min_seconds', 5))
        self.recovery.liveness_restore_max_seconds = self._whole_seconds(
            'liveness_restore_max_seconds', rec_cfg.get('liveness_restore_max_seconds', 60))

        # 探针配置，未写出的字段沿用默认值
        for kind, probe_cfg in (data.get('probes') or {}).items():
            if kind not in self.probes:
                print(f"警告: 未知探针类型 {kind}，已忽略")
                continue
            self.probes[kind] = self._parse_probe(self.probes[kind], probe_cfg or {})

    def _parse_probe(self, default: ProbeSpec, probe_cfg: Dict[str, Any]) -> ProbeSpec:
        return ProbeSpec(
            path=probe_cfg.get('path', default.path),
            initial_delay_seconds=probe_cfg.get('initial_delay_seconds', default.initial_delay_seconds),
            period_seconds=probe_cfg.get('period_seconds', default.period_seconds),
            timeout_seconds=probe_cfg.get('timeout_seconds', default.timeout_seconds),
            success_threshold=probe_cfg.get('success_threshold', default.success_threshold),
            failure_threshold=probe_cfg.get('failure_threshold', default.failure_threshold),
        )

    def _apply_env_overrides(self):
        """部署清单通过 PORT 注入监听端口"""
        port = os.environ.get('PORT')
        if port:
            self.server.port = int(port)

    def _validate(self):
        rec = self.recovery
        if rec.liveness_restore_min_seconds < 0:
            raise ValueError("liveness_restore_min_seconds 不能为负数")
        if rec.liveness_restore_min_seconds > rec.liveness_restore_max_seconds:
            raise ValueError(
                f"liveness 恢复区间无效: [{rec.liveness_restore_min_seconds}, "
                f"{rec.liveness_restore_max_seconds}]"
            )
        if rec.readiness_restore_seconds < 0:
            raise ValueError("readiness_restore_seconds 不能为负数")

    def _whole_seconds(self, name: str, value):
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} 必须是整数秒: {value!r}")
        return value

    def _resolve_env(self, value):
        """解析环境变量 ${VAR_NAME}"""
        if not value or not isinstance(value, str):
            return value

        if value.startswith('${') and value.endswith('}'):
            env_name = value[2:-1]
            return os.environ.get(env_name, '')

        return value

    def get_probe(self, kind: str) -> ProbeSpec:
        """获取探针配置"""
        return self.probes.get(kind)


# 全局配置实例
_config: Config = None


def get_config() -> Config:
    """获取全局配置"""
    global _config
    if _config is None:
        _config = Config()
    return _config


def init_config(config_dir: str = None):
    """初始化配置"""
    global _config
    _config = Config(config_dir)
    return _config
