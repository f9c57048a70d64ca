"""
Worker 进程指标：通过 StatsD UDP 发送，由 statsd_exporter 暴露给 Prometheus
不依赖进程内存，多进程 prefork 下可正确聚合
"""
import os

import statsd

# 从环境变量读取，默认 statsd_exporter 容器名
_STATSD_HOST = os.getenv("STATSD_HOST", "statsd_exporter")
_STATSD_PORT = int(os.getenv("STATSD_PORT", "9125"))
_PREFIX = "clinical"

_client = None


def _get_client():
    global _client
    if _client is None:
        _client = statsd.StatsClient(_STATSD_HOST, _STATSD_PORT, prefix=_PREFIX)
    return _client


def dose_task_updated():
    _get_client().incr("dose_task.updated")


def dose_task_unchanged():
    _get_client().incr("dose_task.unchanged")


def dose_task_failure():
    _get_client().incr("dose_task.failure")


def dose_task_retry():
    _get_client().incr("dose_task.retry")


def dose_task_duration_seconds(seconds: float):
    _get_client().timing("dose_task_duration", int(seconds * 1000))
