"""
Prometheus 指标中间件：记录请求耗时、状态码、错误类型
"""
import re
import time

from .metrics import (
    API_GFR_DURATION,
    API_MEDICATION_DURATION,
    API_WEIGHT_DURATION,
    HTTP_4XX,
    HTTP_5XX,
)
from emr.exceptions import BaseAppException

_WEIGHT_PATH = re.compile(r"^/api/patients/\d+/weight/$")
_GFR_PATH = re.compile(r"^/api/patients/\d+/gfr/$")
_MEDICATION_PATH = re.compile(r"^/api/(medications/\d+/|encounters/\d+/medications/)")


class MetricsMiddleware:
    """记录 HTTP 请求指标"""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        start = time.perf_counter()
        try:
            response = self.get_response(request)
            self._record(request, response.status_code, time.perf_counter() - start)
            return response
        except Exception as exc:
            duration = time.perf_counter() - start
            status = self._status_from_exception(exc)
            self._record(request, status, duration)
            raise

    def _status_from_exception(self, exc):
        if isinstance(exc, BaseAppException):
            return getattr(exc, "http_status", 400)
        return 500

    def _record(self, request, status, duration):
        path = getattr(request, "path", "") or ""
        if status >= 500:
            HTTP_5XX.inc()
        elif status >= 400:
            HTTP_4XX.labels(code=str(status)).inc()

        if _WEIGHT_PATH.match(path) and request.method == "PUT":
            API_WEIGHT_DURATION.observe(duration)
        elif _GFR_PATH.match(path):
            API_GFR_DURATION.observe(duration)
        elif _MEDICATION_PATH.match(path):
            API_MEDICATION_DURATION.observe(duration)
