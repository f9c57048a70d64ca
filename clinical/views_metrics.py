"""
Prometheus 抓取端点 /metrics

暴露 web 进程内的指标（clinical/metrics.py）：体重更新、剂量同步批次、
剂量改写 / 写入失败、GFR 计算、各 API 耗时和 4xx/5xx 计数。
Celery worker 的指标不在这里，走 statsd（见 statsd_metrics.py）。
"""
from django.http import HttpResponse
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_GET

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest


@require_GET
@never_cache
def metrics(request):
    return HttpResponse(generate_latest(REGISTRY), content_type=CONTENT_TYPE_LATEST)
