import os
from celery import Celery
from celery.signals import worker_ready

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'emr.settings')

app = Celery('emr')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()


@worker_ready.connect
def setup_metrics_server(sender, **kwargs):
    """Worker 就绪后启动 Prometheus metrics HTTP 服务（daemon 线程）"""
    import logging

    try:
        from clinical.celery_metrics import start_metrics_server
        start_metrics_server()
    except OSError as exc:
        # 端口被占用（同机多 worker）时只记录，不影响 worker 启动
        logging.getLogger(__name__).warning("metrics server not started: %s", exc)
