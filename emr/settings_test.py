"""
测试用配置：SQLite + Celery eager 模式（不需要 Postgres / Redis）
"""
import os

# StatsD 走 UDP，本机没有 exporter 也不会报错
os.environ.setdefault("STATSD_HOST", "localhost")

from .settings import *  # noqa: E402,F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

RECONCILIATION_TIMEOUT = 5
