"""
AppExceptionMiddleware：放在 MIDDLEWARE 最后，最先拿到 view 抛出的异常

clinical 的 services / serializers 只抛 BaseAppException（NOT_FOUND、
ENCOUNTER_NOT_ACTIVE、VALIDATION_ERROR ...），这里统一转成 JSON；
其他异常原样往上抛，由 Django 返回 500，MetricsMiddleware 记一次 5xx。
"""
from .exception_handler import app_exception_handler


class AppExceptionMiddleware:

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        # 返回 None 表示不处理，交给下一个 process_exception / Django 默认处理
        return app_exception_handler(request, exception)
