"""
Prometheus 指标定义（Web 进程）
"""
from prometheus_client import Counter, Histogram

# 业务指标
WEIGHT_UPDATED = Counter(
    "patient_weight_updated_total",
    "保存体重的次数",
)
RECONCILIATION_BATCH = Counter(
    "dose_reconciliation_batch_total",
    "体重变更触发的批量剂量重算次数",
    ["outcome"],
)
DOSE_REWRITTEN = Counter(
    "dose_rewritten_total",
    "按新体重改写的剂量条数",
    ["trigger"],
)
DOSE_WRITE_FAILED = Counter(
    "dose_write_failed_total",
    "批量重算中单条写入失败次数",
)
GFR_CALCULATED = Counter(
    "gfr_calculated_total",
    "GFR 计算次数",
    ["result"],
)

# 性能指标（Histogram 自动提供 _count, _sum, _bucket）
API_WEIGHT_DURATION = Histogram(
    "api_patient_weight_duration_seconds",
    "PUT /api/patients/<id>/weight/ 响应时间（含批量重算）",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)
API_GFR_DURATION = Histogram(
    "api_patient_gfr_duration_seconds",
    "GET /api/patients/<id>/gfr/ 响应时间",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
)
API_MEDICATION_DURATION = Histogram(
    "api_medication_duration_seconds",
    "药物相关接口响应时间",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)
RECONCILIATION_DURATION = Histogram(
    "dose_reconciliation_duration_seconds",
    "批量重算从派发到全部完成的耗时",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

# 错误指标
HTTP_5XX = Counter("http_5xx_total", "5xx 错误数")
HTTP_4XX = Counter("http_4xx_total", "4xx 错误数", ["code"])
VALIDATION_ERROR = Counter("validation_error_total", "数据格式校验失败次数")
BLOCK_ERROR = Counter("block_error_total", "Block 错误次数", ["code"])
