"""
肾功能估算：Cockcroft-Gault 肌酐清除率（作为 GFR 的近似）+ CKD 分期

纯函数，每次输入肌酐都重新计算，不落库。
任何输入缺失 / 非数字 / 非正数 → 返回 None（前端不显示结果），从不抛异常。
"""
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .dosing import coerce_weight

# (上界, 分期)：按严重程度从高到低，第一个满足 egfr < 上界 的即为结果
GFR_STAGES = [
    (15, "Stage 5 CKD (Kidney Failure)"),
    (30, "Stage 4 CKD (Severe)"),
    (60, "Stage 3 CKD (Moderate)"),
    (90, "Stage 2 CKD (Mild)"),
]
GFR_NORMAL = "Normal"

FEMALE_FACTOR = 0.85


@dataclass(frozen=True)
class GFREstimate:
    egfr: int
    stage: str

    def to_dict(self):
        return {"egfr": self.egfr, "stage": self.stage}


def _parse_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()
        except ValueError:
            return None
    return None


def calculate_age(birth_date, today=None) -> Optional[int]:
    """
    按日历计算周岁：年份相减，今年生日还没到再减 1
    """
    birth = _parse_date(birth_date)
    if birth is None:
        return None
    today = _parse_date(today) or date.today()

    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age


def _to_number(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_gfr(age_years, weight_kg, sex, creatinine_mg_dl) -> Optional[int]:
    """
    Cockcroft-Gault：((140 - age) × weight) / (72 × Cr)，四舍五入取整
    女性在取整结果上 × 0.85 再取整（50 岁 / 70kg / Cr 1.0：男 88，女 75）
    """
    age = _to_number(age_years)
    weight = coerce_weight(weight_kg)
    creatinine = _to_number(creatinine_mg_dl)
    if age is None or weight is None or creatinine is None or not sex:
        return None
    if creatinine <= 0:
        return None

    gfr = _round_half_up(((140 - age) * weight) / (72 * creatinine))
    if str(sex).upper() == "F":
        gfr = _round_half_up(gfr * FEMALE_FACTOR)
    return gfr


def classify_gfr(egfr) -> Optional[str]:
    """eGFR → CKD 分期文字；egfr 为 None 时返回 None"""
    if egfr is None:
        return None
    for upper, stage in GFR_STAGES:
        if egfr < upper:
            return stage
    return GFR_NORMAL


def assess_renal_function(birth_date, weight_kg, sex, creatinine_mg_dl, today=None) -> Optional[GFREstimate]:
    """由出生日期、体重、性别、肌酐得到 eGFR + 分期；算不出来时返回 None"""
    age = calculate_age(birth_date, today=today)
    egfr = estimate_gfr(age, weight_kg, sex, creatinine_mg_dl)
    if egfr is None:
        return None
    return GFREstimate(egfr=egfr, stage=classify_gfr(egfr))
