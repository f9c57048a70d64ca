"""
按体重计算剂量（Dose Formula Engine）

剂量字段是自由文本，两种形态：
- 普通剂量："500 mg"，不含公式，永远不重算
- 公式剂量："700 mg (10 mg/kg)"，括号里的公式是源头，前面的数值只是按当前体重算出的缓存

体重变了之后，所有公式剂量都要按新体重重算（见 reconcile_all）。
已经展开过的剂量只在开头数值变化时才改写，数值没变就保留原文本（包括后面手写的内容）。
这里全是纯函数，不碰数据库；输入不合法时返回 None 或原样返回，从不抛异常。
"""
import math
import re
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Optional, Union

# 支持的单位（大小写不敏感）；长的放前面，避免 "mcg" 被 "mg" 抢先匹配
_UNIT = r"mcg|µg|mg|g|units?|ml"
_NUMBER = r"\d+(?:\.\d+)?|\.\d+"

# "10 mg/kg"、"10mg/kg"、"10 mg / kg"、"10 mg per kg"
_FORMULA_PATTERNS = [
    re.compile(rf"^({_NUMBER})\s*({_UNIT})\s*/\s*kg$", re.IGNORECASE),
    re.compile(rf"^({_NUMBER})\s*({_UNIT})\s+per\s+kg$", re.IGNORECASE),
]

# 已经是计算后的形态："700 mg (10 mg/kg)"，取括号里的公式
_PARENTHESIZED_FORMULA = re.compile(
    rf"\(\s*((?:{_NUMBER})\s*(?:{_UNIT})\s*(?:/|\s+per\s+)\s*kg)\s*\)",
    re.IGNORECASE,
)

# 计算后形态开头的数值："700 mg (10 mg/kg) IV q12h" → "700"
_LEADING_NUMBER = re.compile(r"^([\d.]+)")


@dataclass(frozen=True)
class DoseFormula:
    """每公斤剂量公式，text 保留用户原始写法（渲染时原样放回括号里）"""
    dose_per_kg: float
    unit: str
    text: str


@dataclass(frozen=True)
class ComputedDose:
    value: float
    formatted: str
    unit: str
    formula_text: str

    @property
    def text(self) -> str:
        return f"{self.formatted} {self.unit} ({self.formula_text})"


def _match_formula(text: str) -> Optional[DoseFormula]:
    candidate = text.strip()
    for pattern in _FORMULA_PATTERNS:
        match = pattern.match(candidate)
        if match:
            return DoseFormula(
                dose_per_kg=float(match.group(1)),
                unit=match.group(2),
                text=candidate,
            )
    return None


def _find_formula(dose_text):
    """返回 (公式, 是否为括号里的公式)；找不到时公式为 None"""
    if not isinstance(dose_text, str) or not dose_text.strip():
        return None, False

    parenthesized = _PARENTHESIZED_FORMULA.search(dose_text)
    if parenthesized:
        formula = _match_formula(parenthesized.group(1))
        if formula is not None:
            return formula, True

    return _match_formula(dose_text), False


def parse_formula(dose_text) -> Optional[DoseFormula]:
    """
    从剂量文本里找出每公斤公式
    - 文本里有括号公式（"700 mg (10 mg/kg)"）→ 以括号里的为准
    - 整个文本就是公式（"10 mg/kg"）→ 直接用
    - 其他（"500 mg"、"10 mg/day"、单位不认识）→ None，当普通剂量处理
    """
    return _find_formula(dose_text)[0]


def leading_number(dose_text) -> Optional[str]:
    """剂量文本开头的数值（原样字符串）；没有时返回 None"""
    if not isinstance(dose_text, str):
        return None
    match = _LEADING_NUMBER.match(dose_text)
    return match.group(1) if match else None


def coerce_weight(weight_kg) -> Optional[float]:
    """体重可能是 number / str / None；不能用（非数字、非正数、inf/nan）时返回 None"""
    if weight_kg is None or isinstance(weight_kg, bool):
        return None
    if isinstance(weight_kg, str):
        weight_kg = weight_kg.strip()
        if not weight_kg:
            return None
    try:
        value = float(weight_kg)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def format_dose_value(raw: float) -> str:
    """整数不带小数（1050）；否则最多两位小数并去掉末尾的 0（1050.5，不是 1050.50）"""
    if raw % 1 == 0:
        return f"{raw:.0f}"
    return f"{raw:.2f}".rstrip("0").rstrip(".")


def compute_dose(formula: DoseFormula, weight_kg) -> Optional[ComputedDose]:
    """
    按体重计算具体剂量
    公式或体重不是有限正数时返回 None，调用方应保持原文本不变
    """
    weight = coerce_weight(weight_kg)
    if formula is None or weight is None:
        return None
    if not math.isfinite(formula.dose_per_kg) or formula.dose_per_kg <= 0:
        return None

    raw = formula.dose_per_kg * weight
    return ComputedDose(
        value=raw,
        formatted=format_dose_value(raw),
        unit=formula.unit,
        formula_text=formula.text,
    )


@dataclass
class LiteralDose:
    """普通剂量：原样保存，体重变化与它无关"""
    text: str

    def recompute(self, weight_kg) -> "LiteralDose":
        return self

    def render(self) -> str:
        return self.text


@dataclass
class FormulaDose:
    """
    公式剂量：formula 是持久的源头，computed 是缓存
    recompute(weight) 刷新缓存；没有可用体重时保留上一次的显示文本
    已经展开过的文本（expanded），开头数值和新算出的一致时原样保留，
    不丢掉用户写在后面的内容（"700 mg (10 mg/kg) IV q12h"）
    """
    formula: DoseFormula
    display: str
    computed: Optional[ComputedDose] = None
    expanded: bool = False

    def recompute(self, weight_kg) -> "FormulaDose":
        computed = compute_dose(self.formula, weight_kg)
        if computed is None:
            return self
        self.computed = computed
        if not (self.expanded and leading_number(self.display) == computed.formatted):
            self.display = computed.text
            self.expanded = True
        return self

    def render(self) -> str:
        return self.display


DoseField = Union[LiteralDose, FormulaDose]


def dose_field(dose_text) -> DoseField:
    text = dose_text or ""
    formula, expanded = _find_formula(text)
    if formula is None:
        return LiteralDose(text)
    return FormulaDose(formula=formula, display=text, expanded=expanded)


def canonicalize(dose_text, weight_kg) -> str:
    """
    返回剂量文本的标准形态；没有公式或没有体重时原样返回
    幂等：canonicalize(canonicalize(x, w), w) == canonicalize(x, w)
    """
    return dose_field(dose_text).recompute(weight_kg).render()


class DoseReconciliation(NamedTuple):
    medication: object
    new_dose: str
    changed: bool


def reconcile_all(weight_kg, medications: Iterable) -> list[DoseReconciliation]:
    """
    体重变化后，找出所有需要重算的药物（纯函数，不修改传入对象）
    只处理未删除、且剂量是公式形态的药物；没有可用体重时返回空列表
    """
    if coerce_weight(weight_kg) is None:
        return []

    results = []
    for med in medications:
        if getattr(med, "deleted_at", None) is not None:
            continue
        dose = getattr(med, "dose", None)
        field = dose_field(dose)
        if not isinstance(field, FormulaDose):
            continue
        new_dose = field.recompute(weight_kg).render()
        results.append(DoseReconciliation(med, new_dose, new_dose != dose))
    return results
