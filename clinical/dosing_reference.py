"""
速查表：常用药按体重的剂量范围（只读，不落库）

患者没有体重时按 70kg 计算，并在结果里标明 assumed。
"""
from dataclasses import dataclass
from typing import Optional

from .dosing import coerce_weight

DEFAULT_REFERENCE_WEIGHT_KG = 70.0


@dataclass(frozen=True)
class ReferenceDrug:
    name: str
    dosing: str
    per_kg_min: Optional[float] = None
    per_kg_max: Optional[float] = None
    unit: str = "mg"
    suffix: str = ""
    note: str = ""


# (分类, 药物列表)；per_kg_min 为空的只给文字说明，不计算
REFERENCE_TABLE = [
    ("Antibiotics", [
        ReferenceDrug("Vancomycin", "15-20 mg/kg", 15, 20, note="CKD: adjust per levels"),
        ReferenceDrug("Ceftriaxone", "50-100 mg/kg/day", 50, 100, suffix="/day", note="max 2g/day"),
        ReferenceDrug("Cefepime", "50 mg/kg", 50, suffix="/day", note="CKD: q24h if CrCl <30"),
        ReferenceDrug("Meropenem", "20-40 mg/kg", 20, 40, note="CKD: reduce dose/frequency"),
        ReferenceDrug("Pip-Tazo", "80-100 mg/kg", 80, 100, note="CKD: 2.25g q8h"),
        ReferenceDrug("Gentamicin", "5-7 mg/kg", 5, 7, note="CKD: monitor levels, extend interval"),
        ReferenceDrug("Metronidazole", "7.5 mg/kg", 7.5),
        ReferenceDrug("Azithromycin", "10 mg/kg day 1, then 5 mg/kg", 10),
    ]),
    ("Critical Care / ICU", [
        ReferenceDrug("Norepinephrine", "0.05-0.5 mcg/kg/min IV infusion", 0.05, 0.5, unit="mcg", suffix="/min"),
        ReferenceDrug("Dobutamine", "2.5-10 mcg/kg/min IV infusion", 2.5, 10, unit="mcg", suffix="/min"),
        ReferenceDrug("Nitroglycerin (GTN)", "5-200 mcg/min IV infusion, start 5-10 mcg/min"),
        ReferenceDrug("Propofol", "1-2 mg/kg bolus, then 25-75 mcg/kg/min", 1, 2),
        ReferenceDrug("Phenytoin", "15-20 mg/kg loading", 15, 20, note="max 50 mg/min"),
        ReferenceDrug("Insulin", "per sliding scale", note="CKD: risk of hypoglycemia"),
        ReferenceDrug("Heparin", "80 units/kg bolus, then 18 units/kg/hr", 80, unit="units"),
        ReferenceDrug("Dopamine", "2-20 mcg/kg/min IV infusion", 2, 20, unit="mcg", suffix="/min"),
    ]),
    ("Other Common", [
        ReferenceDrug("Acetaminophen", "15 mg/kg", 15, note="max 1g q6h"),
        ReferenceDrug("Ondansetron", "0.15 mg/kg", 0.15, note="max 16mg"),
        ReferenceDrug("Hydrocortisone", "1-2 mg/kg q6-8h", 1, 2),
        ReferenceDrug("Furosemide", "0.5-1 mg/kg IV", 0.5, 1, note="monitor K+"),
    ]),
]

CKD_NOTES = [
    "CrCl <50: reduce dose for renally cleared drugs",
    "CrCl <30: often 50% dose or extended intervals",
    "Dialysis: dose after dialysis session",
    "Monitor closely: vancomycin, aminoglycosides, insulin (hypoglycemia risk)",
    "No adjustment: most pressors (norepinephrine, dobutamine)",
]


def _format_reference_value(value: float) -> str:
    # 速查表只保留一位小数：3.5、1050
    if value % 1 == 0:
        return f"{value:.0f}"
    text = f"{value:.1f}"
    return text[:-2] if text.endswith(".0") else text


def reference_dose(drug: ReferenceDrug, weight_kg: float) -> Optional[str]:
    """按体重算出的剂量范围文本，如 "1050-1400 mg"；不按体重给药的返回 None"""
    if drug.per_kg_min is None:
        return None
    text = _format_reference_value(drug.per_kg_min * weight_kg)
    if drug.per_kg_max is not None:
        text = f"{text}-{_format_reference_value(drug.per_kg_max * weight_kg)}"
    return f"{text} {drug.unit}{drug.suffix}"


def build_dosing_reference(weight_kg) -> dict:
    weight = coerce_weight(weight_kg)
    assumed = weight is None
    if assumed:
        weight = DEFAULT_REFERENCE_WEIGHT_KG
    return {
        "weight_kg": weight,
        "assumed": assumed,
        "categories": [
            {
                "name": category,
                "drugs": [
                    {
                        "name": drug.name,
                        "dosing": drug.dosing,
                        "dose": reference_dose(drug, weight),
                        "note": drug.note,
                    }
                    for drug in drugs
                ],
            }
            for category, drugs in REFERENCE_TABLE
        ],
        "ckd_notes": list(CKD_NOTES),
    }
