"""
数据校验和格式转换（前端 ↔ 后端）
校验失败统一抛 ValidationError，detail = {"errors": [{"field", "message"}, ...]}
"""
import json
import math
from datetime import datetime

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from emr.exceptions import ValidationError

from .models import EncounterAction, Medication

SEX_VALUES = ("M", "F", "U")
ACTION_TYPES = tuple(code for code, _ in EncounterAction.TYPE_CHOICES)
MEDICATION_STATUSES = (Medication.STATUS_ACTIVE, Medication.STATUS_STOPPED)
STATUS_ACTIONS = ("discharge", "deceased")

# 文本字段的最大长度（与 models 保持一致）
PATIENT_TEXT_FIELDS = {"mrn": 32, "phone": 32}
ENCOUNTER_TEXT_FIELDS = {
    "current_location": 200,
    "primary_dx": 500,
    "problem_list_text": None,
    "cc": None,
    "hpi": None,
    "ros": None,
    "physical_exam": None,
    "investigations": None,
    "summary": None,
}
MEDICATION_TEXT_FIELDS = {
    "dose": 200,
    "route": 50,
    "frequency": 50,
    "indication": 200,
    "notes": None,
}


def _raise_if_errors(errors):
    if errors:
        raise ValidationError(
            message="数据格式校验失败",
            code="VALIDATION_ERROR",
            detail={"errors": errors},
        )


def _require_dict(data):
    if not isinstance(data, dict):
        raise ValidationError(
            message="请求体必须是 JSON 对象",
            code="INVALID_REQUEST",
            detail={"errors": [{"field": "_", "message": "请求体必须是 JSON 对象"}]},
        )


def parse_json_body(body):
    """
    解析 POST/PUT body (JSON) -> dict
    JSON 格式错误时抛出 ValidationError(INVALID_JSON)
    """
    if not body:
        return {}
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(
            message="Invalid JSON format",
            code="INVALID_JSON",
            detail={"error": str(e)},
        )
    _require_dict(data)
    return data


def _validate_required_string(value, field_name):
    """必填字符串：非空"""
    if value is None or not isinstance(value, str) or not value.strip():
        return f"{field_name} 不能为空"
    return None


def _validate_optional_string(value, field_name, max_length=None):
    if value is None:
        return None
    if not isinstance(value, str):
        return f"{field_name} 必须是字符串"
    if max_length is not None and len(value.strip()) > max_length:
        return f"{field_name} 不能超过 {max_length} 个字符"
    return None


def _validate_date(value, field_name):
    """日期必须为 YYYY-MM-DD 格式的合法日期"""
    if not isinstance(value, str):
        return f"{field_name} 格式应为 YYYY-MM-DD"
    s = value.strip()[:10]
    if len(s) != 10 or s[4] != "-" or s[7] != "-":
        return f"{field_name} 格式应为 YYYY-MM-DD"
    try:
        parsed = datetime.strptime(s, "%Y-%m-%d").date()
    except ValueError:
        return f"{field_name} 必须是合法日期"
    if parsed > timezone.localdate():
        return f"{field_name} 不能是未来日期"
    return None


def _parse_datetime(value):
    """ISO 8601 → aware datetime；格式不对返回 None"""
    if not isinstance(value, str):
        return None
    try:
        parsed = parse_datetime(value.strip())
    except ValueError:
        return None
    if parsed is not None and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _validate_datetime(value, field_name):
    if _parse_datetime(value) is None:
        return f"{field_name} 必须是 ISO 8601 时间"
    return None


def to_positive_number(value):
    """number 或数字字符串 → float；不是有限正数时返回 None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _validate_weight(value):
    if to_positive_number(value) is None:
        return "体重必须是大于 0 的数字（kg）"
    return None


def _clean_text_fields(data, limits):
    cleaned = {}
    for field, _ in limits.items():
        if field in data:
            value = data[field]
            cleaned[field] = value.strip() if isinstance(value, str) else ""
    return cleaned


def _validate_text_fields(data, limits, errors):
    for field, max_length in limits.items():
        if field in data:
            msg = _validate_optional_string(data[field], field, max_length)
            if msg:
                errors.append({"field": field, "message": msg})


def validate_patient_data(data, partial=False):
    """
    校验患者数据，返回清洗后的 dict（只包含传入的字段）
    partial=True 用于 PUT 更新：full_name 不是必填
    """
    _require_dict(data)
    errors = []

    if not partial or "full_name" in data:
        msg = _validate_required_string(data.get("full_name"), "full_name")
        if msg:
            errors.append({"field": "full_name", "message": msg})

    _validate_text_fields(data, PATIENT_TEXT_FIELDS, errors)

    if data.get("birth_date") not in (None, ""):
        msg = _validate_date(data["birth_date"], "birth_date")
        if msg:
            errors.append({"field": "birth_date", "message": msg})

    if data.get("sex") not in (None, "") and data["sex"] not in SEX_VALUES:
        errors.append({"field": "sex", "message": "性别必须是 M / F / U"})

    if data.get("weight_kg") not in (None, ""):
        msg = _validate_weight(data["weight_kg"])
        if msg:
            errors.append({"field": "weight_kg", "message": msg})

    _raise_if_errors(errors)

    cleaned = _clean_text_fields(data, PATIENT_TEXT_FIELDS)
    if "full_name" in data:
        cleaned["full_name"] = data["full_name"].strip()
    if "mrn" in cleaned:
        cleaned["mrn"] = cleaned["mrn"] or None
    if "birth_date" in data:
        value = data["birth_date"]
        cleaned["birth_date"] = (
            datetime.strptime(value.strip()[:10], "%Y-%m-%d").date() if value else None
        )
    if "sex" in data:
        cleaned["sex"] = data["sex"] or None
    if "weight_kg" in data:
        cleaned["weight_kg"] = to_positive_number(data["weight_kg"])
    return cleaned


def validate_weight_data(data):
    """PUT /weight/：weight_kg 必填，返回 float"""
    _require_dict(data)
    if "weight_kg" not in data:
        _raise_if_errors([{"field": "weight_kg", "message": "该字段为必填"}])
    msg = _validate_weight(data["weight_kg"])
    if msg:
        _raise_if_errors([{"field": "weight_kg", "message": msg}])
    return to_positive_number(data["weight_kg"])


def validate_encounter_data(data):
    _require_dict(data)
    errors = []
    _validate_text_fields(data, ENCOUNTER_TEXT_FIELDS, errors)
    if data.get("start_at") not in (None, ""):
        msg = _validate_datetime(data["start_at"], "start_at")
        if msg:
            errors.append({"field": "start_at", "message": msg})
    _raise_if_errors(errors)

    cleaned = _clean_text_fields(data, ENCOUNTER_TEXT_FIELDS)
    if data.get("start_at"):
        cleaned["start_at"] = _parse_datetime(data["start_at"])
    return cleaned


def validate_status_change(data):
    """出院 / 死亡：action 必须是 discharge 或 deceased"""
    _require_dict(data)
    errors = []
    action = data.get("action")
    if action not in STATUS_ACTIONS:
        errors.append({"field": "action", "message": "action 必须是 discharge 或 deceased"})
    msg = _validate_optional_string(data.get("discharge_note"), "discharge_note")
    if msg:
        errors.append({"field": "discharge_note", "message": msg})
    _raise_if_errors(errors)
    return action, (data.get("discharge_note") or "").strip()


def validate_action_data(data):
    _require_dict(data)
    errors = []
    if data.get("type") not in ACTION_TYPES:
        errors.append({"field": "type", "message": f"type 必须是 {' / '.join(ACTION_TYPES)} 之一"})
    msg = _validate_required_string(data.get("text"), "text")
    if msg:
        errors.append({"field": "text", "message": msg})
    if data.get("event_at") not in (None, ""):
        msg = _validate_datetime(data["event_at"], "event_at")
        if msg:
            errors.append({"field": "event_at", "message": msg})
    _raise_if_errors(errors)

    cleaned = {"type": data["type"], "text": data["text"].strip()}
    if data.get("event_at"):
        cleaned["event_at"] = _parse_datetime(data["event_at"])
    return cleaned


# (字段, 显示格式)：和前端时间线里的 vitals 文本保持一致
VITALS_FORMAT = [
    ("bp", "BP: {} mmHg"),
    ("hr", "HR: {} bpm"),
    ("rr", "RR: {}/min"),
    ("temp", "Temp: {}°C"),
    ("spo2", "SpO2: {}%"),
]


def validate_vitals_data(data):
    """至少填一项生命体征；返回时间线文本，如 "BP: 120/80 mmHg | HR: 80 bpm" """
    _require_dict(data)
    parts = []
    errors = []
    for field, fmt in VITALS_FORMAT:
        value = data.get(field)
        if value in (None, ""):
            continue
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            errors.append({"field": field, "message": f"{field} 格式不正确"})
            continue
        parts.append(fmt.format(str(value).strip()))
    _raise_if_errors(errors)
    if not parts:
        _raise_if_errors([{"field": "_", "message": "至少填写一项生命体征"}])
    return " | ".join(parts)


def validate_medication_data(data, partial=False):
    """
    校验药物数据，返回清洗后的 dict
    dose 原样保留（包括 "10 mg/kg" 这样的公式），换算由 services 负责
    """
    _require_dict(data)
    errors = []

    if not partial or "name" in data:
        msg = _validate_required_string(data.get("name"), "name")
        if msg:
            errors.append({"field": "name", "message": msg})

    _validate_text_fields(data, MEDICATION_TEXT_FIELDS, errors)

    if "status" in data and data["status"] not in MEDICATION_STATUSES:
        errors.append({"field": "status", "message": "status 必须是 ACTIVE 或 STOPPED"})

    _raise_if_errors(errors)

    cleaned = _clean_text_fields(data, MEDICATION_TEXT_FIELDS)
    if "name" in data:
        cleaned["name"] = data["name"].strip()
    if "status" in data:
        cleaned["status"] = data["status"]
    return cleaned


def validate_dose_preview_data(data):
    _require_dict(data)
    dose = data.get("dose")
    if dose is None or not isinstance(dose, str):
        _raise_if_errors([{"field": "dose", "message": "dose 必须是字符串"}])
    return dose
