"""
业务逻辑：操作数据库、调用剂量 / 肾功能计算、组装返回数据
views 只负责解析请求和包装响应，所有规则都在这里
"""
import logging

from django.db.models import Q
from django.template.loader import render_to_string
from django.utils import timezone

from emr.exceptions import BlockError, ValidationError, not_found

from .dosing import canonicalize, coerce_weight, parse_formula
from .dosing_reference import build_dosing_reference
from .metrics import DOSE_REWRITTEN, GFR_CALCULATED, WEIGHT_UPDATED
from .models import Encounter, EncounterAction, Medication, Patient
from .reconciliation import apply_weight_change
from .renal import assess_renal_function, calculate_age

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 查询 + 序列化
# ---------------------------------------------------------------------------

def _get_patient(patient_id):
    try:
        return Patient.objects.get(id=patient_id)
    except Patient.DoesNotExist:
        raise not_found("Patient")


def _get_encounter(encounter_id):
    try:
        return Encounter.objects.select_related('patient').get(
            id=encounter_id, patient__deleted_at__isnull=True
        )
    except Encounter.DoesNotExist:
        raise not_found("Encounter")


def _get_medication(medication_id):
    try:
        return Medication.objects.select_related('encounter__patient').get(
            id=medication_id, encounter__deleted_at__isnull=True
        )
    except Medication.DoesNotExist:
        raise not_found("Medication")


def _require_active(encounter):
    if encounter.status != Encounter.STATUS_ACTIVE:
        raise BlockError(
            message="Encounter is no longer active",
            code="ENCOUNTER_NOT_ACTIVE",
            detail={"status": encounter.status},
        )


def _iso(value):
    return value.isoformat() if value else None


def serialize_patient(patient):
    return {
        "id": patient.id,
        "full_name": patient.full_name,
        "mrn": patient.mrn,
        "birth_date": _iso(patient.birth_date),
        "age": calculate_age(patient.birth_date),
        "sex": patient.sex,
        "phone": patient.phone,
        "weight_kg": patient.weight_kg,
        "created_at": _iso(patient.created_at),
        "updated_at": _iso(patient.updated_at),
    }


def serialize_medication(med):
    formula = parse_formula(med.dose)
    return {
        "id": med.id,
        "encounter_id": med.encounter_id,
        "name": med.name,
        "dose": med.dose,
        "dose_formula": formula.text if formula else None,
        "route": med.route,
        "frequency": med.frequency,
        "indication": med.indication,
        "status": med.status,
        "start_at": _iso(med.start_at),
        "stop_at": _iso(med.stop_at),
        "notes": med.notes,
        "updated_at": _iso(med.updated_at),
    }


def serialize_action(action):
    return {
        "id": action.id,
        "type": action.type,
        "type_label": action.get_type_display(),
        "text": action.text,
        "event_at": _iso(action.event_at),
    }


def serialize_encounter(encounter):
    return {
        "id": encounter.id,
        "patient_id": encounter.patient_id,
        "status": encounter.status,
        "start_at": _iso(encounter.start_at),
        "end_at": _iso(encounter.end_at),
        "current_location": encounter.current_location,
        "primary_dx": encounter.primary_dx,
        "problem_list_text": encounter.problem_list_text,
        "cc": encounter.cc,
        "hpi": encounter.hpi,
        "ros": encounter.ros,
        "physical_exam": encounter.physical_exam,
        "investigations": encounter.investigations,
        "summary": encounter.summary,
        "discharge_note": encounter.discharge_note,
        "discharge_at": _iso(encounter.discharge_at),
    }


# ---------------------------------------------------------------------------
# 患者
# ---------------------------------------------------------------------------

def list_patients(q=""):
    """按姓名 / MRN 搜索，最多返回 50 条"""
    queryset = Patient.objects.order_by('-updated_at')
    if q:
        queryset = queryset.filter(Q(full_name__icontains=q) | Q(mrn__icontains=q))
    return {
        "success": True,
        "data": {"results": [serialize_patient(p) for p in queryset[:50]]},
    }


def _check_mrn_unique(mrn, exclude_id=None):
    """MRN 已被其他患者使用 → 阻止（包括已软删除的，因为数据库层唯一）"""
    if not mrn:
        return
    queryset = Patient.all_objects.filter(mrn=mrn)
    if exclude_id is not None:
        queryset = queryset.exclude(id=exclude_id)
    if queryset.exists():
        raise BlockError(
            message="MRN 已存在，不能重复登记",
            code="PATIENT_MRN_DUPLICATE",
        )


def create_patient(data):
    _check_mrn_unique(data.get("mrn"))
    patient = Patient.objects.create(**data)
    logger.info("patient %s created", patient.id)
    return {"success": True, "data": serialize_patient(patient)}


def get_patient_detail(patient_id):
    patient = _get_patient(patient_id)
    encounters = patient.encounters.filter(deleted_at__isnull=True).order_by('-start_at')
    data = serialize_patient(patient)
    data["encounters"] = [serialize_encounter(e) for e in encounters]
    return {"success": True, "data": data}


def update_patient(patient_id, data):
    """
    更新患者资料；体重走 update_patient_weight 的同一条路径，保证公式剂量同步
    """
    patient = _get_patient(patient_id)
    if "mrn" in data:
        _check_mrn_unique(data["mrn"], exclude_id=patient.id)

    weight_kg = data.pop("weight_kg", patient.weight_kg)
    for field, value in data.items():
        setattr(patient, field, value)
    patient.save()

    reconciliation = None
    if weight_kg != patient.weight_kg:
        if weight_kg is None:
            # 清空体重：公式剂量保持最后一次的文本，不重算
            patient.weight_kg = None
            patient.save(update_fields=['weight_kg', 'updated_at'])
        else:
            WEIGHT_UPDATED.inc()
            reconciliation = apply_weight_change(patient, weight_kg)

    payload = serialize_patient(patient)
    if reconciliation is not None:
        payload["reconciliation"] = _serialize_reconciliation(reconciliation)
    return {"success": True, "data": payload}


def delete_patient(patient_id):
    patient = _get_patient(patient_id)
    patient.soft_delete()
    logger.info("patient %s soft-deleted", patient.id)
    return {"success": True, "data": {"id": patient.id, "deleted": True}}


def _serialize_reconciliation(result):
    return {
        "weight_kg": result.weight_kg,
        "updated": len(result.updated),
        "failed": len(result.failed),
        "outcomes": [o.to_dict() for o in result.outcomes],
    }


def update_patient_weight(patient_id, weight_kg):
    """
    保存体重 → 并发改写所有公式剂量 → 等全部完成 → 从数据库重新加载药物列表
    单条写入失败不影响其它条，结果里 failed > 0
    """
    patient = _get_patient(patient_id)
    WEIGHT_UPDATED.inc()
    result = apply_weight_change(patient, weight_kg)

    data = _serialize_reconciliation(result)
    data["patient"] = serialize_patient(patient)
    data["medications"] = [serialize_medication(m) for m in result.medications]
    return {"success": True, "data": data}


def preview_dose(patient_id, dose_text):
    """
    用户输入剂量时的即时换算（只在内存里，不落库）
    "10 mg/kg" + 70kg → "700 mg (10 mg/kg)"；没有体重或不是公式时原样返回
    """
    patient = _get_patient(patient_id)
    formula = parse_formula(dose_text)
    dose = canonicalize(dose_text, patient.weight_kg)
    return {
        "success": True,
        "data": {
            "dose": dose,
            "formula": formula.text if formula else None,
            "calculated": formula is not None and coerce_weight(patient.weight_kg) is not None,
            "weight_kg": patient.weight_kg,
        },
    }


def get_dosing_reference(patient_id):
    """按患者体重的剂量速查表；没有体重时按 70kg（assumed=True）"""
    patient = _get_patient(patient_id)
    return {"success": True, "data": build_dosing_reference(patient.weight_kg)}


def calculate_patient_gfr(patient_id, creatinine):
    """
    Cockcroft-Gault 估算；肌酐只用于本次计算，不保存
    算不出来（缺肌酐 / 体重 / 出生日期 / 性别，或数值不合法）时 egfr 为 null，不报错
    """
    patient = _get_patient(patient_id)
    estimate = assess_renal_function(
        patient.birth_date, patient.weight_kg, patient.sex, creatinine
    )
    GFR_CALCULATED.labels(result="ok" if estimate else "incomplete").inc()
    return {
        "success": True,
        "data": {
            "egfr": estimate.egfr if estimate else None,
            "stage": estimate.stage if estimate else None,
            "age": calculate_age(patient.birth_date),
            "weight_kg": patient.weight_kg,
            "sex": patient.sex,
        },
    }


# ---------------------------------------------------------------------------
# 就诊 + 时间线
# ---------------------------------------------------------------------------

def list_encounters(patient_id):
    patient = _get_patient(patient_id)
    encounters = patient.encounters.filter(deleted_at__isnull=True).order_by('-start_at')
    return {
        "success": True,
        "data": {"results": [serialize_encounter(e) for e in encounters]},
    }


def create_encounter(patient_id, data):
    patient = _get_patient(patient_id)
    encounter = Encounter.objects.create(patient=patient, **data)
    logger.info("encounter %s opened for patient %s", encounter.id, patient.id)
    return {"success": True, "data": serialize_encounter(encounter)}


def get_encounter_detail(encounter_id):
    encounter = _get_encounter(encounter_id)
    data = serialize_encounter(encounter)
    data["patient"] = serialize_patient(encounter.patient)
    data["medications"] = [
        serialize_medication(m)
        for m in encounter.medications.filter(deleted_at__isnull=True).order_by('-created_at', '-id')
    ]
    data["actions"] = [
        serialize_action(a)
        for a in encounter.actions.filter(deleted_at__isnull=True).order_by('-event_at', '-id')
    ]
    return {"success": True, "data": data}


def change_encounter_status(encounter_id, action, discharge_note=""):
    """
    出院 / 死亡：只有 ACTIVE 的就诊可以变更；同时在时间线上记一条 NOTE
    """
    encounter = _get_encounter(encounter_id)
    _require_active(encounter)

    now = timezone.now()
    if action == "discharge":
        encounter.status = Encounter.STATUS_DISCHARGED
        encounter.discharge_note = discharge_note
        encounter.discharge_at = now
        note = "Patient discharged" + (f": {discharge_note}" if discharge_note else "")
    else:
        encounter.status = Encounter.STATUS_DECEASED
        encounter.discharge_note = ""
        encounter.discharge_at = None
        note = "Patient deceased"
    encounter.end_at = now
    encounter.save()

    EncounterAction.objects.create(encounter=encounter, type="NOTE", text=note, event_at=now)
    logger.info("encounter %s -> %s", encounter.id, encounter.status)
    return {"success": True, "data": serialize_encounter(encounter)}


def add_encounter_action(encounter_id, data):
    encounter = _get_encounter(encounter_id)
    _require_active(encounter)
    action = EncounterAction.objects.create(encounter=encounter, **data)
    return {"success": True, "data": serialize_action(action)}


def record_vitals(encounter_id, vitals_text):
    """生命体征作为一条 VITALS 时间线记录保存"""
    return add_encounter_action(encounter_id, {"type": "VITALS", "text": vitals_text})


# ---------------------------------------------------------------------------
# 药物
# ---------------------------------------------------------------------------

def _canonical_dose(dose_text, patient, trigger):
    """
    输入剂量时即时换算；换算后与输入不同则计一次改写
    展开后的文本比输入长，长度要在换算之后再检查一次
    """
    dose = canonicalize(dose_text, patient.weight_kg)
    max_length = Medication._meta.get_field('dose').max_length
    if len(dose) > max_length:
        raise ValidationError(
            message="数据格式校验失败",
            code="VALIDATION_ERROR",
            detail={"errors": [{
                "field": "dose",
                "message": f"dose 换算后不能超过 {max_length} 个字符",
            }]},
        )
    if dose != dose_text:
        DOSE_REWRITTEN.labels(trigger=trigger).inc()
    return dose


def list_medications(encounter_id):
    encounter = _get_encounter(encounter_id)
    medications = encounter.medications.filter(deleted_at__isnull=True).order_by('-created_at', '-id')
    return {
        "success": True,
        "data": {"results": [serialize_medication(m) for m in medications]},
    }


def create_medication(encounter_id, data):
    encounter = _get_encounter(encounter_id)
    _require_active(encounter)
    if data.get("dose"):
        data["dose"] = _canonical_dose(data["dose"], encounter.patient, trigger="entry")
    medication = Medication.objects.create(encounter=encounter, **data)
    logger.info("medication %s (%s) added to encounter %s", medication.id, medication.name, encounter.id)
    return {"success": True, "data": serialize_medication(medication)}


def get_medication_detail(medication_id):
    """
    打开编辑表单：dose_preview 是按当前体重刷新后的剂量（只供显示，不落库）
    """
    medication = _get_medication(medication_id)
    data = serialize_medication(medication)
    data["dose_preview"] = canonicalize(medication.dose, medication.encounter.patient.weight_kg)
    return {"success": True, "data": data}


def update_medication(medication_id, data):
    medication = _get_medication(medication_id)
    if data.get("dose"):
        data["dose"] = _canonical_dose(data["dose"], medication.encounter.patient, trigger="entry")
    if data.get("status") == Medication.STATUS_STOPPED and medication.stop_at is None:
        data["stop_at"] = timezone.now()
    elif data.get("status") == Medication.STATUS_ACTIVE:
        data["stop_at"] = None
    for field, value in data.items():
        setattr(medication, field, value)
    medication.save()
    return {"success": True, "data": serialize_medication(medication)}


def stop_medication(medication_id):
    medication = _get_medication(medication_id)
    if medication.status == Medication.STATUS_STOPPED:
        raise BlockError(
            message="Medication is already stopped",
            code="MEDICATION_ALREADY_STOPPED",
        )
    medication.status = Medication.STATUS_STOPPED
    medication.stop_at = timezone.now()
    medication.save(update_fields=['status', 'stop_at', 'updated_at'])
    return {"success": True, "data": serialize_medication(medication)}


def delete_medication(medication_id):
    medication = _get_medication(medication_id)
    medication.soft_delete()
    return {"success": True, "data": {"id": medication.id, "deleted": True}}


# ---------------------------------------------------------------------------
# 导出
# ---------------------------------------------------------------------------

def render_encounter_export(encounter_id):
    """
    生成可打印的 HTML 就诊摘要（浏览器里打印成 PDF）
    返回 (html, filename)
    """
    encounter = _get_encounter(encounter_id)
    patient = encounter.patient
    medications = list(
        encounter.medications.filter(deleted_at__isnull=True).order_by('start_at', 'id')
    )
    context = {
        "encounter": encounter,
        "patient": patient,
        "age": calculate_age(patient.birth_date),
        "active_medications": [m for m in medications if m.status == Medication.STATUS_ACTIVE],
        "stopped_medications": [m for m in medications if m.status == Medication.STATUS_STOPPED],
        "actions": encounter.actions.filter(deleted_at__isnull=True).order_by('event_at', 'id'),
        "generated_at": timezone.now(),
    }
    html = render_to_string("clinical/encounter_export.html", context)
    safe_name = "".join(c if c.isalnum() else "_" for c in patient.full_name).strip("_") or "patient"
    filename = f"encounter_{encounter.id}_{safe_name}.html"
    return html, filename
