"""
HTTP 入口：解析请求 → serializers 校验 → services 处理 → JsonResponse
业务错误直接抛 BaseAppException，由 AppExceptionMiddleware 统一转成 JSON
"""
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from emr.exceptions import BlockError

from . import serializers, services


def _method_not_allowed(request):
    return BlockError(
        message=f"Method {request.method} not allowed",
        code="METHOD_NOT_ALLOWED",
        http_status=405,
    )


def _json(request):
    return serializers.parse_json_body(request.body)


@csrf_exempt
def patients(request):
    """
    GET  /api/patients/?q=xxx   搜索患者
    POST /api/patients/         登记新患者
    """
    if request.method == 'GET':
        q = (request.GET.get('q') or '').strip()
        return JsonResponse(services.list_patients(q))
    if request.method == 'POST':
        data = serializers.validate_patient_data(_json(request))
        return JsonResponse(services.create_patient(data), status=201)
    raise _method_not_allowed(request)


@csrf_exempt
def patient_detail(request, patient_id):
    if request.method == 'GET':
        return JsonResponse(services.get_patient_detail(patient_id))
    if request.method == 'PUT':
        data = serializers.validate_patient_data(_json(request), partial=True)
        return JsonResponse(services.update_patient(patient_id, data))
    if request.method == 'DELETE':
        return JsonResponse(services.delete_patient(patient_id))
    raise _method_not_allowed(request)


@csrf_exempt
def patient_weight(request, patient_id):
    """
    PUT /api/patients/<id>/weight/  {"weight_kg": 80}
    保存体重，并等待所有公式剂量按新体重改写完成后返回最新药物列表
    """
    if request.method != 'PUT':
        raise _method_not_allowed(request)
    weight_kg = serializers.validate_weight_data(_json(request))
    return JsonResponse(services.update_patient_weight(patient_id, weight_kg))


@csrf_exempt
def dose_preview(request, patient_id):
    """POST {"dose": "10 mg/kg"} → {"dose": "700 mg (10 mg/kg)", ...}，不落库"""
    if request.method != 'POST':
        raise _method_not_allowed(request)
    dose = serializers.validate_dose_preview_data(_json(request))
    return JsonResponse(services.preview_dose(patient_id, dose))


def dosing_reference(request, patient_id):
    """GET /api/patients/<id>/dosing-reference/  常用药按体重的剂量范围"""
    if request.method != 'GET':
        raise _method_not_allowed(request)
    return JsonResponse(services.get_dosing_reference(patient_id))


def patient_gfr(request, patient_id):
    """
    GET /api/patients/<id>/gfr/?creatinine=1.0
    肌酐不合法时返回 egfr=null，而不是 400
    """
    if request.method != 'GET':
        raise _method_not_allowed(request)
    creatinine = request.GET.get('creatinine')
    return JsonResponse(services.calculate_patient_gfr(patient_id, creatinine))


@csrf_exempt
def patient_encounters(request, patient_id):
    if request.method == 'GET':
        return JsonResponse(services.list_encounters(patient_id))
    if request.method == 'POST':
        data = serializers.validate_encounter_data(_json(request))
        return JsonResponse(services.create_encounter(patient_id, data), status=201)
    raise _method_not_allowed(request)


def encounter_detail(request, encounter_id):
    if request.method != 'GET':
        raise _method_not_allowed(request)
    return JsonResponse(services.get_encounter_detail(encounter_id))


@csrf_exempt
def encounter_status(request, encounter_id):
    """POST {"action": "discharge", "discharge_note": "..."} 或 {"action": "deceased"}"""
    if request.method != 'POST':
        raise _method_not_allowed(request)
    action, note = serializers.validate_status_change(_json(request))
    return JsonResponse(services.change_encounter_status(encounter_id, action, note))


@csrf_exempt
def encounter_actions(request, encounter_id):
    if request.method != 'POST':
        raise _method_not_allowed(request)
    data = serializers.validate_action_data(_json(request))
    return JsonResponse(services.add_encounter_action(encounter_id, data), status=201)


@csrf_exempt
def encounter_vitals(request, encounter_id):
    if request.method != 'POST':
        raise _method_not_allowed(request)
    text = serializers.validate_vitals_data(_json(request))
    return JsonResponse(services.record_vitals(encounter_id, text), status=201)


@csrf_exempt
def encounter_medications(request, encounter_id):
    if request.method == 'GET':
        return JsonResponse(services.list_medications(encounter_id))
    if request.method == 'POST':
        data = serializers.validate_medication_data(_json(request))
        return JsonResponse(services.create_medication(encounter_id, data), status=201)
    raise _method_not_allowed(request)


@csrf_exempt
def medication_detail(request, medication_id):
    if request.method == 'GET':
        return JsonResponse(services.get_medication_detail(medication_id))
    if request.method == 'PUT':
        data = serializers.validate_medication_data(_json(request), partial=True)
        return JsonResponse(services.update_medication(medication_id, data))
    if request.method == 'DELETE':
        return JsonResponse(services.delete_medication(medication_id))
    raise _method_not_allowed(request)


@csrf_exempt
def medication_stop(request, medication_id):
    if request.method != 'POST':
        raise _method_not_allowed(request)
    return JsonResponse(services.stop_medication(medication_id))


def export_encounter(request, encounter_id):
    """
    下载可打印的 HTML 就诊摘要
    """
    html, filename = services.render_encounter_export(encounter_id)
    response = HttpResponse(html, content_type='text/html; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response
