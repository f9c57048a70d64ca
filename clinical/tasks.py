"""
Celery 异步任务：体重变更后，逐条重算并写回药物剂量
一条药物一个任务，由 reconciliation.dispatch_dose_updates 用 group 一次性派发
数据库暂时不可用时重试（最多 3 次，指数退避）
"""
import logging
import time

from celery import shared_task
from django.db import OperationalError, transaction

from emr.exceptions import not_found

from clinical.dosing import canonicalize
from clinical.models import Encounter, Medication
from clinical.statsd_metrics import (
    dose_task_duration_seconds,
    dose_task_failure,
    dose_task_retry,
    dose_task_unchanged,
    dose_task_updated,
)

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def reconcile_medication_dose_task(self, medication_id):
    """
    锁住药物行 → 读取患者“当前”体重 → 按括号里的公式重算 → 有变化才写回
    用写入时的体重而不是派发时的体重：两次体重修改的批次交错时，最终都收敛到最新体重
    """
    start = time.perf_counter()
    try:
        with transaction.atomic():
            try:
                medication = Medication.objects.select_for_update().get(id=medication_id)
            except Medication.DoesNotExist:
                raise not_found("Medication")
            encounter = Encounter.all_objects.select_related('patient').get(id=medication.encounter_id)
            weight_kg = encounter.patient.weight_kg

            new_dose = canonicalize(medication.dose, weight_kg)
            changed = new_dose != medication.dose
            if changed:
                logger.info(
                    "medication %s dose %r -> %r (weight %skg)",
                    medication_id, medication.dose, new_dose, weight_kg,
                )
                medication.dose = new_dose
                medication.save(update_fields=['dose', 'updated_at'])
    except OperationalError as exc:
        if self.request.retries >= self.max_retries:
            dose_task_failure()
            raise
        dose_task_retry()
        raise self.retry(exc=exc, countdown=2 ** self.request.retries)
    except Exception:
        dose_task_failure()
        raise
    finally:
        dose_task_duration_seconds(time.perf_counter() - start)

    if changed:
        dose_task_updated()
    else:
        dose_task_unchanged()
    return {"medication_id": medication_id, "dose": new_dose, "changed": changed}
