"""
体重变更 → 批量重算剂量的编排

流程（对应前端“保存体重”）：
1. 先把新体重落库
2. reconcile_all 算出哪些药物的剂量需要改（纯函数）
3. 需要改的每条药物一个 Celery 任务，用 group 一次性全部派发，再统一等待
4. 单条失败不影响其它条，也不回滚；失败记日志、计指标、放进结果里返回
5. 全部结束后从数据库重新加载药物列表，返回给前端的列表就是实际落库的内容
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from celery import group
from django.conf import settings
from kombu.exceptions import KombuError

from .dosing import reconcile_all
from .metrics import (
    DOSE_REWRITTEN,
    DOSE_WRITE_FAILED,
    RECONCILIATION_BATCH,
    RECONCILIATION_DURATION,
)
from .models import Medication
from .tasks import reconcile_medication_dose_task

logger = logging.getLogger(__name__)


@dataclass
class DoseUpdateOutcome:
    """单条药物写入的结果"""
    medication_id: int
    success: bool
    dose: Optional[str] = None
    changed: bool = False
    error: Optional[str] = None

    def to_dict(self):
        return {
            "medication_id": self.medication_id,
            "success": self.success,
            "dose": self.dose,
            "changed": self.changed,
            "error": self.error,
        }


@dataclass
class ReconciliationResult:
    weight_kg: float
    medications: list = field(default_factory=list)
    outcomes: list = field(default_factory=list)

    @property
    def failed(self):
        return [o for o in self.outcomes if not o.success]

    @property
    def updated(self):
        return [o for o in self.outcomes if o.success and o.changed]


def patient_medications(patient):
    """患者所有未删除就诊下、未删除的药物（即前端当前加载的列表）"""
    return (
        Medication.objects
        .filter(encounter__patient=patient, encounter__deleted_at__isnull=True)
        .select_related('encounter')
        .order_by('-created_at', '-id')
    )


def dispatch_dose_updates(medication_ids, timeout=None):
    """
    并发写入：先把所有任务派发出去，再逐个等待结果
    每条单独收集成功 / 失败，不因某一条失败而中断其它
    """
    medication_ids = list(medication_ids)
    if not medication_ids:
        return []

    if timeout is None:
        timeout = getattr(settings, "RECONCILIATION_TIMEOUT", None)

    try:
        group_result = group(
            reconcile_medication_dose_task.s(medication_id) for medication_id in medication_ids
        ).apply_async()
    except (KombuError, OSError) as exc:
        # broker 不可用：一条都没派发出去，全部记为失败，由 reconcile_doses 事后补齐
        DOSE_WRITE_FAILED.inc(len(medication_ids))
        logger.error("could not dispatch %d dose updates: %s", len(medication_ids), exc)
        return [
            DoseUpdateOutcome(
                medication_id=medication_id,
                success=False,
                error=f"dispatch failed: {exc}",
            )
            for medication_id in medication_ids
        ]

    outcomes = []
    for medication_id, async_result in zip(medication_ids, group_result.results):
        try:
            value = async_result.get(timeout=timeout, disable_sync_subtasks=False)
        except Exception as exc:
            DOSE_WRITE_FAILED.inc()
            logger.warning("dose update for medication %s failed: %s", medication_id, exc)
            outcomes.append(DoseUpdateOutcome(
                medication_id=medication_id,
                success=False,
                error=str(exc) or exc.__class__.__name__,
            ))
            continue
        outcomes.append(DoseUpdateOutcome(
            medication_id=medication_id,
            success=True,
            dose=value["dose"],
            changed=value["changed"],
        ))
    return outcomes


def apply_weight_change(patient, weight_kg):
    """
    保存体重并同步所有公式剂量；返回 ReconciliationResult
    weight_kg 应已通过 serializer 校验（有限正数）
    """
    start = time.perf_counter()

    patient.weight_kg = weight_kg
    patient.save(update_fields=['weight_kg', 'updated_at'])

    plan = reconcile_all(weight_kg, patient_medications(patient))
    to_update = [item.medication.id for item in plan if item.changed]
    logger.info(
        "patient %s weight -> %skg: %d formula doses, %d to rewrite",
        patient.id, weight_kg, len(plan), len(to_update),
    )

    outcomes = dispatch_dose_updates(to_update)
    result = ReconciliationResult(
        weight_kg=weight_kg,
        medications=list(patient_medications(patient)),
        outcomes=outcomes,
    )

    if not outcomes:
        RECONCILIATION_BATCH.labels(outcome="noop").inc()
    elif result.failed:
        RECONCILIATION_BATCH.labels(outcome="partial").inc()
        logger.warning(
            "patient %s: %d of %d dose updates failed",
            patient.id, len(result.failed), len(outcomes),
        )
    else:
        RECONCILIATION_BATCH.labels(outcome="ok").inc()
    DOSE_REWRITTEN.labels(trigger="weight").inc(len(result.updated))
    RECONCILIATION_DURATION.observe(time.perf_counter() - start)
    return result
