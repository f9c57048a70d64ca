"""
手动重跑剂量同步：按每个患者当前体重，把所有公式剂量改写成最新值
用于两次体重修改交错、或 worker 故障后收敛数据
运行: python manage.py reconcile_doses [--patient ID] [--dry-run]
"""
from django.core.management.base import BaseCommand

from clinical.dosing import reconcile_all
from clinical.models import Patient
from clinical.reconciliation import dispatch_dose_updates, patient_medications


def reconcile_patient(patient, dry_run=False):
    """返回 (需要改写的条数, 失败条数)"""
    plan = [item for item in reconcile_all(patient.weight_kg, patient_medications(patient)) if item.changed]
    if dry_run or not plan:
        return len(plan), 0
    outcomes = dispatch_dose_updates(item.medication.id for item in plan)
    return len(plan), sum(1 for o in outcomes if not o.success)


class Command(BaseCommand):
    help = '按患者当前体重重新计算并保存所有公式剂量'

    def add_arguments(self, parser):
        parser.add_argument('--patient', type=int, help='只处理指定患者 ID')
        parser.add_argument('--dry-run', action='store_true', help='只统计，不写数据库')

    def handle(self, *args, **options):
        patients = Patient.objects.filter(weight_kg__isnull=False).order_by('id')
        if options.get('patient'):
            patients = patients.filter(id=options['patient'])

        total = failed = 0
        for patient in patients:
            changed, errors = reconcile_patient(patient, dry_run=options['dry_run'])
            if changed:
                self.stdout.write(f'患者 {patient.id}: {changed} 条剂量需要更新，失败 {errors} 条')
            total += changed
            failed += errors

        verb = '需要更新' if options['dry_run'] else '已更新'
        self.stdout.write(f'完成：{verb} {total - failed} 条，失败 {failed} 条')
        if failed:
            self.stderr.write(f'{failed} 条剂量写入失败，详见日志')
