from django.db import models
from django.utils import timezone


class SoftDeleteManager(models.Manager):
    """默认只返回未删除的记录；all_objects 可以看到已删除的"""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class SoftDeleteModel(models.Model):
    """
    所有临床记录都是软删除：只写 deleted_at，不真正删行
    """
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        abstract = True

    def soft_delete(self):
        self.deleted_at = timezone.now()
        self.save(update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None


"""
Patient字段:
full_name; mrn(可空，有值时唯一); birth_date; sex(M/F/U); phone
weight_kg: 当前体重（只存最新值，不存历史），驱动按体重计算的剂量和 GFR
"""
class Patient(SoftDeleteModel):
    SEX_CHOICES = [
        ('M', 'Male'),
        ('F', 'Female'),
        ('U', 'Unknown'),
    ]

    full_name = models.CharField(max_length=200)
    mrn = models.CharField(max_length=32, unique=True, null=True, blank=True)
    birth_date = models.DateField(null=True, blank=True)
    sex = models.CharField(max_length=1, choices=SEX_CHOICES, null=True, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    weight_kg = models.FloatField(null=True, blank=True)

    def __str__(self):
        return f"{self.full_name} ({self.mrn or '-'})"


"""
Encounter字段:
patient (外键 → Patient.id)
status: ACTIVE / DISCHARGED / DECEASED
start_at; end_at; current_location; primary_dx; problem_list_text
cc; hpi; ros; physical_exam; investigations; summary
discharge_note; discharge_at
"""
class Encounter(SoftDeleteModel):
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_DISCHARGED = 'DISCHARGED'
    STATUS_DECEASED = 'DECEASED'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_DISCHARGED, 'Discharged'),
        (STATUS_DECEASED, 'Deceased'),
    ]

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='encounters')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    start_at = models.DateTimeField(default=timezone.now)
    end_at = models.DateTimeField(null=True, blank=True)
    current_location = models.CharField(max_length=200, blank=True)
    primary_dx = models.CharField(max_length=500, blank=True)
    problem_list_text = models.TextField(blank=True)
    cc = models.TextField(blank=True)
    hpi = models.TextField(blank=True)
    ros = models.TextField(blank=True)
    physical_exam = models.TextField(blank=True)
    investigations = models.TextField(blank=True)
    summary = models.TextField(blank=True)
    discharge_note = models.TextField(blank=True)
    discharge_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Encounter {self.id} for {self.patient} ({self.status})"


"""
EncounterAction字段（时间线）:
encounter (外键 → Encounter.id)
type: TX / INV / EXAM / REASONING / VITALS / NOTE / TRANSFER
text; event_at
"""
class EncounterAction(SoftDeleteModel):
    TYPE_CHOICES = [
        ('TX', 'Treatment'),
        ('INV', 'Investigation'),
        ('EXAM', 'Examination'),
        ('REASONING', 'Clinical Reasoning'),
        ('VITALS', 'Vitals'),
        ('NOTE', 'Note'),
        ('TRANSFER', 'Transfer'),
    ]

    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='actions')
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    text = models.TextField()
    event_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"{self.type} @ {self.event_at:%Y-%m-%d %H:%M}"


"""
Medication字段:
encounter (外键 → Encounter.id)
name; dose(自由文本，可能带公式，如 "700 mg (10 mg/kg)"); route; frequency; indication
status: ACTIVE / STOPPED
start_at; stop_at; notes
"""
class Medication(SoftDeleteModel):
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_STOPPED = 'STOPPED'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_STOPPED, 'Stopped'),
    ]

    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='medications')
    name = models.CharField(max_length=200)
    dose = models.CharField(max_length=200, blank=True)
    route = models.CharField(max_length=50, blank=True)
    frequency = models.CharField(max_length=50, blank=True)
    indication = models.CharField(max_length=200, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    start_at = models.DateTimeField(default=timezone.now)
    stop_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)

    def __str__(self):
        return f"{self.name} {self.dose}".strip()
