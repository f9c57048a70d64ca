from django.urls import path
from clinical import views
from clinical.views_metrics import metrics

# urls.py：所有 RESTful API 路径
# path(路径, views 里对应的方法, name)，name 用于 reverse() 反向解析
urlpatterns = [
    path('api/patients/', views.patients, name='patients'),
    path('api/patients/<int:patient_id>/', views.patient_detail, name='patient_detail'),
    path('api/patients/<int:patient_id>/weight/', views.patient_weight, name='patient_weight'),
    path('api/patients/<int:patient_id>/dose-preview/', views.dose_preview, name='dose_preview'),
    path('api/patients/<int:patient_id>/gfr/', views.patient_gfr, name='patient_gfr'),
    path('api/patients/<int:patient_id>/dosing-reference/', views.dosing_reference, name='dosing_reference'),
    path('api/patients/<int:patient_id>/encounters/', views.patient_encounters, name='patient_encounters'),
    path('api/encounters/<int:encounter_id>/', views.encounter_detail, name='encounter_detail'),
    path('api/encounters/<int:encounter_id>/status/', views.encounter_status, name='encounter_status'),
    path('api/encounters/<int:encounter_id>/actions/', views.encounter_actions, name='encounter_actions'),
    path('api/encounters/<int:encounter_id>/vitals/', views.encounter_vitals, name='encounter_vitals'),
    path('api/encounters/<int:encounter_id>/medications/', views.encounter_medications, name='encounter_medications'),
    path('api/medications/<int:medication_id>/', views.medication_detail, name='medication_detail'),
    path('api/medications/<int:medication_id>/stop/', views.medication_stop, name='medication_stop'),
    path('encounters/<int:encounter_id>/export/', views.export_encounter, name='export_encounter'),
    path('metrics', metrics, name='metrics'),
]
