"""
API URL configuration.

Endpoints:
- POST /api/v1/assignments/<id>/run/          - Create and dispatch a job
- POST /api/v1/assignments/<id>/sample/       - Bounded sample run
- POST /api/v1/assignments/<id>/status/       - Change assignment status
- GET  /api/v1/assignments/<id>/schedule/     - Schedule state
- POST /api/v1/assignments/<id>/suggest-rules/ - Rule suggestions (optionally seeded)
- POST /api/v1/assignments/<id>/capture-config/ - Generate LLM capture configuration
- GET  /api/v1/data-sources/<id>/tables/     - Target tables and columns
- POST /api/v1/web-sources/<id>/analyze/      - Queue structure analysis
- GET  /api/v1/jobs/<id>/                     - Job progress
- POST /api/v1/jobs/<id>/cancel/              - Cancel a job
- POST /api/v1/jobs/<id>/commit/              - Commit staged rows
- GET  /api/v1/jobs/<id>/staged-data/         - Staged rows
- GET  /api/v1/jobs/<id>/logs/                - Process log
"""

from django.urls import path

from syncengine.api.views import (
    analyze_web_source,
    assignment_schedule,
    cancel_job,
    capture_config,
    change_assignment_status,
    commit_job,
    data_source_tables,
    job_detail,
    job_logs,
    job_staged_data,
    run_assignment,
    sample_assignment,
    suggest_rules,
)

app_name = 'syncengine_api'

urlpatterns = [
    # Assignment endpoints
    path('assignments/<uuid:assignment_id>/run/', run_assignment, name='run_assignment'),
    path('assignments/<uuid:assignment_id>/sample/', sample_assignment, name='sample_assignment'),
    path(
        'assignments/<uuid:assignment_id>/status/',
        change_assignment_status,
        name='change_assignment_status',
    ),
    path(
        'assignments/<uuid:assignment_id>/schedule/',
        assignment_schedule,
        name='assignment_schedule',
    ),
    path(
        'assignments/<uuid:assignment_id>/suggest-rules/',
        suggest_rules,
        name='suggest_rules',
    ),
    path(
        'assignments/<uuid:assignment_id>/capture-config/',
        capture_config,
        name='capture_config',
    ),

    # Data source endpoints
    path(
        'data-sources/<uuid:data_source_id>/tables/',
        data_source_tables,
        name='data_source_tables',
    ),

    # Web source endpoints
    path('web-sources/<uuid:web_source_id>/analyze/', analyze_web_source, name='analyze_web_source'),

    # Job endpoints
    path('jobs/<uuid:job_id>/', job_detail, name='job_detail'),
    path('jobs/<uuid:job_id>/cancel/', cancel_job, name='cancel_job'),
    path('jobs/<uuid:job_id>/commit/', commit_job, name='commit_job'),
    path('jobs/<uuid:job_id>/staged-data/', job_staged_data, name='job_staged_data'),
    path('jobs/<uuid:job_id>/logs/', job_logs, name='job_logs'),
]
