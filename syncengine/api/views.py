"""
API views for the extraction engine.

This module provides endpoints for:
- Triggering full runs and sample runs of assignments
- Assignment status changes and schedule inspection
- Job progress, cancellation, commit, staged data and logs
- Web source structure analysis and rule suggestions
- LLM capture configuration and target table discovery

All endpoints require authentication; job-creating and page-fetching
endpoints are rate limited.
"""

import logging
from dataclasses import asdict

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from syncengine.api.throttling import RunTriggerThrottle, SampleThrottle
from syncengine.exceptions import (
    AlreadyRunning,
    CommitFailure,
    ConfigurationError,
    FetchFailure,
    InvalidJobState,
    InvalidStatusTransition,
    StagedDataNotFound,
)
from syncengine.models import (
    Assignment,
    AssignmentSchedule,
    DataSource,
    ExtractionJob,
    ExtractionMethod,
    ProcessLog,
    SyncMode,
    WebSource,
)

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 500
MAX_STAGED_PAGE_SIZE = 1000


def _get_scheduler():
    """Get Scheduler instance (lazy import to avoid circular imports)."""
    from syncengine.scheduling import Scheduler
    return Scheduler()


def _get_state_machine():
    from syncengine.jobs.lifecycle import JobStateMachine
    return JobStateMachine()


def _error(message, http_status, **extra):
    return Response({'error': message, **extra}, status=http_status)


def _job_payload(job: ExtractionJob) -> dict:
    return {
        'job_id': str(job.id),
        'assignment_id': str(job.assignment_id),
        'status': job.status,
        'trigger_source': job.trigger_source,
        'sync_mode': job.sync_mode,
        'progress': {
            'pages_processed': job.pages_processed,
            'pages_total': job.pages_total,
            'percent': job.progress_percent,
            'current_url': job.current_url,
        },
        'rows_extracted': job.rows_extracted,
        'rows_inserted': job.rows_inserted,
        'rows_failed': job.rows_failed,
        'staged_row_count': job.staged_row_count,
        'created_at': job.created_at.isoformat(),
        'started_at': job.started_at.isoformat() if job.started_at else None,
        'completed_at': job.completed_at.isoformat() if job.completed_at else None,
        'committed_at': job.committed_at.isoformat() if job.committed_at else None,
        'duration_seconds': job.duration_seconds,
        'error': job.error_message or None,
    }


# ============================================================
# Assignment Endpoints
# ============================================================

@extend_schema(
    tags=['Assignments'],
    summary='Run assignment now',
    description='''
    Create an extraction job for the assignment and hand it to a worker.

    At most one job per assignment may be pending, running or staging.
    A draft assignment moves to testing.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'mode': {'type': 'string', 'enum': ['manual', 'auto'], 'description': 'Sync mode of the job; defaults to the assignment\'s'},
            },
        }
    },
    responses={
        202: {
            'description': 'Job created',
            'content': {'application/json': {'example': {'job_id': '6f1c...', 'mode': 'manual'}}},
        },
        400: {'description': 'Assignment cannot run as configured'},
        404: {'description': 'Assignment not found'},
        409: {'description': 'A job is already in flight for this assignment'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([RunTriggerThrottle])
def run_assignment(request, assignment_id):
    try:
        assignment = Assignment.objects.get(pk=assignment_id)
    except Assignment.DoesNotExist:
        return _error('Assignment not found', status.HTTP_404_NOT_FOUND)

    mode = request.data.get('mode') or assignment.sync_mode
    if mode not in SyncMode.values:
        return _error(f"Invalid mode '{mode}'", status.HTTP_400_BAD_REQUEST)

    try:
        job_id = _get_scheduler().trigger_now(assignment.pk, mode=mode)
    except AlreadyRunning as e:
        return _error(
            'An extraction job is already running for this assignment',
            status.HTTP_409_CONFLICT,
            job_id=str(e.job_id) if e.job_id else None,
        )
    except ConfigurationError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    logger.info(f"Run of assignment {assignment.name} triggered by {request.user}: job {job_id}")
    return Response({'job_id': str(job_id), 'mode': mode}, status=status.HTTP_202_ACCEPTED)


@extend_schema(
    tags=['Assignments'],
    summary='Sample run',
    description='''
    Run the assignment in sample mode and return the rows directly.

    Nothing is staged or written. The first failing row is returned with
    full detail to help with rule authoring.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'max_rows': {'type': 'integer', 'minimum': 1, 'maximum': 100, 'default': 5},
            },
        }
    },
    responses={
        200: {
            'description': 'Sample rows',
            'content': {
                'application/json': {
                    'example': {
                        'success': True,
                        'rows': [{'title': 'Widget', 'price': 9.99}],
                        'columns': ['title', 'price'],
                        'rows_failed': 0,
                        'first_failure': None,
                    }
                }
            },
        },
        400: {'description': 'Assignment cannot run as configured'},
        404: {'description': 'Assignment not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([SampleThrottle])
def sample_assignment(request, assignment_id):
    from syncengine.jobs.sample import run_sample

    if not Assignment.objects.filter(pk=assignment_id).exists():
        return _error('Assignment not found', status.HTTP_404_NOT_FOUND)

    max_rows = request.data.get('max_rows', 5)
    try:
        max_rows = int(max_rows)
    except (TypeError, ValueError):
        return _error('max_rows must be an integer', status.HTTP_400_BAD_REQUEST)
    if not 1 <= max_rows <= 100:
        return _error('max_rows must be between 1 and 100', status.HTTP_400_BAD_REQUEST)

    try:
        result = run_sample(assignment_id, max_rows=max_rows)
    except ConfigurationError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    return Response({'success': True, **result.to_dict()})


@extend_schema(
    tags=['Assignments'],
    summary='Change assignment status',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'status': {'type': 'string', 'enum': ['draft', 'testing', 'active', 'paused', 'error']},
            },
            'required': ['status'],
        }
    },
    responses={
        200: {'description': 'Status changed; schedule re-synced'},
        400: {'description': 'Transition not allowed'},
        404: {'description': 'Assignment not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def change_assignment_status(request, assignment_id):
    try:
        assignment = Assignment.objects.get(pk=assignment_id)
    except Assignment.DoesNotExist:
        return _error('Assignment not found', status.HTTP_404_NOT_FOUND)

    new_status = request.data.get('status')
    if not new_status:
        return _error('Missing required field: status', status.HTTP_400_BAD_REQUEST)

    try:
        assignment.transition_to(new_status)
    except InvalidStatusTransition as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    schedule = AssignmentSchedule.objects.filter(assignment=assignment, is_active=True).first()
    return Response({
        'assignment_id': str(assignment.pk),
        'status': assignment.status,
        'scheduled': schedule is not None,
        'next_run_at': schedule.next_run_at.isoformat() if schedule else None,
    })


@extend_schema(
    tags=['Assignments'],
    summary='Assignment schedule',
    responses={
        200: {
            'description': 'Schedule state',
            'content': {
                'application/json': {
                    'example': {
                        'scheduled': True,
                        'schedule_type': 'cron',
                        'cron_expression': '0 6 * * *',
                        'next_run_at': '2026-01-01T06:00:00+00:00',
                    }
                }
            },
        },
        404: {'description': 'Assignment not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def assignment_schedule(request, assignment_id):
    try:
        assignment = Assignment.objects.get(pk=assignment_id)
    except Assignment.DoesNotExist:
        return _error('Assignment not found', status.HTTP_404_NOT_FOUND)

    schedule = AssignmentSchedule.objects.filter(assignment=assignment).first()
    if schedule is None or not schedule.is_active:
        return Response({
            'scheduled': False,
            'schedule_type': assignment.schedule_type,
            'recurring_eligible': assignment.is_recurring(),
        })

    return Response({
        'scheduled': True,
        'schedule_type': schedule.schedule_type,
        'cron_expression': schedule.cron_expression or None,
        'next_run_at': schedule.next_run_at.isoformat(),
        'last_run_at': schedule.last_run_at.isoformat() if schedule.last_run_at else None,
        'last_status': schedule.last_status or None,
        'last_job_id': str(schedule.last_job_id) if schedule.last_job_id else None,
    })


@extend_schema(
    tags=['Assignments'],
    summary='Suggest extraction rules',
    description='''
    Match the cached structure analysis of the web source against the
    target table and suggest one rule per column. With ``seed`` the
    suggestions at or above ``min_confidence`` are created as rules.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'seed': {'type': 'boolean', 'default': False},
                'min_confidence': {'type': 'number', 'default': 0.5},
                'element_index': {'type': 'integer', 'default': 0},
            },
        }
    },
    responses={
        200: {'description': 'Suggestions (and created rule ids when seeding)'},
        404: {'description': 'Assignment or target table not found'},
        409: {'description': 'Web source has not been analyzed'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def suggest_rules(request, assignment_id):
    from syncengine.connectors import get_connector
    from syncengine.extraction.structure import seed_rules_from_suggestions
    from syncengine.extraction.structure import suggest_rules as build_suggestions

    try:
        assignment = Assignment.objects.select_related('web_source', 'data_source').get(
            pk=assignment_id
        )
    except Assignment.DoesNotExist:
        return _error('Assignment not found', status.HTTP_404_NOT_FOUND)

    structure = assignment.web_source.structure_json
    if not structure:
        return _error('Web source has not been analyzed yet', status.HTTP_409_CONFLICT)

    try:
        table = get_connector(assignment.data_source).describe_table(
            assignment.target_schema, assignment.target_table
        )
    except ConfigurationError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)
    if table is None:
        return _error(
            f"Target table '{assignment.qualified_table}' not found", status.HTTP_404_NOT_FOUND
        )

    try:
        min_confidence = float(request.data.get('min_confidence', 0.5))
        element_index = int(request.data.get('element_index', 0))
    except (TypeError, ValueError):
        return _error('min_confidence and element_index must be numbers', status.HTTP_400_BAD_REQUEST)

    suggestions = build_suggestions(structure, table, element_index=element_index)
    response = {'suggestions': suggestions, 'created_rules': []}

    if request.data.get('seed'):
        try:
            created = seed_rules_from_suggestions(assignment, suggestions, min_confidence)
        except ConfigurationError as e:
            return _error(str(e), status.HTTP_400_BAD_REQUEST)
        response['created_rules'] = [str(rule.id) for rule in created]

    return Response(response)


@extend_schema(
    tags=['Assignments'],
    summary='Generate LLM capture configuration',
    description='''
    Fetch a sample page, have the analyzer service describe it against the
    target table, and store the returned capture configuration on the
    assignment. With ``use_llm`` the assignment switches to LLM extraction.
    ''',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'url': {'type': 'string', 'format': 'uri', 'description': 'Sample page; defaults to the start URL'},
                'use_llm': {'type': 'boolean', 'default': False},
            },
        }
    },
    responses={
        200: {'description': 'Stored capture configuration'},
        400: {'description': 'Target table missing or data source inactive'},
        404: {'description': 'Assignment not found'},
        502: {'description': 'Sample page or analyzer unavailable'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([SampleThrottle])
def capture_config(request, assignment_id):
    from syncengine.extraction.llm_capture import CaptureServiceError, generate_capture_config

    try:
        assignment = Assignment.objects.select_related('web_source', 'data_source').get(
            pk=assignment_id
        )
    except Assignment.DoesNotExist:
        return _error('Assignment not found', status.HTTP_404_NOT_FOUND)

    try:
        capture = generate_capture_config(assignment, url=request.data.get('url') or None)
    except ConfigurationError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)
    except (FetchFailure, CaptureServiceError) as e:
        logger.warning(f"Capture configuration for {assignment.name} failed: {e}")
        return _error(str(e), status.HTTP_502_BAD_GATEWAY)

    if request.data.get('use_llm'):
        assignment.extraction_method = ExtractionMethod.LLM
        assignment.save(update_fields=['extraction_method'])

    return Response({
        'assignment_id': str(assignment.id),
        'extraction_method': assignment.extraction_method,
        'capture_config': capture.to_dict(),
    })


# ============================================================
# Data Source Endpoints
# ============================================================

@extend_schema(
    tags=['Data Sources'],
    summary='List target tables',
    description='Introspect the data source and list its tables with their columns.',
    parameters=[
        OpenApiParameter('schema', OpenApiTypes.STR, description='Restrict to one schema'),
    ],
    responses={
        200: {'description': 'Tables and columns'},
        400: {'description': 'Data source inactive or misconfigured'},
        404: {'description': 'Data source not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def data_source_tables(request, data_source_id):
    from syncengine.connectors import get_connector

    try:
        data_source = DataSource.objects.get(pk=data_source_id)
    except DataSource.DoesNotExist:
        return _error('Data source not found', status.HTTP_404_NOT_FOUND)

    try:
        tables = get_connector(data_source).discover_tables(request.query_params.get('schema') or None)
    except ConfigurationError as e:
        return _error(str(e), status.HTTP_400_BAD_REQUEST)

    return Response({
        'data_source_id': str(data_source.id),
        'count': len(tables),
        'tables': [asdict(table) for table in tables],
    })


# ============================================================
# Web Source Endpoints
# ============================================================

@extend_schema(
    tags=['Web Sources'],
    summary='Analyze web source structure',
    description='Queue a structure analysis; the result is cached on the web source.',
    request={
        'application/json': {
            'type': 'object',
            'properties': {
                'url': {'type': 'string', 'format': 'uri', 'description': 'Page to analyze; defaults to the base URL'},
            },
        }
    },
    responses={
        202: {'description': 'Analysis queued'},
        404: {'description': 'Web source not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([SampleThrottle])
def analyze_web_source(request, web_source_id):
    from syncengine.tasks import analyze_web_source as analyze_task

    try:
        web_source = WebSource.objects.get(pk=web_source_id)
    except WebSource.DoesNotExist:
        return _error('Web source not found', status.HTTP_404_NOT_FOUND)

    url = request.data.get('url') or None
    task = analyze_task.apply_async(args=[str(web_source.id), url], queue='analysis')
    return Response(
        {'web_source_id': str(web_source.id), 'task_id': task.id, 'status': 'queued'},
        status=status.HTTP_202_ACCEPTED,
    )


# ============================================================
# Job Endpoints
# ============================================================

@extend_schema(
    tags=['Jobs'],
    summary='Job status',
    description='Poll the status, counters and current URL of a job.',
    parameters=[
        OpenApiParameter(name='job_id', type=OpenApiTypes.UUID, location=OpenApiParameter.PATH),
    ],
    responses={
        200: {'description': 'Job status'},
        404: {'description': 'Job not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def job_detail(request, job_id):
    try:
        job = ExtractionJob.objects.get(pk=job_id)
    except ExtractionJob.DoesNotExist:
        return _error('Job not found', status.HTTP_404_NOT_FOUND)
    return Response(_job_payload(job))


@extend_schema(
    tags=['Jobs'],
    summary='Cancel job',
    description='Cancel a pending, running or staging job. Staged rows are discarded.',
    request=None,
    responses={
        200: {'description': 'Job cancelled'},
        404: {'description': 'Job not found'},
        409: {'description': 'Job is not cancellable'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_job(request, job_id):
    try:
        job = _get_state_machine().cancel(job_id)
    except ExtractionJob.DoesNotExist:
        return _error('Job not found', status.HTTP_404_NOT_FOUND)
    except InvalidJobState as e:
        return _error(str(e), status.HTTP_409_CONFLICT, status=e.current)

    return Response(_job_payload(job))


@extend_schema(
    tags=['Jobs'],
    summary='Commit staged rows',
    description='Write the staged rows of a job to its target table. Only valid from staging.',
    request=None,
    responses={
        200: {'description': 'Committed'},
        404: {'description': 'Job not found'},
        409: {'description': 'Job is not staging or is already being committed'},
        502: {'description': 'Target database rejected the insert'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def commit_job(request, job_id):
    try:
        job = _get_state_machine().commit(job_id)
    except ExtractionJob.DoesNotExist:
        return _error('Job not found', status.HTTP_404_NOT_FOUND)
    except InvalidJobState as e:
        return _error(str(e), status.HTTP_409_CONFLICT, status=e.current)
    except CommitFailure as e:
        return _error(str(e), status.HTTP_502_BAD_GATEWAY)

    return Response(_job_payload(job))


@extend_schema(
    tags=['Jobs'],
    summary='Staged rows',
    parameters=[
        OpenApiParameter(name='offset', type=int, location=OpenApiParameter.QUERY, default=0),
        OpenApiParameter(name='limit', type=int, location=OpenApiParameter.QUERY, default=100),
    ],
    responses={
        200: {'description': 'A page of staged rows'},
        404: {'description': 'Job not found or nothing staged'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def job_staged_data(request, job_id):
    from syncengine.staging import StagingStore

    try:
        job = ExtractionJob.objects.get(pk=job_id)
    except ExtractionJob.DoesNotExist:
        return _error('Job not found', status.HTTP_404_NOT_FOUND)

    try:
        offset = max(int(request.query_params.get('offset', 0)), 0)
        limit = min(max(int(request.query_params.get('limit', 100)), 1), MAX_STAGED_PAGE_SIZE)
    except ValueError:
        return _error('offset and limit must be integers', status.HTTP_400_BAD_REQUEST)

    try:
        rows = StagingStore().read(job)
    except StagedDataNotFound as e:
        return _error(str(e), status.HTTP_404_NOT_FOUND)

    return Response({
        'job_id': str(job.id),
        'columns': job.staged_columns,
        'total': len(rows),
        'offset': offset,
        'rows': rows[offset:offset + limit],
    })


@extend_schema(
    tags=['Jobs'],
    summary='Job process log',
    parameters=[
        OpenApiParameter(name='level', type=str, location=OpenApiParameter.QUERY, enum=['debug', 'info', 'warn', 'error']),
    ],
    responses={
        200: {'description': 'Log entries in creation order'},
        404: {'description': 'Job not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def job_logs(request, job_id):
    if not ExtractionJob.objects.filter(pk=job_id).exists():
        return _error('Job not found', status.HTTP_404_NOT_FOUND)

    logs = ProcessLog.objects.filter(job_id=job_id)
    level = request.query_params.get('level')
    if level:
        logs = logs.filter(level=level)

    return Response({
        'job_id': str(job_id),
        'logs': [
            {
                'level': entry.level,
                'message': entry.message,
                'url': entry.url or None,
                'row_index': entry.row_index,
                'details': entry.details,
                'created_at': entry.created_at.isoformat(),
            }
            for entry in logs[:MAX_LOG_ENTRIES]
        ],
    })
