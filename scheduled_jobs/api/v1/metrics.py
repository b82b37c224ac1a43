from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
JOBS_ADDED = Counter('scheduler_jobs_added_total', 'Total jobs inserted in CREATED state', ['model'])
JOBS_ENQUEUED = Counter(
    'scheduler_jobs_enqueued_total',
    'Dispatch attempts made by the admission loop',
    ['model', 'result'] # result=success|failed
)
JOBS_TIMED_OUT = Counter(
    'scheduler_jobs_timed_out_total',
    'Jobs reclassified as TIMEOUT',
    ['model', 'stage'] # stage=queued|in_progress
)
JOBS_RETRIED = Counter('scheduler_jobs_retried_total', 'Jobs moved from FAILED/TIMEOUT back to CREATED', ['model'])
JOBS_CLEANED = Counter('scheduler_jobs_cleaned_total', 'Jobs deleted by the retention policy', ['model'])

JOBS_INFLIGHT = Gauge(
    "scheduler_jobs_inflight",
    "Number of jobs currently QUEUED or IN_PROGRESS",
    ["model"]
)

LOOP_RESTARTS = Counter(
    "scheduler_loop_restarts_total",
    "Times a control loop crashed and was relaunched",
    ["loop"]
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
