from fastapi import APIRouter

from scheduled_jobs.api.deps import Manager

router = APIRouter()

@router.get("/jobs/{model}/stats")
async def job_stats(manager: Manager):
    return {
        "model": manager.model_name,
        "running": manager.running,
        "counts": await manager.count_by_status(),
    }

# Manual triggers, same work as one tick of the matching loop

@router.post("/jobs/{model}/enqueue")
async def trigger_enqueue(manager: Manager):
    enqueued = await manager.enqueue()
    cleaned = await manager.cleanup()
    return {"enqueued_count": enqueued, "cleaned_count": cleaned}

@router.post("/jobs/{model}/timeout")
async def trigger_timeout(manager: Manager):
    return {"timed_out_count": await manager.timeout()}

@router.post("/jobs/{model}/retry")
async def trigger_retry(manager: Manager):
    return {"retried_count": await manager.retry()}
