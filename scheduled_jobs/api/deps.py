from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from scheduled_jobs.scheduler.manager import ScheduledJobManager

def get_manager(model: str, request: Request) -> ScheduledJobManager:
    managers: dict[str, ScheduledJobManager] = request.app.state.managers
    manager = managers.get(model)
    if manager is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job model {model}")
    return manager

# Dependency resolving the manager named in the path
Manager = Annotated[ScheduledJobManager, Depends(get_manager)]
