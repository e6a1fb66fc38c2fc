from fastapi import HTTPException, Request

from unified_categorizer.orchestrator import CategorizationOrchestrator


def get_orchestrator(request: Request) -> CategorizationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if not orchestrator:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return orchestrator
