from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    manager = request.app.state.connections
    return {
        "status": "ok",
        "sessions": manager.session_count,
        "active_calls": manager.active_calls,
    }
