from datetime import datetime, timezone

from fastapi import APIRouter

from api.responses import send_success

router = APIRouter()


@router.get("")
async def health():
    return send_success({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})
