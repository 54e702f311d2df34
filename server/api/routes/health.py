"""Health check routes"""
from asyncio import to_thread
from fastapi import APIRouter, Depends
import logging

from core.dependencies import AppContainer, get_container

logger = logging.getLogger(__name__)
router = APIRouter()

_TABLES = ("payees", "categories", "conversation_messages")


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "ok", "service": "ledgerly-assistant"}


@router.get("/health/db")
async def database_health(container: AppContainer = Depends(get_container)):
    """Check database connectivity and that the expected tables exist"""
    supabase = container.supabase
    tables: dict[str, bool] = {}

    for table in _TABLES:
        try:
            await to_thread(
                lambda: supabase.table(table).select("id").limit(1).execute()
            )
            tables[table] = True
        except Exception as e:
            tables[table] = False
            logger.error(f"{table} table error: {e}")

    schema_ready = all(tables.values())
    connected = any(tables.values())

    return {
        "status": "ok" if schema_ready else ("degraded" if connected else "error"),
        "database": {
            "connected": connected,
            "schema_ready": schema_ready,
            "tables": tables,
        },
        "message": (
            "Database schema ready" if schema_ready
            else "Database tables missing or unreachable. Check SUPABASE_URL, SUPABASE_KEY and the schema"
        ),
    }
