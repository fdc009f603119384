"""
Health Check Router
Liveness endpoint plus a DynamoDB connectivity report
"""
from fastapi import APIRouter
from datetime import datetime, timezone

from app.core.config import settings
from app.db import dynamo

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns API status.
    """
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/status")
def storage_status():
    """
    Check that every DynamoDB table (users, budgets, funds, transactions)
    can be read.
    """
    tables = dynamo.check_tables()
    connected = all(table["status"] == "accessible" for table in tables.values())

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "dynamodb": {
                "connected": connected,
                "region": settings.DYNAMO_REGION,
                "tables": tables,
            }
        },
        "overall_status": "healthy" if connected else "degraded",
    }
