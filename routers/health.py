# routers/health.py

from fastapi import APIRouter, Depends
import logging

from dependencies import get_deployer
from deploy_pipeline import Deployer

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", summary="Health Check Endpoint")
def health_check(deployer: Deployer = Depends(get_deployer)):
    logger.debug("Health check endpoint was called.")
    return {"status": "OK", "deploying": deployer.tracker.in_flight()}
