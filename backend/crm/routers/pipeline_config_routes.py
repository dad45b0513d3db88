"""Pipeline configuration routes."""

from fastapi import APIRouter, Depends

from crm.dependencies import get_config
from crm.pipeline_config import PipelineConfig

router = APIRouter(prefix="/api/v1/pipelines", tags=["Pipelines"])


@router.get("/config")
async def get_pipeline_config(config: PipelineConfig = Depends(get_config)):
    """Pipeline types, their stages, trigger rules and picklist labels."""
    return {"success": True, **config.as_dict()}
