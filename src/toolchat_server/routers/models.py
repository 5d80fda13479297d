"""Models router for listing the completion endpoint's models."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from toolchat_server.dependencies import get_completion_client
from toolchat_server.errors import CompletionError
from toolchat_server.llm import CompletionClient
from toolchat_server.models.models import ModelDetail, ModelListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["models"])


@router.get("/models", response_model=ModelListResponse)
async def list_models(
    request: Request,
    completion_client: CompletionClient = Depends(get_completion_client),
) -> ModelListResponse:
    """List the models offered by the configured completion endpoint.

    Args:
        request: The FastAPI request object.
        completion_client: The completion client (injected).

    Returns:
        ModelListResponse: The endpoint's models, sorted by id.

    Raises:
        HTTPException: 502 if the endpoint cannot be queried.
    """
    settings = request.app.state.settings.completion_defaults()
    try:
        model_ids = await completion_client.list_models(settings)
    except CompletionError as e:
        logger.error(f"Failed to list models: {e}")
        raise HTTPException(
            status_code=502,
            detail={
                "error": {
                    "code": "models_error",
                    "message": str(e),
                    "details": {"status_code": e.status_code},
                }
            },
        )

    logger.info(f"Listed {len(model_ids)} models")
    return ModelListResponse(models=[ModelDetail(id=model_id) for model_id in model_ids])
