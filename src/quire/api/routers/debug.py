from fastapi import APIRouter, Depends
from sqlalchemy.engine import make_url

from quire.core.config import Settings, get_settings

router = APIRouter(prefix="/debug", tags=["debug"])


def _masked(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)


@router.get("/config", summary="Inspect current configuration (sanitized)")
async def debug_config(s: Settings = Depends(get_settings)):
    """Runtime configuration with secrets reduced to presence flags."""
    return {
        "app": {
            "name": s.app_name,
            "environment": s.environment,
            "log_level": s.log_level,
            "api_prefix": s.api_prefix,
            "host": s.api_host,
            "port": s.api_port,
            "auth_enabled": s.auth_enabled,
        },
        "database": {
            "url_sync_masked": _masked(s.database_url_sync),
            "url_async_masked": _masked(s.database_url_async),
        },
        "modelhub": {
            "base_url": s.modelhub_base_url,
            "has_api_key": bool(s.modelhub_api_key),
            "chat_model": s.chat_completion_model,
            "embedding_model": s.rag_embedding_model,
            "embedding_dim": s.rag_embedding_model_output,
            "speech_model": s.speech_model,
        },
        "vectors": {
            "backend": s.vector_backend,
            "milvus_host": s.milvus_host,
            "milvus_port": s.milvus_http_port,
            "collection": s.milvus_collection,
        },
        "storage": {
            "backend": s.storage_backend,
            "bucket": s.s3_bucket_name,
            "has_secret_key": bool(s.s3_secret_access_key),
        },
        "workflow": {
            "workers": s.workflow_workers,
            "max_attempts": s.workflow_max_attempts,
            "backoff_base": s.workflow_backoff_base,
            "backoff_max": s.workflow_backoff_max,
            "step_timeout": s.workflow_step_timeout,
        },
        "discover": {"has_api_key": bool(s.brave_api_key)},
    }
