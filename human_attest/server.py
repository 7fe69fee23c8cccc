"""
Approval Server - FastAPI Application

Serves the two endpoints the approval protocol depends on:
- POST /api/verify: a human submits a provider proof for (repository, commit)
- GET /api/status: pipelines poll for the resulting attestation

Status reads and verification writes share one ApprovalStore, so a write is
visible to the next status read of the same key.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .approval_store import ApprovalStore, StorePolicy
from .config import GateSettings, configure_logging, load_settings
from .provider_catalog import describe_provider
from .verification_service import VerificationService
from .verifier_registry import VerifierRegistry, build_verifier_registry

logger = logging.getLogger("approval_server")

SERVICE_NAME = "Human Approval Attestation Server"


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------
class SubjectModel(BaseModel):
    repository: str
    commit_sha: str
    action: Optional[str] = None
    ref_number: Optional[int] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class VerifyRequest(BaseModel):
    provider: str
    proof: Dict[str, Any] = Field(default_factory=dict)
    subject: SubjectModel
    signal: Optional[str] = None


class StatusResponse(BaseModel):
    status: str
    repository: str
    commit_sha: str
    attestation: Optional[Dict[str, Any]] = None
    approved_at: Optional[str] = None


class ProviderInfo(BaseModel):
    id: str
    name: str
    docs_url: str
    features: Dict[str, Any]


class ProvidersResponse(BaseModel):
    mock_mode: bool
    providers: List[ProviderInfo]


# -----------------------------------------------------------------------------
# Application Factory
# -----------------------------------------------------------------------------
def create_app(
    settings: Optional[GateSettings] = None,
    registry: Optional[VerifierRegistry] = None,
    store: Optional[ApprovalStore] = None,
) -> FastAPI:
    settings = settings or GateSettings()
    if registry is None:
        registry = build_verifier_registry(mock_mode=settings.mock_providers)
    if store is None:
        store = ApprovalStore(
            journal_file=settings.journal_file,
            policy=StorePolicy(settings.store_policy),
        )
    service = VerificationService(registry, store, settings.provider_config)

    app = FastAPI(
        title=SERVICE_NAME,
        description="Proof-of-personhood approval attestations for commits",
        version=__version__,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.store = store

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "api": "operational",
                "store": "persistent" if settings.journal_file else "memory",
                "mock_providers": registry.mock_mode,
                "store_version": store.version,
            },
            "approvals": len(store),
            "version": __version__,
        }

    @app.get("/api/status", response_model=StatusResponse, response_model_exclude_none=True)
    async def approval_status(
        repo: Optional[str] = Query(None),
        commit: Optional[str] = Query(None),
    ):
        if not repo or not commit:
            raise HTTPException(
                status_code=400,
                detail="Missing required parameters: repo and commit",
            )

        record = store.get(repo, commit)
        if record is None:
            return StatusResponse(status="pending", repository=repo, commit_sha=commit)

        return StatusResponse(
            status="approved",
            repository=repo,
            commit_sha=commit,
            attestation=record.attestation.to_dict(),
            approved_at=record.recorded_at,
        )

    @app.post("/api/verify")
    async def verify(request: VerifyRequest):
        subject = request.subject.model_dump(exclude_none=True)
        outcome = await service.submit(request.provider, request.proof, subject, request.signal)

        if not outcome.success:
            logger.warning(f"Rejected {request.provider} verification: {outcome.error}")
            return JSONResponse(status_code=400, content=outcome.to_dict())
        return outcome.to_dict()

    @app.get("/api/providers", response_model=ProvidersResponse)
    async def list_providers():
        return ProvidersResponse(
            mock_mode=registry.mock_mode,
            providers=[describe_provider(p) for p in registry.get_available_providers()],
        )

    logger.info(f"{SERVICE_NAME} ready (providers: {', '.join(registry.get_available_providers())})")
    return app


# -----------------------------------------------------------------------------
# Main Entry Point
# -----------------------------------------------------------------------------
def run() -> None:
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description=SERVICE_NAME)
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    settings = load_settings(args.config)
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=args.host, port=args.port)


if __name__ == "__main__":
    run()
