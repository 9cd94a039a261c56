from typing import Optional

from fastapi import Header, HTTPException, Request

from app.services.generation import GenerationService


def get_generation_service(request: Request) -> GenerationService:
    """
    Dependency providing the service constructed in the application lifespan.
    """
    service = getattr(request.app.state, "generation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Generation service is not initialized")
    return service


def get_requester_identity(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Requester identity as forwarded by the upstream authentication layer.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authorized, no user identity")
    return x_user_id.strip()
