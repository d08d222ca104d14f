"""Operations endpoints providing health checks, metrics, and index maintenance."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from geosearch.domain.search import schemas
from geosearch.domain.search.service import IndexService
from geosearch.obs import health
from geosearch.settings import settings

router = APIRouter(prefix="", tags=["ops"])

_index_service: Optional[IndexService] = None


def get_index_service() -> IndexService:
	global _index_service
	if _index_service is None:
		_index_service = IndexService()
	return _index_service


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = settings.obs_admin_token
	if not token:
		# Fail closed: if no token is configured, no admin access is allowed.
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	provided = _resolve_token(X_Admin_Token, authorization)
	if provided != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	await require_admin(X_Admin_Token=X_Admin_Token, authorization=authorization)


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness()
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


@router.post("/ops/index/rebuild", response_model=schemas.IndexRunResponse)
async def rebuild_index(
	payload: Optional[schemas.RebuildRequest] = None,
	_: None = Depends(require_admin),
	service: IndexService = Depends(get_index_service),
) -> schemas.IndexRunResponse:
	scope = payload.scope if payload else None
	return schemas.IndexRunResponse(runs=await service.rebuild(scope))


@router.post("/ops/index/patch", response_model=schemas.IndexRunResponse)
async def patch_index(
	payload: Optional[schemas.PatchRequest] = None,
	_: None = Depends(require_admin),
	service: IndexService = Depends(get_index_service),
) -> schemas.IndexRunResponse:
	since = payload.since if payload else None
	scope = payload.scope if payload else None
	return schemas.IndexRunResponse(runs=await service.patch(since=since, scope=scope))
