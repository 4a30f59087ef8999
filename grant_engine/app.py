import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .engine import GrantEngine
from .errors import GrantError
from .logging_setup import configure_logging
from .schemas import AccessCheckOut, GrantOut, GrantRequest, SweepOut

logger = logging.getLogger(__name__)

ACCESS_DENIED = {"detail": "Access denied."}


def get_grants(request: Request) -> GrantEngine:
    return request.app.state.grants


def create_app(grant_engine: Optional[GrantEngine] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (grant_engine.settings if grant_engine else get_settings())
    app = FastAPI(title="MedVault Record Access Grants")
    app.state.grants = grant_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup():
        configure_logging(settings.log_level)
        if app.state.grants is None:
            app.state.grants = GrantEngine.from_settings(settings)
        if settings.start_sweeper:
            app.state.grants.sweeper.start()

    @app.on_event("shutdown")
    def on_shutdown():
        if app.state.grants is not None:
            app.state.grants.sweeper.shutdown()

    @app.exception_handler(GrantError)
    async def grant_error_handler(request: Request, exc: GrantError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_detail})

    # ---------- Owner actions ----------

    @app.post("/grants", response_model=GrantOut)
    def create_grant(req: GrantRequest, grants: GrantEngine = Depends(get_grants)):
        kwargs = {}
        if "duration_hours" in req.model_fields_set:
            kwargs["duration_hours"] = req.duration_hours
        grant = grants.grant(
            req.owner_id,
            req.grantee_id,
            req.resource_id,
            access_level=req.access_level,
            scope=req.scope,
            **kwargs,
        )
        return GrantOut.from_grant(grant)

    @app.post("/grants/{grant_id}/revoke")
    def revoke_grant(grant_id: int, owner_id: int, grants: GrantEngine = Depends(get_grants)):
        grants.revoke(grant_id, owner_id)
        return {"status": "ok", "message": "Access revoked."}

    @app.post("/resources/{resource_id}/revoke-all")
    def revoke_all(resource_id: int, owner_id: int, grants: GrantEngine = Depends(get_grants)):
        count = grants.revoke_all_for_resource(resource_id, owner_id)
        return {"status": "ok", "revokedPermissions": count}

    @app.get("/grants/history", response_model=List[GrantOut])
    def grant_history(owner_id: int, grantee_id: int, resource_id: int,
                      grants: GrantEngine = Depends(get_grants)):
        return [GrantOut.from_grant(g) for g in grants.grant_history(owner_id, grantee_id, resource_id)]

    @app.get("/owners/{owner_id}/resources/{resource_id}/grants", response_model=List[GrantOut])
    def owner_resource_grants(owner_id: int, resource_id: int, grants: GrantEngine = Depends(get_grants)):
        return [GrantOut.from_listing(x) for x in grants.list_active_for_owner_resource(owner_id, resource_id)]

    # ---------- Grantee / resource server ----------

    @app.get("/grantees/{grantee_id}/grants", response_model=List[GrantOut])
    def grantee_grants(grantee_id: int, grants: GrantEngine = Depends(get_grants)):
        return [GrantOut.from_listing(x) for x in grants.list_active_for_grantee(grantee_id)]

    @app.get("/access/check", response_model=AccessCheckOut)
    def check_access(owner_id: int, grantee_id: int, resource_id: int,
                     grants: GrantEngine = Depends(get_grants)):
        decision = grants.check_access(owner_id, grantee_id, resource_id)
        if not decision.allowed:
            return JSONResponse(status_code=403, content=ACCESS_DENIED)
        return AccessCheckOut(
            allowed=True,
            scope=list(decision.scope or ()),
            full_record=decision.full_scope,
            access_level=decision.access_level,
            expires_at=decision.expires_at,
        )

    @app.get("/resources/{resource_id}/view")
    def view_record(resource_id: int, grantee_id: int, grants: GrantEngine = Depends(get_grants)):
        result = grants.view_record(grantee_id, resource_id)
        if result is None:
            return JSONResponse(status_code=403, content=ACCESS_DENIED)
        decision, fields = result
        return {
            "resourceId": resource_id,
            "accessLevel": decision.access_level,
            "expiresAt": decision.expires_at.isoformat() if decision.expires_at else None,
            "fields": fields,
        }

    # ---------- Operations ----------

    @app.post("/sweeper/run", response_model=SweepOut)
    def run_sweeper(grants: GrantEngine = Depends(get_grants)):
        expired, warned = grants.sweeper.run_once()
        return SweepOut(expired=expired, warned=warned)

    return app


app = create_app()
