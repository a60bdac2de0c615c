# app/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI

from app.core.config import get_settings
from app.core.supabase_client import supabase_admin, supabase_for_token, supabase_public
from app.database import create_db_and_tables

from app.repositories.identity_store import SupabaseIdentityStore
from app.repositories.profile_repo import SupabaseProfileRepository
from app.repositories.repair_repo import SupabaseRepairProcedure
from app.repositories.role_repo import SupabaseRoleRepository
from app.services.auth_service import AuthService
from app.services.consistency import ConsistencyRepairer
from app.services.locks import UserLocks
from app.services.reconciler import RetryPolicy, SessionReconciler
from app.services.role_service import RoleService

# Routers
from app.routers.auth import router as auth_router
from app.routers.users import router as users_router

settings = get_settings()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
      - Verify DB connectivity and create tables (CREATE_TABLES_ON_STARTUP).
      - Build Supabase-backed repositories and the session services.
      - Register per-caller factories (repositories bound to the
        caller's bearer token) for the /users routes.
      - Subscribe to auth events and run the initial session check.

    Shutdown:
      - Unsubscribe and cancel pending role resolution.
    """
    if settings.CREATE_TABLES_ON_STARTUP:
        logger.info("🔄 Startup: Connecting to Supabase Postgres...")
        try:
            create_db_and_tables()
            logger.info("✅ Startup: DB connection OK, tables verified.")
        except Exception as e:
            logger.error(f"❌ Startup: DB connection FAILED: {e}")
            raise

    # Shared client: its auth follows the service session (sign in / out).
    client = await supabase_public()

    identity_store = SupabaseIdentityStore(client)
    roles = SupabaseRoleRepository(client)
    profiles = SupabaseProfileRepository(client)
    repair = SupabaseRepairProcedure(client, settings.REPAIR_RPC_NAME)
    locks = UserLocks()

    reconciler = SessionReconciler(
        identity_store,
        roles,
        policy=RetryPolicy.from_settings(settings),
        locks=locks,
    )
    repairer = ConsistencyRepairer(roles, profiles, repair, identity_store, locks=locks)

    async def caller_repairer(token: str | None) -> ConsistencyRepairer:
        caller = await supabase_for_token(token)
        return ConsistencyRepairer(
            SupabaseRoleRepository(caller),
            SupabaseProfileRepository(caller),
            SupabaseRepairProcedure(caller, settings.REPAIR_RPC_NAME),
            identity_store,
            locks=locks,
        )

    async def caller_role_service(token: str) -> RoleService:
        if settings.SUPABASE_SERVICE_ROLE_KEY:
            return RoleService(SupabaseRoleRepository(await supabase_admin()))
        return RoleService(SupabaseRoleRepository(await supabase_for_token(token)))

    app.state.reconciler = reconciler
    app.state.caller_repairer = caller_repairer
    app.state.caller_role_service = caller_role_service
    app.state.auth_service = AuthService(
        identity_store,
        reconciler,
        repairer,
        caller_repairer,
        redirect_url=settings.AUTH_REDIRECT_URL,
    )

    await reconciler.start()
    logger.info(f"✅ Startup: session state is '{reconciler.state.auth_state.value}'")
    yield
    await reconciler.stop()


app = FastAPI(
    title=settings.PROJECT_NAME or "Storefront Session Service",
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Versioned API prefix, e.g. /api/v1
app.include_router(auth_router, prefix=settings.API_V1_STR)
app.include_router(users_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "storefront-session"}
