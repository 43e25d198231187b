# forswags/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from sqlalchemy import select
from starlette.exceptions import HTTPException as StarletteHTTPException

from forswags import auth, models
from forswags.cache import TTLCache
from forswags.config import env_bool, env_str, tier_cache_ttl_seconds
from forswags.database import Base, SessionLocal, engine
from forswags.errors import ForswagsError, forswags_error_handler, http_exception_handler
from forswags.routers import (
    account,
    admin,
    billing,
    coach_applications,
    evaluations,
    features,
    jobs,
    notifications,
)

# -------------------------------------------------
# LOGGING (once, before anything logs)
# -------------------------------------------------
logging.basicConfig(
    level=(env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------------------------------
# DB SETUP
# -------------------------------------------------
Base.metadata.create_all(bind=engine)


# -------------------------------------------------
# APP SETUP
# -------------------------------------------------
app = FastAPI(title="ForSWAGs Backend", version="1.0.0")

# one tier cache per app instance
app.state.tier_cache = TTLCache(tier_cache_ttl_seconds())

app.add_exception_handler(ForswagsError, forswags_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

# Routers
app.include_router(account.router)
app.include_router(features.router)
app.include_router(billing.router)
app.include_router(evaluations.router)
app.include_router(coach_applications.router)
app.include_router(notifications.router)
app.include_router(admin.router)
app.include_router(jobs.router)


# -------------------------------------------------
# HEALTH
# -------------------------------------------------
@app.get("/health")
def health():
    return {"status": "ok"}


# -------------------------------------------------
# STARTUP: OPTIONAL DEFAULT ADMIN SEED
# -------------------------------------------------
def seed_admin() -> None:
    """Creates the first admin account, only when SEED_ADMIN is enabled and no admin exists."""
    if not env_bool("SEED_ADMIN", False):
        return

    db = SessionLocal()
    try:
        if db.scalar(select(models.UserRole).where(models.UserRole.role == auth.ROLE_ADMIN)):
            return

        email = (env_str("SEED_ADMIN_EMAIL", "admin@example.com") or "").lower()
        password = env_str("SEED_ADMIN_PASSWORD")
        if not password:
            logger.warning("SEED_ADMIN is on but SEED_ADMIN_PASSWORD is empty; no admin created")
            return

        user = db.scalar(select(models.User).where(models.User.email == email))
        if not user:
            user = models.User(email=email, hashed_password=auth.hash_password(password), user_metadata={})
            db.add(user)
            db.flush()
            db.add(models.Profile(id=user.id, email=email, full_name="Default Admin"))
        db.add(models.UserRole(user_id=user.id, role=auth.ROLE_ADMIN))
        db.commit()
        logger.info("Seeded admin user_id=%s email=%s", user.id, email)
    finally:
        db.close()


@app.on_event("startup")
def bootstrap_startup():
    seed_admin()
