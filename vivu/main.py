import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load env from vivu/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from vivu.core.config import settings, validate_config  # noqa: E402
from vivu.core.database import create_all_tables  # noqa: E402
from vivu.core.errors import install_error_handlers  # noqa: E402
from vivu.core.logging import configure_logging  # noqa: E402
from vivu.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from vivu.api import account, admin, health, payments, promo, search  # noqa: E402
from vivu.features.promos.service import seed_default_promo_codes  # noqa: E402

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("vivu")
    logger.info("Starting Vivu subscription service...")
    app.state.startup_time = time.time()
    create_all_tables()
    seed_default_promo_codes()
    try:
        yield
    finally:
        logger.info("Stopping Vivu subscription service...")


app = FastAPI(title="Vivu - Subscription Service", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

install_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(account.router)
app.include_router(search.router)
app.include_router(promo.router)
app.include_router(payments.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("vivu.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
