"""
FastAPI Server for Payment Links
App factory, logging setup and the small status routes (health, operator, config)

Run with:
    uvicorn --factory web_server:create_app --host 0.0.0.0 --port 3001
or:
    python web_server.py
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

load_dotenv()

from config import Config  # noqa: E402
from database import Database  # noqa: E402
from routes.link_routes import router as link_router  # noqa: E402
from routes.token_routes import router as token_router  # noqa: E402
from services.balance_guard import BalanceGuard, BalanceProvider  # noqa: E402
from services.claim_orchestrator import ClaimOrchestrator  # noqa: E402
from services.key_vault import KeyVault  # noqa: E402
from services.link_ledger import LinkLedger  # noqa: E402
from utils.constants import NATIVE_ASSET  # noqa: E402
from utils.decimal_precision import MonetaryDecimal  # noqa: E402
from utils.exceptions import LedgerError  # noqa: E402

logger = logging.getLogger(__name__)


def setup_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)


def create_app(
    database: Optional[Database] = None,
    balance_provider: Optional[BalanceProvider] = None,
) -> FastAPI:
    """
    Build the payment link API around a database handle.

    Tests pass their own ``Database``; otherwise one is built from
    ``Config.DATABASE_URL``. ``balance_provider`` backs the operator
    balance check and is left unset when no chain client is wired in.
    """
    database = database or Database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Payment link server starting...")
        Config.log_environment_config()
        database.create_tables()
        if not database.test_connection():
            logger.error("❌ Database connection test failed at startup")
        logger.info("✅ Payment link server ready")

        yield

        logger.info("🔄 Payment link server shutting down...")
        database.dispose()

    app = FastAPI(
        title=f"{Config.PLATFORM_NAME} Payment Links",
        description="Shareable shielded-pool payment links with claim-exactly-once semantics",
        lifespan=lifespan,
    )

    app.state.database = database
    app.state.ledger = LinkLedger(database, vault=KeyVault())
    app.state.claim_orchestrator = ClaimOrchestrator(database)
    app.state.balance_provider = balance_provider
    app.state.balance_guard = BalanceGuard()

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path} failed: {exc.code} - {exc.message}")
        else:
            logger.info(f"↩️ {request.method} {request.url.path} -> {exc.status_code} {exc.code}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_request",
                "message": "Request failed validation",
                "details": _validation_errors(exc),
            },
        )

    app.include_router(link_router)
    app.include_router(token_router)

    @app.get("/health")
    def health_check():
        """Basic health check"""
        is_healthy = database.test_connection()
        return JSONResponse(
            content={
                "status": "healthy" if is_healthy else "unhealthy",
                "database": "connected" if is_healthy else "unavailable",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            status_code=200 if is_healthy else 503,
        )

    @app.get("/health/operator")
    def operator_health(
        amount: int = Query(1, ge=1, description="Operation amount in base units"),
        asset_type: str = Query(NATIVE_ASSET, alias="assetType"),
        operation: str = Query("withdraw", pattern="^(deposit|withdraw)$"),
    ):
        """
        Can the operator account fund an operation of ``amount`` right now?

        200 with the requirement when it can, 402 when it cannot, 503 when
        the operator account or balance source is missing or failing.
        """
        provider = app.state.balance_provider
        if not Config.OPERATOR_ADDRESS or provider is None:
            return JSONResponse(
                content={
                    "status": "not_configured",
                    "operatorAddress": Config.OPERATOR_ADDRESS or "NOT_CONFIGURED",
                    "balanceSource": "configured" if provider is not None else "NOT_CONFIGURED",
                },
                status_code=503,
            )

        try:
            requirement = app.state.balance_guard.check_account(
                provider, Config.OPERATOR_ADDRESS, amount, asset_type, operation
            )
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"❌ OPERATOR_HEALTH: Balance lookup failed for {Config.OPERATOR_ADDRESS}: {e}")
            return JSONResponse(
                content={
                    "status": "unhealthy",
                    "operatorAddress": Config.OPERATOR_ADDRESS,
                    "balanceError": str(e),
                },
                status_code=503,
            )

        return {
            "status": "healthy",
            "operatorAddress": Config.OPERATOR_ADDRESS,
            "requirement": requirement.to_dict(),
            "balance": MonetaryDecimal.format_amount(requirement.available, requirement.asset_type),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/config")
    def get_config():
        return Config.public_fee_config()

    return app


def _validation_errors(exc: RequestValidationError):
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def main() -> None:
    import uvicorn

    setup_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=Config.PORT)


if __name__ == "__main__":
    main()
