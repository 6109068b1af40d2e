"""
Prélèvements SEPA - API Backend

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError
import logging

from config import CORS_ORIGINS

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("prelevements")

# Créer l'app
app = FastAPI(
    title="Prélèvements SEPA",
    description="Back-office des prélèvements SEPA (export PAIN.008)",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"MongoDB Error on {request.method} {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Erreur base de données, réessayez plus tard"}
    )


# ==================== IMPORT DES ROUTES ====================

from routes import clients, invoices, prelevements, settings

# Routes avec préfixe /api
app.include_router(clients.router, prefix="/api")
app.include_router(invoices.router, prefix="/api")
app.include_router(prelevements.router, prefix="/api")
app.include_router(settings.router, prefix="/api")

# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Prélèvements SEPA API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    from config import db

    await db.invoices.create_index("id", unique=True)
    await db.invoices.create_index([("payment_method", 1), ("sepa_status", 1)])
    await db.invoices.create_index("invoice_number")
    await db.clients.create_index("id", unique=True)
    await db.settings.create_index("key", unique=True)
    await db.event_log.create_index("created_at")

    logger.info("✅ Index MongoDB créés")


@app.on_event("shutdown")
async def shutdown_db_client():
    from config import client
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
