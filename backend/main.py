from fastapi import FastAPI
import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from core.config import settings
from core.logging import configure_logging
from db.database import create_db_and_tables
from routers.candies import router as candies_router
from routers.orders import router as orders_router
from routers.payments import router as payments_router

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    yield


app = FastAPI(
    title="Candy Stand API",
    description="Stock holds, checkout and order settlement for the bowling alley candy stand",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


# Stripe webhook reads the raw body itself
app.include_router(payments_router, tags=["payments"])
app.include_router(orders_router, tags=["orders"])
app.include_router(candies_router, tags=["candies"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=settings.port, reload=True)
