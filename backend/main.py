"""
现有技术检索 API 主应用入口
"""
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from loguru import logger

from config import settings
from backend.routes import router as api_router
from priorart.errors import PriorArtError
from priorart.logging_setup import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    configure_logging(settings.LOG_LEVEL)
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    settings.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    if not settings.llm_configured:
        logger.warning("LLM_API_KEY is not set, submissions will be rejected")
    if not settings.search_configured:
        logger.warning("SERPAPI_KEY is not set, submissions will be rejected")
    yield


app = FastAPI(
    title="Prior Art Search API",
    description="提交发明交底、轮询检索进度并获取排序后的对比文献。",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PriorArtError)
async def prior_art_error_handler(request: Request, exc: PriorArtError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", settings.PORT))

    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info",
    )
