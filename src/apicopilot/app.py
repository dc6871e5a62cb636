from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from apicopilot.core.exceptions import ApiDescriptionError
from apicopilot.core.logger import setup_logger
from apicopilot.core.settings import Settings, settings as default_settings
from apicopilot.core.spec_loader import api_description_snapshot, fetch_api_description, load_api_description
from apicopilot.routers import chat_router, health_router, prompts_router, tools_router
from apicopilot.services.chat_runtime import ChatOrchestrator
from apicopilot.services.system_prompt import SystemPrompts
from apicopilot.services.upstream_llm import ModelProvider, OpenAICompatibleProvider
from apicopilot.tools.compiler import SchemaCompiler
from apicopilot.tools.executor import ExecutorConfig, ToolExecutor
from apicopilot.tools.registry import ToolCatalog, build_catalog

logger = setup_logger(__name__)

API_PREFIX = "/api/mcp"


async def _load_api_description(cfg: Settings) -> Optional[Dict[str, Any]]:
    if cfg.OPENAPI_SPEC_FILE:
        return load_api_description(cfg.OPENAPI_SPEC_FILE)
    if cfg.OPENAPI_SPEC_URL:
        return await fetch_api_description(cfg.OPENAPI_SPEC_URL)
    return None


async def init_components(app: FastAPI) -> None:
    """Build whatever app.state does not already carry (tests pre-seed their own)."""
    state = app.state
    cfg: Settings = state.settings

    if getattr(state, "catalog", None) is None:
        try:
            doc = await _load_api_description(cfg)
        except ApiDescriptionError as e:
            # Degraded mode: serve with no tools and report the failure on /health.
            logger.error(f"Could not load API description: {e}")
            state.init_error = str(e)
            doc = None

        if doc is None:
            if not getattr(state, "init_error", None):
                logger.warning("No API description configured (OPENAPI_SPEC_FILE / OPENAPI_SPEC_URL); no tools.")
            state.catalog = ToolCatalog()
        else:
            logger.info(f"API description loaded: {api_description_snapshot(doc)}")
            state.catalog = build_catalog(state.compiler, doc)

    if getattr(state, "executor", None) is None:
        state.executor = ToolExecutor(
            ExecutorConfig(cfg.TARGET_API_BASE_URL),
            timeout_s=cfg.TARGET_API_TIMEOUT_S,
        )

    if getattr(state, "provider", None) is None:
        state.provider = OpenAICompatibleProvider.from_settings(cfg)
        if not state.provider.is_configured:
            logger.warning("UPSTREAM_OPENAI_API_KEY is not set; chat requests will fail upstream.")

    if getattr(state, "orchestrator", None) is None:
        state.orchestrator = ChatOrchestrator(
            catalog=state.catalog,
            executor=state.executor,
            provider=state.provider,
            compiler=state.compiler,
            prompts=state.prompts,
            timeout_s=cfg.UPSTREAM_TIMEOUT_S,
            max_tool_rounds=cfg.MAX_TOOL_ROUNDS,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        logger.info("🚀 Starting up apicopilot!")
        await init_components(app)
        logger.info(f"Ready with {len(app.state.catalog)} tools against {app.state.executor.config.base_url}")
        yield
        logger.info("🛑 Shutting down.")

    except Exception:
        logger.exception("FastAPI failed to start")
        raise

    finally:
        logger.info("Application stopped.")


def create_app(
    settings: Optional[Settings] = None,
    *,
    catalog: Optional[ToolCatalog] = None,
    executor: Optional[ToolExecutor] = None,
    provider: Optional[ModelProvider] = None,
    orchestrator: Optional[ChatOrchestrator] = None,
) -> FastAPI:
    """Create the FastAPI app. Components passed in are used instead of being built at startup."""
    app = FastAPI(title="API Copilot", lifespan=lifespan)

    app.state.settings = settings or default_settings
    app.state.catalog = catalog
    app.state.executor = executor
    app.state.provider = provider
    app.state.orchestrator = orchestrator
    app.state.compiler = SchemaCompiler()
    app.state.prompts = SystemPrompts()
    app.state.init_error = None

    app.include_router(tools_router.router, prefix=API_PREFIX)
    app.include_router(chat_router.router, prefix=API_PREFIX)
    app.include_router(health_router.router, prefix=API_PREFIX)
    app.include_router(prompts_router.router, prefix=API_PREFIX)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "apicopilot"}

    return app


app = create_app()
