"""Recipe AI API - streamed essential-oil recommendations.

This API turns recipe steps into LLM calls:
- Single-call steps stream their structured response item by item
- The suggested-oils step fans out one call per therapeutic property
- Prompt documents can be inspected, resolved and their cache cleared
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recipe_ai import __version__, config
from recipe_ai.api.routes import prompts, recipe, streaming
from recipe_ai.prompts.registry import get_prompt_registry
from recipe_ai.recipe.steps import available_steps

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: load and validate every prompt document
    logger.info(f"Loading prompt documents from {config.PROMPTS_DIR}...")
    registry = get_prompt_registry()
    loaded = registry.preload()
    logger.info(f"Loaded {loaded} prompt documents")

    providers = config.configured_providers()
    configured = [name for name, ok in providers.items() if ok]
    if not configured:
        logger.warning("No LLM provider API key set; streaming calls will fail")
    else:
        logger.info(f"LLM providers configured: {configured}")

    logger.info("Recipe AI API ready")
    yield
    # Shutdown
    logger.info("Shutting down Recipe AI API")


# Create FastAPI app
app = FastAPI(
    title="Recipe AI API",
    description="""
## Streamed Recommendation Service

Generates essential-oil recipes step by step: potential causes, symptoms,
therapeutic properties and oils per property.

### Key Endpoints

- `POST /v1/ai/streaming` - Stream one step as server-sent events
- `GET /v1/prompts` - List prompt documents
- `POST /v1/prompts/{name}/resolve` - Resolve a prompt without calling a model
- `GET /v1/recipe/steps` - Step configuration
""",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(streaming.router)
app.include_router(prompts.router)
app.include_router(recipe.router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Recipe AI API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "streaming": "/v1/ai/streaming",
            "prompts": "/v1/prompts",
            "steps": "/v1/recipe/steps",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    registry = get_prompt_registry()
    return {
        "status": "healthy",
        "prompts_available": registry.count(),
        "prompts_cached": len(registry.cached_names()),
        "steps": available_steps(),
        "providers": config.configured_providers(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "recipe_ai.api.main:app",
        host="0.0.0.0",
        port=8001,
        reload=True,
    )
