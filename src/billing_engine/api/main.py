from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billing_engine import __version__
from billing_engine.api.pricing_api import router as pricing_router
from billing_engine.api.rules_api import router as rules_router
from billing_engine.api.state import get_rule_store
from billing_engine.config.logging_config import configure_logging
from billing_engine.config.settings import get_settings
from billing_engine.errors import RuleStoreError

configure_logging(get_settings().log_level)

app = FastAPI(
    title="Billing Engine API",
    description="Markup rule management and transaction pricing",
    version=__version__
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rules_router)
app.include_router(pricing_router)


@app.get("/")
async def root():
    return {"status": "online", "message": "Billing Engine API Active"}


@app.get("/system/status")
async def get_status():
    settings = get_settings()
    rule_store = get_rule_store()
    try:
        rules_count = len(rule_store.snapshot())
        rules_error = None
    except RuleStoreError as e:
        rules_count = 0
        rules_error = str(e)

    has_compiled = settings.compiled_rules.exists()
    return {
        "engine_active": True,
        "rules_loaded": rules_error is None,
        "rules_count": rules_count,
        "rules_error": rules_error,
        "rules_source": str(rule_store.path),
        "rules_last_compile": settings.compiled_rules.stat().st_mtime if has_compiled else None,
        "transactions_available": settings.transactions_csv.exists(),
    }
