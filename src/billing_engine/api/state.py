"""
Shared API state - services are built lazily from settings.

Routes receive them through FastAPI dependencies so tests can override them.
"""
from typing import Optional

from ..config.settings import get_settings
from ..rules.store import RuleStore
from ..services.preview_markups import PreviewMarkupJob
from ..services.rules_service import RulesService


_rules_service: Optional[RulesService] = None
_job: Optional[PreviewMarkupJob] = None


def get_rules_service() -> RulesService:
    global _rules_service
    if _rules_service is None:
        settings = get_settings()
        _rules_service = RulesService(
            rules_csv_path=settings.rules_csv,
            compiled_rules_path=settings.compiled_rules,
            history_path=settings.rule_history,
        )
    return _rules_service


def get_rule_store() -> RuleStore:
    """Compiled rules when present, otherwise the operator CSV."""
    settings = get_settings()
    path = settings.compiled_rules if settings.compiled_rules.exists() else settings.rules_csv
    return RuleStore(path)


def get_job() -> PreviewMarkupJob:
    global _job
    if _job is None:
        _job = PreviewMarkupJob.from_settings(get_settings())
    return _job


def reset_state():
    """Forget cached services (after settings or data files change)."""
    global _rules_service, _job
    _rules_service = None
    _job = None
