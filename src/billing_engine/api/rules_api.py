"""
Rules API - FastAPI router for markup rule management.
"""
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from ..engine.context_builder import build_match_context
from ..engine.models import SHIPMENT_FEE_TYPE, SHIPMENT_REFERENCE_TYPE, ShipmentContext, Transaction
from ..engine.rule_matcher import RuleMatcher
from ..engine.weights import get_weight_bracket
from ..errors import RuleStoreError, RuleValidationError
from ..rules.schema import MarkupRuleSchema
from ..rules.store import RuleStore
from ..services.rules_service import RulesService
from .state import get_rule_store, get_rules_service

router = APIRouter(prefix="/api/rules", tags=["rules"])


# Pydantic models for API
class RuleCreate(MarkupRuleSchema):
    """Request model for creating a rule. The id is generated when omitted."""
    id: Optional[str] = None
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None


class RuleUpdate(BaseModel):
    """Request model for updating a rule."""
    name: Optional[str] = None
    client_id: Optional[str] = None
    billing_category: Optional[str] = None
    fee_type: Optional[str] = None
    order_category: Optional[str] = None
    ship_option_id: Optional[str] = None
    conditions: Optional[dict[str, Any]] = None
    markup_type: Optional[str] = None
    markup_value: Optional[Decimal] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    description: Optional[str] = None
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None


class RuleDetailResponse(BaseModel):
    rule: MarkupRuleSchema
    history: list[dict]


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]
    specificity: int


class TestMatchRequest(BaseModel):
    """Transaction attributes to test rule matching against."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    client_id: str
    fee_type: str = SHIPMENT_FEE_TYPE
    order_type: Optional[str] = None
    ship_option_id: Optional[str] = None
    weight_oz: Optional[Decimal] = None
    state: Optional[str] = None
    country: Optional[str] = None
    as_of: Optional[date] = None


class TestMatchResponse(BaseModel):
    billing_category: str
    fee_type: str
    order_category: Optional[str]
    weight_bracket: Optional[str] = None
    matched_rules: list[dict]
    winning_rule_id: Optional[str]


AUDIT_FIELDS = ('changed_by', 'change_reason')


# Endpoints

@router.get("", response_model=list[MarkupRuleSchema])
async def list_rules(include_inactive: bool = True, service: RulesService = Depends(get_rules_service)):
    """List all markup rules in stored order."""
    return service.list_rules(include_inactive=include_inactive)


@router.get("/stats")
async def get_stats(service: RulesService = Depends(get_rules_service)):
    """Get rule statistics."""
    return service.get_stats()


@router.get("/{rule_id}", response_model=RuleDetailResponse)
async def get_rule(rule_id: str, service: RulesService = Depends(get_rules_service)):
    """Get a single rule with its change history."""
    rule = service.get_rule(rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
    return RuleDetailResponse(rule=rule, history=[asdict(c) for c in service.get_rule_history(rule_id)])


@router.post("", response_model=MarkupRuleSchema)
async def create_rule(rule_data: RuleCreate, service: RulesService = Depends(get_rules_service)):
    """Create a new markup rule."""
    data = rule_data.model_dump(exclude=set(AUDIT_FIELDS))

    validation = service.validate_rule(data)
    if not validation.valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})

    try:
        return service.create_rule(
            data, changed_by=rule_data.changed_by, change_reason=rule_data.change_reason
        )
    except RuleValidationError as e:
        raise HTTPException(status_code=400, detail={"errors": e.errors})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{rule_id}", response_model=MarkupRuleSchema)
async def update_rule(rule_id: str, updates: RuleUpdate, service: RulesService = Depends(get_rules_service)):
    """Update an existing rule. Only fields present in the body change."""
    update_dict = updates.model_dump(exclude_unset=True)
    audit = {k: update_dict.pop(k, None) for k in AUDIT_FIELDS}

    try:
        return service.update_rule(rule_id, update_dict, **audit)
    except RuleValidationError as e:
        raise HTTPException(status_code=400, detail={"errors": e.errors})
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: str,
    changed_by: Optional[str] = None,
    change_reason: Optional[str] = None,
    service: RulesService = Depends(get_rules_service),
):
    """Deactivate a rule (rules are never hard-deleted)."""
    try:
        service.deactivate_rule(rule_id, changed_by=changed_by, change_reason=change_reason)
        return {"success": True, "message": f"Rule '{rule_id}' deactivated"}
    except RuleValidationError as e:
        raise HTTPException(status_code=400, detail={"errors": e.errors})
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/validate", response_model=ValidationResponse)
async def validate_rule(rule_data: dict = Body(...), service: RulesService = Depends(get_rules_service)):
    """Validate a rule without saving."""
    result = service.validate_rule(rule_data)
    return ValidationResponse(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        specificity=result.specificity,
    )


@router.post("/compile")
async def compile_rules(service: RulesService = Depends(get_rules_service)):
    """Force recompile of rules."""
    success, output = service.compile_rules()
    return {
        "success": success,
        "output": output
    }


@router.post("/test", response_model=TestMatchResponse)
async def test_rules(request: TestMatchRequest, rule_store: RuleStore = Depends(get_rule_store)):
    """Show which active rules match a transaction and which one wins."""
    try:
        snapshot = rule_store.snapshot(as_of=request.as_of)
    except RuleStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    tx = Transaction(
        id="test",
        fee_type=request.fee_type,
        client_id=request.client_id,
        reference_type=SHIPMENT_REFERENCE_TYPE,
        reference_id="test",
    )
    shipment = ShipmentContext(
        ship_option_id=request.ship_option_id,
        weight_oz=request.weight_oz,
        destination_country=request.country,
        order_type=request.order_type,
        state=request.state,
    )
    context = build_match_context(tx, shipment)
    matched = RuleMatcher(snapshot).find_matching_rules(context)

    return TestMatchResponse(
        billing_category=context.billing_category,
        fee_type=context.fee_type,
        order_category=context.order_category,
        weight_bracket=get_weight_bracket(context.weight_oz) if context.weight_oz is not None else None,
        matched_rules=[
            {
                "id": m.rule_id,
                "name": m.rule.name,
                "specificity": m.specificity,
                "markup_type": m.rule.markup_type,
                "markup_value": str(m.rule.markup_value),
                "match_reason": m.match_reason,
            }
            for m in matched
        ],
        winning_rule_id=matched[0].rule_id if matched else None,
    )
