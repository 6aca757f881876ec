"""
Pricing API - preview markups for posted transactions, or run the markup job.
"""
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict

from ..engine.models import PricedShipment, ShipmentContext, TaxEntry, Transaction
from ..engine.pricing_engine import resolve_and_price
from ..errors import RuleStoreError
from ..rules.schema import MarkupRuleSchema
from ..rules.store import RuleStore, build_snapshot
from ..services.preview_markups import PreviewMarkupJob, PreviewMarkupOptions
from .state import get_job, get_rule_store

router = APIRouter(prefix="/api/pricing", tags=["pricing"])


class TaxIn(BaseModel):
    tax_type: str
    tax_rate: Decimal


class TransactionIn(BaseModel):
    """A raw transaction as posted for pricing."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    fee_type: str
    cost: Optional[Decimal] = None
    client_id: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    base_cost: Optional[Decimal] = None
    surcharge: Optional[Decimal] = None
    insurance_cost: Optional[Decimal] = None
    taxes: list[TaxIn] = []
    charge_date: Optional[date] = None
    invoiced_status: bool = False

    def to_transaction(self) -> Transaction:
        data = self.model_dump(exclude={'taxes'})
        return Transaction(taxes=[TaxEntry(t.tax_type, t.tax_rate) for t in self.taxes], **data)


class ShipmentContextIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    ship_option_id: Optional[str] = None
    weight_oz: Optional[Decimal] = None
    destination_country: Optional[str] = None
    order_type: Optional[str] = None
    state: Optional[str] = None


class PricedShipmentIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    reference_id: str
    base_cost: Decimal
    markup_percentage: Decimal
    markup_rule_id: Optional[str] = None
    client_id: Optional[str] = None


class PreviewRequest(BaseModel):
    """
    Transactions to price. Rules default to the active rule set; pass rules
    to try out unsaved ones.
    """
    transactions: list[TransactionIn]
    shipment_contexts: dict[str, ShipmentContextIn] = {}
    prior_shipments: list[PricedShipmentIn] = []
    rules: Optional[list[MarkupRuleSchema]] = None
    as_of: Optional[date] = None


class RunRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    transaction_ids: Optional[list[str]] = None
    fee_types: Optional[list[str]] = None
    exclude_fee_types: Optional[list[str]] = None
    client_id: Optional[str] = None
    force_recalc: bool = False
    limit: Optional[int] = 1000
    dry_run: bool = False
    final: bool = False
    as_of: Optional[date] = None


@router.post("/preview")
async def preview_pricing(request: PreviewRequest, rule_store: RuleStore = Depends(get_rule_store)):
    """Price posted transactions without persisting anything."""
    if request.rules is not None:
        snapshot = build_snapshot([r.to_rule() for r in request.rules], as_of=request.as_of)
    else:
        try:
            snapshot = rule_store.snapshot(as_of=request.as_of)
        except RuleStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))

    contexts = {
        shipment_id: ShipmentContext(**ctx.model_dump())
        for shipment_id, ctx in request.shipment_contexts.items()
    }
    prior = {p.reference_id: PricedShipment(**p.model_dump()) for p in request.prior_shipments}

    results = resolve_and_price(
        [t.to_transaction() for t in request.transactions],
        snapshot,
        contexts,
        prior_shipments=prior,
    )
    return {
        "rules_count": len(snapshot),
        "results": jsonable_encoder(results),
    }


@router.post("/run")
async def run_markups(request: RunRequest, job: PreviewMarkupJob = Depends(get_job)):
    """Price pending transactions and write the results to the transaction store."""
    options = PreviewMarkupOptions(**request.model_dump())
    try:
        result = job.calculate_preview_markups(options)
    except RuleStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not options.dry_run and result.updated and job.transaction_store.path:
        job.transaction_store.save()

    return result.summary()
