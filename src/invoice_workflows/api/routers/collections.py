from fastapi import APIRouter, Depends

from ..deps import (
    AttemptRequest,
    CreateAutomationRequest,
    PaymentPlanRequest,
    PaymentRequest,
    get_collections_engine,
)
from ...services.collections_automation import CollectionsAutomationEngine

router = APIRouter(prefix="/collections", tags=["collections"])


@router.post("/automations", status_code=201)
async def create_automation(
    req: CreateAutomationRequest,
    engine: CollectionsAutomationEngine = Depends(get_collections_engine),
):
    automation = engine.create_automation(req.invoice, req.customer, req.strategy_preference)
    return {"data": automation}


@router.get("/automations/{automation_id}")
async def get_automation(automation_id: str, engine: CollectionsAutomationEngine = Depends(get_collections_engine)):
    return {"data": engine.get_automation(automation_id)}


@router.post("/automations/{automation_id}/attempts")
async def record_attempt(
    automation_id: str,
    req: AttemptRequest,
    engine: CollectionsAutomationEngine = Depends(get_collections_engine),
):
    return {"data": engine.record_attempt(automation_id, req.attempt_number, req.responded)}


@router.post("/automations/{automation_id}/payments")
async def record_payment(
    automation_id: str,
    req: PaymentRequest,
    engine: CollectionsAutomationEngine = Depends(get_collections_engine),
):
    return {"data": engine.record_payment(automation_id, req.amount, req.paid_on)}


@router.get("/automations/{automation_id}/message")
async def personalized_message(
    automation_id: str,
    attempt: int = 1,
    engine: CollectionsAutomationEngine = Depends(get_collections_engine),
):
    return {"data": engine.generate_personalized_message(automation_id, attempt)}


@router.get("/monitor")
async def monitor(engine: CollectionsAutomationEngine = Depends(get_collections_engine)):
    return {"data": engine.monitor_automations()}


@router.post("/payment-plans", status_code=201)
async def create_payment_plan(
    req: PaymentPlanRequest,
    engine: CollectionsAutomationEngine = Depends(get_collections_engine),
):
    plan = engine.create_payment_plan(
        req.invoice,
        req.customer,
        req.installments,
        req.first_payment_date,
        req.interest_rate,
    )
    return {"data": plan}
