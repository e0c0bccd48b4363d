"""Entity API endpoints — browse synced customers and invoices."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from qbo_sync.repositories.entities import CustomerRepository, InvoiceRepository
from qbo_sync.repositories.token_store import TokenStore

router = APIRouter(prefix="/api", tags=["entities"])


class CustomerOut(BaseModel):
    id: str
    realm_id: str
    last_updated_time: Optional[str]
    raw_data: dict
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class InvoiceOut(CustomerOut):
    customer_id: Optional[str]

    class Config:
        from_attributes = True


async def _realm_or_active(request: Request, realm_id: Optional[str]) -> Optional[str]:
    if realm_id:
        return realm_id
    return await TokenStore(request.app.state.session_factory).get_active_realm_id()


@router.get("/customers", response_model=list[CustomerOut])
async def list_customers(
    request: Request,
    realm_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=1000),
):
    realm_id = await _realm_or_active(request, realm_id)
    if not realm_id:
        return []
    customers = await CustomerRepository(request.app.state.session_factory).find_by_realm_id(realm_id, limit)
    return [CustomerOut.model_validate(c) for c in customers]


@router.get("/customers/{customer_id}", response_model=CustomerOut)
async def get_customer(customer_id: str, request: Request):
    customer = await CustomerRepository(request.app.state.session_factory).find_by_id(customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return CustomerOut.model_validate(customer)


@router.get("/invoices", response_model=list[InvoiceOut])
async def list_invoices(
    request: Request,
    realm_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=1000),
):
    """List invoices for the realm, or for one customer."""
    realm_id = await _realm_or_active(request, realm_id)
    if not realm_id:
        return []
    repository = InvoiceRepository(request.app.state.session_factory)
    if customer_id:
        invoices = await repository.find_by_customer_id(customer_id, limit, realm_id=realm_id)
    else:
        invoices = await repository.find_by_realm_id(realm_id, limit)
    return [InvoiceOut.model_validate(i) for i in invoices]


@router.get("/invoices/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(invoice_id: str, request: Request):
    invoice = await InvoiceRepository(request.app.state.session_factory).find_by_id(invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return InvoiceOut.model_validate(invoice)
