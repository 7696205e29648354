"""
API v1 Routes
Progetto: Business Manager (Gestionale Commerciale)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from app.api.v1 import (
    conversions, credit_notes, documents, invoices, payments, receipts, stock_movements
)

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(conversions.router)
api_v1_router.include_router(documents.router)
api_v1_router.include_router(invoices.router)
api_v1_router.include_router(payments.router)
api_v1_router.include_router(receipts.router)
api_v1_router.include_router(credit_notes.router)
api_v1_router.include_router(stock_movements.router)

# Esportazione
__all__ = ["api_v1_router"]
