"""API v1 router aggregation"""
from fastapi import APIRouter

from dividend_ledger.api.v1 import computations, rounds, dividends

api_router = APIRouter()

api_router.include_router(computations.router, prefix="/computations", tags=["Computations"])
api_router.include_router(rounds.router, prefix="/rounds", tags=["Dividend Rounds"])
api_router.include_router(dividends.router, tags=["Dividends"])
