"""
Reporting endpoints
"""

import json
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from .deps import get_lending_service, to_http_exception
from .schemas import MoneyModel
from ..currency import Currency
from ..reporting import ReportFormat, ReportResult
from ..service import LendingService


router = APIRouter()


def _export(service: LendingService, result: ReportResult, format: str):
    report_format = ReportFormat(format)
    if report_format == ReportFormat.CSV:
        return PlainTextResponse(service.reporting_engine.export_report(result, report_format), media_type="text/csv")
    # Decimals serialize as strings
    return json.loads(service.reporting_engine.export_report(result, ReportFormat.JSON))


@router.get("/outstanding")
async def total_outstanding(
    currency: Optional[str] = None,
    service: LendingService = Depends(get_lending_service)
):
    """Total still owed on live loans"""
    try:
        code = Currency.from_code(currency) if currency else None
        total = service.total_outstanding(code)
    except ValueError as e:
        raise to_http_exception(e)
    return {"total_outstanding": MoneyModel.from_money(total).model_dump()}


@router.get("/collection")
async def collection_report(
    period_start: date,
    period_end: date,
    format: str = "dict",
    service: LendingService = Depends(get_lending_service)
):
    """Collected against targeted amounts for a period"""
    try:
        result = service.collection_report(period_start, period_end)
        return _export(service, result, format)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/delinquency")
async def delinquency_report(
    as_of: Optional[date] = None,
    currency: Optional[str] = None,
    format: str = "dict",
    service: LendingService = Depends(get_lending_service)
):
    """Delinquency aging buckets"""
    try:
        code = Currency.from_code(currency) if currency else None
        result = service.delinquency_report(as_of or service.today(), code)
        return _export(service, result, format)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/audit")
async def verify_audit_trail(service: LendingService = Depends(get_lending_service)):
    """Verify the audit hash chain"""
    return service.verify_audit_trail()
