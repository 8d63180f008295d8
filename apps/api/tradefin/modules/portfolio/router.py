"""Portfolio API router: an investor's positions and totals."""

import structlog
from fastapi import APIRouter, Depends

from tradefin.core.services import Services, get_services
from tradefin.modules.portfolio.schemas import PortfolioResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


@router.get("/{investor_address}", response_model=PortfolioResponse)
async def get_portfolio(
    investor_address: str,
    services: Services = Depends(get_services),
):
    return await services.portfolio.for_investor(investor_address)
