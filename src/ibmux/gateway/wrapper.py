"""
ib_async callback adapter.

ib_async's low-level ``Client`` decodes every gateway message and calls the
method of the same name on its wrapper. ReplyWrapper turns the callbacks the
session routes into Reply structs and hands them to a sink; every other
callback (managedAccounts, tick data, order status, ...) is ignored.

The module also converts requests into ib_async contracts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ib_async import Contract, ContractDetails

from ibmux.gateway.messages import (
    ContractData,
    ContractDataEnd,
    CurrentTime,
    ErrorMessage,
    NextValidId,
    Reply,
    RequestContractData,
)


logger = logging.getLogger(__name__)


def to_contract(request: RequestContractData) -> Contract:
    """Build the ib_async contract a RequestContractData describes."""
    return Contract(
        conId=request.contract_id,
        symbol=request.symbol,
        secType=request.security_type,
        lastTradeDateOrContractMonth=request.expiry,
        strike=request.strike,
        right=request.right,
        multiplier=request.multiplier,
        exchange=request.exchange,
        currency=request.currency,
        localSymbol=request.local_symbol,
        includeExpired=request.include_expired,
    )


def to_contract_data(request_id: int, details: ContractDetails) -> ContractData:
    """Flatten ib_async contract details into a ContractData reply."""
    contract = details.contract or Contract()
    return ContractData(
        request_id=request_id,
        symbol=contract.symbol,
        security_type=contract.secType,
        expiry=contract.lastTradeDateOrContractMonth,
        strike=contract.strike,
        right=contract.right,
        exchange=contract.exchange,
        currency=contract.currency,
        local_symbol=contract.localSymbol,
        market_name=details.marketName,
        trading_class=contract.tradingClass,
        contract_id=contract.conId,
        min_tick=details.minTick,
        multiplier=contract.multiplier,
        order_types=details.orderTypes,
        valid_exchanges=details.validExchanges,
        price_magnifier=details.priceMagnifier,
        under_contract_id=details.underConId,
        long_name=details.longName,
        primary_exchange=contract.primaryExchange,
        contract_month=details.contractMonth,
        industry=details.industry,
        category=details.category,
        subcategory=details.subcategory,
        timezone_id=details.timeZoneId,
        trading_hours=details.tradingHours,
        liquid_hours=details.liquidHours,
    )


class ReplyWrapper:
    """
    Wrapper for ``ib_async.client.Client`` emitting Reply structs.

    Args:
        emit: Called synchronously with each reply, in arrival order
    """

    def __init__(self, emit: Callable[[Reply], None]) -> None:
        self._emit = emit

    # -------------------------------------------------------------------------
    # Routed callbacks
    # -------------------------------------------------------------------------

    def contractDetails(self, reqId: int, contractDetails: ContractDetails) -> None:
        self._emit(to_contract_data(reqId, contractDetails))

    def bondContractDetails(self, reqId: int, contractDetails: ContractDetails) -> None:
        self._emit(to_contract_data(reqId, contractDetails))

    def contractDetailsEnd(self, reqId: int) -> None:
        self._emit(ContractDataEnd(request_id=reqId))

    def error(self, reqId: int, errorCode: int, errorString: str, *args: Any) -> None:
        self._emit(ErrorMessage(request_id=reqId, error_code=errorCode, message=errorString))

    def currentTime(self, time: int) -> None:
        self._emit(CurrentTime(time=int(time)))

    def nextValidId(self, reqId: int) -> None:
        self._emit(NextValidId(order_id=reqId))

    # -------------------------------------------------------------------------
    # Everything else
    # -------------------------------------------------------------------------

    def __getattr__(self, name: str) -> Callable[..., None]:
        if name.startswith("_"):
            raise AttributeError(name)

        def ignore(*args: Any) -> None:
            logger.debug("Ignoring %s callback", name)

        return ignore
