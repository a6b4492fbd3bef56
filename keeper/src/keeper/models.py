"""
Domain models for positions, conditional orders and oracle quotes using
Pydantic.  The ledger returns loosely typed payloads: fixed-point
integers, 0/1 direction codes, enum tags as strings and a mix of
snake_case and camelCase keys.  ``parse_position`` and ``parse_order``
are the single decode boundary; everything past them works with the
closed enums and validated models defined here.

Raw amounts and prices stay as fixed-point integers (see ``precision``)
because they are the authoritative values.  Display helpers convert to
floats on demand.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from . import margin
from .errors import LedgerDecodeError, MarginConfigError
from .precision import BASIS_POINTS, SCALE, from_fixed, to_fixed

E = TypeVar("E", bound="_CodedEnum")


class _CodedEnum(str, Enum):
    """String enum that also knows the ledger's integer code for each tag."""

    @property
    def code(self) -> int:
        return list(type(self)).index(self)

    @classmethod
    def decode(cls: Type[E], value: Any) -> E:
        # bool is an int subclass; True must not silently become code 1.
        if isinstance(value, bool):
            raise LedgerDecodeError(f"unrecognised {cls.__name__} value {value!r}")
        if isinstance(value, cls):
            return value
        members = list(cls)
        if isinstance(value, int):
            if 0 <= value < len(members):
                return members[value]
        elif isinstance(value, str):
            for member in members:
                if value == member.value:
                    return member
        elif isinstance(value, (list, tuple)) and len(value) == 1:
            # Some RPC encoders wrap unit enum variants as ["Long"].
            return cls.decode(value[0])
        raise LedgerDecodeError(f"unrecognised {cls.__name__} value {value!r}")


class Direction(_CodedEnum):
    LONG = "Long"
    SHORT = "Short"


class PositionStatus(_CodedEnum):
    OPEN = "Open"
    CLOSED = "Closed"
    LIQUIDATED = "Liquidated"


class OrderType(_CodedEnum):
    LIMIT_ENTRY = "LimitEntry"
    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"


class TriggerCondition(_CodedEnum):
    ABOVE = "Above"
    BELOW = "Below"


class OrderStatus(_CodedEnum):
    PENDING = "Pending"
    EXECUTED = "Executed"
    CANCELLED = "Cancelled"
    CANCELLED_SLIPPAGE = "CancelledSlippage"
    EXPIRED = "Expired"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class _LedgerModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class MarketParams(_LedgerModel):
    """Market parameters mirrored from the contract's published config.

    Used for display and cross-checks only; the contract enforces its own
    copy.
    """

    min_collateral: int = Field(10 * SCALE, ge=0)
    max_leverage: int = Field(10, ge=1)
    maintenance_margin_bps: int = Field(100, ge=0, le=BASIS_POINTS)
    liquidation_fee_bps: int = Field(500, ge=0, le=BASIS_POINTS)
    trading_fee_bps: int = Field(10, ge=0, le=BASIS_POINTS)
    base_funding_rate_bps: int = Field(1, ge=0)
    max_position_size: int = Field(100_000 * SCALE, ge=0)
    max_price_staleness: int = Field(60, gt=0)
    max_oracle_deviation_bps: int = Field(100, ge=0)

    @model_validator(mode="after")
    def _margin_fits_leverage(self) -> "MarketParams":
        # At max leverage the maintenance margin must leave a non-negative move.
        if self.maintenance_margin_bps * self.max_leverage > BASIS_POINTS:
            raise MarginConfigError(
                f"maintenance margin {self.maintenance_margin_bps} bps exceeds 1/{self.max_leverage}"
            )
        return self


class PriceQuote(_LedgerModel):
    asset: str
    price: int = Field(..., description="Oracle price, fixed-point")
    timestamp: int = Field(..., ge=0, description="Unix seconds the oracle stamped the price")

    @property
    def display_price(self) -> float:
        return from_fixed(self.price)

    def age(self, now: float) -> float:
        return now - self.timestamp


class Position(_LedgerModel):
    """A trader's leveraged exposure to one asset."""

    id: int = Field(..., ge=0)
    trader: str
    asset: str
    direction: Direction
    collateral: int = Field(..., ge=0)
    size: int = Field(..., ge=0)
    entry_price: int = Field(..., ge=0)
    leverage: int = Field(0, ge=0)
    liquidation_price: int = Field(..., ge=0)
    opened_at: int = 0
    last_funding_at: int = 0
    accumulated_funding: int = 0

    @field_validator("direction", mode="before")
    @classmethod
    def _decode_direction(cls, value: Any) -> Direction:
        return Direction.decode(value)

    @model_validator(mode="before")
    @classmethod
    def _fill_leverage(cls, data: Any) -> Any:
        # Ledger payloads from the UI surface omit leverage; derive it.
        if isinstance(data, dict) and not data.get("leverage"):
            collateral, size = data.get("collateral"), data.get("size")
            if isinstance(collateral, int) and isinstance(size, int) and collateral > 0:
                data = {**data, "leverage": max(size // collateral, 1)}
        return data

    @classmethod
    def opened(
        cls,
        *,
        id: int,
        trader: str,
        asset: str,
        direction: Direction,
        collateral: int,
        leverage: int,
        entry_price: int,
        params: MarketParams,
        now: int,
    ) -> "Position":
        """Build a freshly opened position, enforcing ``size == collateral * leverage``."""
        if leverage < 1 or leverage > params.max_leverage:
            raise ValueError(f"leverage {leverage} outside [1, {params.max_leverage}]")
        liq = margin.liquidation_price(
            from_fixed(entry_price), leverage, direction is Direction.LONG, params.maintenance_margin_bps
        )
        return cls(
            id=id,
            trader=trader,
            asset=asset,
            direction=direction,
            collateral=collateral,
            size=collateral * leverage,
            entry_price=entry_price,
            leverage=leverage,
            liquidation_price=to_fixed(liq),
            opened_at=now,
            last_funding_at=now,
        )

    @property
    def is_long(self) -> bool:
        return self.direction is Direction.LONG

    def pnl_at(self, price: float) -> margin.PnlResult:
        """Display PnL at a display ``price``."""
        return margin.pnl(from_fixed(self.entry_price), price, from_fixed(self.size), self.is_long)

    def is_liquidatable_at(self, price: int) -> bool:
        """Local price-threshold check against a fixed-point ``price``."""
        return margin.is_below_liquidation_price(self.is_long, price, self.liquidation_price)

    def estimated_reward(self, price: int, liquidation_fee_bps: int) -> int:
        _, reward, _ = margin.liquidation_distribution(
            from_fixed(self.collateral),
            from_fixed(self.size),
            from_fixed(self.entry_price),
            from_fixed(price),
            self.is_long,
            liquidation_fee_bps,
            from_fixed(self.accumulated_funding),
        )
        return to_fixed(reward)

    def with_added_collateral(self, amount: int, params: MarketParams) -> "Position":
        """Return a copy with more collateral and a recomputed liquidation price.

        This is the only path that moves ``liquidation_price``.
        """
        if amount <= 0:
            raise ValueError("collateral amount must be positive")
        collateral = self.collateral + amount
        leverage = min(max(self.size // collateral, 1), params.max_leverage)
        liq = margin.liquidation_price(
            from_fixed(self.entry_price), leverage, self.is_long, params.maintenance_margin_bps
        )
        return self.model_copy(
            update={"collateral": collateral, "leverage": leverage, "liquidation_price": to_fixed(liq)}
        )

    def with_funding(self, rate_bps: float, now: int) -> "Position":
        """Return a copy with funding accrued up to ``now`` (display estimate)."""
        hours = margin.hours_since(self.last_funding_at, now)
        if hours == 0:
            return self
        payment = margin.funding_payment(from_fixed(self.size), rate_bps, self.is_long, hours)
        return self.model_copy(
            update={
                "accumulated_funding": self.accumulated_funding + to_fixed(payment),
                "last_funding_at": self.last_funding_at + hours * margin.FUNDING_INTERVAL_S,
            }
        )


class Order(_LedgerModel):
    """A conditional instruction evaluated against the oracle price."""

    id: int = Field(..., ge=0)
    trader: str
    asset: str
    order_type: OrderType
    direction: Direction
    collateral: int = Field(0, ge=0)
    leverage: int = Field(1, ge=1)
    trigger_price: int = Field(..., gt=0)
    trigger_condition: TriggerCondition
    slippage_tolerance_bps: int = Field(..., ge=0, le=BASIS_POINTS)
    position_id: int = 0
    has_position: bool = False
    created_at: int = 0
    expires_at: Optional[int] = None
    status: OrderStatus = OrderStatus.PENDING

    @field_validator("direction", mode="before")
    @classmethod
    def _decode_direction(cls, value: Any) -> Direction:
        return Direction.decode(value)

    @field_validator("order_type", mode="before")
    @classmethod
    def _decode_type(cls, value: Any) -> OrderType:
        return OrderType.decode(value)

    @field_validator("trigger_condition", mode="before")
    @classmethod
    def _decode_condition(cls, value: Any) -> TriggerCondition:
        return TriggerCondition.decode(value)

    @field_validator("status", mode="before")
    @classmethod
    def _decode_status(cls, value: Any) -> OrderStatus:
        return OrderStatus.decode(value)

    @model_validator(mode="after")
    def _position_link_consistent(self) -> "Order":
        if self.order_type is OrderType.LIMIT_ENTRY:
            if self.has_position and self.status is OrderStatus.PENDING:
                raise ValueError(f"pending limit order {self.id} must not reference a position")
        elif not self.has_position:
            raise ValueError(f"{self.order_type.value} order {self.id} must reference a position")
        return self

    @property
    def is_time_boxed(self) -> bool:
        return self.expires_at is not None

    @property
    def linked_position_id(self) -> Optional[int]:
        return self.position_id if self.has_position else None


_POSITION_ALIASES = {
    "timestamp": "opened_at",
    "last_funding_time": "last_funding_at",
    "lastFundingTime": "last_funding_at",
}


def _rename(raw: Mapping[str, Any], aliases: Mapping[str, str]) -> Dict[str, Any]:
    data = dict(raw)
    for old, new in aliases.items():
        if old in data and new not in data:
            data[new] = data.pop(old)
    return data


def _coerce_ints(data: Dict[str, Any], keys: tuple) -> Dict[str, Any]:
    # RPC encoders hand i128 values over as decimal strings.
    for key in keys:
        for candidate in (key, to_camel(key)):
            value = data.get(candidate)
            if isinstance(value, str):
                try:
                    data[candidate] = int(value)
                except ValueError as exc:
                    raise LedgerDecodeError(f"{candidate} is not an integer: {value!r}") from exc
    return data


def parse_position(raw: Mapping[str, Any]) -> Position:
    """Decode a ledger position payload, failing loudly on anything unknown."""
    if not isinstance(raw, Mapping):
        raise LedgerDecodeError(f"position payload must be a mapping, got {type(raw).__name__}")
    data = _coerce_ints(
        _rename(raw, _POSITION_ALIASES),
        ("collateral", "size", "entry_price", "liquidation_price", "accumulated_funding"),
    )
    try:
        return Position.model_validate(data)
    except ValidationError as exc:
        raise LedgerDecodeError(f"invalid position payload: {exc}", detail=dict(raw)) from exc


def parse_order(raw: Mapping[str, Any]) -> Order:
    if not isinstance(raw, Mapping):
        raise LedgerDecodeError(f"order payload must be a mapping, got {type(raw).__name__}")
    data = _coerce_ints(dict(raw), ("collateral", "trigger_price"))
    try:
        return Order.model_validate(data)
    except ValidationError as exc:
        raise LedgerDecodeError(f"invalid order payload: {exc}", detail=dict(raw)) from exc


def _encode(model: BaseModel) -> Dict[str, Any]:
    data = model.model_dump()
    for key, value in data.items():
        if isinstance(value, _CodedEnum):
            data[key] = value.code
    return data


def position_to_ledger(position: Position) -> Dict[str, Any]:
    """Encode a position the way the ledger stores it (enum codes, raw ints)."""
    return _encode(position)


def order_to_ledger(order: Order) -> Dict[str, Any]:
    return _encode(order)


__all__ = [
    "Direction",
    "PositionStatus",
    "OrderType",
    "TriggerCondition",
    "OrderStatus",
    "MarketParams",
    "PriceQuote",
    "Position",
    "Order",
    "parse_position",
    "parse_order",
    "position_to_ledger",
    "order_to_ledger",
]
