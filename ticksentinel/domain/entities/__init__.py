from ticksentinel.domain.entities.samples import PriceSample, DepthSample
from ticksentinel.domain.entities.windows import PriceWindow, VolumeWindow
from ticksentinel.domain.entities.market_event import (
    EventKind,
    MarketEvent,
    parse_market_event,
)
from ticksentinel.domain.entities.trade_intent import Side, TradeIntent, parse_trade_intent
from ticksentinel.domain.entities.position import (
    ExitReason,
    LiquiditySnapshot,
    PnlSnapshot,
    Position,
    PositionStatus,
)

__all__ = [
    "PriceSample", "DepthSample",
    "PriceWindow", "VolumeWindow",
    "EventKind", "MarketEvent", "parse_market_event",
    "Side", "TradeIntent", "parse_trade_intent",
    "ExitReason", "LiquiditySnapshot", "PnlSnapshot", "Position", "PositionStatus",
]
