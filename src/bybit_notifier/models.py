"""Typed models for frames received on the Bybit private stream."""

import json
import logging
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class BybitModel(BaseModel):
    """Base for camelCase payloads. Missing or null fields decode to their defaults."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class OrderData(BybitModel):
    category: str = ""
    order_id: str = ""
    order_link_id: str = ""
    symbol: str = ""
    side: str = ""
    order_type: str = ""
    order_status: str = ""
    cancel_type: str = ""
    reject_reason: str = ""
    price: str = ""
    avg_price: str = ""
    qty: str = ""
    created_time: str = ""
    updated_time: str = ""
    reduce_only: bool = False
    stop_order_type: str = ""
    trigger_price: str = ""
    create_type: str = ""

    @property
    def is_filled(self) -> bool:
        return self.order_status in ("Filled", "PartiallyFilled")

    @property
    def display_price(self) -> str:
        """Average fill price for fills and market orders, quoted price otherwise."""
        if (self.order_type == "Market" or self.is_filled) and to_float(self.avg_price):
            return self.avg_price
        return self.price


class ExecutionData(BybitModel):
    category: str = ""
    symbol: str = ""
    exec_type: str = ""
    exec_price: str = ""
    exec_qty: str = ""
    exec_value: str = ""
    side: str = ""
    order_id: str = ""
    order_link_id: str = ""
    order_type: str = ""
    create_type: str = ""
    mark_price: str = ""


class PositionData(BybitModel):
    symbol: str = ""
    side: str = ""
    size: str = ""
    entry_price: str = ""
    mark_price: str = ""
    position_value: str = ""
    position_im: str = Field(default="", alias="positionIM")
    position_mm: str = Field(default="", alias="positionMM")
    unrealised_pnl: str = ""
    stop_loss: str = ""
    take_profit: str = ""
    category: str = ""
    position_status: str = ""


class CoinBalance(BybitModel):
    coin: str = ""
    equity: str = ""
    usd_value: str = ""
    wallet_balance: str = ""
    available_to_withdraw: str = ""
    unrealised_pnl: str = ""
    cum_realised_pnl: str = ""


class WalletData(BybitModel):
    account_type: str = ""
    account_im_rate: str = Field(default="", alias="accountIMRate")
    account_mm_rate: str = Field(default="", alias="accountMMRate")
    total_equity: str = ""
    total_wallet_balance: str = ""
    total_margin_balance: str = ""
    total_available_balance: str = ""
    total_perp_upl: str = Field(default="", alias="totalPerpUPL")
    total_initial_margin: str = ""
    total_maintenance_margin: str = ""
    coin: List[CoinBalance] = Field(default_factory=list)


class TopicMessage(BybitModel):
    id: str = ""
    topic: str = ""
    creation_time: int = 0


class OrderMessage(TopicMessage):
    data: List[OrderData] = Field(default_factory=list)


class ExecutionMessage(TopicMessage):
    data: List[ExecutionData] = Field(default_factory=list)


class PositionMessage(TopicMessage):
    data: List[PositionData] = Field(default_factory=list)


class WalletMessage(TopicMessage):
    data: List[WalletData] = Field(default_factory=list)


class ControlMessage(BaseModel):
    """Operation reply (auth, subscribe, ping/pong). Keys are snake_case on the wire."""

    model_config = ConfigDict(extra="ignore")

    op: str
    success: Optional[bool] = None
    ret_msg: str = ""
    req_id: str = ""
    conn_id: str = ""


TOPIC_MODELS: Dict[str, Type[TopicMessage]] = {
    "order": OrderMessage,
    "execution": ExecutionMessage,
    "position": PositionMessage,
    "wallet": WalletMessage,
}

Frame = Union[ControlMessage, OrderMessage, ExecutionMessage, PositionMessage, WalletMessage]


def parse_frame(raw: Union[str, bytes]) -> Optional[Frame]:
    """
    Decode a text frame into exactly one typed message.

    Frames carrying a string ``op`` are control replies; otherwise the
    ``topic`` selects the model. Anything unparseable or unknown yields None.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Dropping frame that is not valid JSON")
        return None

    if not isinstance(payload, dict):
        return None

    try:
        if isinstance(payload.get("op"), str):
            return ControlMessage.model_validate(payload)

        topic = payload.get("topic")
        model = TOPIC_MODELS.get(topic) if isinstance(topic, str) else None
        if model is None:
            logger.debug(f"Dropping frame with unknown topic: {topic!r}")
            return None
        return model.model_validate(payload)

    except ValidationError as e:
        logger.debug(f"Dropping frame that does not match its schema: {e}")
        return None


def to_float(value: Any) -> Optional[float]:
    """Parse a decimal string, returning None when it is empty or malformed."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
