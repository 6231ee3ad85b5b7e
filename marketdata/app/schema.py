"""GraphQL schema: market snapshot queries, store mutations and change subscription."""

import asyncio
import logging
from datetime import date
from typing import AsyncGenerator, Optional

import strawberry

from fxmarket.twoway import TwoWay

from app import store as runtime
from app.feed import STREAM_KEY
from app.redis_client import get_redis
from app.types import (
    ForwardPricingMode,
    ForwardQuote,
    LegInputsView,
    MarketChangedEvent,
    OverrideMode,
    RateResultView,
    Snapshot,
    TwoWayInput,
    ViewMode,
)

logger = logging.getLogger(__name__)

XREAD_BLOCK_MS = 5000


def _tw(value: TwoWayInput) -> TwoWay:
    return TwoWay(value.bid, value.ask)


def _current() -> Snapshot:
    return runtime.snapshot_view(runtime.store.current)


@strawberry.type
class Query:
    @strawberry.field
    def snapshot(self) -> Snapshot:
        """Current market snapshot."""
        return _current()

    @strawberry.field
    def forward_pricing_mode(self) -> ForwardPricingMode:
        return runtime.store.forward_pricing_mode

    @strawberry.field
    def leg_inputs(
        self,
        pair: str,
        leg_id: str,
        settlement: date,
        spot_date: Optional[date] = None,
        use_mid: bool = False,
    ) -> LegInputsView:
        """Spot/rd/rf for a leg; missing rates are triangulated through USD once."""
        spot_date = spot_date or runtime.default_spot_date(date.today())
        return runtime.leg_inputs(pair, leg_id, spot_date, settlement, use_mid)

    @strawberry.field
    def forward_at(self, ticker: str, settlement: date) -> ForwardQuote:
        """Outright forward interpolated on the cached curve for `ticker`."""
        cached = runtime.cache.forward_leg([ticker])
        curve = cached.value
        two_way = curve.forward_two_way(settlement)
        return ForwardQuote(
            ticker=cached.key,
            pair6=curve.pair6,
            settlement=settlement,
            bid=two_way.bid,
            mid=curve.forward_at(settlement),
            ask=two_way.ask,
            is_stale=cached.is_stale,
        )


@strawberry.type
class Mutation:
    @strawberry.mutation
    def set_spot_from_user(
        self, pair: str, value: TwoWayInput, was_mid: bool = False, view_mode: ViewMode = ViewMode.TWO_WAY
    ) -> Snapshot:
        runtime.store.set_spot_from_user(pair, _tw(value), was_mid, view_mode, runtime.now())
        return _current()

    @strawberry.mutation
    def set_spot_from_feed(self, pair: str, value: TwoWayInput, is_stale: bool = False) -> Snapshot:
        runtime.store.set_spot_from_feed(pair, _tw(value), runtime.now(), is_stale)
        return _current()

    @strawberry.mutation
    def set_spot_view_mode(self, pair: str, view_mode: ViewMode) -> Snapshot:
        runtime.store.set_spot_view_mode(pair, view_mode, runtime.now())
        return _current()

    @strawberry.mutation
    def set_spot_override(self, pair: str, override: OverrideMode) -> Snapshot:
        runtime.store.set_spot_override(pair, override, runtime.now())
        return _current()

    @strawberry.mutation
    def set_rd_from_user(
        self,
        pair: str,
        leg_id: str,
        value: TwoWayInput,
        was_mid: bool = False,
        view_mode: ViewMode = ViewMode.TWO_WAY,
    ) -> Snapshot:
        runtime.store.set_rd_from_user(pair, leg_id, _tw(value), was_mid, view_mode, runtime.now())
        return _current()

    @strawberry.mutation
    def set_rf_from_user(
        self,
        pair: str,
        leg_id: str,
        value: TwoWayInput,
        was_mid: bool = False,
        view_mode: ViewMode = ViewMode.TWO_WAY,
    ) -> Snapshot:
        runtime.store.set_rf_from_user(pair, leg_id, _tw(value), was_mid, view_mode, runtime.now())
        return _current()

    @strawberry.mutation
    def set_rd_view_mode(self, pair: str, leg_id: str, view_mode: ViewMode) -> Snapshot:
        runtime.store.set_rd_view_mode(pair, leg_id, view_mode, runtime.now())
        return _current()

    @strawberry.mutation
    def set_rf_view_mode(self, pair: str, leg_id: str, view_mode: ViewMode) -> Snapshot:
        runtime.store.set_rf_view_mode(pair, leg_id, view_mode, runtime.now())
        return _current()

    @strawberry.mutation
    def set_rd_override(self, pair: str, leg_id: str, override: OverrideMode) -> Snapshot:
        runtime.store.set_rd_override(pair, leg_id, override, runtime.now())
        return _current()

    @strawberry.mutation
    def set_rf_override(self, pair: str, leg_id: str, override: OverrideMode) -> Snapshot:
        runtime.store.set_rf_override(pair, leg_id, override, runtime.now())
        return _current()

    @strawberry.mutation
    def invalidate_rates_for_leg(self, pair: str, leg_id: str) -> Snapshot:
        runtime.store.invalidate_rates_for_leg(pair, leg_id, runtime.now())
        return _current()

    @strawberry.mutation
    def set_forward_pricing_mode(self, pair: str, mode: ForwardPricingMode) -> ForwardPricingMode:
        runtime.store.set_forward_pricing_mode(pair, mode, runtime.now())
        return runtime.store.forward_pricing_mode

    @strawberry.mutation
    def ensure_rates(
        self,
        pair: str,
        leg_id: str,
        settlement: date,
        spot_date: Optional[date] = None,
        force_refresh: bool = False,
    ) -> Optional[RateResultView]:
        """Triangulate rd/rf through USD and publish them; null when a leg is unusable."""
        spot_date = spot_date or runtime.default_spot_date(date.today())
        result = runtime.triangulator.ensure_rates(pair, leg_id, spot_date, settlement, force_refresh)
        return runtime.rate_result_view(result) if result is not None else None


@strawberry.type
class Subscription:
    @strawberry.subscription
    async def market_changed(self) -> AsyncGenerator[MarketChangedEvent, None]:
        """Current snapshot first, then every batched change read from the Redis stream."""
        yield MarketChangedEvent(
            reason="Snapshot", rd=0, rf=0, spot=0, forward=0, other=0, snapshot=_current()
        )
        redis = await get_redis()
        last_id = "$"
        while True:
            try:
                result = await redis.xread({STREAM_KEY: last_id}, block=XREAD_BLOCK_MS, count=10)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Reading %s failed; closing subscription", STREAM_KEY)
                break
            for _stream, messages in result or []:
                for msg_id, fields in messages:
                    last_id = msg_id
                    payload = fields.get("payload")
                    if payload is None:
                        continue
                    event = runtime.event_from_payload(payload)
                    if event is not None:
                        yield event


schema = strawberry.Schema(query=Query, mutation=Mutation, subscription=Subscription)
