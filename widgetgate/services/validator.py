"""
Widget admission control.

Every page load of an embedded calculator is gated here. The decision is an
ordered pipeline of pure checks over a context that is filled lazily, so a
check never pays for data an earlier denial made unnecessary:

    key exists -> key active -> subscription -> calculator type
        -> domain lock -> rate window

The first failing check wins. Every call writes exactly one usage-log entry,
best-effort, and any failure to load data is a denial, never an allow.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Union

from widgetgate.core.clock import Clock, utc_now
from widgetgate.core.config import settings
from widgetgate.core.exceptions import StoreError
from widgetgate.core.logging import get_structlog_logger
from widgetgate.services import metrics
from widgetgate.services.calculators import authorizes
from widgetgate.services.key_store import ContractorInfo, WidgetKeyRecord, WidgetKeyStore
from widgetgate.services.subscriptions import (
    SubscriptionLookupError,
    SubscriptionStatus,
    SubscriptionStatusProvider,
)
from widgetgate.services.usage_log import SUCCESS, UsageLog, UsageLogEntry

logger = get_structlog_logger(__name__)


class ReasonCode(str, Enum):
    INVALID_KEY = "invalid_key"
    KEY_DISABLED = "key_disabled"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    SUBSCRIPTION_UNVERIFIABLE = "subscription_unverifiable"
    CALCULATOR_NOT_ALLOWED = "calculator_not_allowed"
    DOMAIN_MISMATCH = "domain_mismatch"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    # Produced by the embed loader only, never by the server.
    NETWORK_ERROR = "network_error"


REASON_HTTP_STATUS: Dict[ReasonCode, int] = {
    ReasonCode.INVALID_KEY: 404,
    ReasonCode.KEY_DISABLED: 403,
    ReasonCode.SUBSCRIPTION_INACTIVE: 402,
    ReasonCode.SUBSCRIPTION_UNVERIFIABLE: 503,
    ReasonCode.CALCULATOR_NOT_ALLOWED: 403,
    ReasonCode.DOMAIN_MISMATCH: 403,
    ReasonCode.RATE_LIMITED: 429,
    ReasonCode.SERVER_ERROR: 500,
}

SERVER_ERROR_MESSAGE = "Internal server error. Please try again later."


@dataclass(frozen=True)
class Allowed:
    contractor: ContractorInfo

    valid = True


@dataclass(frozen=True)
class Denied:
    reason: ReasonCode
    message: str

    valid = False

    @property
    def http_status(self) -> int:
        return REASON_HTTP_STATUS.get(self.reason, 500)


Decision = Union[Allowed, Denied]


@dataclass(frozen=True)
class ValidationRequest:
    widget_key: str
    calculator_type: str
    domain: Optional[str] = None
    visitor_ip: Optional[str] = None
    referer: Optional[str] = None


@dataclass
class ValidationContext:
    request: ValidationRequest
    now: datetime
    window: timedelta = field(default_factory=lambda: timedelta(seconds=60))
    key: Optional[WidgetKeyRecord] = None
    subscription: Optional[SubscriptionStatus] = None
    subscription_error: Optional[str] = None
    # None when the window was not evaluated (key idle for a full window).
    recent_attempts: Optional[int] = None


Check = Callable[[ValidationContext], Optional[Denied]]


def check_key_exists(ctx: ValidationContext) -> Optional[Denied]:
    if ctx.key is None:
        return Denied(ReasonCode.INVALID_KEY, "Widget key not found")
    return None


def check_key_active(ctx: ValidationContext) -> Optional[Denied]:
    if not ctx.key.is_active:
        return Denied(ReasonCode.KEY_DISABLED, "Widget key has been disabled")
    return None


def check_subscription(ctx: ValidationContext) -> Optional[Denied]:
    if ctx.subscription_error is not None:
        return Denied(
            ReasonCode.SUBSCRIPTION_UNVERIFIABLE,
            "Unable to verify subscription status. Please try again later.",
        )
    if ctx.subscription is None or not ctx.subscription.is_active(ctx.now):
        return Denied(
            ReasonCode.SUBSCRIPTION_INACTIVE,
            "Subscription is not active. Please renew to continue using this widget.",
        )
    return None


def check_calculator_type(ctx: ValidationContext) -> Optional[Denied]:
    bound = ctx.key.calculator_type
    if not authorizes(bound, ctx.request.calculator_type):
        return Denied(
            ReasonCode.CALCULATOR_NOT_ALLOWED,
            f"This widget key is only authorized for {bound} calculator",
        )
    return None


def check_domain_lock(ctx: ValidationContext) -> Optional[Denied]:
    locked_to = ctx.key.domain
    requested = ctx.request.domain
    # Opt-in on both sides: no lock or no caller domain skips the check.
    if not locked_to or not requested:
        return None
    if locked_to.lower() not in requested.lower():
        return Denied(ReasonCode.DOMAIN_MISMATCH, f"Widget is locked to {locked_to}")
    return None


def check_rate_limit(ctx: ValidationContext) -> Optional[Denied]:
    if ctx.recent_attempts is None:
        return None
    if ctx.recent_attempts >= ctx.key.rate_limit_per_minute:
        return Denied(ReasonCode.RATE_LIMITED, "Rate limit exceeded. Please try again in a minute.")
    return None


# (loader name, check). A loader fills the context right before its check.
PIPELINE: Tuple[Tuple[Optional[str], Check], ...] = (
    ("key", check_key_exists),
    (None, check_key_active),
    ("subscription", check_subscription),
    (None, check_calculator_type),
    (None, check_domain_lock),
    ("rate_window", check_rate_limit),
)


def run_checks(ctx: ValidationContext, checks: Tuple[Check, ...]) -> Optional[Denied]:
    """Evaluate already-loaded checks in order; first denial wins."""
    for check in checks:
        denial = check(ctx)
        if denial is not None:
            return denial
    return None


class WidgetValidator:
    def __init__(
        self,
        key_store: WidgetKeyStore,
        usage_log: UsageLog,
        subscriptions: SubscriptionStatusProvider,
        clock: Clock = utc_now,
        subscription_timeout: Optional[float] = None,
        window_seconds: Optional[int] = None,
    ) -> None:
        self.key_store = key_store
        self.usage_log = usage_log
        self.subscriptions = subscriptions
        self.clock = clock
        self.subscription_timeout = (
            subscription_timeout
            if subscription_timeout is not None
            else settings.subscription_lookup_timeout_seconds
        )
        self.window = timedelta(
            seconds=window_seconds if window_seconds is not None else settings.widget_rate_window_seconds
        )
        self._loaders: Dict[str, Callable[[ValidationContext], Awaitable[None]]] = {
            "key": self._load_key,
            "subscription": self._load_subscription,
            "rate_window": self._load_rate_window,
        }

    async def validate(self, request: ValidationRequest) -> Decision:
        ctx = ValidationContext(request=request, now=self.clock(), window=self.window)

        try:
            decision = await self._evaluate(ctx)
        except StoreError as e:
            logger.error("widget.validation.store_failed", operation=e.operation, error=e.message)
            decision = Denied(ReasonCode.SERVER_ERROR, SERVER_ERROR_MESSAGE)
        except Exception as e:
            logger.exception("widget.validation.unexpected_error", error=str(e))
            decision = Denied(ReasonCode.SERVER_ERROR, SERVER_ERROR_MESSAGE)

        if isinstance(decision, Allowed):
            await self._record_use(ctx)
        await self._append_log(ctx, decision)

        result = SUCCESS if isinstance(decision, Allowed) else decision.reason.value
        metrics.WIDGET_VALIDATIONS.labels(result=result).inc()
        self._log_decision(ctx, decision)
        return decision

    async def _evaluate(self, ctx: ValidationContext) -> Decision:
        for loader_name, check in PIPELINE:
            if loader_name is not None:
                await self._loaders[loader_name](ctx)
            denial = check(ctx)
            if denial is not None:
                return denial

        key = ctx.key
        contractor = key.contractor or ContractorInfo(id=key.contractor_id)
        return Allowed(contractor=contractor)

    async def _load_key(self, ctx: ValidationContext) -> None:
        ctx.key = await self.key_store.get_by_key(ctx.request.widget_key)

    async def _load_subscription(self, ctx: ValidationContext) -> None:
        # Read on every call; a lapsed subscription stops the next page load.
        contractor_id = ctx.key.contractor_id
        try:
            ctx.subscription = await asyncio.wait_for(
                self.subscriptions.get_status(contractor_id),
                timeout=self.subscription_timeout,
            )
        except asyncio.TimeoutError:
            ctx.subscription_error = "timeout"
            logger.warning(
                "subscription.lookup_timeout",
                contractor_id=str(contractor_id),
                timeout=self.subscription_timeout,
            )
        except SubscriptionLookupError as e:
            ctx.subscription_error = str(e) or "lookup failed"
            logger.warning(
                "subscription.lookup_failed",
                contractor_id=str(contractor_id),
                error=str(e),
            )

    async def _load_rate_window(self, ctx: ValidationContext) -> None:
        last_used_at = ctx.key.last_used_at
        if last_used_at is None or ctx.now - last_used_at >= ctx.window:
            return
        ctx.recent_attempts = await self.usage_log.count_since(ctx.key.id, ctx.now - ctx.window)

    async def _record_use(self, ctx: ValidationContext) -> None:
        try:
            await self.key_store.record_use(ctx.key.id, ctx.now)
        except Exception as e:
            metrics.BEST_EFFORT_FAILURES.labels(operation="record_use").inc()
            logger.warning("widget_key.record_use_failed", widget_key_id=str(ctx.key.id), error=str(e))

    async def _append_log(self, ctx: ValidationContext, decision: Decision) -> None:
        key = ctx.key
        request = ctx.request
        entry = UsageLogEntry(
            validation_result=SUCCESS if isinstance(decision, Allowed) else decision.reason.value,
            created_at=ctx.now,
            widget_key_id=key.id if key is not None else None,
            contractor_id=key.contractor_id if key is not None else None,
            calculator_type=request.calculator_type,
            visitor_ip=request.visitor_ip,
            referer=request.referer,
            domain=request.domain,
            error_message=None if isinstance(decision, Allowed) else decision.message,
        )
        try:
            await self.usage_log.append(entry)
        except Exception as e:
            metrics.BEST_EFFORT_FAILURES.labels(operation="usage_log_append").inc()
            logger.warning(
                "usage_log.write_failed",
                validation_result=entry.validation_result,
                error=str(e),
            )

    def _log_decision(self, ctx: ValidationContext, decision: Decision) -> None:
        key_id = str(ctx.key.id) if ctx.key is not None else None
        if isinstance(decision, Allowed):
            logger.info(
                "widget.validation.allowed",
                widget_key_id=key_id,
                calculator_type=ctx.request.calculator_type,
                domain=ctx.request.domain,
            )
            return

        log = logger.warning if decision.reason == ReasonCode.SERVER_ERROR else logger.info
        log(
            "widget.validation.denied",
            reason=decision.reason.value,
            widget_key_id=key_id,
            calculator_type=ctx.request.calculator_type,
            domain=ctx.request.domain,
        )
