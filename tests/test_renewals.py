"""Tests for the renewal sweep and payment failure policies."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from billsdk.adapters.payment import (
    ChargeResult,
    ChargeStatus,
    ProcessPaymentResult,
    ProcessPaymentStatus,
)
from billsdk.core.errors import ConfigurationError
from billsdk.models.payment import PaymentStatus, PaymentType
from billsdk.models.subscription import SubscriptionStatus
from billsdk.services.behaviors import BillingBehaviors, TrialEndAction
from billsdk.services.failure_policy import (
    DowngradePolicy,
    FailureAction,
    FailureDecision,
    GracePeriodPolicy,
    PaymentFailedEvent,
    RetryPolicy,
)
from tests.conftest import START

PERIOD_END = START + timedelta(days=31)
TRIAL_END = START + timedelta(days=14)

DECLINED = ChargeResult(status=ChargeStatus.FAILED, error="Card declined")


async def _subscribe(engine, plan_code="pro", external_id="user_1"):  # type: ignore[no-untyped-def]
    await engine.create_customer(external_id, f"{external_id}@example.com")
    result = await engine.create_subscription(external_id, plan_code)
    return result.subscription


def _declining(engine):  # type: ignore[no-untyped-def]
    return patch.object(engine.payment, "charge", AsyncMock(return_value=DECLINED))


async def _renewal_payments(engine, external_id="user_1"):  # type: ignore[no-untyped-def]
    payments = await engine.list_payments(external_id)
    return [p for p in payments if p.type == PaymentType.RENEWAL]


class TestPeriodRoll:
    @pytest.mark.asyncio
    async def test_nothing_due_before_period_end(self, engine):
        await _subscribe(engine)
        result = await engine.process_renewals(now=PERIOD_END - timedelta(seconds=1))
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_renews_and_rolls_period(self, engine):
        sub = await _subscribe(engine)

        result = await engine.process_renewals(now=PERIOD_END)

        assert (result.processed, result.succeeded) == (1, 1)
        assert result.renewals[0].subscription_id == sub.id
        assert result.renewals[0].amount == 2000

        renewed = await engine.get_subscription("user_1")
        assert renewed.current_period_start == PERIOD_END
        assert renewed.current_period_end == PERIOD_END + timedelta(days=28)

        [payment] = await _renewal_payments(engine)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.amount == 2000
        assert payment.metadata["period_end"] == PERIOD_END.isoformat()

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, engine):
        await _subscribe(engine)
        await engine.process_renewals(now=PERIOD_END)

        again = await engine.process_renewals(now=PERIOD_END)

        assert again.processed == 0
        assert len(await _renewal_payments(engine)) == 1

    @pytest.mark.asyncio
    async def test_catches_up_several_missed_periods_in_one_run(self, engine):
        await _subscribe(engine)
        now = START + timedelta(days=70)

        first = await engine.process_renewals(now=now)
        after_first = await engine.get_subscription("user_1")
        second = await engine.process_renewals(now=now)
        after_second = await engine.get_subscription("user_1")

        assert (first.processed, first.succeeded) == (1, 1)
        assert first.renewals[0].amount == 4000
        assert second.processed == 0
        assert after_second == after_first
        assert after_first.current_period_start == datetime(2025, 3, 15, 12, tzinfo=UTC)
        assert after_first.current_period_end == datetime(2025, 4, 15, 12, tzinfo=UTC)

        payments = await _renewal_payments(engine)
        assert sorted(p.metadata["period_end"] for p in payments) == [
            PERIOD_END.isoformat(),
            datetime(2025, 3, 15, 12, tzinfo=UTC).isoformat(),
        ]

    @pytest.mark.asyncio
    async def test_catch_up_stops_at_first_failure(self, engine):
        await _subscribe(engine)
        now = START + timedelta(days=70)
        paid = ChargeResult(status=ChargeStatus.SUCCESS, provider_payment_id="pay_1")

        with patch.object(engine.payment, "charge", AsyncMock(side_effect=[paid, DECLINED])):
            result = await engine.process_renewals(now=now)

        assert result.failed == 1
        assert result.renewals[0].error == "Card declined"
        sub = await engine.get_subscription("user_1")
        assert sub.status == SubscriptionStatus.PAST_DUE
        assert sub.current_period_start == PERIOD_END
        statuses = sorted(p.status.value for p in await _renewal_payments(engine))
        assert statuses == ["failed", "succeeded"]

        again = await engine.process_renewals(now=now)
        assert again.skipped == 1
        assert len(await _renewal_payments(engine)) == 2

    @pytest.mark.asyncio
    async def test_uses_time_provider_by_default(self, engine, clock):
        await _subscribe(engine)
        clock.set(PERIOD_END + timedelta(hours=1))
        result = await engine.process_renewals()
        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_free_plan_rolls_without_charge(self, engine):
        await _subscribe(engine, "free")
        charge = AsyncMock()

        with patch.object(engine.payment, "charge", charge):
            result = await engine.process_renewals(now=PERIOD_END)

        assert result.succeeded == 1
        assert result.renewals[0].amount == 0
        charge.assert_not_called()
        assert (await engine.get_subscription("user_1")).current_period_start == PERIOD_END

    @pytest.mark.asyncio
    async def test_scheduled_change_adopted(self, engine):
        await _subscribe(engine, "business")
        await engine.change_subscription("user_1", "pro")

        result = await engine.process_renewals(now=PERIOD_END)

        detail = result.renewals[0]
        assert detail.amount == 2000
        assert detail.plan_changed.from_plan == "business"
        assert detail.plan_changed.to_plan == "pro"
        assert detail.model_dump(by_alias=True)["plan_changed"] == {"from": "business", "to": "pro"}

        sub = await engine.get_subscription("user_1")
        assert sub.plan_code == "pro"
        assert sub.scheduled_plan_code is None

    @pytest.mark.asyncio
    async def test_cancel_at_period_end(self, engine):
        sub = await _subscribe(engine)
        await engine.cancel_subscription("user_1")

        result = await engine.process_renewals(now=PERIOD_END)

        assert result.canceled == 1
        assert await engine.get_subscription("user_1") is None
        assert await _renewal_payments(engine) == []
        payments = await engine.list_payments("user_1")
        assert all(p.subscription_id == sub.id for p in payments)


class TestSweepOptions:
    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, engine):
        await _subscribe(engine, "business")
        await engine.change_subscription("user_1", "pro")

        result = await engine.process_renewals(now=PERIOD_END, dry_run=True)

        assert result.renewals[0].status == "dry_run"
        assert result.renewals[0].amount == 2000
        assert result.skipped == 1
        sub = await engine.get_subscription("user_1")
        assert sub.plan_code == "business"
        assert sub.current_period_end == PERIOD_END

    @pytest.mark.asyncio
    async def test_customer_filter(self, engine):
        await _subscribe(engine, external_id="user_1")
        await _subscribe(engine, external_id="user_2")

        result = await engine.process_renewals(now=PERIOD_END, customer_id="user_2")

        assert result.processed == 1
        assert (await engine.get_subscription("user_1")).current_period_end == PERIOD_END

    @pytest.mark.asyncio
    async def test_limit(self, engine):
        for i in range(3):
            await _subscribe(engine, external_id=f"user_{i}")
        result = await engine.process_renewals(now=PERIOD_END, limit=2)
        assert result.processed == 2

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(self, engine):
        await _subscribe(engine, external_id="user_1")
        await _subscribe(engine, external_id="user_2")
        calls = 0
        original = engine.payment.charge

        async def flaky(params):  # type: ignore[no-untyped-def]
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("gateway timeout")
            return await original(params)

        with patch.object(engine.payment, "charge", flaky):
            result = await engine.process_renewals(now=PERIOD_END)

        assert result.processed == 2
        assert (result.failed, result.succeeded) == (1, 1)
        failed = next(d for d in result.renewals if d.status == "failed")
        assert failed.error == "gateway timeout"


class TestTrialEnd:
    @pytest.mark.asyncio
    async def test_converts_with_saved_payment_method(self, engine):
        await _subscribe(engine, "trial_pro")

        result = await engine.process_renewals(now=TRIAL_END)

        assert result.succeeded == 1
        sub = await engine.get_subscription("user_1")
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_start == TRIAL_END
        [payment] = await _renewal_payments(engine)
        assert payment.amount == 2000

    @pytest.mark.asyncio
    async def test_cancels_without_payment_method(self, engine):
        await engine.create_customer("user_1", "user_1@example.com")
        no_customer_id = ProcessPaymentResult(status=ProcessPaymentStatus.ACTIVE)
        with patch.object(engine.payment, "process_payment", AsyncMock(return_value=no_customer_id)):
            await engine.create_subscription("user_1", "trial_pro")

        result = await engine.process_renewals(now=TRIAL_END)

        assert result.canceled == 1
        assert await engine.get_subscription("user_1") is None

    @pytest.mark.asyncio
    async def test_override_decides(self, make_engine):
        async def never_convert(ctx, event, default):  # type: ignore[no-untyped-def]
            return TrialEndAction.CANCEL

        engine = make_engine(behaviors=BillingBehaviors(on_trial_end=never_convert))
        await _subscribe(engine, "trial_pro")

        result = await engine.process_renewals(now=TRIAL_END)

        assert result.canceled == 1
        assert await _renewal_payments(engine) == []


class TestPaymentFailure:
    @pytest.mark.asyncio
    async def test_failed_renewal_marks_past_due(self, engine):
        await _subscribe(engine)

        with _declining(engine):
            result = await engine.process_renewals(now=PERIOD_END)

        assert result.failed == 1
        assert result.renewals[0].error == "Card declined"
        sub = await engine.get_subscription("user_1")
        assert sub.status == SubscriptionStatus.PAST_DUE
        assert sub.current_period_end == PERIOD_END
        [payment] = await _renewal_payments(engine)
        assert payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_past_due_keeps_features_off(self, engine):
        await _subscribe(engine)
        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)
        assert (await engine.check_feature("user_1", "export")).allowed is False

    @pytest.mark.asyncio
    async def test_default_policy_leaves_past_due(self, engine):
        await _subscribe(engine)
        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)

        later = await engine.process_renewals(now=PERIOD_END + timedelta(days=10))

        assert later.skipped == 1
        assert (await engine.get_subscription("user_1")).status == SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_grace_period_cancels_after_deadline(self, make_engine):
        engine = make_engine(failure_policy=GracePeriodPolicy(days=3))
        await _subscribe(engine)
        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)

        within = await engine.process_renewals(now=PERIOD_END + timedelta(days=2))
        assert within.skipped == 1

        after = await engine.process_renewals(now=PERIOD_END + timedelta(days=3))
        assert after.canceled == 1
        assert await engine.get_subscription("user_1") is None

    @pytest.mark.asyncio
    async def test_retry_succeeds_on_later_sweep(self, make_engine):
        engine = make_engine(failure_policy=RetryPolicy(max_attempts=3, retry_after=timedelta(days=1)))
        await _subscribe(engine)
        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)

        too_soon = await engine.process_renewals(now=PERIOD_END + timedelta(hours=12))
        assert too_soon.skipped == 1

        retried = await engine.process_renewals(now=PERIOD_END + timedelta(days=1))

        assert retried.succeeded == 1
        sub = await engine.get_subscription("user_1")
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_start == PERIOD_END

    @pytest.mark.asyncio
    async def test_retry_cancels_when_exhausted(self, make_engine):
        engine = make_engine(failure_policy=RetryPolicy(max_attempts=2, retry_after=timedelta(days=1)))
        await _subscribe(engine)

        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)
            await engine.process_renewals(now=PERIOD_END + timedelta(days=1))

        assert await engine.get_subscription("user_1") is None
        assert len(await _renewal_payments(engine)) == 2

    @pytest.mark.asyncio
    async def test_downgrade_policy_moves_to_free_plan(self, make_engine):
        engine = make_engine(failure_policy=DowngradePolicy("free"))
        await _subscribe(engine)

        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)

        sub = await engine.get_subscription("user_1")
        assert sub.plan_code == "free"
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.current_period_start == PERIOD_END

    @pytest.mark.asyncio
    async def test_override_replaces_policy(self, make_engine):
        events: list[PaymentFailedEvent] = []

        async def cancel_now(ctx, event, default):  # type: ignore[no-untyped-def]
            events.append(event)
            return FailureDecision(FailureAction.CANCEL, reason="no dunning")

        engine = make_engine(behaviors=BillingBehaviors(on_payment_failed=cancel_now))
        await _subscribe(engine)

        with _declining(engine):
            await engine.process_renewals(now=PERIOD_END)

        assert events[0].failed_attempts == 1
        assert events[0].payment.status == PaymentStatus.FAILED
        assert await engine.get_subscription("user_1") is None


class TestFailurePolicyConfiguration:
    def test_downgrade_plan_must_exist(self, make_engine):
        with pytest.raises(ConfigurationError, match="not in the catalog"):
            make_engine(failure_policy=DowngradePolicy("nope"))

    def test_downgrade_plan_must_be_free(self, make_engine):
        with pytest.raises(ConfigurationError, match="free price"):
            make_engine(failure_policy=DowngradePolicy("pro"))

    def test_retry_requires_an_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
