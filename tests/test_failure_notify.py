"""Tests for failure notifications and their deduplication ledger."""

import json
from datetime import timedelta

import pytest

from conftest import InMemoryJobStore, RecordingSender, failed_job
from janitor.core.exceptions import ConfigurationError
from janitor.infra.jobs.models import JobRecord
from janitor.infra.notifications.models import NotificationKey
from janitor.maintenance.failure_notify import FailureNotifySweep

RECIPIENTS = ["a@x", "b@x"]


def make_sweep(store, ledger, sender, now, recipients=RECIPIENTS, **kwargs):
    return FailureNotifySweep(
        store, ledger, sender, recipients, clock=lambda: now, **kwargs
    )


class TestFailureDetection:
    """Which jobs count as failed."""

    @pytest.mark.asyncio
    async def test_only_failed_jobs_are_notified(self, ledger, sender, now):
        failure = now - timedelta(minutes=5)
        store = InMemoryJobStore([
            failed_job("failed", failure),
            # Failed earlier, then succeeded
            JobRecord(id="recovered", name="b", last_finished_at=now, failed_at=failure),
            JobRecord(id="ok", name="c", last_finished_at=now),
            JobRecord(id="pending", name="d"),
        ])

        result = await make_sweep(store, ledger, sender, now).run()

        assert result.scanned == 1
        assert result.notified == 1
        assert [key.job_id for key in ledger.records] == ["failed"]

    @pytest.mark.asyncio
    async def test_malformed_failed_at_is_skipped(self, ledger, sender, now):
        store = InMemoryJobStore([
            failed_job("garbled", "yesterday-ish"),
            failed_job("failed", now - timedelta(minutes=1)),
        ])

        result = await make_sweep(store, ledger, sender, now).run()

        assert result.skipped_malformed == 1
        assert result.notified == 1
        assert result.ok
        assert {key.job_id for key in ledger.records} == {"failed"}


class TestAtMostOnce:
    """One notification per (job id, failure time)."""

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, ledger, sender, now):
        failure = now - timedelta(minutes=5)
        store = InMemoryJobStore([failed_job("job-1", failure), failed_job("job-2", failure)])
        sweep = make_sweep(store, ledger, sender, now)

        first = await sweep.run()
        second = await sweep.run()

        assert first.notified == 2
        assert second.notified == 0
        assert second.already_notified == 2
        assert len(ledger.records) == 2
        # One batch per failure: every recipient exactly once per job
        assert len(sender.sent) == 2 * len(RECIPIENTS)

    @pytest.mark.asyncio
    async def test_new_failure_time_is_notified_again(self, ledger, sender, now):
        first_failure = now - timedelta(hours=2)
        second_failure = now - timedelta(minutes=1)
        store = InMemoryJobStore([failed_job("job-1", first_failure)])
        sweep = make_sweep(store, ledger, sender, now)

        await sweep.run()
        store.put(failed_job("job-1", second_failure))
        result = await sweep.run()

        assert result.notified == 1
        assert set(ledger.records) == {
            NotificationKey("job-1", first_failure),
            NotificationKey("job-1", second_failure),
        }
        assert len(sender.sent) == 2 * len(RECIPIENTS)

    @pytest.mark.asyncio
    async def test_same_failure_time_is_suppressed(self, ledger, sender, now):
        failure = now - timedelta(minutes=3)
        store = InMemoryJobStore([failed_job("job-1", failure)])
        sweep = make_sweep(store, ledger, sender, now)

        await sweep.run()
        # Retried and failed again with an identical timestamp
        store.put(failed_job("job-1", failure, fail_reason="boom again"))
        result = await sweep.run()

        assert result.already_notified == 1
        assert len(sender.sent) == len(RECIPIENTS)


class TestDelivery:
    """Per-recipient delivery is independent of the ledger write."""

    @pytest.mark.asyncio
    async def test_one_failed_recipient_does_not_block_others(self, ledger, now):
        sender = RecordingSender(failing={"a@x"})
        failure = now - timedelta(minutes=5)
        store = InMemoryJobStore([failed_job("job-1", failure)])

        result = await make_sweep(store, ledger, sender, now).run()

        assert sender.recipients == ["a@x", "b@x"]
        assert result.delivery_failures == 1
        assert result.ok
        record = ledger.records[NotificationKey("job-1", failure)]
        assert record.recipients == ("a@x", "b@x")

    @pytest.mark.asyncio
    async def test_raising_sender_is_treated_as_failed_delivery(self, ledger, now):
        sender = RecordingSender(raising={"a@x"})
        store = InMemoryJobStore([failed_job("job-1", now - timedelta(minutes=5))])

        result = await make_sweep(store, ledger, sender, now).run()

        assert sender.recipients == ["a@x", "b@x"]
        assert result.delivery_failures == 1
        assert result.notified == 1
        assert len(ledger.records) == 1

    @pytest.mark.asyncio
    async def test_failure_is_recorded_even_if_every_delivery_fails(self, ledger, now):
        sender = RecordingSender(failing=set(RECIPIENTS))
        store = InMemoryJobStore([failed_job("job-1", now - timedelta(minutes=5))])
        sweep = make_sweep(store, ledger, sender, now)

        first = await sweep.run()
        second = await sweep.run()

        assert first.delivery_failures == 2
        assert len(ledger.records) == 1
        assert second.already_notified == 1
        assert len(sender.sent) == 2


class TestPayload:
    """Subject and body contents."""

    @pytest.mark.asyncio
    async def test_subject_and_body(self, ledger, sender, now):
        failure = now - timedelta(minutes=5)
        store = InMemoryJobStore([
            failed_job("job-1", failure, name="nightly-export", data={"tenant": "acme"}),
        ])

        await make_sweep(store, ledger, sender, now, environment="staging").run()

        _, subject, body = sender.sent[0]
        assert subject == f"[staging] Job failed: nightly-export at {failure.isoformat()}"
        assert "Reason: boom" in body

        snapshot = json.loads(body.split("Job record:\n", 1)[1])
        assert snapshot["_id"] == "job-1"
        assert snapshot["data"] == {"tenant": "acme"}
        assert snapshot["failedAt"] == failure.isoformat()

        record = ledger.records[NotificationKey("job-1", failure)]
        assert record.subject == subject
        assert record.body == body
        assert record.job_name == "nightly-export"
        assert record.created_at == now

    def test_subject_without_environment(self, store, ledger, sender, now):
        sweep = make_sweep(store, ledger, sender, now)
        subject, _ = sweep.compose(failed_job("job-1", now, name="cleanup"), now)

        assert subject == f"Job failed: cleanup at {now.isoformat()}"


class TestErrorsAndConfiguration:
    """Run-level failures and enabling preconditions."""

    @pytest.mark.asyncio
    async def test_ledger_failure_aborts_run_and_next_run_retries(self, ledger, sender, now):
        store = InMemoryJobStore([failed_job("job-1", now - timedelta(minutes=5))])
        ledger.lookup_errors.append(ConnectionError("ledger down"))
        sweep = make_sweep(store, ledger, sender, now)

        first = await sweep.run()
        second = await sweep.run()

        assert not first.ok
        assert "ledger down" in first.error
        assert len(sender.sent) == len(RECIPIENTS)
        assert second.ok
        assert second.notified == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_not_raised(self, ledger, sender, now):
        store = InMemoryJobStore()
        store.find_errors.append(OSError("network unreachable"))

        result = await make_sweep(store, ledger, sender, now).run()

        assert not result.ok
        assert result.scanned == 0
        assert ledger.writes == 0

    def test_requires_recipients(self, store, ledger, sender):
        with pytest.raises(ConfigurationError, match="No notification recipients"):
            FailureNotifySweep(store, ledger, sender, [])

    def test_blank_recipients_are_ignored(self, store, ledger, sender):
        sweep = FailureNotifySweep(store, ledger, sender, ["", "ops@example.com"])
        assert sweep.recipients == ("ops@example.com",)
