"""Unit tests for BatchFollowOrchestrator.

Tests cover:
- Aggregate counts: succeeded + failed == total, already-following counted.
- Already-followed targets issue no createRecord call.
- At most five createRecord calls are in flight at once.
- A rate-limited failure pauses once and is not retried.
- Follow records carry $type, subject and createdAt.
- Successful follows are mirrored; mirror failures do not change results.
- Non-object entries in the follow listing do not abort the batch.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from skybridge.atproto.agent import RecordPage
from skybridge.core.batch_follow import BatchFollowOrchestrator
from skybridge.core.exceptions import UpstreamError, UpstreamErrorKind
from skybridge.core.follow_status import FollowStatusResolver

LEXICON = "app.bsky.graph.follow"
TARGETS = [f"did:plc:t{i}" for i in range(7)]


def _resolver(already: set[str]) -> MagicMock:
    resolver = MagicMock()
    resolver.get_already_following = AsyncMock(return_value=already)
    return resolver


class TestFollowBatch:
    @pytest.mark.asyncio
    async def test_mixed_batch_counts(self, agent: MagicMock) -> None:
        already = {"did:plc:t1", "did:plc:t4"}
        rate_limited = "did:plc:t5"

        async def create_record(collection: str, record: dict) -> dict:
            if record["subject"] == rate_limited:
                raise UpstreamError("Rate Limit Exceeded", kind=UpstreamErrorKind.RATE_LIMITED)
            return {"uri": "at://ok"}

        agent.create_record.side_effect = create_record
        sleep = AsyncMock()
        orchestrator = BatchFollowOrchestrator(_resolver(already), sleep=sleep)

        summary = await orchestrator.follow_batch(agent, TARGETS, LEXICON)

        assert summary.total == 7
        assert summary.succeeded == 6
        assert summary.failed == 1
        assert summary.already_following == 2
        assert [r.did for r in summary.results] == TARGETS

        failed = summary.results[5]
        assert not failed.success
        assert failed.error == "Rate Limit Exceeded"
        assert all(r.already_following for r in summary.results if r.did in already)

        # one pause for the rate-limited call, no retry
        sleep.assert_awaited_once_with(1.0)
        assert agent.create_record.await_count == 5

    @pytest.mark.asyncio
    async def test_follow_record_shape(self, agent: MagicMock) -> None:
        orchestrator = BatchFollowOrchestrator(_resolver(set()))

        await orchestrator.follow_batch(agent, ["did:plc:x"], "custom.graph.follow")

        collection, record = agent.create_record.await_args.args
        assert collection == "custom.graph.follow"
        assert record["$type"] == "custom.graph.follow"
        assert record["subject"] == "did:plc:x"
        assert datetime.fromisoformat(record["createdAt"]).tzinfo is not None

    @pytest.mark.asyncio
    async def test_other_failures_do_not_pause(self, agent: MagicMock) -> None:
        agent.create_record.side_effect = UpstreamError(
            "Bad request", kind=UpstreamErrorKind.UNKNOWN, status_code=400
        )
        sleep = AsyncMock()

        summary = await BatchFollowOrchestrator(_resolver(set()), sleep=sleep).follow_batch(
            agent, ["did:plc:x"], LEXICON
        )

        assert summary.failed == 1
        assert summary.results[0].error == "Bad request"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_at_most_five_in_flight(self, agent: MagicMock) -> None:
        in_flight = 0
        peak = 0

        async def create_record(collection: str, record: dict) -> dict:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return {}

        agent.create_record.side_effect = create_record
        targets = [f"did:plc:n{i}" for i in range(12)]

        summary = await BatchFollowOrchestrator(_resolver(set())).follow_batch(
            agent, targets, LEXICON
        )

        assert summary.succeeded == 12
        assert peak == 5

    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError):
            BatchFollowOrchestrator(_resolver(set()), max_in_flight=0)


class TestMirror:
    @pytest.mark.asyncio
    async def test_successes_and_already_following_are_mirrored(self, agent: MagicMock) -> None:
        agent.create_record.side_effect = [
            {},
            UpstreamError("nope"),
        ]
        sink = MagicMock()
        sink.update_follow_status = AsyncMock()
        orchestrator = BatchFollowOrchestrator(_resolver({"did:plc:a"}), sink=sink)

        await orchestrator.follow_batch(agent, ["did:plc:a", "did:plc:b", "did:plc:c"], LEXICON)

        mirrored = sorted(call.args for call in sink.update_follow_status.await_args_list)
        assert mirrored == [("did:plc:a", LEXICON, True), ("did:plc:b", LEXICON, True)]

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_fail_follow(self, agent: MagicMock) -> None:
        sink = MagicMock()
        sink.update_follow_status = AsyncMock(side_effect=RuntimeError("db down"))
        orchestrator = BatchFollowOrchestrator(_resolver(set()), sink=sink)

        summary = await orchestrator.follow_batch(agent, ["did:plc:a"], LEXICON)

        assert summary.succeeded == 1
        assert summary.results[0].success


class TestMalformedListing:
    @pytest.mark.asyncio
    async def test_junk_follow_records_do_not_abort_the_batch(self, agent: MagicMock) -> None:
        agent.list_records.return_value = RecordPage(records=["junk"], cursor=None)
        agent.create_record.return_value = {"uri": "at://ok"}
        orchestrator = BatchFollowOrchestrator(FollowStatusResolver(), sleep=AsyncMock())

        summary = await orchestrator.follow_batch(agent, ["did:plc:a"], LEXICON)

        assert summary.succeeded == 1
        assert summary.already_following == 0
        agent.create_record.assert_awaited_once()
