"""Unit tests for FollowStatusResolver.

Tests cover:
- Result keys are exactly the requested targets.
- Paging stops as soon as every target has been seen (early exit).
- Paging continues until the cursor runs out when targets are missing.
- Upstream failure: all-False under ASSUME_NOT_FOLLOWING, re-raised under
  FAIL_CLOSED.
- Empty targets make no remote call.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from skybridge.atproto.agent import RecordPage
from skybridge.core.exceptions import UpstreamError, UpstreamErrorKind
from skybridge.core.follow_status import FailSafePolicy, FollowStatusResolver

LEXICON = "app.bsky.graph.follow"


def _follow(subject: str) -> dict:
    return {"uri": f"at://did:plc:self/{LEXICON}/{subject[-1]}", "value": {"subject": subject}}


class TestCheckStatus:
    @pytest.mark.asyncio
    async def test_pages_until_cursor_exhausted(self, agent: MagicMock) -> None:
        agent.list_records.side_effect = [
            RecordPage(records=[_follow("did:plc:a"), _follow("did:plc:x")], cursor="c1"),
            RecordPage(records=[_follow("did:plc:c")], cursor=None),
        ]

        status = await FollowStatusResolver().check_status(
            agent, ["did:plc:a", "did:plc:b", "did:plc:c"], LEXICON
        )

        assert status == {"did:plc:a": True, "did:plc:b": False, "did:plc:c": True}
        assert agent.list_records.await_count == 2
        assert agent.list_records.await_args_list[1].kwargs["cursor"] == "c1"

    @pytest.mark.asyncio
    async def test_stops_once_all_targets_found(self, agent: MagicMock) -> None:
        agent.list_records.side_effect = [
            RecordPage(records=[_follow("did:plc:a"), _follow("did:plc:b")], cursor="more"),
            RecordPage(records=[], cursor=None),
        ]

        status = await FollowStatusResolver().check_status(
            agent, ["did:plc:a", "did:plc:b"], LEXICON
        )

        assert status == {"did:plc:a": True, "did:plc:b": True}
        assert agent.list_records.await_count == 1

    @pytest.mark.asyncio
    async def test_lists_requested_collection_with_page_size(self, agent: MagicMock) -> None:
        agent.list_records.return_value = RecordPage()

        await FollowStatusResolver().check_status(agent, ["did:plc:a"], "custom.graph.follow")

        args = agent.list_records.await_args
        assert args.args[0] == "custom.graph.follow"
        assert args.kwargs["limit"] == 100

    @pytest.mark.asyncio
    async def test_records_without_subject_are_ignored(self, agent: MagicMock) -> None:
        agent.list_records.return_value = RecordPage(
            records=[{"value": {}}, {"value": "junk"}, {}], cursor=None
        )

        status = await FollowStatusResolver().check_status(agent, ["did:plc:a"], LEXICON)

        assert status == {"did:plc:a": False}

    @pytest.mark.asyncio
    async def test_non_object_records_are_ignored(self, agent: MagicMock) -> None:
        agent.list_records.return_value = RecordPage(
            records=["junk", None, 42, _follow("did:plc:a")], cursor=None
        )

        status = await FollowStatusResolver().check_status(
            agent, ["did:plc:a", "did:plc:b"], LEXICON
        )

        assert status == {"did:plc:a": True, "did:plc:b": False}

    @pytest.mark.asyncio
    async def test_empty_targets_make_no_call(self, agent: MagicMock) -> None:
        assert await FollowStatusResolver().check_status(agent, [], LEXICON) == {}
        agent.list_records.assert_not_awaited()


class TestFailSafe:
    @pytest.mark.asyncio
    async def test_upstream_error_reports_all_false(self, agent: MagicMock) -> None:
        agent.list_records.side_effect = [
            RecordPage(records=[_follow("did:plc:a")], cursor="c1"),
            UpstreamError("boom", kind=UpstreamErrorKind.SERVICE_UNAVAILABLE),
        ]

        status = await FollowStatusResolver().check_status(
            agent, ["did:plc:a", "did:plc:b"], LEXICON
        )

        assert status == {"did:plc:a": False, "did:plc:b": False}

    @pytest.mark.asyncio
    async def test_fail_closed_reraises(self, agent: MagicMock) -> None:
        agent.list_records.side_effect = UpstreamError(
            "slow down", kind=UpstreamErrorKind.RATE_LIMITED
        )
        resolver = FollowStatusResolver(policy=FailSafePolicy.FAIL_CLOSED)

        with pytest.raises(UpstreamError) as exc_info:
            await resolver.check_status(agent, ["did:plc:a"], LEXICON)
        assert exc_info.value.is_rate_limited


class TestGetAlreadyFollowing:
    @pytest.mark.asyncio
    async def test_returns_followed_subset(self, agent: MagicMock) -> None:
        agent.list_records.return_value = RecordPage(
            records=[_follow("did:plc:b")], cursor=None
        )

        followed = await FollowStatusResolver().get_already_following(
            agent, ["did:plc:a", "did:plc:b"], LEXICON
        )

        assert followed == {"did:plc:b"}
