"""
Tests for the pending choice table.
"""
import time

import pytest

from video_pipeline.choices import ChoiceStage, PendingChoiceTable
from video_pipeline.errors import StaleChoice
from video_pipeline.models import DownloadJob, Platform
from video_pipeline.workspace import TempWorkspace

OPTIONS = ("a", "b")


def make_job(requester_id=1):
    return DownloadJob(
        requester_id=requester_id,
        chat_id=requester_id,
        platform=Platform.YOUTUBE,
        source_url="https://youtu.be/x",
        workspace=TempWorkspace(),
    )


class TestPendingChoiceTable:

    @pytest.mark.asyncio
    async def test_consume_once(self, choice_table):
        choice, _ = await choice_table.issue(1, ChoiceStage.TYPE, make_job(), OPTIONS)

        consumed = await choice_table.consume(choice.token, 1, 0)
        assert consumed is choice

        with pytest.raises(StaleChoice):
            await choice_table.consume(choice.token, 1, 0)

    @pytest.mark.asyncio
    async def test_new_issue_supersedes_previous_token(self, choice_table):
        first, _ = await choice_table.issue(1, ChoiceStage.TYPE, make_job(), OPTIONS)
        second, superseded = await choice_table.issue(1, ChoiceStage.TYPE, make_job(), OPTIONS)

        assert superseded == [first]
        assert len(choice_table) == 1
        with pytest.raises(StaleChoice):
            await choice_table.consume(first.token, 1, 0)
        assert await choice_table.consume(second.token, 1, 1) is second

    @pytest.mark.asyncio
    async def test_tokens_are_scoped_per_requester(self, choice_table):
        mine, _ = await choice_table.issue(1, ChoiceStage.TYPE, make_job(1), OPTIONS)
        theirs, superseded = await choice_table.issue(2, ChoiceStage.TYPE, make_job(2), OPTIONS)

        assert superseded == []
        with pytest.raises(StaleChoice):
            await choice_table.consume(mine.token, 2, 0)
        assert len(choice_table) == 2

    @pytest.mark.asyncio
    async def test_out_of_range_index_keeps_token(self, choice_table):
        choice, _ = await choice_table.issue(1, ChoiceStage.TYPE, make_job(), OPTIONS)

        with pytest.raises(StaleChoice):
            await choice_table.consume(choice.token, 1, 5)
        assert await choice_table.consume(choice.token, 1, 1) is choice

    @pytest.mark.asyncio
    async def test_unknown_token(self, choice_table):
        with pytest.raises(StaleChoice):
            await choice_table.consume("nope", 1, 0)

    @pytest.mark.asyncio
    async def test_expired_token_rejected_then_purged(self):
        table = PendingChoiceTable(ttl=60)
        choice, _ = await table.issue(1, ChoiceStage.TYPE, make_job(), OPTIONS)
        choice.created_at = time.monotonic() - 120

        with pytest.raises(StaleChoice):
            await table.consume(choice.token, 1, 0)

        assert await table.purge_expired() == [choice]
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_invalidate_requester(self, choice_table):
        choice, _ = await choice_table.issue(1, ChoiceStage.TYPE, make_job(), OPTIONS)

        assert await choice_table.invalidate_requester(1) is choice
        assert await choice_table.invalidate_requester(1) is None
        with pytest.raises(StaleChoice):
            await choice_table.consume(choice.token, 1, 0)

    @pytest.mark.asyncio
    async def test_invalidate_job(self, choice_table):
        job = make_job()
        await choice_table.issue(1, ChoiceStage.TYPE, job, OPTIONS)
        await choice_table.issue(2, ChoiceStage.TYPE, make_job(2), OPTIONS)

        dropped = await choice_table.invalidate_job(job)

        assert len(dropped) == 1
        assert len(choice_table) == 1
