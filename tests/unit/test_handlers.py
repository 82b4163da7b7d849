"""Unit tests for the kopf handlers feeding the work queue."""

import asyncio
import logging

import kopf
import pytest
from unittest.mock import Mock

from storop.common.models.labels import Labels
from storop.handlers import children, common
from storop.store.base import Identity
from storop.utils.errors import InvalidSpecError

from .conftest import csi_driver_body

KEY = Identity("CSIDriverDeployment", "storage", "example")


@pytest.fixture
def memo():
    memo = Mock()
    memo.queue = Mock()
    return memo


class TestReconciliationRequests:
    @pytest.mark.asyncio
    async def test_change_is_queued(self, memo):
        await common.request_reconciliation(csi_driver_body(), memo, reason="create")

        memo.queue.add.assert_called_once_with(KEY, trigger_source="create")

    @pytest.mark.asyncio
    async def test_resync_is_queued(self, memo):
        await common.resync(csi_driver_body(), memo)

        memo.queue.add.assert_called_once_with(KEY, trigger_source="timer")

    @pytest.mark.asyncio
    async def test_child_event_requeues_owner(self, memo):
        labels = Labels.ownership(*KEY).as_dict()

        await children.on_child_event(labels=labels, memo=memo)

        memo.queue.add.assert_called_once_with(KEY, trigger_source="child")

    @pytest.mark.asyncio
    async def test_unknown_owner_is_ignored(self, memo):
        labels = Labels.ownership("UnknownKind", "storage", "x").as_dict()

        await children.on_child_event(labels=labels, memo=memo)

        memo.queue.add.assert_not_called()


class TestFinalize:
    @pytest.mark.asyncio
    async def test_waits_for_children_removal(self, memo):
        done = asyncio.get_running_loop().create_future()
        done.set_result(None)
        memo.queue.add.return_value = done

        await common.finalize(csi_driver_body(), memo, logging.getLogger(__name__))

        memo.queue.add.assert_called_once_with(KEY, trigger_source="delete", wait=True)
        memo.queue.forget.assert_called_once_with(KEY)

    @pytest.mark.asyncio
    async def test_failure_is_reported_to_kopf(self, memo):
        failed = asyncio.get_running_loop().create_future()
        failed.set_exception(InvalidSpecError("bad"))
        memo.queue.add.return_value = failed

        with pytest.raises(kopf.PermanentError):
            await common.finalize(csi_driver_body(), memo, logging.getLogger(__name__))
        memo.queue.forget.assert_not_called()
