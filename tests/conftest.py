"""
Pytest fixtures for hcloud-autosnap tests.
"""
from datetime import datetime, timedelta, timezone

import pytest

from hcloud_snapshots import Operation, OperationStatus, ServerRef, Snapshot

SERVER_ID = 4711
BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_snapshot(snapshot_id, hours=0, server_id=SERVER_ID, labels=None, status="available"):
    """Snapshot created `hours` after BASE_TIME, tagged as ours unless labels says otherwise."""
    return Snapshot(
        id=snapshot_id,
        created=BASE_TIME + timedelta(hours=hours),
        server_id=server_id,
        status=status,
        labels={"autosnap": "true"} if labels is None else labels,
    )


class FakeSnapshotService:
    """In-memory SnapshotService recording every call in order."""

    def __init__(self, snapshots=None):
        self.snapshots = list(snapshots or [])
        self.calls = []
        self.next_snapshot_id = 9000
        self.delete_status = {}
        self.create_status = OperationStatus.SUCCESS
        self.tag_error = None
        self.delete_error = None

    def get_server(self, server_id):
        self.calls.append(("get_server", server_id))
        return ServerRef(id=server_id, name="web-1")

    def list_snapshots(self, server_id, label_selector=None):
        self.calls.append(("list_snapshots", server_id, label_selector))
        return list(self.snapshots)

    def delete_snapshot(self, snapshot_id):
        self.calls.append(("delete_snapshot", snapshot_id))
        if self.delete_error is not None:
            raise self.delete_error
        status = self.delete_status.get(snapshot_id, OperationStatus.SUCCESS)
        return Operation(id=None, command="delete_image", status=status, resource_id=snapshot_id,
                         error=None if status is OperationStatus.SUCCESS else "image was not deleted")

    def create_snapshot(self, server_id, description=None):
        self.calls.append(("create_snapshot", server_id))
        return Operation(id=1, command="create_image", status=OperationStatus.RUNNING,
                         resource_id=self.next_snapshot_id)

    def tag_snapshot(self, snapshot_id, labels):
        self.calls.append(("tag_snapshot", snapshot_id, dict(labels)))
        if self.tag_error is not None:
            raise self.tag_error
        return make_snapshot(snapshot_id, labels=labels)

    def wait_for_operation(self, operation):
        self.calls.append(("wait_for_operation", operation.command, operation.resource_id))
        if operation.status.is_terminal:
            return operation
        return Operation(id=operation.id, command=operation.command, status=self.create_status,
                         resource_id=operation.resource_id)

    def call_names(self):
        return [call[0] for call in self.calls]

    def deleted_ids(self):
        return [call[1] for call in self.calls if call[0] == "delete_snapshot"]


@pytest.fixture
def fake_service():
    return FakeSnapshotService()


@pytest.fixture
def server():
    return ServerRef(id=SERVER_ID, name="web-1")
