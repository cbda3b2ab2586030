from typing import List, Optional
import logging

from hcloud_config import MatchStrategy
from hcloud_snapshots import (Deadline, Operation, OperationFailedError, OperationStatus, ServerRef, Snapshot,
                              SnapshotService)

logger = logging.getLogger("Application")

AUTOSNAP_LABEL = "autosnap"
SNAPSHOT_AVAILABLE = "available"


def is_autosnapshot(snapshot: Snapshot) -> bool:
    """Check if the snapshot carries the ownership label set by create_snapshot

    :param snapshot: snapshot to check
    :type snapshot: Snapshot
    :rtype: bool
    """
    return AUTOSNAP_LABEL in snapshot.labels


def select_autosnapshots(snapshots: List[Snapshot], server_id: int,
                         match: MatchStrategy = MatchStrategy.LABEL) -> List[Snapshot]:
    """Keep the snapshots rotation is allowed to count and delete, newest first

    A snapshot is ours if it was created from server_id, is available and,
    with the label strategy, carries the autosnap label. Snapshots a user took
    by hand are left alone.

    :param snapshots: snapshots as listed from the API
    :type snapshots: list
    :param server_id: ID of the server we rotate snapshots for
    :type server_id: int
    :param match: which snapshots of the server count as ours
    :type match: MatchStrategy
    :return: matching snapshots sorted by creation time, newest first, ties by ID
    :rtype: list
    """
    selected = []
    for snapshot in snapshots:
        if snapshot.server_id != server_id or snapshot.status != SNAPSHOT_AVAILABLE:
            continue
        if match is MatchStrategy.LABEL and not is_autosnapshot(snapshot):
            continue
        selected.append(snapshot)
    return sorted(selected, key=lambda s: (s.created, s.id), reverse=True)


def snapshots_to_delete(snapshots: List[Snapshot], retention: int) -> List[Snapshot]:
    """Return the snapshots beyond the retention threshold

    :param snapshots: matching snapshots, newest first
    :type snapshots: list
    :param retention: maximum number of snapshots to keep, 0 or less keeps none
    :type retention: int
    :rtype: list
    """
    candidates = []
    sc = 0
    for snapshot in snapshots:
        sc += 1
        if sc <= retention:
            continue
        # list is newest first, from here on everything is older than what we keep
        candidates.append(snapshot)
    return candidates


def await_terminal(service: SnapshotService, operation: Operation,
                   target: OperationStatus = OperationStatus.SUCCESS, deadline: Deadline = None) -> Operation:
    """Block until the operation is finished and check it ended as expected

    :param service: service the operation was issued on
    :type service: SnapshotService
    :param operation: operation returned by a mutating call
    :type operation: Operation
    :param target: terminal state the operation must reach
    :type target: OperationStatus
    :param deadline: run deadline
    :type deadline: Deadline
    :return: the finished operation
    :raise OperationFailedError: if the operation ended in another state
    :rtype: Operation
    """
    if deadline is not None:
        deadline.check("waiting for " + operation.command)

    finished = service.wait_for_operation(operation)
    if finished.status is not target:
        message = operation.command + " did not reach " + target.value + " (status " + finished.status.value + ")"
        if finished.error:
            message += ": " + finished.error
        raise OperationFailedError(message, finished)
    return finished


def rotate_snapshots(service: SnapshotService, server_id: int, retention: int, dry_run: bool = False,
                     match: MatchStrategy = MatchStrategy.LABEL, deadline: Deadline = None) -> List[Snapshot]:
    """Delete the oldest snapshots of a server to remain under the retention threshold

    Every deletion is waited for; the first one that fails aborts the rotation.

    :param service: remote snapshot service
    :type service: SnapshotService
    :param server_id: ID of the server
    :type server_id: int
    :param retention: maximum number of snapshots to keep
    :type retention: int
    :param dry_run: only log what would be deleted
    :type dry_run: bool
    :param match: which snapshots of the server count as ours
    :type match: MatchStrategy
    :param deadline: run deadline
    :type deadline: Deadline
    :return: the snapshots selected for deletion
    :raise AutosnapError: if listing or a deletion fails
    :rtype: list
    """
    label_selector = AUTOSNAP_LABEL if match is MatchStrategy.LABEL else None
    snapshots = select_autosnapshots(service.list_snapshots(server_id, label_selector=label_selector),
                                     server_id, match)
    for snapshot in snapshots:
        logger.debug("found snapshot " + str(snapshot.id) + " created " + snapshot.created.isoformat())

    candidates = snapshots_to_delete(snapshots, retention)
    for snapshot in candidates:
        if dry_run:
            logger.info("[DRY-RUN] deleting snapshot " + str(snapshot.id))
            continue

        logger.info("deleting snapshot " + str(snapshot.id))
        await_terminal(service, service.delete_snapshot(snapshot.id), deadline=deadline)

    logger.info("rotation done: " + str(len(snapshots)) + " snapshot(s) found, " +
                str(len(candidates)) + " beyond retention of " + str(retention))
    return candidates


def create_snapshot(service: SnapshotService, server: ServerRef, dry_run: bool = False,
                    match: MatchStrategy = MatchStrategy.LABEL, deadline: Deadline = None) -> Optional[int]:
    """Take a new snapshot of the server and mark it as ours

    With the label strategy the snapshot gets the autosnap label once it is
    created. If labelling fails the snapshot would be invisible to future
    rotations, so it is deleted again before the labelling error is raised.

    :param service: remote snapshot service
    :type service: SnapshotService
    :param server: server to snapshot
    :type server: ServerRef
    :param dry_run: only log the intent, nothing is created
    :type dry_run: bool
    :param match: which snapshots of the server count as ours
    :type match: MatchStrategy
    :param deadline: run deadline
    :type deadline: Deadline
    :return: ID of the new snapshot, None in dry-run mode
    :raise AutosnapError: if creation or labelling fails
    :rtype: int
    """
    if dry_run:
        logger.info("[DRY-RUN] creating snapshot of server '" + server.name + "'")
        return None

    logger.info("creating snapshot of server '" + server.name + "'")
    operation = service.create_snapshot(server.id, description="automated snapshot of server " + server.name)
    finished = await_terminal(service, operation, deadline=deadline)
    snapshot_id = finished.resource_id

    if match is MatchStrategy.LABEL:
        try:
            service.tag_snapshot(snapshot_id, {AUTOSNAP_LABEL: "true"})
        except Exception:
            _discard_snapshot(service, snapshot_id)
            raise

    logger.info("snapshot " + str(snapshot_id) + " of server '" + server.name + "' created")
    return snapshot_id


def _discard_snapshot(service: SnapshotService, snapshot_id: int):
    # best effort, the labelling error is what the caller gets
    try:
        operation = service.delete_snapshot(snapshot_id)
    except Exception as e:
        logger.warning("unable to delete untagged snapshot " + str(snapshot_id) + ": " + str(e))
        return
    if operation.status is not OperationStatus.SUCCESS:
        logger.warning("unable to delete untagged snapshot " + str(snapshot_id) + ": " + str(operation.error))
