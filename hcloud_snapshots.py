from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
import logging
import math
import time

from dateutil import tz
from hcloud import Client, APIException
from hcloud.actions.domain import ActionFailedException, ActionTimeoutException
from hcloud.images.domain import Image
from hcloud.servers.domain import Server
import requests

logger = logging.getLogger("Application")

DEFAULT_API_ENDPOINT = "https://api.hetzner.cloud/v1"
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_RETRIES = 300


class AutosnapError(Exception):
    """Base class of every error that aborts a run"""


class ConfigurationError(AutosnapError):
    """Missing or malformed settings, raised before any remote call"""


class RemoteCallError(AutosnapError):
    """A request to the API failed (network, authorization, not found...)"""


class OperationFailedError(AutosnapError):
    """A remote operation ended in a state other than the expected one"""

    def __init__(self, message: str, operation: "Operation" = None):
        super().__init__(message)
        self.operation = operation


class OperationCancelledError(AutosnapError):
    """The run deadline passed before the next remote call"""


class OperationStatus(Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.RUNNING


@dataclass(frozen=True)
class Snapshot:
    """Local, read-only view of a snapshot image as listed at the start of a run"""

    id: int
    created: datetime
    server_id: Optional[int]
    status: str
    labels: Dict[str, str] = field(default_factory=dict)
    description: str = ""

    @classmethod
    def from_image(cls, image) -> "Snapshot":
        """Build a Snapshot from a hcloud image

        :param image: image as returned by client.images
        :type image: hcloud.images.client.BoundImage
        :rtype: Snapshot
        """
        created = image.created
        if created.tzinfo is None:
            # the API reports UTC
            created = created.replace(tzinfo=tz.UTC)

        server_id = None
        if image.created_from is not None:
            server_id = image.created_from.id

        return cls(id=image.id,
                   created=created,
                   server_id=server_id,
                   status=image.status,
                   labels=dict(image.labels or {}),
                   description=image.description or "")


@dataclass(frozen=True)
class Operation:
    """An asynchronous remote job (a hcloud action), polled until it is terminal"""

    id: Optional[int]
    command: str
    status: OperationStatus
    resource_id: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_action(cls, action, resource_id: Optional[int] = None) -> "Operation":
        error = None
        if action.error:
            error = str(action.error.get("code", "")) + ": " + str(action.error.get("message", ""))
        return cls(id=action.id,
                   command=action.command,
                   status=OperationStatus(action.status),
                   resource_id=resource_id,
                   error=error)


@dataclass(frozen=True)
class ServerRef:
    id: int
    name: str


class Deadline:
    """Optional wall-clock limit for a whole run

    :param timeout: seconds from now, None for no limit
    :type timeout: float
    """

    def __init__(self, timeout: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, what: str = "remote call"):
        if self.expired():
            raise OperationCancelledError("deadline exceeded before " + what)


class SnapshotService:
    """Narrow, typed access to the snapshots of Hetzner Cloud servers

    Every method checks the run deadline first and turns client errors into
    RemoteCallError, so the rotation code never sees hcloud types.

    :param client: instance of hcloud.Client()
    :type client: hcloud.Client
    :param max_retries: number of polls before an action counts as timed out
    :type max_retries: int
    :param deadline: run deadline, checked before each request and bounding action polling
    :type deadline: Deadline
    :param poll_interval: seconds between two polls, as configured on the client
    :type poll_interval: float
    """

    def __init__(self, client: Client, max_retries: int = DEFAULT_MAX_RETRIES, deadline: Deadline = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.client = client
        self.max_retries = max_retries
        self.deadline = deadline or Deadline()
        self.poll_interval = poll_interval

    def _poll_budget(self) -> int:
        remaining = self.deadline.remaining()
        if remaining is None:
            return self.max_retries
        return min(self.max_retries, math.ceil(remaining / self.poll_interval))

    @classmethod
    def from_config(cls, config, deadline: Deadline = None) -> "SnapshotService":
        """Build the service and its hcloud.Client from a Config

        :param config: settings of this run
        :type config: hcloud_config.Config
        :rtype: SnapshotService
        """
        client = Client(token=config.api_secret,
                        api_endpoint=config.api_endpoint,
                        poll_interval=config.poll_interval)
        return cls(client, max_retries=config.max_retries, deadline=deadline, poll_interval=config.poll_interval)

    def _call(self, what: str, func, *args, **kwargs):
        self.deadline.check(what)
        try:
            return func(*args, **kwargs)
        except APIException as e:
            raise RemoteCallError("unable to " + what + ": " + str(e.code) + " " + str(e.message)) from e
        except requests.exceptions.RequestException as e:
            raise RemoteCallError("unable to " + what + ": " + str(e)) from e

    def get_server(self, server_id: int) -> ServerRef:
        server = self._call("find server " + str(server_id), self.client.servers.get_by_id, server_id)
        return ServerRef(id=server.id, name=server.name)

    def list_snapshots(self, server_id: int, label_selector: str = None) -> List[Snapshot]:
        """List the snapshot images created from the given server

        :param server_id: ID of the source server
        :type server_id: int
        :param label_selector: optional hcloud label selector, narrows the listing remotely
        :type label_selector: str
        :return: snapshots of that server, newest first as reported by the API
        :rtype: list
        """
        images = self._call("list snapshots",
                            self.client.images.get_all,
                            type="snapshot",
                            label_selector=label_selector,
                            sort="created:desc")
        snapshots = [Snapshot.from_image(image) for image in images]
        return [s for s in snapshots if s.server_id == server_id]

    def delete_snapshot(self, snapshot_id: int) -> Operation:
        # image deletion is answered synchronously, there is no action to poll
        deleted = self._call("delete snapshot " + str(snapshot_id),
                             self.client.images.delete,
                             Image(id=snapshot_id))
        if deleted:
            return Operation(id=None, command="delete_image", status=OperationStatus.SUCCESS,
                             resource_id=snapshot_id)
        return Operation(id=None, command="delete_image", status=OperationStatus.ERROR,
                         resource_id=snapshot_id, error="image was not deleted")

    def create_snapshot(self, server_id: int, description: str = None) -> Operation:
        response = self._call("create snapshot",
                              self.client.servers.create_image,
                              Server(id=server_id),
                              description=description,
                              type="snapshot")
        return Operation.from_action(response.action, resource_id=response.image.id)

    def tag_snapshot(self, snapshot_id: int, labels: Dict[str, str]) -> Snapshot:
        """Add labels to a snapshot, keeping the ones it already has

        :param snapshot_id: ID of the snapshot image
        :type snapshot_id: int
        :param labels: labels to set
        :type labels: dict
        :rtype: Snapshot
        """
        image = self._call("find snapshot " + str(snapshot_id), self.client.images.get_by_id, snapshot_id)
        merged = dict(image.labels or {})
        merged.update(labels)
        updated = self._call("tag snapshot " + str(snapshot_id), self.client.images.update, image, labels=merged)
        return Snapshot.from_image(updated)

    def wait_for_operation(self, operation: Operation) -> Operation:
        """Poll an operation until the API reports it finished

        A failed action or an exhausted polling budget are reported as an
        Operation in error state, not as an exception.

        :param operation: operation returned by a mutating call
        :type operation: Operation
        :rtype: Operation
        """
        if operation.status.is_terminal or operation.id is None:
            return operation

        action = self._call("find action " + str(operation.id), self.client.actions.get_by_id, operation.id)
        budget = self._poll_budget()
        if budget <= 0:
            raise OperationCancelledError("deadline exceeded before waiting for action " + str(operation.id))
        try:
            action.wait_until_finished(max_retries=budget)
        except ActionFailedException as e:
            return Operation.from_action(e.action, resource_id=operation.resource_id)
        except ActionTimeoutException:
            if budget < self.max_retries:
                raise OperationCancelledError("deadline exceeded while waiting for action " +
                                              str(operation.id)) from None
            return Operation(id=operation.id, command=operation.command, status=OperationStatus.ERROR,
                             resource_id=operation.resource_id,
                             error="action did not finish after " + str(self.max_retries) + " polls")
        except APIException as e:
            raise RemoteCallError("unable to poll action " + str(operation.id) + ": " + str(e.message)) from e
        except requests.exceptions.RequestException as e:
            raise RemoteCallError("unable to poll action " + str(operation.id) + ": " + str(e)) from e
        return Operation.from_action(action, resource_id=operation.resource_id)
