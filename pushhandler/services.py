# -*- coding: utf-8 -*-
# Copyright 2023 New Vector Ltd
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
The collaborators the push handler calls into.

Every collaborator which can be swapped out through the `services` section of
the configuration derives from `Service`.
"""
import abc
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Type,
    TypeVar,
    overload,
)

import attr

from pushhandler.exceptions import ServiceSetupException

if TYPE_CHECKING:
    from pushhandler.app import PushHandlerApp

T = TypeVar("T")


@attr.s(frozen=True, slots=True)
class NotificationData:
    """The content of a notification for a single event."""

    user_id = attr.ib(type=str)
    room_id = attr.ib(type=str)
    event_id = attr.ib(type=str)
    sender_id = attr.ib(type=Optional[str], default=None)
    sender_display_name = attr.ib(type=Optional[str], default=None)
    room_display_name = attr.ib(type=Optional[str], default=None)
    body = attr.ib(type=Optional[str], default=None)
    is_noisy = attr.ib(type=bool, default=False)
    timestamp = attr.ib(type=Optional[int], default=None)


class Service(abc.ABC):
    def __init__(self, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        self.name = name
        self.cfg = config
        self.app = app

    @overload
    def get_config(self, key: str, type_: Type[T], default: T) -> T: ...

    @overload
    def get_config(
        self, key: str, type_: Type[T], default: None = None
    ) -> Optional[T]: ...

    def get_config(
        self, key: str, type_: Type[T], default: Optional[T] = None
    ) -> Optional[T]:
        if key not in self.cfg:
            return default
        if not isinstance(self.cfg[key], type_):
            raise ServiceSetupException(
                f"{key} is of incorrect type, please check that the entry for {key} "
                f"in the '{self.name}' service is formatted correctly in the config "
                f"file."
            )
        return self.cfg[key]

    @classmethod
    async def create(cls, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        """
        Override this if your service needs to call async code in order to
        be constructed. Otherwise, it defaults to just invoking the Python-standard
        __init__ constructor.

        Returns:
            an instance of this Service
        """
        return cls(name, app, config)


class PushDataStore(Service):
    @abc.abstractmethod
    def increment_push_counter(self) -> None:
        ...

    @property
    @abc.abstractmethod
    def push_counter(self) -> int:
        ...

    @abc.abstractmethod
    def are_notifications_enabled_for_device(self) -> bool:
        ...

    @abc.abstractmethod
    def set_notifications_enabled_for_device(self, enabled: bool) -> None:
        ...


class PushClientSecret(Service):
    """
    Maps the opaque secrets registered with pushers back to local users, so
    that a push can be attributed to a session without the push gateway
    knowing which account it belongs to.
    """

    @abc.abstractmethod
    def get_secret_for_user(self, user_id: str) -> str:
        """Returns the secret for this user, creating one if needed."""
        ...

    @abc.abstractmethod
    def get_user_id_from_secret(self, client_secret: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    def reset_secret(self, user_id: str) -> None:
        ...


class NotificationService(abc.ABC):
    @abc.abstractmethod
    async def get_notification(
        self, user_id: str, room_id: str, event_id: str
    ) -> Optional[NotificationData]:
        ...


class Session(abc.ABC):
    @property
    @abc.abstractmethod
    def user_id(self) -> str:
        ...

    @abc.abstractmethod
    def notification_service(self) -> NotificationService:
        ...


class AuthenticationService(Service):
    @abc.abstractmethod
    def get_latest_session_id(self) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def restore_session(self, user_id: str) -> Optional[Session]:
        """
        Args:
            user_id: The user whose stored credentials should be used.

        Returns:
            the restored session, or None if there is no session for this user.

        Raises:
            SessionRestoreException if the stored session could not be restored.
        """
        ...


class NotificationDrawerManager(Service):
    @abc.abstractmethod
    def display_temporary_notification(self) -> None:
        ...

    @abc.abstractmethod
    def display_notification(self, notification_data: NotificationData) -> None:
        ...


class LifecycleObserver(Service):
    @abc.abstractmethod
    def is_in_foreground(self) -> bool:
        """Whether the host process is currently in an interactive state."""
        ...


class LocalBroadcastManager:
    """Delivers broadcasts to receivers registered in this process."""

    def __init__(self) -> None:
        self._receivers: Dict[str, List[Callable[[str], None]]] = {}

    def register_receiver(self, action: str, callback: Callable[[str], None]) -> None:
        self._receivers.setdefault(action, []).append(callback)

    def unregister_receiver(
        self, action: str, callback: Callable[[str], None]
    ) -> None:
        receivers = self._receivers.get(action, [])
        if callback in receivers:
            receivers.remove(callback)

    def send_broadcast(self, action: str) -> None:
        for callback in list(self._receivers.get(action, [])):
            callback(action)
