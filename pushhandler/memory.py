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
In-process implementations of the push handler's services, selected with
`type: memory` in the `services` configuration section.
"""
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import uuid4

from pushhandler.services import (
    AuthenticationService,
    LifecycleObserver,
    NotificationData,
    NotificationDrawerManager,
    NotificationService,
    PushClientSecret,
    PushDataStore,
    Session,
)
from pushhandler.utils import push_logger

if TYPE_CHECKING:
    from pushhandler.app import PushHandlerApp

logger = logging.getLogger(__name__)


class MemoryPushDataStore(PushDataStore):
    def __init__(self, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        super().__init__(name, app, config)
        self._push_counter = 0
        self._notifications_enabled = self.get_config(
            "notifications_enabled", bool, True
        )

    def increment_push_counter(self) -> None:
        self._push_counter += 1

    @property
    def push_counter(self) -> int:
        return self._push_counter

    def are_notifications_enabled_for_device(self) -> bool:
        return self._notifications_enabled

    def set_notifications_enabled_for_device(self, enabled: bool) -> None:
        self._notifications_enabled = enabled


class MemoryPushClientSecret(PushClientSecret):
    """
    Config options:
        secrets: a mapping of client secret to user ID, for secrets which were
            registered before this process started.
    """

    def __init__(self, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        super().__init__(name, app, config)
        self._user_ids_by_secret: Dict[str, str] = dict(
            self.get_config("secrets", dict, {})
        )

    def get_secret_for_user(self, user_id: str) -> str:
        for secret, owner in self._user_ids_by_secret.items():
            if owner == user_id:
                return secret

        secret = str(uuid4())
        logger.debug("Created a new push client secret for %s", user_id)
        self._user_ids_by_secret[secret] = user_id
        return secret

    def get_user_id_from_secret(self, client_secret: str) -> Optional[str]:
        return self._user_ids_by_secret.get(client_secret)

    def reset_secret(self, user_id: str) -> None:
        self._user_ids_by_secret = {
            secret: owner
            for secret, owner in self._user_ids_by_secret.items()
            if owner != user_id
        }


class MemoryNotificationService(NotificationService):
    def __init__(self, notifications: Dict[str, Dict[str, Any]]):
        self._notifications = notifications

    async def get_notification(
        self, user_id: str, room_id: str, event_id: str
    ) -> Optional[NotificationData]:
        content = self._notifications.get(event_id)
        if content is None:
            return None
        return NotificationData(
            user_id=user_id,
            room_id=room_id,
            event_id=event_id,
            sender_id=content.get("sender"),
            sender_display_name=content.get("sender_display_name"),
            room_display_name=content.get("room_name"),
            body=content.get("body"),
            is_noisy=bool(content.get("is_noisy", False)),
            timestamp=content.get("timestamp"),
        )


class MemorySession(Session):
    def __init__(self, user_id: str, notifications: Dict[str, Dict[str, Any]]):
        self._user_id = user_id
        self._notification_service = MemoryNotificationService(notifications)

    @property
    def user_id(self) -> str:
        return self._user_id

    def notification_service(self) -> NotificationService:
        return self._notification_service


class MemoryAuthenticationService(AuthenticationService):
    """
    Config options:
        sessions: the user IDs with a stored session, oldest login first.
        notifications: a mapping of event ID to notification content, served
            by the notification service of every session.
    """

    def __init__(self, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        super().__init__(name, app, config)
        self._session_ids: List[str] = list(self.get_config("sessions", list, []))
        self._notifications: Dict[str, Dict[str, Any]] = self.get_config(
            "notifications", dict, {}
        )

    def add_session(self, user_id: str) -> None:
        if user_id in self._session_ids:
            self._session_ids.remove(user_id)
        self._session_ids.append(user_id)

    def remove_session(self, user_id: str) -> None:
        if user_id in self._session_ids:
            self._session_ids.remove(user_id)

    def get_latest_session_id(self) -> Optional[str]:
        if not self._session_ids:
            return None
        return self._session_ids[-1]

    async def restore_session(self, user_id: str) -> Optional[Session]:
        if user_id not in self._session_ids:
            return None
        return MemorySession(user_id, self._notifications)


class MemoryNotificationDrawerManager(NotificationDrawerManager):
    """Writes notifications to the log instead of a notification drawer."""

    def __init__(self, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        super().__init__(name, app, config)
        self.log = push_logger(logger, "NotificationDrawerManager")

    def display_temporary_notification(self) -> None:
        self.log.info("Displaying temporary notification")

    def display_notification(self, notification_data: NotificationData) -> None:
        if self.app.low_privacy_logging:
            self.log.info("Displaying notification: %r", notification_data)
        else:
            self.log.info(
                "Displaying notification for event %s", notification_data.event_id
            )


class MemoryLifecycleObserver(LifecycleObserver):
    """
    Config options:
        foreground: whether the process starts in the foreground.
    """

    def __init__(self, name: str, app: "PushHandlerApp", config: Dict[str, Any]):
        super().__init__(name, app, config)
        self._foreground = self.get_config("foreground", bool, False)

    def set_foreground(self, foreground: bool) -> None:
        self._foreground = foreground

    def is_in_foreground(self) -> bool:
        return self._foreground
