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
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import opentracing
from opentracing import Span, Tracer, logs, tags
from prometheus_client import Counter, Gauge
from twisted.internet.defer import Deferred, ensureDeferred

from pushhandler.exceptions import SessionRestoreException
from pushhandler.pushdata import PushData
from pushhandler.services import (
    AuthenticationService,
    LifecycleObserver,
    LocalBroadcastManager,
    NotificationDrawerManager,
    PushClientSecret,
    PushDataStore,
)
from pushhandler.utils import push_logger

if TYPE_CHECKING:
    from pushhandler.app import PushHandlerReactor

logger = logging.getLogger(__name__)

# The event ID used by the push troubleshooting flow. Pushes carrying it only
# prove that the push path works end to end and are never displayed.
TEST_EVENT_ID = "$THIS_IS_A_FAKE_EVENT_ID"

PUSHES_RECEIVED_COUNTER = Counter(
    "pushhandler_pushes_received", "Number of pushes received"
)

PUSHES_HANDLED_COUNTER = Counter(
    "pushhandler_pushes_handled",
    "Number of pushes which finished handling, by outcome",
    labelnames=["outcome"],
)

PUSHES_IN_FLIGHT_GAUGE = Gauge(
    "pushhandler_pushes_in_flight",
    "Number of pushes being resolved in the background",
)


def push_action(app_id: str) -> str:
    """The broadcast action sent when a diagnostic push is received."""
    return f"{app_id}.PUSH"


class PushHandler:
    def __init__(
        self,
        reactor: "PushHandlerReactor",
        push_data_store: PushDataStore,
        push_client_secret: PushClientSecret,
        authentication_service: AuthenticationService,
        notification_drawer_manager: NotificationDrawerManager,
        lifecycle_observer: LifecycleObserver,
        broadcast_manager: LocalBroadcastManager,
        app_id: str,
        low_privacy_logging: bool = False,
        display_resolved_content: bool = False,
        tracer: Tracer = opentracing.tracer,
    ):
        """
        Turns pushes into notifications.

        Args:
            reactor: the reactor which stands in for the UI thread; background
                work is scheduled from it.
            push_data_store: holds the push counter and the device setting.
            push_client_secret: maps client secrets to user IDs.
            authentication_service: restores sessions.
            notification_drawer_manager: displays notifications.
            lifecycle_observer: tells whether the process is in the foreground.
            broadcast_manager: receives the diagnostic push broadcast.
            app_id: the application ID, used to build broadcast actions.
            low_privacy_logging: if True, push contents are written to the logs.
            display_resolved_content: if True, display the resolved notification
                instead of the temporary one when it could be fetched.
            tracer (optional): an OpenTracing tracer. The default is the no-op
                tracer.
        """
        self.reactor = reactor
        self.push_data_store = push_data_store
        self.push_client_secret = push_client_secret
        self.authentication_service = authentication_service
        self.notification_drawer_manager = notification_drawer_manager
        self.lifecycle_observer = lifecycle_observer
        self.broadcast_manager = broadcast_manager
        self.push_action = push_action(app_id)
        self.low_privacy_logging = low_privacy_logging
        self.display_resolved_content = display_resolved_content
        self.tracer = tracer

        self.log = push_logger(logger, "PushHandler")

    async def handle(self, push_data: PushData) -> None:
        """
        Called when a push is received. Never raises: a push which cannot be
        handled is dropped.

        Args:
            push_data: the data received in the push.
        """
        try:
            self._handle(push_data)
        except Exception:
            self.log.exception("## handle() failed")

    def _handle(self, push_data: PushData) -> None:
        self.log.debug("## handling pushData")

        if self.low_privacy_logging:
            self.log.debug("## pushData: %r", push_data)

        self.push_data_store.increment_push_counter()
        PUSHES_RECEIVED_COUNTER.inc()

        # Diagnostic push
        if push_data.event_id == TEST_EVENT_ID:
            self.broadcast_manager.send_broadcast(self.push_action)
            PUSHES_HANDLED_COUNTER.labels(outcome="diagnostic").inc()
            return

        # TODO should be a per-user setting rather than a per-device one
        if not self.push_data_store.are_notifications_enabled_for_device():
            self.log.info("Notification are disabled for this device")
            PUSHES_HANDLED_COUNTER.labels(outcome="disabled").inc()
            return

        self.reactor.callLater(0, self._dispatch_if_background, push_data)

    def _dispatch_if_background(self, push_data: PushData) -> Optional[Deferred]:
        """
        Start resolving the push in the background, unless the process is in
        the foreground.

        Returns:
            a Deferred which fires once the push has been handled, or None if
            it was ignored.
        """
        try:
            in_foreground = self.lifecycle_observer.is_in_foreground()
        except Exception:
            self.log.exception("Unable to check the process lifecycle state")
            PUSHES_HANDLED_COUNTER.labels(outcome="failed").inc()
            return None

        if in_foreground:
            # the sync loop of the running session will pick the event up
            self.log.debug("PUSH received in a foreground state, ignore")
            PUSHES_HANDLED_COUNTER.labels(outcome="foreground").inc()
            return None

        return ensureDeferred(self.handle_internal(push_data))

    async def handle_internal(self, push_data: PushData) -> None:
        """
        Resolve the session the push is for, fetch the notification and
        display it. Never raises.

        Args:
            push_data: Object containing message data.
        """
        outcome = "failed"
        try:
            outcome = await self._traced_handle_internal(push_data)
        except Exception:
            self.log.exception("## handleInternal() failed")
        finally:
            try:
                PUSHES_HANDLED_COUNTER.labels(outcome=outcome).inc()
            except Exception:
                self.log.exception("Unable to record the outcome of a push")

    async def _traced_handle_internal(self, push_data: PushData) -> str:
        span_tags: Dict[str, Any] = {
            "has_client_secret": push_data.client_secret is not None
        }
        if self.low_privacy_logging:
            span_tags["event_id"] = push_data.event_id

        span = self.tracer.start_span("push_handle_internal", tags=span_tags)
        try:
            with PUSHES_IN_FLIGHT_GAUGE.track_inprogress():
                outcome = await self._handle_internal(push_data, span)
            span.set_tag("outcome", outcome)
            return outcome
        except Exception as exc:
            span.set_tag(tags.ERROR, True)
            span.log_kv({logs.EVENT: tags.ERROR, logs.ERROR_OBJECT: exc})
            raise
        finally:
            span.finish()

    async def _handle_internal(self, push_data: PushData, span: Span) -> str:
        """
        Returns:
            the outcome of handling the push, used as a metrics label.
        """
        if self.low_privacy_logging:
            self.log.debug("## handleInternal() : %r", push_data)
        else:
            self.log.debug("## handleInternal()")

        room_id = push_data.room_id
        event_id = push_data.event_id
        if room_id is None or event_id is None:
            return "missing_ids"

        user_id = None
        if push_data.client_secret is not None:
            user_id = self.push_client_secret.get_user_id_from_secret(
                push_data.client_secret
            )
        if user_id is None:
            # no secret, or one we do not know: fall back to the latest session
            user_id = self.authentication_service.get_latest_session_id()

        if user_id is None:
            self.log.warning("Unable to get a session")
            return "no_user"

        try:
            session = await self.authentication_service.restore_session(user_id)
        except SessionRestoreException:
            session = None
        if session is None:
            return "no_session"

        span.log_kv({logs.EVENT: "session_restored"})

        notification_data = await session.notification_service().get_notification(
            user_id=user_id,
            room_id=room_id,
            event_id=event_id,
        )

        if self.low_privacy_logging:
            self.log.debug("Notification: %r", notification_data)
        else:
            self.log.debug(
                "Notification resolved: %s", notification_data is not None
            )

        if self.display_resolved_content and notification_data is not None:
            self.notification_drawer_manager.display_notification(notification_data)
        else:
            self.notification_drawer_manager.display_temporary_notification()

        return "displayed"
