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
from io import BytesIO
from unittest.mock import MagicMock

from twisted.internet.address import IPv4Address
from twisted.web.http import combinedLogFormatter, proxiedLogFormatter

from pushhandler.handler import TEST_EVENT_ID
from pushhandler.http import SizeLimitingRequest

from tests import testutils
from tests.testutils import (
    CLIENT_SECRET_ALICE,
    EVENT_ID,
    ROOM_ID,
    USER_ID_ALICE,
    USER_ID_BOB,
    FakeChannel,
    FakeTransport,
)


class HttpTestCase(testutils.TestCase):
    def setUp(self):
        super().setUp()

        self.drawer = self.app.services["notification_drawer"]
        self.display_temporary = MagicMock()
        self.display = MagicMock()
        self.drawer.display_temporary_notification = self.display_temporary
        self.drawer.display_notification = self.display

        self.auth = self.app.services["authentication"]
        self.restore_session = MagicMock(wraps=self.auth.restore_session)
        self.auth.restore_session = self.restore_session

    def _request_and_run(self, payload):
        resp = self._request(payload)
        # run the work the push handler posted to the reactor
        self.app.reactor.advance(0)
        return resp

    def test_unified_push(self):
        """
        Tests the expected case: the push is accepted and displayed.
        """
        resp = self._request_and_run(self._make_unified_push())

        self.assertEqual({"rejected": []}, resp)
        self.restore_session.assert_called_once_with(USER_ID_ALICE)
        self.assertEqual(1, self.display_temporary.call_count)
        self.assertEqual(1, self.app.services["store"].push_counter)

    def test_firebase(self):
        resp = self._request_and_run(
            {
                "event_id": EVENT_ID,
                "room_id": ROOM_ID,
                "unread": "1",
                "cs": CLIENT_SECRET_ALICE,
            }
        )

        self.assertEqual({"rejected": []}, resp)
        self.restore_session.assert_called_once_with(USER_ID_ALICE)
        self.assertEqual(1, self.display_temporary.call_count)

    def test_diagnostic_push(self):
        broadcasts = []
        self.app.broadcast_manager.register_receiver(
            "io.element.android.PUSH", broadcasts.append
        )

        resp = self._request_and_run(
            self._make_unified_push(event_id=TEST_EVENT_ID, client_secret=None)
        )

        self.assertEqual({"rejected": []}, resp)
        self.assertEqual(["io.element.android.PUSH"], broadcasts)
        self.assertEqual(0, self.restore_session.call_count)
        self.assertEqual(0, self.display_temporary.call_count)

    def test_push_without_event_id(self):
        """
        The push is accepted and counted, but nothing is displayed.
        """
        resp = self._request_and_run(self._make_unified_push(event_id=None))

        self.assertEqual({"rejected": []}, resp)
        self.assertEqual(1, self.app.services["store"].push_counter)
        self.assertEqual(0, self.restore_session.call_count)
        self.assertEqual(0, self.display_temporary.call_count)

    def test_push_with_malformed_event_id(self):
        resp = self._request_and_run(self._make_unified_push(event_id="not-an-id"))

        self.assertEqual({"rejected": []}, resp)
        self.assertEqual(0, self.restore_session.call_count)
        self.assertEqual(0, self.display_temporary.call_count)

    def test_unknown_client_secret_uses_latest_session(self):
        resp = self._request_and_run(self._make_unified_push(client_secret="who?"))

        self.assertEqual({"rejected": []}, resp)
        self.restore_session.assert_called_once_with(USER_ID_BOB)
        self.assertEqual(1, self.display_temporary.call_count)

    def test_failure_is_not_surfaced(self):
        async def broken_restore(user_id):
            raise RuntimeError("keychain unavailable")

        self.restore_session.side_effect = broken_restore

        resp = self._request_and_run(self._make_unified_push())

        self.assertEqual({"rejected": []}, resp)
        self.assertEqual(0, self.display_temporary.call_count)

    def test_invalid_json(self):
        self.assertEqual(400, self._request("{'event_id': "))

    def test_non_object_body(self):
        self.assertEqual(400, self._request("[1, 2, 3]"))

    def test_wrongly_typed_field(self):
        payload = self._make_unified_push()
        payload["notification"]["event_id"] = 42

        self.assertEqual(400, self._request(payload))
        self.assertEqual(0, self.app.services["store"].push_counter)


class ResolvedContentHttpTestCase(testutils.TestCase):
    def config_setup(self, config):
        super().config_setup(config)
        config["push"] = {"display_resolved_content": True}

    def test_resolved_content_is_displayed(self):
        drawer = self.app.services["notification_drawer"]
        drawer.display_notification = MagicMock()
        drawer.display_temporary_notification = MagicMock()

        resp = self._request(self._make_unified_push())
        self.app.reactor.advance(0)

        self.assertEqual({"rejected": []}, resp)
        self.assertEqual(0, drawer.display_temporary_notification.call_count)
        notification_data = drawer.display_notification.call_args[0][0]
        self.assertEqual(USER_ID_ALICE, notification_data.user_id)
        self.assertEqual("Major Tom", notification_data.sender_display_name)
        self.assertEqual("Mission Control", notification_data.room_display_name)


class DisabledNotificationsHttpTestCase(testutils.TestCase):
    def config_setup(self, config):
        super().config_setup(config)
        config["services"]["store"] = {
            "type": "memory",
            "notifications_enabled": False,
        }

    def test_push_is_counted_but_not_displayed(self):
        drawer = self.app.services["notification_drawer"]
        drawer.display_temporary_notification = MagicMock()

        resp = self._request(self._make_unified_push())
        self.app.reactor.advance(0)

        self.assertEqual({"rejected": []}, resp)
        self.assertEqual(1, self.app.services["store"].push_counter)
        self.assertEqual(0, drawer.display_temporary_notification.call_count)


class HealthTestCase(testutils.TestCase):
    def test_health(self):
        channel = FakeChannel(self.api.site, self.app.reactor)
        channel.process_request(b"GET", b"/health", BytesIO())

        self.assertTrue(channel.done)
        self.assertEqual(200, channel.code)
        self.assertEqual(b"", channel.response_body)


class SizeLimitTestCase(testutils.TestCase):
    def test_oversized_request_aborts_connection(self):
        transport = FakeTransport()
        channel = FakeChannel(self.api.site, self.app.reactor, transport=transport)
        request = self.api.site.requestFactory(channel)
        request.client = IPv4Address("TCP", "127.0.0.1", 58008)
        request.content = BytesIO()

        request.handleContentChunk(b"x" * 1024)
        self.assertFalse(transport.aborted)

        request.handleContentChunk(b"x" * SizeLimitingRequest.MAX_REQUEST_SIZE)

        self.assertTrue(transport.aborted)
        self.assertEqual(1024, request.content.tell())


class AccessLogTestCase(testutils.TestCase):
    def test_combined_log_format_by_default(self):
        self.assertIs(combinedLogFormatter, self.api.site.log_formatter)


class ForwardedForAccessLogTestCase(testutils.TestCase):
    def config_setup(self, config):
        super().config_setup(config)
        config["log"]["access"] = {"x_forwarded_for": True}

    def test_proxied_log_format(self):
        self.assertIs(proxiedLogFormatter, self.api.site.log_formatter)
