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
from twisted.trial import unittest

from pushhandler.exceptions import InvalidPushException
from pushhandler.pushdata import PushData, is_event_id, is_room_id

EVENT_ID = "$qTOWWTEL48yPm3uT-gdNhFcoHxfKbZuqRVnnWWSkGBs"
ROOM_ID = "!slw48wfj34rtnrf:example.com"


class MatrixIdTestCase(unittest.TestCase):
    def test_event_ids(self):
        self.assertTrue(is_event_id(EVENT_ID))
        self.assertTrue(is_event_id("$THIS_IS_A_FAKE_EVENT_ID"))
        self.assertFalse(is_event_id("qTOWWTEL48yPm3uT"))
        self.assertFalse(is_event_id("$"))
        self.assertFalse(is_event_id(None))

    def test_room_ids(self):
        self.assertTrue(is_room_id(ROOM_ID))
        self.assertFalse(is_room_id("!slw48wfj34rtnrf"))
        self.assertFalse(is_room_id("#exampleroom:matrix.org"))
        self.assertFalse(is_room_id(None))


class UnifiedPushTestCase(unittest.TestCase):
    def test_full_message(self):
        push_data = PushData.from_unified_push(
            {
                "notification": {
                    "event_id": EVENT_ID,
                    "room_id": ROOM_ID,
                    "prio": "high",
                    "counts": {"unread": 2, "missed_calls": 1},
                    "devices": [
                        {
                            "app_id": "io.element.android",
                            "pushkey": "spqr",
                            "data": {"cs": "secret"},
                        }
                    ],
                }
            }
        )

        self.assertEqual(
            PushData(
                event_id=EVENT_ID,
                room_id=ROOM_ID,
                unread=2,
                client_secret="secret",
                prio="high",
            ),
            push_data,
        )

    def test_empty_message(self):
        self.assertEqual(PushData(), PushData.from_unified_push({}))
        self.assertEqual(PushData(), PushData.from_unified_push({"notification": {}}))

    def test_invalid_ids_are_dropped(self):
        push_data = PushData.from_unified_push(
            {"notification": {"event_id": "event", "room_id": "room"}}
        )

        self.assertIsNone(push_data.event_id)
        self.assertIsNone(push_data.room_id)

    def test_client_secret_from_first_device(self):
        push_data = PushData.from_unified_push(
            {
                "notification": {
                    "devices": [{"data": {"cs": "first"}}, {"data": {"cs": "second"}}]
                }
            }
        )

        self.assertEqual("first", push_data.client_secret)

    def test_device_without_data(self):
        push_data = PushData.from_unified_push(
            {"notification": {"devices": [{"pushkey": "spqr"}]}}
        )

        self.assertIsNone(push_data.client_secret)

    def test_null_fields(self):
        push_data = PushData.from_unified_push(
            {"notification": {"event_id": None, "counts": None}}
        )

        self.assertEqual(PushData(), push_data)

    def test_wrong_types(self):
        for notification in (
            {"event_id": 42},
            {"counts": {"unread": "2"}},
            {"devices": {"cs": "secret"}},
            {"devices": ["secret"]},
            {"devices": [{"data": {"cs": 42}}]},
        ):
            with self.assertRaises(InvalidPushException):
                PushData.from_unified_push({"notification": notification})

    def test_notification_not_an_object(self):
        with self.assertRaises(InvalidPushException):
            PushData.from_unified_push({"notification": "hello"})


class FirebaseTestCase(unittest.TestCase):
    def test_full_message(self):
        push_data = PushData.from_firebase(
            {
                "event_id": EVENT_ID,
                "room_id": ROOM_ID,
                "unread": "3",
                "prio": "normal",
                "cs": "secret",
            }
        )

        self.assertEqual(
            PushData(
                event_id=EVENT_ID,
                room_id=ROOM_ID,
                unread=3,
                client_secret="secret",
                prio="normal",
            ),
            push_data,
        )

    def test_unread_not_a_number(self):
        push_data = PushData.from_firebase({"unread": "lots"})

        self.assertIsNone(push_data.unread)

    def test_invalid_ids_are_dropped(self):
        push_data = PushData.from_firebase({"event_id": "42", "room_id": "!nope"})

        self.assertIsNone(push_data.event_id)
        self.assertIsNone(push_data.room_id)

    def test_values_must_be_strings(self):
        with self.assertRaises(InvalidPushException):
            PushData.from_firebase({"unread": 3})

    def test_push_data_is_immutable(self):
        push_data = PushData.from_firebase({"event_id": EVENT_ID})

        with self.assertRaises(AttributeError):
            push_data.event_id = "$another"  # type: ignore[misc]
