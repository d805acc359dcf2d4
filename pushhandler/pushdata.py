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
import re
from typing import Any, Dict, Optional, Type, TypeVar, overload

import attr

from pushhandler.exceptions import InvalidPushException

T = TypeVar("T")

EVENT_ID_PATTERN = re.compile(r"\A\$\S+\Z")
ROOM_ID_PATTERN = re.compile(r"\A![^:\s]+:\S+\Z")


@overload
def get_key(raw: Dict[str, Any], key: str, type_: Type[T], default: T) -> T: ...


@overload
def get_key(
    raw: Dict[str, Any], key: str, type_: Type[T], default: None = None
) -> Optional[T]: ...


def get_key(
    raw: Dict[str, Any], key: str, type_: Type[T], default: Optional[T] = None
) -> Optional[T]:
    if key not in raw or raw[key] is None:
        return default
    if not isinstance(raw[key], type_):
        raise InvalidPushException(f"{key} is of invalid type")
    return raw[key]


def is_event_id(value: Optional[str]) -> bool:
    return value is not None and EVENT_ID_PATTERN.match(value) is not None


def is_room_id(value: Optional[str]) -> bool:
    return value is not None and ROOM_ID_PATTERN.match(value) is not None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@attr.s(frozen=True, slots=True)
class PushData:
    """
    The content of a single push, as understood by the push handler.

    Identifiers which do not look like Matrix identifiers are dropped at
    parse time, so `event_id` and `room_id` are either well-formed or None.
    """

    event_id = attr.ib(type=Optional[str], default=None)
    room_id = attr.ib(type=Optional[str], default=None)
    unread = attr.ib(type=Optional[int], default=None)
    client_secret = attr.ib(type=Optional[str], default=None)
    prio = attr.ib(type=Optional[str], default=None)

    @classmethod
    def from_unified_push(cls, body: Dict[str, Any]) -> "PushData":
        """
        Parse the body of a UnifiedPush message, which carries a Push Gateway
        API notification object.

        Args:
            body: the decoded JSON body

        Returns:
            the push data

        Raises:
            InvalidPushException if a field is of the wrong type
        """
        notif = get_key(body, "notification", dict, {})

        event_id = get_key(notif, "event_id", str)
        room_id = get_key(notif, "room_id", str)
        counts = get_key(notif, "counts", dict, {})
        devices = get_key(notif, "devices", list, [])

        client_secret = None
        if devices:
            device = devices[0]
            if not isinstance(device, dict):
                raise InvalidPushException("Device is not an object")
            data = get_key(device, "data", dict, {})
            client_secret = get_key(data, "cs", str)

        return cls(
            event_id=event_id if is_event_id(event_id) else None,
            room_id=room_id if is_room_id(room_id) else None,
            unread=get_key(counts, "unread", int),
            client_secret=client_secret,
            prio=get_key(notif, "prio", str),
        )

    @classmethod
    def from_firebase(cls, data: Dict[str, Any]) -> "PushData":
        """
        Parse the data map of a Firebase message. All values are strings.
        """
        event_id = get_key(data, "event_id", str)
        room_id = get_key(data, "room_id", str)

        return cls(
            event_id=event_id if is_event_id(event_id) else None,
            room_id=room_id if is_room_id(room_id) else None,
            unread=_parse_int(get_key(data, "unread", str)),
            client_secret=get_key(data, "cs", str),
            prio=get_key(data, "prio", str),
        )
