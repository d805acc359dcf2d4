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
import json
from logging import LoggerAdapter
from typing import Any, MutableMapping, Tuple

PUSH_LOGGER_TAG = "Push"


class TaggedLoggerAdapter(LoggerAdapter):
    """
    Prefixes every message with the subsystem tags given in `extra["tags"]`,
    e.g. `[Push] [PushHandler] message`.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> Tuple[str, MutableMapping[str, Any]]:
        assert self.extra
        prefix = " ".join(f"[{tag}]" for tag in self.extra["tags"])
        return f"{prefix} {msg}", kwargs


def push_logger(logger: Any, name: str) -> TaggedLoggerAdapter:
    return TaggedLoggerAdapter(logger, {"tags": (PUSH_LOGGER_TAG, name)})


def _reject_invalid_json(val: Any) -> None:
    """Do not allow Infinity, -Infinity, or NaN values in JSON."""
    raise ValueError(f"Invalid JSON value: {val!r}")


# a custom JSON decoder which will reject Python extensions to JSON.
json_decoder = json.JSONDecoder(parse_constant=_reject_invalid_json)
