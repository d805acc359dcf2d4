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


class InvalidPushException(Exception):
    pass


class ServiceSetupException(Exception):
    pass


class SessionRestoreException(Exception):
    """
    Raised by authentication services when stored credentials for a user
    cannot be turned back into a session.
    """

    def __init__(self, user_id: str, *args: object) -> None:
        super().__init__(user_id, *args)
        self.user_id = user_id
