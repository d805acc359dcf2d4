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
import logging

from prometheus_client import Counter
from twisted.internet.defer import ensureDeferred
from twisted.web import server
from twisted.web.http import (
    combinedLogFormatter,
    datetimeToLogString,
    proxiedLogFormatter,
)
from twisted.web.resource import Resource

from pushhandler.exceptions import InvalidPushException
from pushhandler.pushdata import PushData
from pushhandler.utils import json_decoder

logger = logging.getLogger(__name__)

PUSH_HTTP_RESPONSES_COUNTER = Counter(
    "pushhandler_push_status_codes",
    "HTTP Response Codes given on the push endpoint",
    labelnames=["code"],
)


class PushReceiverHandler(Resource):
    """
    Receives pushes forwarded over HTTP, either as a UnifiedPush message (a
    Push Gateway API notification) or as a flat Firebase data map.
    """

    isLeaf = True

    def __init__(self, app):
        super().__init__()
        self.app = app

    def render_POST(self, request):
        response = self._handle_request(request)
        PUSH_HTTP_RESPONSES_COUNTER.labels(code=request.code).inc()
        return response

    def _handle_request(self, request):
        """
        Parse the push and hand it over to the push handler.
        Args:
            request (Request): The request, corresponding to a POST request.

        Returns:
            the response body.
        """
        try:
            body = json_decoder.decode(request.content.read().decode("utf-8"))
        except Exception as exc:
            msg = "Expected JSON request body"
            logger.warning(msg, exc_info=exc)
            request.setResponseCode(400)
            return msg.encode()

        if not isinstance(body, dict):
            msg = "Invalid push: expecting a JSON object"
            logger.warning(msg)
            request.setResponseCode(400)
            return msg.encode()

        try:
            if "notification" in body:
                push_data = PushData.from_unified_push(body)
            else:
                push_data = PushData.from_firebase(body)
        except InvalidPushException as e:
            logger.warning("Invalid push: %s", e)
            request.setResponseCode(400)
            return str(e).encode()

        # the push handler never fails, so there is nothing to wait for
        ensureDeferred(self.app.push_handler.handle(push_data))

        request.setHeader(b"Content-Type", b"application/json")
        return json.dumps({"rejected": []}).encode()


class HealthHandler(Resource):
    def render_GET(self, request):
        """
        `/health` is used for automatic checking of whether the service is up.
        It should just return a blank 200 OK response.
        """
        return b""


class SizeLimitingRequest(server.Request):
    # Arbitrarily limited to 512 KiB.
    MAX_REQUEST_SIZE = 512 * 1024

    def handleContentChunk(self, data):
        # we should have a content by now
        assert self.content, "handleContentChunk() called before gotLength()"
        if self.content.tell() + len(data) > self.MAX_REQUEST_SIZE:
            logger.info(
                "Aborting connection from %s because the request exceeds maximum size",
                self.client.host,
            )
            self.transport.abortConnection()
            return

        return super().handleContentChunk(data)


class PushLoggedSite(server.Site):
    """
    A subclass of Site which writes access logs through the `pushhandler.access`
    logger.
    """

    def __init__(self, *args, log_formatter, **kwargs):
        super().__init__(*args, **kwargs)
        self.log_formatter = log_formatter
        self.logger = logging.getLogger("pushhandler.access")

    def log(self, request):
        """Log this request. Called by request.finish."""
        # this also works around a bug in twisted.web.http.HTTPFactory which uses a
        # monotonic time as an epoch time.
        log_date_time = datetimeToLogString()
        line = self.log_formatter(log_date_time, request)
        self.logger.info("Handled request: %s", line)


class PushReceiverApiServer(object):
    def __init__(self, app):
        """
        Initialises the /_matrix/push/v1/notify push receiving server.
        Args:
            app (PushHandlerApp): the application object
        """
        root = Resource()
        matrix = Resource()
        push = Resource()
        v1 = Resource()

        # Note that using plain strings here will lead to silent failure
        root.putChild(b"_matrix", matrix)
        matrix.putChild(b"push", push)
        push.putChild(b"v1", v1)
        v1.putChild(b"notify", PushReceiverHandler(app))

        root.putChild(b"health", HealthHandler())

        use_x_forwarded_for = app.config["log"]["access"]["x_forwarded_for"]

        log_formatter = (
            proxiedLogFormatter if use_x_forwarded_for else combinedLogFormatter
        )

        self.site = PushLoggedSite(
            root,
            reactor=app.reactor,
            log_formatter=log_formatter,
            requestFactory=SizeLimitingRequest,
        )
