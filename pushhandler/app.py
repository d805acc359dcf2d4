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
import copy
import importlib
import logging
import logging.config
import os
import sys
from typing import Any, Dict, Generator, Optional, Set, cast

import opentracing
import prometheus_client
import yaml
from opentracing import Tracer
from opentracing.scope_managers.asyncio import AsyncioScopeManager
from twisted.internet import asyncioreactor, defer
from twisted.internet.defer import Deferred, ensureDeferred
from twisted.internet.interfaces import (
    IReactorCore,
    IReactorFDSet,
    IReactorTCP,
    IReactorTime,
)
from twisted.python import log as twisted_log
from twisted.python.failure import Failure
from zope.interface import Interface

from pushhandler.handler import PushHandler
from pushhandler.http import PushReceiverApiServer
from pushhandler.services import (
    AuthenticationService,
    LifecycleObserver,
    LocalBroadcastManager,
    NotificationDrawerManager,
    PushClientSecret,
    PushDataStore,
    Service,
)

logger = logging.getLogger(__name__)

CONFIG_DEFAULTS: Dict[str, Any] = {
    "http": {"port": 5000, "bind_addresses": ["127.0.0.1"]},
    "log": {
        "setup": {},
        "access": {"x_forwarded_for": False},
        "low_privacy": False,
    },
    "metrics": {
        "prometheus": {"enabled": False, "address": "127.0.0.1", "port": 8000},
        "opentracing": {
            "enabled": False,
            "implementation": None,
            "jaeger": {},
            "service_name": "pushhandler",
        },
        "sentry": {"enabled": False},
    },
    "push": {"app_id": "io.element.android", "display_resolved_content": False},
    "services": {
        "store": {"type": "memory"},
        "client_secret": {"type": "memory"},
        "authentication": {"type": "memory"},
        "notification_drawer": {"type": "memory"},
        "lifecycle": {"type": "memory"},
    },
}

# The interface each entry of the `services` section must implement.
SERVICE_INTERFACES = {
    "store": PushDataStore,
    "client_secret": PushClientSecret,
    "authentication": AuthenticationService,
    "notification_drawer": NotificationDrawerManager,
    "lifecycle": LifecycleObserver,
}


class PushHandlerReactor(
    IReactorFDSet,
    IReactorTCP,
    IReactorCore,
    IReactorTime,
    Interface,
):
    pass


class PushHandlerApp:
    def __init__(
        self,
        config: Dict[str, Any],
        custom_reactor: PushHandlerReactor,
        tracer: Tracer = opentracing.tracer,
    ):
        """
        Object that holds state for the entirety of a push handler instance.
        Args:
            config: Configuration for this instance
            custom_reactor: a Twisted Reactor to use.
            tracer (optional): an OpenTracing tracer. The default is the no-op tracer.
        """
        self.config = config
        self.reactor = custom_reactor
        self.tracer = tracer
        self.services: Dict[str, Service] = {}
        self.broadcast_manager = LocalBroadcastManager()
        self.push_handler: Optional[PushHandler] = None

        logging_dict_config = config["log"]["setup"]
        logging.config.dictConfig(logging_dict_config)

        logger.debug("Started logging")

        observer = twisted_log.PythonLoggingObserver()
        observer.start()

        self.low_privacy_logging = config["log"]["low_privacy"] is True
        if self.low_privacy_logging:
            logger.warning(
                "Low privacy logging is enabled: push contents will be logged"
            )

        sentrycfg = config["metrics"]["sentry"]
        if sentrycfg["enabled"] is True:
            import sentry_sdk

            logger.info("Initialising Sentry")
            sentry_sdk.init(sentrycfg["dsn"])

        promcfg = config["metrics"]["prometheus"]
        if promcfg["enabled"] is True:
            prom_addr = promcfg["address"]
            prom_port = int(promcfg["port"])
            logger.info(
                "Starting Prometheus Server on %s port %d", prom_addr, prom_port
            )

            prometheus_client.start_http_server(port=prom_port, addr=prom_addr or "")

        tracecfg = config["metrics"]["opentracing"]
        if tracecfg["enabled"] is True:
            if tracecfg["implementation"] == "jaeger":
                try:
                    import jaeger_client

                    jaeger_cfg = jaeger_client.Config(
                        config=tracecfg["jaeger"],
                        service_name=tracecfg["service_name"],
                        scope_manager=AsyncioScopeManager(),
                    )

                    jaeger_tracer = jaeger_cfg.initialize_tracer()
                    assert jaeger_tracer is not None
                    self.tracer = jaeger_tracer

                    logger.info("Enabled OpenTracing support with Jaeger")
                except ModuleNotFoundError:
                    logger.critical(
                        "You have asked for OpenTracing with Jaeger but do not have"
                        " the Python package 'jaeger_client' installed."
                    )
                    raise
            else:
                raise RuntimeError(
                    "Unknown OpenTracing implementation: %s."
                    % (tracecfg["implementation"],)
                )

    async def _make_service(self, role: str, service_config: Dict[str, Any]) -> Service:
        """
        Load and instantiate a service.
        Args:
            role: The key of the service in the `services` section
            service_config: The service's configuration

        Returns:
            A service implementing the interface for this role.
        """
        interface = SERVICE_INTERFACES[role]
        service_type = service_config["type"]
        if "." in service_type:
            kind_split = service_type.rsplit(".", 1)
            to_import = kind_split[0]
            to_construct = kind_split[1]
        else:
            to_import = f"pushhandler.{service_type}"
            to_construct = f"{service_type.capitalize()}{interface.__name__}"

        logger.info("Importing service module: %s", to_import)
        service_module = importlib.import_module(to_import)
        logger.info("Creating %s service: %s", role, to_construct)
        clarse = getattr(service_module, to_construct)
        if not issubclass(clarse, interface):
            raise RuntimeError(
                "%s does not implement %s" % (service_type, interface.__name__)
            )
        return await clarse.create(role, self, service_config)

    async def make_services(self) -> None:
        for role, service_cfg in self.config["services"].items():
            if role not in SERVICE_INTERFACES:
                # check_config has already warned about it
                continue
            try:
                self.services[role] = await self._make_service(role, service_cfg)
            except Exception:
                logger.error(
                    "Failed to load and create service '%s' of type '%s'",
                    role,
                    service_cfg.get("type"),
                )
                raise

        push_cfg = self.config["push"]
        self.push_handler = PushHandler(
            reactor=self.reactor,
            push_data_store=cast(PushDataStore, self.services["store"]),
            push_client_secret=cast(PushClientSecret, self.services["client_secret"]),
            authentication_service=cast(
                AuthenticationService, self.services["authentication"]
            ),
            notification_drawer_manager=cast(
                NotificationDrawerManager, self.services["notification_drawer"]
            ),
            lifecycle_observer=cast(LifecycleObserver, self.services["lifecycle"]),
            broadcast_manager=self.broadcast_manager,
            app_id=push_cfg["app_id"],
            low_privacy_logging=self.low_privacy_logging,
            display_resolved_content=push_cfg["display_resolved_content"] is True,
            tracer=self.tracer,
        )

        logger.info("Configured services: %r", list(self.services.keys()))

    async def make_services_then_start(self) -> None:
        await self.make_services()

        api = PushReceiverApiServer(self)
        port = int(self.config["http"]["port"])
        for interface in self.config["http"]["bind_addresses"]:
            logger.info("Starting listening on %s port %d", interface, port)
            self.reactor.listenTCP(port, api.site, 50, interface=interface)

    def run(self) -> None:
        """
        Attempt to run the push handler and then exit the application.
        """

        @defer.inlineCallbacks
        def start() -> Generator[Deferred[Any], Any, Any]:
            try:
                yield ensureDeferred(self.make_services_then_start())
            except Exception:
                # Print the exception and bail out.
                print("Error during startup:", file=sys.stderr)

                # this gives better tracebacks than traceback.print_exc()
                Failure().printTraceback(file=sys.stderr)

                if self.reactor.running:
                    self.reactor.stop()

        self.reactor.callWhenRunning(start)
        self.reactor.run()


def parse_config() -> Dict[str, Any]:
    """
    Find and load the configuration file.
    Returns:
        A loaded configuration.
    """
    config_path = os.getenv("PUSHHANDLER_CONF", "pushhandler.yaml")
    print("Using configuration file: %s" % config_path, file=sys.stderr)
    try:
        with open(config_path) as file_handle:
            return yaml.safe_load(file_handle)
    except FileNotFoundError:
        logger.critical(
            "Could not find configuration file!\n" "Path: %s\n" "Absolute Path: %s",
            config_path,
            os.path.realpath(config_path),
        )
        raise


def check_config(config: Dict[str, Any]) -> None:
    """
    Lightly check the configuration and issue warnings as appropriate.
    Args:
        config: The loaded configuration.
    """
    UNDERSTOOD_CONFIG_FIELDS = CONFIG_DEFAULTS.keys()

    def check_section(
        section_name: str, known_keys: Set[str], cfgpart: Dict[str, Any] = config
    ) -> None:
        nonunderstood = set(cfgpart[section_name].keys()).difference(known_keys)
        if len(nonunderstood) > 0:
            logger.warning(
                f"The following configuration fields in '{section_name}' "
                f"are not understood: %s",
                nonunderstood,
            )

    nonunderstood = set(config.keys()).difference(UNDERSTOOD_CONFIG_FIELDS)
    if len(nonunderstood) > 0:
        logger.warning(
            "The following configuration sections are not understood: %s", nonunderstood
        )

    check_section("http", {"port", "bind_addresses"})
    check_section("log", {"setup", "access", "low_privacy"})
    check_section("access", {"x_forwarded_for"}, cfgpart=config["log"])
    check_section("metrics", {"opentracing", "sentry", "prometheus"})
    check_section(
        "opentracing",
        {"enabled", "implementation", "jaeger", "service_name"},
        cfgpart=config["metrics"],
    )
    check_section(
        "prometheus", {"enabled", "address", "port"}, cfgpart=config["metrics"]
    )
    check_section("sentry", {"enabled", "dsn"}, cfgpart=config["metrics"])
    check_section("push", {"app_id", "display_resolved_content"})
    check_section("services", set(SERVICE_INTERFACES.keys()))


def merge_left_with_defaults(
    defaults: Dict[str, Any], loaded_config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Merge two configurations, with one of them overriding the other.
    Args:
        defaults: A configuration of defaults
        loaded_config: A configuration, as loaded from disk.

    Returns:
        A merged configuration, with loaded_config preferred over defaults.
    """
    result = defaults.copy()

    if loaded_config is None:
        return result

    # copy defaults or override them
    for k, v in result.items():
        if isinstance(v, dict):
            if k in loaded_config:
                result[k] = merge_left_with_defaults(v, loaded_config[k])
            else:
                result[k] = copy.deepcopy(v)
        elif k in loaded_config:
            result[k] = loaded_config[k]

    # copy things with no defaults
    for k, v in loaded_config.items():
        if k not in result:
            result[k] = v

    return result


def main() -> None:
    asyncioreactor.install()

    config = parse_config()
    config = merge_left_with_defaults(CONFIG_DEFAULTS, config)
    check_config(config)
    custom_reactor = cast(PushHandlerReactor, asyncioreactor.AsyncioSelectorReactor())
    app = PushHandlerApp(config, custom_reactor)
    app.run()


if __name__ == "__main__":
    main()
