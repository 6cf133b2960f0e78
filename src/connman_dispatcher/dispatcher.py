#!/usr/bin/env python3
# connman-dispatcher
#
# Execute user hooks when a ConnMan service changes State.
#
#   connman-dispatcher -p /usr/lib/connman-dispatcher -p /etc/connman-dispatcher
#
# Every directory given with -p is scanned on each transition (see hooks.py
# for ordering and the hook environment).  ConnMan states map onto actions:
#
#    ready, online  -> up
#    idle, offline  -> down
#    anything else  -> no hooks
#
# Signals are handled strictly one at a time; a slow hook delays the next
# transition.

import argparse
import asyncio
import collections
import logging
import sys
from typing import List, Optional

import sdnotify
from dbus_next import Message
from dbus_next.aio import MessageBus
from dbus_next.constants import BusType
from dbus_next.errors import DBusError

from connman_dispatcher import bus as connman
from connman_dispatcher.hooks import run_hooks
from connman_dispatcher.state import Action, ConnectivityEvent

QUEUE_SIZE = 10

log = logging.getLogger(__name__)


class SignalQueue:
    """Bounded FIFO between the bus reader and the single consumer.

    The bus delivers messages from a plain callback, so a full queue cannot
    block the caller directly.  Overflow goes to a backlog that a single
    feeder task moves into the queue with a blocking put(), so arrival order
    is kept and nothing is dropped.  The backlog itself is unbounded: the
    10-slot limit caps how much the consumer sees at once, not memory, which
    is bounded only by how fast the bus socket delivers signals.
    """

    def __init__(self, maxsize: int = QUEUE_SIZE):
        self._queue = asyncio.Queue(maxsize)
        self._backlog = collections.deque()
        self._feeder: Optional[asyncio.Task] = None

    def push(self, msg: Message) -> None:
        if not self._backlog:
            try:
                self._queue.put_nowait(msg)
                return
            except asyncio.QueueFull:
                pass
        self._backlog.append(msg)
        if self._feeder is None or self._feeder.done():
            self._feeder = asyncio.get_running_loop().create_task(self._feed())

    async def _feed(self) -> None:
        while self._backlog:
            await self._queue.put(self._backlog[0])
            self._backlog.popleft()

    async def get(self) -> Message:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every pushed message has been taken and marked done."""
        if self._feeder is not None:
            await self._feeder
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize() + len(self._backlog)


class SignalListener:
    def __init__(self, bus, roots: List[str], logger: logging.Logger = log,
                 notifier: Optional[sdnotify.SystemdNotifier] = None,
                 queue: Optional[SignalQueue] = None):
        self.bus = bus
        self.roots = list(roots)
        self.log = logger
        self.notifier = notifier or sdnotify.SystemdNotifier()
        self.queue = queue or SignalQueue()
        self.resolver = connman.MetadataResolver(bus, logger)
        self.owner: Optional[str] = None   # unique name of net.connman

    def on_message(self, msg: Message) -> None:
        new_owner = connman.connman_owner_changed(msg)
        if new_owner is not None:
            self.log.info("%s owner: %s", connman.CONNMAN_BUS, new_owner or "(none)")
            self.owner = new_owner or None
        elif connman.is_property_changed(msg, self.owner):
            self.queue.push(msg)

    async def subscribe(self) -> None:
        await connman.add_match(self.bus)
        await connman.add_match(self.bus, connman.OWNER_MATCH_RULE)
        self.bus.add_message_handler(self.on_message)
        try:
            self.owner = await connman.get_name_owner(self.bus)
        except DBusError as exc:
            # picked up from NameOwnerChanged once ConnMan starts
            self.log.warning("%s is not running: %s", connman.CONNMAN_BUS, exc)

    async def handle(self, msg: Message) -> None:
        try:
            change = connman.decode_state_change(msg)
        except connman.SignalDecodeError as exc:
            self.log.warning("%s: %s", msg.path, exc)
            return
        if change is None:
            return
        self.log.info("Network state changed to: %s (%s)", change.state, change.path)
        await self.dispatch(change.path, change.state)

    async def dispatch(self, path: str, state: str) -> None:
        name, ctype = await self.resolver.resolve(path)
        event = ConnectivityEvent(state=state, path=path, name=name, type=ctype)
        self.notifier.notify(f"STATUS={event.name}: {event.state}")

        action = event.action
        if action is Action.IGNORE:
            self.log.debug("%s: state %s needs no hooks", path, state)
            return
        run_hooks(self.roots, action.value, event.overlay(), self.log)

    async def run_startup_triggers(self) -> None:
        try:
            services = await connman.get_services(self.bus)
        except Exception as exc:
            self.log.error("Manager.GetServices failed: %s", exc)
            return
        if not services:
            self.log.info("no ConnMan services, skipping startup triggers")
            return
        path, props = services[0]
        state = connman.variant_str(props, "State")
        if state is None:
            self.log.warning("%s: default service has no State", path)
            return
        self.log.info("Startup state: %s (%s)", state, path)
        await self.dispatch(path, state)

    async def listen(self) -> None:
        while True:
            msg = await self.queue.get()
            try:
                await self.handle(msg)
            except Exception:
                self.log.exception("error handling signal from %s", msg.path)
            finally:
                self.queue.task_done()


async def main(args: argparse.Namespace) -> int:
    try:
        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    except Exception as exc:
        log.error("Failed to connect to system bus: %s", exc)
        return 1

    listener = SignalListener(bus, args.path)
    try:
        await listener.subscribe()
    except Exception as exc:
        log.error("Failed to add D-Bus signal match: %s", exc)
        return 1

    log.info("hook search path: %s", ":".join(listener.roots))
    log.info("Listening for network state changes...")
    if args.run_startup_triggers:
        await listener.run_startup_triggers()

    listener.notifier.notify("READY=1")
    await listener.listen()
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="ConnMan connectivity hook dispatcher")
    ap.add_argument("-p", "--path", action="append", metavar="PATH",
                    help="path to scripts directory; may be specified multiple times")
    ap.add_argument("-T", "--run-startup-triggers", action="store_true",
                    help="invoke hooks once for the current state on start")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)
    if not args.path:
        ap.error("no paths specified")
    return args


def cli_entry() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s: %(message)s")
    try:
        rc = asyncio.run(main(args))
    except KeyboardInterrupt:
        rc = 0
    sys.exit(rc)


if __name__ == "__main__":
    cli_entry()
