#!/usr/bin/env python3
#
# connman-status
# Ask ConnMan for its services and print a one-line summary per service,
# default service first.  Useful for checking what the dispatcher will see.
#
# Output:
#     NAME             TYPE       STATE    ACTION
#     Wired            ethernet   online   up
#     myssid           wifi       idle     down

import argparse
import asyncio
import sys

from dbus_next.aio import MessageBus
from dbus_next.constants import BusType

from connman_dispatcher.bus import get_services, variant_str
from connman_dispatcher.state import UNKNOWN, map_state


def format_rows(services, show_header: bool = True):
    if show_header:
        yield f"{'NAME':16} {'TYPE':10} {'STATE':8} ACTION"
    for _path, props in services:
        name = variant_str(props, "Name") or UNKNOWN
        ctype = variant_str(props, "Type") or UNKNOWN
        state = variant_str(props, "State") or UNKNOWN
        yield f"{name:16} {ctype:10} {state:8} {map_state(state).value}"


async def main(show_header: bool) -> None:
    bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    try:
        services = await get_services(bus)
    finally:
        bus.disconnect()
    for line in format_rows(services, show_header):
        print(line)


def cli_entry() -> None:
    parser = argparse.ArgumentParser(
        description="Display current ConnMan service states")
    parser.add_argument("-H", "--no-header", action="store_true",
                        help="suppress header row")
    args = parser.parse_args()

    try:
        asyncio.run(main(not args.no_header))
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        print(f"connman-status: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli_entry()
