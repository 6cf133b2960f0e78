# ConnMan D-Bus boundary.
#
# Everything that touches raw dbus_next values lives here: the signal match
# rule, decoding of Service.PropertyChanged payloads and the GetProperties
# metadata lookup.  Callers only ever see plain strings.
#
# https://git.kernel.org/pub/scm/network/connman/connman.git/tree/doc/service-api.txt
# https://git.kernel.org/pub/scm/network/connman/connman.git/tree/doc/manager-api.txt

from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional, Tuple

from dbus_next import Message, MessageType, Variant
from dbus_next.constants import MessageFlag
from dbus_next.errors import DBusError

from .state import UNKNOWN

CONNMAN_BUS     = "net.connman"
CONNMAN_MANAGER = "net.connman.Manager"
CONNMAN_SERVICE = "net.connman.Service"
MANAGER_PATH    = "/"

DBUS_BUS   = "org.freedesktop.DBus"
DBUS_PATH  = "/org/freedesktop/DBus"

MATCH_RULE = (f"type='signal',sender='{CONNMAN_BUS}',"
              f"interface='{CONNMAN_SERVICE}',member='PropertyChanged'")
OWNER_MATCH_RULE = (f"type='signal',sender='{DBUS_BUS}',interface='{DBUS_BUS}',"
                    f"member='NameOwnerChanged',arg0='{CONNMAN_BUS}'")

log = logging.getLogger(__name__)


class SignalDecodeError(ValueError):
    """A PropertyChanged("State", ...) signal with a payload of the wrong type."""


@dataclasses.dataclass(frozen=True)
class StateChange:
    path: str
    state: str


def is_property_changed(msg: Message, owner: Optional[str]) -> bool:
    """Service.PropertyChanged sent by the current owner of net.connman.

    The match rule only limits what the bus daemon broadcasts to us; a peer
    can still unicast a look-alike signal, so the sender is checked here.
    """
    return (msg.message_type == MessageType.SIGNAL
            and owner is not None
            and msg.sender == owner
            and msg.interface == CONNMAN_SERVICE
            and msg.member == "PropertyChanged")


def connman_owner_changed(msg: Message) -> Optional[str]:
    """New owner from a NameOwnerChanged for net.connman, "" when it went away.

    None for any other message.
    """
    if (msg.message_type != MessageType.SIGNAL
            or msg.sender != DBUS_BUS
            or msg.interface != DBUS_BUS
            or msg.member != "NameOwnerChanged"
            or msg.signature != "sss"):
        return None
    name, _old, new = msg.body
    if name != CONNMAN_BUS:
        return None
    return new


def decode_state_change(msg: Message) -> Optional[StateChange]:
    """Turn a Service.PropertyChanged signal into a StateChange.

    Returns None for signals that are simply not about State (short body,
    other property).  Raises SignalDecodeError when State arrives with a
    value that is not a string variant.
    """
    body = msg.body
    if len(body) < 2:
        return None
    prop = body[0]
    if not isinstance(prop, str) or prop != "State":
        return None
    value = body[1]
    if not isinstance(value, Variant):
        raise SignalDecodeError(
            f"unexpected variant type for State: {type(value).__name__}")
    if value.signature != "s" or not isinstance(value.value, str):
        raise SignalDecodeError(
            f"unexpected variant value type for State: {value.signature}")
    return StateChange(path=msg.path, state=value.value)


def variant_str(props, key: str) -> Optional[str]:
    var = props.get(key)
    if isinstance(var, Variant) and var.signature == "s" and isinstance(var.value, str):
        return var.value
    return None


def _check(reply: Optional[Message]) -> Message:
    if reply is None:
        raise DBusError("org.freedesktop.DBus.Error.NoReply", "no reply")
    if reply.message_type == MessageType.ERROR:
        raise DBusError._from_message(reply)
    return reply


async def add_match(bus, rule: str = MATCH_RULE) -> None:
    call = Message(
        destination=DBUS_BUS,
        path=DBUS_PATH,
        interface=DBUS_BUS,
        member="AddMatch",
        signature="s",
        body=[rule],
    )
    _check(await bus.call(call))


async def get_name_owner(bus, name: str = CONNMAN_BUS) -> str:
    """Unique name currently owning `name`; DBusError if nobody does."""
    call = Message(
        destination=DBUS_BUS,
        path=DBUS_PATH,
        interface=DBUS_BUS,
        member="GetNameOwner",
        signature="s",
        body=[name],
    )
    reply = _check(await bus.call(call))
    if reply.signature != "s":
        raise DBusError("org.freedesktop.DBus.Error.InvalidSignature",
                        f"unexpected GetNameOwner signature {reply.signature!r}")
    return reply.body[0]


async def get_services(bus) -> List[Tuple[str, dict]]:
    """Manager.GetServices(): [(path, {prop: Variant})], default service first."""
    call = Message(
        destination=CONNMAN_BUS,
        path=MANAGER_PATH,
        interface=CONNMAN_MANAGER,
        member="GetServices",
        flags=MessageFlag.NO_AUTOSTART,
    )
    reply = _check(await bus.call(call))
    if not reply.body or not isinstance(reply.body[0], list):
        raise DBusError("org.freedesktop.DBus.Error.InvalidSignature",
                        f"unexpected GetServices signature {reply.signature!r}")
    return [(path, props) for path, props in reply.body[0]]


class MetadataResolver:
    """Look up Name and Type of the service that emitted a signal.

    `bus` only needs an awaitable `call(Message) -> Message`; in production
    that is a connected dbus_next.aio.MessageBus.  Any failure yields
    ("unknown", "unknown") so hook dispatch never waits on metadata.
    """

    def __init__(self, bus, logger: logging.Logger = log):
        self.bus = bus
        self.log = logger

    async def resolve(self, path: str) -> Tuple[str, str]:
        call = Message(
            destination=CONNMAN_BUS,
            path=path,
            interface=CONNMAN_SERVICE,
            member="GetProperties",
            flags=MessageFlag.NO_AUTOSTART,
        )
        try:
            reply = _check(await self.bus.call(call))
        except Exception as exc:
            self.log.warning("Service.GetProperties on %s failed: %s", path, exc)
            return UNKNOWN, UNKNOWN

        if not reply.body:
            self.log.warning("Service.GetProperties on %s returned nothing", path)
            return UNKNOWN, UNKNOWN
        props = reply.body[0]
        if not isinstance(props, dict):
            self.log.warning("unexpected Service.GetProperties return type for %s: %s",
                             path, type(props).__name__)
            return UNKNOWN, UNKNOWN

        name = variant_str(props, "Name")
        ctype = variant_str(props, "Type")
        if name is None or ctype is None:
            # hidden wifi networks have no Name
            self.log.debug("%s: Name/Type missing from properties", path)
            return UNKNOWN, UNKNOWN
        return name, ctype
