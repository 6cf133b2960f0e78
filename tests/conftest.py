from __future__ import annotations

import os
from pathlib import Path

import pytest
from dbus_next import Message, MessageType, Variant

SERVICE_PATH = "/net/connman/service/wifi_0123456789ab_6d7973736964_managed_psk"
CONNMAN_OWNER = ":1.5"


class FakeBus:
    """Stands in for dbus_next.aio.MessageBus: canned replies keyed by member."""

    def __init__(self, replies: dict | None = None):
        self.replies = dict(replies or {})
        self.calls: list[Message] = []
        self.handlers = []
        self.disconnected = False

    async def call(self, msg: Message):
        self.calls.append(msg)
        reply = self.replies.get(msg.member)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def add_message_handler(self, handler) -> None:
        self.handlers.append(handler)

    def disconnect(self) -> None:
        self.disconnected = True


class FakeNotifier:
    def __init__(self):
        self.sent: list[str] = []

    def notify(self, state: str) -> None:
        self.sent.append(state)


def method_return(signature: str, body: list) -> Message:
    return Message(message_type=MessageType.METHOD_RETURN, reply_serial=1,
                   signature=signature, body=body)


def error_reply(name: str = "net.connman.Error.NotFound",
                text: str = "Service not found") -> Message:
    return Message(message_type=MessageType.ERROR, reply_serial=1,
                   error_name=name, signature="s", body=[text])


def properties_reply(**props: str) -> Message:
    return method_return("a{sv}", [{k: Variant("s", v) for k, v in props.items()}])


def property_changed(body: list, signature: str = "sv", path: str = SERVICE_PATH,
                     sender: str = CONNMAN_OWNER) -> Message:
    return Message(message_type=MessageType.SIGNAL, path=path, sender=sender,
                   interface="net.connman.Service", member="PropertyChanged",
                   signature=signature, body=body)


def state_changed(state: str, path: str = SERVICE_PATH,
                  sender: str = CONNMAN_OWNER) -> Message:
    return property_changed(["State", Variant("s", state)], path=path, sender=sender)


def name_owner_changed(old: str, new: str, name: str = "net.connman") -> Message:
    return Message(message_type=MessageType.SIGNAL, path="/org/freedesktop/DBus",
                   sender="org.freedesktop.DBus", interface="org.freedesktop.DBus",
                   member="NameOwnerChanged", signature="sss", body=[name, old, new])


def write_script(directory: Path, name: str, body: str, mode: int = 0o755) -> Path:
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    os.chmod(path, mode)
    return path


@pytest.fixture
def hook_log(tmp_path, monkeypatch) -> Path:
    """Log file every recording hook appends to; exported as HOOK_LOG."""
    log = tmp_path / "hooks.log"
    monkeypatch.setenv("HOOK_LOG", str(log))
    return log


def read_log(path: Path) -> list[str]:
    if not path.exists():
        return []
    return path.read_text().splitlines()
