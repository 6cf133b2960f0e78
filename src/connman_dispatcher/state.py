# Map ConnMan service states onto hook actions.
#
# ConnMan service states (doc/service-api.txt):
#   idle, failure, association, configuration, ready, disconnect, online
# Only the two ends of a transition are interesting to hooks.

import dataclasses
import enum


class Action(enum.Enum):
    UP = "up"
    DOWN = "down"
    IGNORE = "ignore"


UP_STATES   = frozenset({"ready", "online"})
DOWN_STATES = frozenset({"idle", "offline"})


def map_state(state: str) -> Action:
    if state in UP_STATES:
        return Action.UP
    if state in DOWN_STATES:
        return Action.DOWN
    return Action.IGNORE


UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True)
class ConnectivityEvent:
    """One accepted State change, alive only while its hooks run."""
    state: str
    path: str
    name: str = UNKNOWN
    type: str = UNKNOWN

    @property
    def action(self) -> Action:
        return map_state(self.state)

    def overlay(self) -> dict:
        return {
            "NETWORK_STATE":   self.state,
            "NETWORK_SSID":    self.name,
            "CONNECTION_TYPE": self.type,
        }
