# Hook discovery and execution.
#
# Each configured root is a plain directory of executables, e.g.
#   /etc/connman-dispatcher/10-ntp  /etc/connman-dispatcher/50-vpn
#
# Execution order: **lexicographically ascending** (byte-wise) within a root,
# roots in the order they were given on the command line.  Every hook gets
#
#    argv[1]          = up | down
#    NETWORK_STATE    = <raw ConnMan state>
#    NETWORK_SSID     = <service Name, or "unknown">
#    CONNECTION_TYPE  = <service Type, or "unknown">
#
# on top of the daemon's own environment.  Hooks run one at a time and their
# exit status is only logged.

import logging
import os
import stat
import subprocess
from typing import Iterable, Mapping

log = logging.getLogger(__name__)


def is_executable(path: str) -> bool:
    """Regular file with at least one execute bit (user, group or other)."""
    try:
        st = os.stat(path)
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode) and bool(st.st_mode & 0o111)


def hook_environment(overlay: Mapping[str, str]) -> dict:
    env = os.environ.copy()
    env.update(overlay)
    return env


def run_hooks_in_dir(directory: str, action: str, overlay: Mapping[str, str],
                     logger: logging.Logger = log) -> None:
    try:
        names = os.listdir(directory)
    except OSError as exc:
        logger.error("failed to read hook directory %s: %s", directory, exc)
        return

    env = hook_environment(overlay)
    for name in sorted(names, key=os.fsencode):
        script = os.path.join(directory, name)
        if not is_executable(script):
            logger.debug("%s is not an executable file", script)
            continue
        logger.info("exec %s %s", script, action)
        try:
            proc = subprocess.run([script, action], env=env, check=False)
        except OSError as exc:
            logger.error("failed to run %s: %s", script, exc)
            continue
        if proc.returncode != 0:
            logger.error("%s %s exited with status %d", script, action, proc.returncode)


def run_hooks(roots: Iterable[str], action: str, overlay: Mapping[str, str],
              logger: logging.Logger = log) -> None:
    logger.debug("run_hooks ACTION=%s %s", action,
                 " ".join(f"{k}={v}" for k, v in overlay.items()))
    for root in roots:
        if not os.path.isdir(root):
            continue
        run_hooks_in_dir(root, action, overlay, logger)
