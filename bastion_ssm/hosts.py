import os
import shutil
import subprocess
import time
from typing import List, Optional

from bastion_ssm.config import DEFAULT_HOSTS_FILE, LOOPBACK_ADDRESS
from bastion_ssm.errors import LauncherError
from bastion_ssm.logger import LoggerDefinition


def _maps_alias(line: str, alias: str) -> bool:
    fields = line.split("#", 1)[0].split()
    return len(fields) > 1 and alias in fields[1:]


def strip_alias(content: str, alias: str) -> str:
    lines = content.splitlines(keepends=True)
    return "".join(line for line in lines if not _maps_alias(line, alias))


def append_alias(content: str, alias: str, address: str = LOOPBACK_ADDRESS) -> str:
    if content and not content.endswith("\n"):
        content += "\n"
    return f"{content}{address} {alias}\n"


class HostsAlias:
    """
    Scoped mutation of the hosts file mapping a short alias to the loopback address.

    Entering backs the file up, drops any previous mapping for the alias and appends
    `127.0.0.1 <alias>`. Leaving removes the mapping again when remove_on_exit is set,
    whatever way the block is left. Files we cannot write are handled through sudo.
    """

    def __init__(self, alias: str, hosts_path: str = DEFAULT_HOSTS_FILE, remove_on_exit: bool = True):
        self.alias = alias
        self.hosts_path = hosts_path
        self.remove_on_exit = remove_on_exit
        self.backup_path: Optional[str] = None
        self.logger = LoggerDefinition.logger()

    def __enter__(self):
        if not self.alias:
            raise LauncherError("Cannot derive a host alias: the forwarded host name must not start with a period.")

        self.backup_path = self.backup()
        try:
            content = self._read()
            self._write(append_alias(strip_alias(content, self.alias), self.alias))
        except (OSError, subprocess.CalledProcessError) as e:
            raise LauncherError(f"Could not add alias '{self.alias}' to {self.hosts_path}: {e}") from e
        self.logger.info(f"Alias created: {self.alias} -> {LOOPBACK_ADDRESS}")
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if not self.remove_on_exit:
            return False

        self.logger.info("Cleaning up host alias...")
        try:
            self.remove()
        except (OSError, subprocess.CalledProcessError) as e:
            self.logger.error(f"Could not remove alias '{self.alias}' from {self.hosts_path}: {e}")
            return False

        self.logger.info(f"Alias '{self.alias}' removed")
        return False

    def remove(self):
        content = self._read()
        stripped = strip_alias(content, self.alias)
        if stripped != content:
            self._write(stripped)

    def backup(self) -> Optional[str]:
        backup_path = f"{self.hosts_path}.backup.{int(time.time())}"
        try:
            self._copy(self.hosts_path, backup_path)
        except (OSError, subprocess.CalledProcessError) as e:
            self.logger.warning(f"Could not back up {self.hosts_path}: {e}")
            return None
        return backup_path

    def _read(self) -> str:
        with open(self.hosts_path, "r") as hosts_file:
            return hosts_file.read()

    def _write(self, content: str):
        if os.access(self.hosts_path, os.W_OK):
            with open(self.hosts_path, "w") as hosts_file:
                hosts_file.write(content)
            return

        subprocess.run(self._sudo(["tee", self.hosts_path]), input=content, text=True,
                       stdout=subprocess.DEVNULL, check=True)

    def _copy(self, source: str, destination: str):
        if os.access(os.path.dirname(os.path.abspath(destination)), os.W_OK):
            shutil.copy2(source, destination)
            return

        subprocess.run(self._sudo(["cp", source, destination]), check=True)

    @staticmethod
    def _sudo(command: List[str]) -> List[str]:
        return ["sudo"] + command
