import os
import platform
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Callable, List, Optional

from bastion_ssm.config import AWS_CLI, PLUGIN_DOWNLOAD_BASE, SESSION_PLUGIN
from bastion_ssm.errors import MissingDependencyError, PluginInstallError, UnsupportedPlatformError
from bastion_ssm.logger import LoggerDefinition

logger = LoggerDefinition.logger()

ARM_MACHINES = ("aarch64", "arm64")


def _is_arm(machine: str) -> bool:
    return machine.lower() in ARM_MACHINES


def _download(url: str, filename: str) -> str:
    destination = os.path.join(tempfile.gettempdir(), filename)
    logger.info(f"Downloading {url}")
    subprocess.run(["curl", "-s", url, "-o", destination], check=True)
    return destination


def install_rpm(machine: str):
    arch_dir = "linux_arm64" if _is_arm(machine) else "linux_amd64"
    package = _download(f"{PLUGIN_DOWNLOAD_BASE}/{arch_dir}/{SESSION_PLUGIN}.rpm", f"{SESSION_PLUGIN}.rpm")
    subprocess.run(["sudo", "yum", "install", "-y", package], check=True)


def install_deb(machine: str):
    arch_dir = "ubuntu_arm64" if _is_arm(machine) else "ubuntu_64bit"
    package = _download(f"{PLUGIN_DOWNLOAD_BASE}/{arch_dir}/{SESSION_PLUGIN}.deb", f"{SESSION_PLUGIN}.deb")
    try:
        subprocess.run(["sudo", "dpkg", "-i", package], check=True)
    except subprocess.CalledProcessError:
        logger.warning("dpkg failed, trying to fix dependencies with apt-get")
        subprocess.run(["sudo", "apt-get", "install", "-f", "-y"], check=True)


def install_brew(machine: str):
    subprocess.run(["brew", "install", SESSION_PLUGIN], check=True)


@dataclass(frozen=True)
class PluginInstaller:
    system: str
    package_manager: str
    install: Callable[[str], None]


# Tried in order; the first whose system matches and whose package manager is on PATH wins.
PLUGIN_INSTALLERS: List[PluginInstaller] = [
    PluginInstaller("linux", "yum", install_rpm),
    PluginInstaller("linux", "apt-get", install_deb),
    PluginInstaller("darwin", "brew", install_brew),
]

UNSUPPORTED_MESSAGES = {
    "linux": "Linux distribution not supported automatically. Install the plugin manually.",
    "darwin": "Homebrew not found. Install the plugin manually on macOS.",
}


class DependencyBootstrapper:
    """
    Makes sure the `aws` CLI and the Session Manager plugin are available before any
    session is attempted. Installing the plugin is skipped when it is already on PATH.
    """

    def __init__(self, installers: Optional[List[PluginInstaller]] = None):
        self.installers = PLUGIN_INSTALLERS if installers is None else installers
        self.logger = logger

    def bootstrap(self):
        self.ensure_aws_cli()
        self.ensure_session_plugin()

    def ensure_aws_cli(self):
        if shutil.which(AWS_CLI) is None:
            raise MissingDependencyError("aws CLI not found. Install AWS CLI v2 first.")

    def ensure_session_plugin(self) -> bool:
        """
        Installs the Session Manager plugin when it is missing.

        Returns:
            bool: True if an installation ran, False if the plugin was already present.

        Raises:
            UnsupportedPlatformError: If no installer applies to this OS/distribution.
            PluginInstallError: If the selected installer fails.
        """
        if shutil.which(SESSION_PLUGIN) is not None:
            self.logger.info(f"{SESSION_PLUGIN} already installed.")
            return False

        self.logger.warning(f"{SESSION_PLUGIN} not found. Installing...")
        system = platform.system().lower()
        machine = platform.machine()
        installer = self.select_installer(system)

        try:
            installer.install(machine)
        except (subprocess.CalledProcessError, OSError) as e:
            raise PluginInstallError(f"{SESSION_PLUGIN} installation with {installer.package_manager} failed: {e}. Install the plugin manually.") from e

        self.logger.info(f"{SESSION_PLUGIN} installed successfully.")
        return True

    def select_installer(self, system: str) -> PluginInstaller:
        for installer in self.installers:
            if installer.system == system and shutil.which(installer.package_manager) is not None:
                return installer

        raise UnsupportedPlatformError(
            UNSUPPORTED_MESSAGES.get(system, f"OS not supported automatically ({system}). Install the plugin manually.")
        )
