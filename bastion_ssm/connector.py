import sys

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bastion_ssm.config import DEFAULT_HOSTS_FILE, ConnectionParameters, ForwardingParameters
from bastion_ssm.credentials import AwsContext, CredentialEstablisher
from bastion_ssm.ec2_utils import BastionDefinition
from bastion_ssm.errors import LauncherError
from bastion_ssm.hosts import HostsAlias
from bastion_ssm.logger import LoggerDefinition
from bastion_ssm.plugin import DependencyBootstrapper
from bastion_ssm.ssm_conn import (
    INTERRUPTED_EXIT_CODE,
    is_local_port_in_use,
    port_forwarding_command,
    session_command,
    ssm_agent_background,
    ssm_agent_conn,
)

class ConnectorDefinition:
    """
    ConnectorDefinition drives one launcher run from parsed flags to a finished session:
    it bootstraps the local tooling, establishes the AWS context, resolves the bastion
    and then opens either an interactive SSM shell or a port-forwarding tunnel.
    """

    def __init__(self, bootstrapper: DependencyBootstrapper = None, establisher: CredentialEstablisher = None,
                 hosts_path: str = DEFAULT_HOSTS_FILE):
        """
        Initializes the connector. Collaborators can be swapped, which the tests rely on.

        Parameters:
            bootstrapper (DependencyBootstrapper, optional): Checks the aws CLI and the plugin.
            establisher (CredentialEstablisher, optional): Builds the AwsContext.
            hosts_path (str, optional): Hosts file used for --custom-host aliases.
        """
        self.bootstrapper = bootstrapper or DependencyBootstrapper()
        self.establisher = establisher or CredentialEstablisher()
        self.hosts_path = hosts_path
        self.logger = LoggerDefinition.logger()
        self.console = Console()

    def handle_connection(self, connection: ConnectionParameters, forwarding: ForwardingParameters):
        """
        Runs the whole launcher flow and terminates the process with its exit code.

        Parameters:
            connection (ConnectionParameters): Target and credential selection.
            forwarding (ForwardingParameters): Tunnel settings; an empty remote host means
                                               an interactive shell.

        Raises:
            SystemExit: Always. Fatal conditions exit with the code carried by their
                        LauncherError, sessions exit with the code of the aws CLI.
        """
        try:
            exit_code = self.connect(connection, forwarding)
        except LauncherError as e:
            self.logger.error(str(e))
            sys.exit(e.exit_code)

        sys.exit(exit_code)

    def connect(self, connection: ConnectionParameters, forwarding: ForwardingParameters) -> int:
        self.bootstrapper.bootstrap()
        context = self.establisher.establish(connection)
        instance_id = BastionDefinition(context).resolve_instance(connection)

        if not forwarding.enabled:
            return self.start_interactive_ssm_session(instance_id, context)

        return self.start_port_forwarding(instance_id, forwarding, context)

    # ======= Interactive shell
    def start_interactive_ssm_session(self, instance_id: str, context: AwsContext) -> int:
        """
        Opens an interactive SSM shell on the instance and blocks until it ends.

        Parameters:
            instance_id (str): The ID of the instance to start an SSM session with.
            context (AwsContext): Region, profile and credentials for the aws CLI.

        Returns:
            int: The exit code of the aws CLI session.
        """
        self.logger.info(f"Connecting to {instance_id} via SSM (region {context.region})...")
        exit_code = ssm_agent_conn(session_command(instance_id, context), context.to_env())
        self._log_session_end(exit_code)
        return exit_code

    # ======= Port forwarding
    def start_port_forwarding(self, instance_id: str, forwarding: ForwardingParameters, context: AwsContext) -> int:
        """
        Forwards a local port to forwarding.remote_host through the bastion. With
        --custom-host the short alias is mapped to loopback for the duration of a
        foreground tunnel; a background tunnel leaves the alias in place.

        Parameters:
            instance_id (str): The bastion instance ID.
            forwarding (ForwardingParameters): Remote host, ports and mode flags.
            context (AwsContext): Region, profile and credentials for the aws CLI.

        Returns:
            int: 0 when declined or backgrounded, otherwise the exit code of the tunnel.
        """
        if not self.confirm_local_port(forwarding.local_port):
            self.logger.info("Port forwarding cancelled")
            return 0

        if not forwarding.custom_host:
            return self._launch_tunnel(instance_id, forwarding, context)

        with HostsAlias(forwarding.alias_name, self.hosts_path, remove_on_exit=not forwarding.background):
            return self._launch_tunnel(instance_id, forwarding, context)

    def confirm_local_port(self, local_port: int) -> bool:
        if not is_local_port_in_use(local_port):
            return True

        self.logger.warning(f"Local port {local_port} is already in use")
        self.logger.info("You can use --local-port to pick another port")
        return typer.confirm("Continue anyway?", default=False)

    def _launch_tunnel(self, instance_id: str, forwarding: ForwardingParameters, context: AwsContext) -> int:
        self.print_tunnel_summary(instance_id, forwarding)
        command = port_forwarding_command(instance_id, forwarding, context)

        if forwarding.background:
            pid = ssm_agent_background(command, context.to_env())
            self.logger.info(f"Tunnel started in background (PID: {pid})")
            self.logger.info(f"Connection available on {forwarding.connection_host}:{forwarding.local_port}")
            self.logger.info(f"To stop it: kill {pid}")
            if forwarding.custom_host:
                self.logger.warning(f"Remember to remove the '{forwarding.alias_name}' alias from {self.hosts_path} afterwards")
            return 0

        self.logger.info("Use Ctrl+C to stop the tunnel")
        exit_code = ssm_agent_conn(command, context.to_env())
        self._log_session_end(exit_code)
        return exit_code

    def print_tunnel_summary(self, instance_id: str, forwarding: ForwardingParameters):
        local = f"{forwarding.connection_host}:{forwarding.local_port}"
        remote = f"{forwarding.remote_host}:{forwarding.remote_port}"

        table = Table(show_header=False, show_lines=True)
        table.add_column("Key", style="bold magenta")
        table.add_column("Value")
        table.add_row("Bastion", instance_id)
        table.add_row("Local", local)
        table.add_row("Remote", remote)
        table.add_row("Connect with", f"psql -h {forwarding.connection_host} -p {forwarding.local_port} -U username -d database")
        table.add_row("Mode", "background" if forwarding.background else "foreground")

        self.console.print(Panel.fit(table, title="Starting port forwarding", border_style="green"))

    def _log_session_end(self, exit_code: int):
        if exit_code == INTERRUPTED_EXIT_CODE:
            self.logger.info("SSM session interrupted")
        elif exit_code != 0:
            self.logger.error(f"SSM session ended with exit_code: {exit_code}")
        else:
            self.logger.info("SSM session ended successfully")
