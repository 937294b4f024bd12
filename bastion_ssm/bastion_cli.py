import sys
from typing import List, Optional

import click
import typer

from bastion_ssm.config import DEFAULT_LOCAL_PORT, DEFAULT_REGION, DEFAULT_REMOTE_PORT, ConnectionParameters, ForwardingParameters
from bastion_ssm.connector import ConnectorDefinition
from bastion_ssm.ssm_conn import INTERRUPTED_EXIT_CODE

PROG_NAME = "bastion-connect"

EPILOG = f"""\b
Examples:
  Interactive session:
    $ {PROG_NAME} --name my-bastion --profile prod
  Port forwarding to PostgreSQL:
    $ {PROG_NAME} --name my-bastion --profile prod --forward my-postgres.cluster-xxx.eu-west-3.rds.amazonaws.com
  Port forwarding with the short host name as a local alias:
    $ {PROG_NAME} --name my-bastion --profile prod --forward prod-rds-replica.cto2gdmsi0x4.eu-west-3.rds.amazonaws.com --custom-host
    (then connect through prod-rds-replica:5432)
  Cross-account access through an assumed role:
    $ {PROG_NAME} --name my-bastion --assume-role arn:aws:iam::123456789012:role/bastion --external-id my-id
"""

app = typer.Typer(add_completion=False, rich_markup_mode=None)

@app.command(epilog=EPILOG, context_settings={"help_option_names": ["-h", "--help"]})
def connect(
            instance_id: str = typer.Option(None, "--instance", help="EC2 instance ID (e.g. i-0123456789abcdef)"),
            name_tag: str = typer.Option(None, "--name", help="Value of the 'Name' tag used to find the instance"),
            profile: str = typer.Option(None, "--profile", help="AWS profile to use"),
            access_key: str = typer.Option(None, "--access-key", help="AWS access key ID"),
            secret_key: str = typer.Option(None, "--secret-key", help="AWS secret access key"),
            session_token: str = typer.Option(None, "--session-token", help="AWS session token (optional)"),
            region: str = typer.Option(DEFAULT_REGION, "--region", help="AWS region"),
            assume_role: str = typer.Option(None, "--assume-role", help="ARN of a role to assume before connecting"),
            external_id: str = typer.Option(None, "--external-id", help="External ID for the assumed role"),
            forward: str = typer.Option(None, "--forward", help="Remote database host name to forward a local port to"),
            postgres_port: int = typer.Option(DEFAULT_REMOTE_PORT, "--postgres-port", help="Remote database port"),
            local_port: int = typer.Option(DEFAULT_LOCAL_PORT, "--local-port", help="Local port"),
            background: bool = typer.Option(False, "--background", help="Run the tunnel in the background"),
            custom_host: bool = typer.Option(False, "--custom-host", help="Map the short host name (text before the first dot) to 127.0.0.1 in the hosts file")):
    """
    Connect to a bastion through AWS SSM, either with an interactive shell or by
    forwarding a local port to a remote database host.
    """
    connection = ConnectionParameters(
        instance_id=instance_id,
        name_tag=name_tag,
        region=region,
        profile=profile,
        access_key=access_key,
        secret_key=secret_key,
        session_token=session_token,
        assume_role_arn=assume_role,
        external_id=external_id,
    )
    forwarding = ForwardingParameters(
        remote_host=forward,
        remote_port=postgres_port,
        local_port=local_port,
        background=background,
        custom_host=custom_host,
    )
    ConnectorDefinition().handle_connection(connection, forwarding)

def main(argv: Optional[List[str]] = None):
    command = typer.main.get_command(app)
    try:
        exit_code = command.main(args=argv, prog_name=PROG_NAME, standalone_mode=False)
    except click.UsageError as e:
        typer.echo(f"Error: {e.format_message()}", err=True)
        ctx = e.ctx or click.Context(command, info_name=PROG_NAME)
        typer.echo(ctx.get_help())
        sys.exit(1)
    except click.Abort:
        typer.echo("Aborted.", err=True)
        sys.exit(INTERRUPTED_EXIT_CODE)

    sys.exit(exit_code if isinstance(exit_code, int) else 0)
