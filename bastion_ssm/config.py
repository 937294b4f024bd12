from dataclasses import dataclass
from typing import Optional

DEFAULT_REGION = "eu-west-3"
DEFAULT_REMOTE_PORT = 5432
DEFAULT_LOCAL_PORT = 5432
DEFAULT_HOSTS_FILE = "/etc/hosts"
LOOPBACK_ADDRESS = "127.0.0.1"

PORT_FORWARD_DOCUMENT = "AWS-StartPortForwardingSessionToRemoteHost"
ROLE_SESSION_PREFIX = "bastion-ssm"

AWS_CLI = "aws"
SESSION_PLUGIN = "session-manager-plugin"
PLUGIN_DOWNLOAD_BASE = "https://s3.amazonaws.com/session-manager-downloads/plugin/latest"


@dataclass
class ConnectionParameters:
    """
    Who to connect to and with which identity.

    instance_id wins over name_tag, and assume_role_arn wins over the
    profile/static key selection. Neither rule is validated.
    """
    instance_id: Optional[str] = None
    name_tag: Optional[str] = None
    region: str = DEFAULT_REGION
    profile: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    session_token: Optional[str] = None
    assume_role_arn: Optional[str] = None
    external_id: Optional[str] = None


@dataclass
class ForwardingParameters:
    remote_host: Optional[str] = None
    remote_port: int = DEFAULT_REMOTE_PORT
    local_port: int = DEFAULT_LOCAL_PORT
    background: bool = False
    custom_host: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.remote_host)

    @property
    def alias_name(self) -> Optional[str]:
        if not self.remote_host:
            return None
        return self.remote_host.split(".", 1)[0]

    @property
    def connection_host(self) -> str:
        if self.custom_host and self.alias_name:
            return self.alias_name
        return "localhost"
