import os
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import boto3
import botocore.exceptions

from bastion_ssm.config import ConnectionParameters, ROLE_SESSION_PREFIX
from bastion_ssm.errors import AssumeRoleError
from bastion_ssm.logger import LoggerDefinition


@dataclass
class AwsContext:
    """
    Authenticated context handed to every boto3 call and every `aws` subprocess.
    Nothing here touches os.environ; callers get a fresh environment mapping instead.
    """
    region: str
    profile: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    assumed_role_arn: Optional[str] = None

    @property
    def is_assumed(self) -> bool:
        return self.assumed_role_arn is not None

    def to_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Builds the environment for an `aws` CLI child process.

        Parameters:
            base (Mapping[str, str], optional): Environment to start from. Defaults to os.environ.

        Returns:
            Dict[str, str]: A copy of the base environment with the region and the supplied
                            credentials applied. With an assumed role any inherited AWS_PROFILE
                            is dropped so the temporary keys are the only identity left.
        """
        env = dict(os.environ if base is None else base)
        env["AWS_REGION"] = self.region

        if self.is_assumed:
            env.pop("AWS_PROFILE", None)

        if self.access_key_id:
            env["AWS_ACCESS_KEY_ID"] = self.access_key_id
        if self.secret_access_key:
            env["AWS_SECRET_ACCESS_KEY"] = self.secret_access_key
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = self.session_token
        if self.profile:
            env["AWS_PROFILE"] = self.profile

        return env

    def cli_args(self) -> List[str]:
        args = ["--region", self.region]
        if self.profile:
            args += ["--profile", self.profile]
        return args

    def boto3_session(self) -> boto3.session.Session:
        # --profile beats environment keys in the aws CLI, so the lookup must follow the same identity
        if self.profile:
            return boto3.session.Session(profile_name=self.profile, region_name=self.region)

        return boto3.session.Session(
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            aws_session_token=self.session_token,
            profile_name=self.profile,
            region_name=self.region,
        )


class CredentialEstablisher:
    """
    Turns the credential flags of a ConnectionParameters into an AwsContext, either by
    passing static values through or by assuming a role through STS.
    """

    def __init__(self):
        self.logger = LoggerDefinition.logger()

    def establish(self, params: ConnectionParameters) -> AwsContext:
        """
        Selects the credential path. An assume-role ARN takes precedence; otherwise the
        profile and static keys are used verbatim, both at once if both were supplied.

        Parameters:
            params (ConnectionParameters): The parsed connection flags.

        Returns:
            AwsContext: The context to use for instance lookup and session launch.

        Raises:
            AssumeRoleError: If the role assumption is rejected or returns no credentials.
        """
        if params.assume_role_arn:
            return self.assume_role(params)

        if params.profile:
            self.logger.info(f"Using AWS profile '{params.profile}'")
        if params.access_key:
            self.logger.info("Using static AWS access keys")

        return AwsContext(
            region=params.region,
            profile=params.profile or None,
            access_key_id=params.access_key or None,
            secret_access_key=params.secret_key or None,
            session_token=params.session_token or None,
        )

    def assume_role(self, params: ConnectionParameters) -> AwsContext:
        """
        Assumes params.assume_role_arn with STS, using the optional profile as the caller
        identity. The session name is derived from the current timestamp.

        Parameters:
            params (ConnectionParameters): The parsed connection flags.

        Returns:
            AwsContext: A context holding only the temporary credentials, with no profile.

        Raises:
            AssumeRoleError: On any STS or botocore failure, or an empty Credentials block.
        """
        session_name = f"{ROLE_SESSION_PREFIX}-{int(time.time())}"
        request = {"RoleArn": params.assume_role_arn, "RoleSessionName": session_name}
        if params.external_id:
            request["ExternalId"] = params.external_id

        self.logger.info(f"Assuming role {params.assume_role_arn} (session '{session_name}')")
        try:
            session = boto3.session.Session(profile_name=params.profile or None, region_name=params.region)
            response = session.client("sts").assume_role(**request)
        except (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError) as e:
            raise AssumeRoleError(f"Unable to assume role {params.assume_role_arn}: {e}") from e

        credentials = response.get("Credentials")
        if not credentials:
            raise AssumeRoleError(f"AssumeRole response for {params.assume_role_arn} is missing credentials")

        self.logger.info("Role assumed, temporary credentials in use")
        return AwsContext(
            region=params.region,
            profile=None,
            access_key_id=credentials["AccessKeyId"],
            secret_access_key=credentials["SecretAccessKey"],
            session_token=credentials["SessionToken"],
            assumed_role_arn=params.assume_role_arn,
        )
