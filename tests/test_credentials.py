import os

import pytest
from unittest.mock import patch

from botocore.exceptions import ClientError, ProfileNotFound

from bastion_ssm.config import ConnectionParameters
from bastion_ssm.credentials import AwsContext, CredentialEstablisher
from bastion_ssm.errors import AssumeRoleError

ROLE_ARN = "arn:aws:iam::123456789012:role/bastion"

ASSUMED = {
    "Credentials": {
        "AccessKeyId": "ASIATEMP",
        "SecretAccessKey": "temp-secret",
        "SessionToken": "temp-token",
    }
}


class TestStaticCredentials:
    """Test cases for the static credential path."""

    def setup_method(self):
        self.establisher = CredentialEstablisher()

    def test_profile_only(self):
        context = self.establisher.establish(ConnectionParameters(profile="prod", region="eu-west-1"))
        env = context.to_env(base={"PATH": "/usr/bin"})

        assert env == {"PATH": "/usr/bin", "AWS_REGION": "eu-west-1", "AWS_PROFILE": "prod"}
        assert context.cli_args() == ["--region", "eu-west-1", "--profile", "prod"]

    def test_profile_and_static_keys_both_apply(self):
        """Test that no mutual exclusion is enforced between profile and static keys."""
        params = ConnectionParameters(profile="prod", access_key="AKIA", secret_key="secret", session_token="token")
        env = self.establisher.establish(params).to_env(base={})

        assert env["AWS_PROFILE"] == "prod"
        assert env["AWS_ACCESS_KEY_ID"] == "AKIA"
        assert env["AWS_SECRET_ACCESS_KEY"] == "secret"
        assert env["AWS_SESSION_TOKEN"] == "token"

    def test_nothing_supplied_only_sets_region(self):
        context = self.establisher.establish(ConnectionParameters())
        assert context.to_env(base={}) == {"AWS_REGION": "eu-west-3"}
        assert context.cli_args() == ["--region", "eu-west-3"]

    def test_to_env_does_not_touch_process_environment(self, monkeypatch):
        monkeypatch.delenv("AWS_PROFILE", raising=False)
        context = AwsContext(region="eu-west-3", profile="prod")

        env = context.to_env()

        assert env["AWS_PROFILE"] == "prod"
        assert "AWS_PROFILE" not in os.environ


class TestAssumeRole:
    """Test cases for the assume-role path."""

    def setup_method(self):
        self.establisher = CredentialEstablisher()

    @patch("bastion_ssm.credentials.boto3.session.Session")
    def test_assume_role_exports_exactly_the_temporary_credentials(self, session_cls):
        sts = session_cls.return_value.client.return_value
        sts.assume_role.return_value = ASSUMED
        params = ConnectionParameters(profile="caller", assume_role_arn=ROLE_ARN, external_id="ext-id",
                                      access_key="AKIA-IGNORED")

        context = self.establisher.establish(params)
        env = context.to_env(base={"AWS_PROFILE": "inherited", "HOME": "/root"})

        session_cls.assert_called_once_with(profile_name="caller", region_name="eu-west-3")
        session_cls.return_value.client.assert_called_once_with("sts")
        request = sts.assume_role.call_args[1]
        assert request["RoleArn"] == ROLE_ARN
        assert request["ExternalId"] == "ext-id"
        assert request["RoleSessionName"].startswith("bastion-ssm-")

        assert context.profile is None
        assert "AWS_PROFILE" not in env
        assert env == {
            "HOME": "/root",
            "AWS_REGION": "eu-west-3",
            "AWS_ACCESS_KEY_ID": "ASIATEMP",
            "AWS_SECRET_ACCESS_KEY": "temp-secret",
            "AWS_SESSION_TOKEN": "temp-token",
        }
        assert "--profile" not in context.cli_args()

    @patch("bastion_ssm.credentials.boto3.session.Session")
    def test_external_id_is_optional(self, session_cls):
        sts = session_cls.return_value.client.return_value
        sts.assume_role.return_value = ASSUMED

        self.establisher.establish(ConnectionParameters(assume_role_arn=ROLE_ARN))

        assert "ExternalId" not in sts.assume_role.call_args[1]
        session_cls.assert_called_once_with(profile_name=None, region_name="eu-west-3")

    @patch("bastion_ssm.credentials.boto3.session.Session")
    def test_assume_role_denied_exits_4(self, session_cls):
        sts = session_cls.return_value.client.return_value
        sts.assume_role.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "not allowed"}}, "AssumeRole")

        with pytest.raises(AssumeRoleError) as exc:
            self.establisher.establish(ConnectionParameters(assume_role_arn=ROLE_ARN))

        assert exc.value.exit_code == 4
        assert ROLE_ARN in str(exc.value)

    @patch("bastion_ssm.credentials.boto3.session.Session")
    def test_unknown_caller_profile_exits_4(self, session_cls):
        session_cls.side_effect = ProfileNotFound(profile="missing")

        with pytest.raises(AssumeRoleError) as exc:
            self.establisher.establish(ConnectionParameters(profile="missing", assume_role_arn=ROLE_ARN))

        assert exc.value.exit_code == 4

    @patch("bastion_ssm.credentials.boto3.session.Session")
    def test_missing_credentials_block(self, session_cls):
        session_cls.return_value.client.return_value.assume_role.return_value = {}

        with pytest.raises(AssumeRoleError):
            self.establisher.establish(ConnectionParameters(assume_role_arn=ROLE_ARN))


class TestAwsContext:

    @pytest.fixture
    def credentials_file(self, tmp_path, monkeypatch):
        path = tmp_path / "credentials"
        path.write_text("[prod]\naws_access_key_id = AKIAPROFILE\naws_secret_access_key = profile-secret\n")
        monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(path))
        monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "config"))
        for name in ("AWS_PROFILE", "AWS_DEFAULT_PROFILE", "AWS_ACCESS_KEY_ID",
                     "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN"):
            monkeypatch.delenv(name, raising=False)
        return path

    def test_profile_governs_boto3_identity_like_the_cli(self, credentials_file):
        """Test that the EC2 lookup runs as the profile, the same identity `--profile` gives the aws CLI."""
        context = AwsContext(region="eu-west-3", profile="prod", access_key_id="AKIASTATIC",
                             secret_access_key="static-secret")

        credentials = context.boto3_session().get_credentials()

        assert credentials.access_key == "AKIAPROFILE"
        assert context.cli_args() == ["--region", "eu-west-3", "--profile", "prod"]
        env = context.to_env(base={})
        assert env["AWS_PROFILE"] == "prod"
        assert env["AWS_ACCESS_KEY_ID"] == "AKIASTATIC"

    def test_static_keys_without_profile(self, credentials_file):
        context = AwsContext(region="eu-west-3", access_key_id="AKIASTATIC", secret_access_key="static-secret",
                             session_token="token")

        session = context.boto3_session()

        assert session.get_credentials().access_key == "AKIASTATIC"
        assert session.region_name == "eu-west-3"

    @patch("bastion_ssm.credentials.boto3.session.Session")
    def test_boto3_session_with_profile_passes_no_keys(self, session_cls):
        context = AwsContext(region="eu-west-3", profile="prod", access_key_id="AKIA",
                             secret_access_key="secret", session_token=None)

        context.boto3_session()

        session_cls.assert_called_once_with(profile_name="prod", region_name="eu-west-3")

    def test_is_assumed(self):
        assert AwsContext(region="r", assumed_role_arn=ROLE_ARN).is_assumed
        assert not AwsContext(region="r").is_assumed
