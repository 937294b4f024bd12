import botocore.exceptions

from bastion_ssm.config import ConnectionParameters
from bastion_ssm.credentials import AwsContext
from bastion_ssm.errors import InstanceNotFoundError, MissingTargetError
from bastion_ssm.logger import LoggerDefinition

class BastionDefinition:
    """
    Resolves the bastion EC2 instance to open the session against, either straight from
    the instance id flag or by looking up a running instance through its Name tag.
    """
    def __init__(self, context: AwsContext, client=None):
        """
        Initializes the BastionDefinition for the given AWS context.

        Parameters:
            context (AwsContext): The authenticated context used for the EC2 client.
            client (optional): A pre-built EC2 client. Defaults to one created from the context
                               on the first lookup.
        """
        self.bastion = None
        self.context = context
        self.client = client
        self.logger = LoggerDefinition.logger()

    def resolve_instance(self, params: ConnectionParameters) -> str:
        """
        Returns the instance id to connect to. An explicit instance id always wins over
        the name tag, which is only consulted when no id was supplied.

        Parameters:
            params (ConnectionParameters): The parsed connection flags.

        Returns:
            str: The instance ID of the bastion.

        Raises:
            MissingTargetError: If neither an instance id nor a name tag was supplied.
            InstanceNotFoundError: If the name tag lookup matches no running instance.
        """
        if params.instance_id:
            self.bastion = params.instance_id
            return self.bastion

        if params.name_tag:
            return self.find_instance_by_name(params.name_tag)

        raise MissingTargetError("No instance id provided. Use --instance or --name.")

    def find_instance_by_name(self, bastion_name: str) -> str:
        """
        Searches for a running EC2 instance by its Name tag. If several instances match,
        the first one returned by EC2 is used.

        Parameters:
            bastion_name (str): The exact value of the Name tag.

        Returns:
            str: The instance ID of the found bastion instance.

        Raises:
            InstanceNotFoundError: If no running instance carries the tag, or if the lookup
                                   itself fails.
        """
        self.logger.info(f"Looking up instance with Name tag = '{bastion_name}'...")
        try:
            if self.client is None:
                self.client = self.context.boto3_session().client('ec2')
            response = self.client.describe_instances(
                Filters=[
                    {"Name": "tag:Name", "Values": [bastion_name]},
                    {"Name": "instance-state-name", "Values": ["running"]},
                ]
            )
        except (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError) as e:
            raise InstanceNotFoundError(f"Error looking up instance '{bastion_name}' in {self.context.region}: {e}") from e

        # Reservations[0].Instances[0].InstanceId
        reservations = response.get("Reservations", [])
        instances = reservations[0].get("Instances", []) if reservations else []
        instance_id = instances[0].get("InstanceId") if instances else None

        if not instance_id or instance_id == "None":
            raise InstanceNotFoundError(f"No running instance found with Name='{bastion_name}' in {self.context.region}.")

        self.logger.info(f"Instance found: {instance_id}")
        self.bastion = instance_id
        return self.bastion
