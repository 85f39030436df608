import boto3
import botocore.exceptions

from fleet_hygiene import config as config_module
from fleet_hygiene import logger
from fleet_hygiene.errors import ProviderUnavailable
from fleet_hygiene.models import CallResult
from fleet_hygiene.registry import AWS_ERRORS, aws_client_config

GONE_STATES = ("shutting-down", "terminated")
NOT_FOUND_CODES = ("InvalidInstanceID.NotFound",)


class Ec2Provider:
    def __init__(self, client=None, region=None, timeout=config_module.DEFAULT_CALL_TIMEOUT):
        if client is None:
            client = boto3.client("ec2", region_name=region, config=aws_client_config(timeout))
        self.client = client

    # one-way: terminated instances can't come back
    def destroy_resource(self, resource_id):
        try:
            resp = self.client.terminate_instances(InstanceIds=[resource_id])
        except botocore.exceptions.ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in NOT_FOUND_CODES:
                logger.info("%s: no such instance, treating as destroyed" % resource_id)
                return CallResult.ALREADY
            raise ProviderUnavailable(f"error terminating {resource_id}: {e}") from e
        except AWS_ERRORS as e:
            raise ProviderUnavailable(f"error terminating {resource_id}: {e}") from e

        for item in resp.get("TerminatingInstances", []):
            if item.get("InstanceId") == resource_id:
                if item.get("PreviousState", {}).get("Name") in GONE_STATES:
                    return CallResult.ALREADY
                return CallResult.DONE
        raise ProviderUnavailable(f"terminate response didn't mention {resource_id}")
