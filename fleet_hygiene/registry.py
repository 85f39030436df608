import boto3
import botocore.config
import botocore.exceptions

from fleet_hygiene import config as config_module
from fleet_hygiene import logger, utils
from fleet_hygiene.errors import RegistryUnavailable
from fleet_hygiene.models import CallResult, Host, MembershipState

# DescribeContainerInstances takes at most 100 arns per call
DESCRIBE_BATCH_SIZE = 100

ECS_STATE_MAP = {
    "ACTIVE": MembershipState.ACTIVE,
    "DRAINING": MembershipState.DRAINING,
    "DEREGISTERING": MembershipState.GONE,
    "INACTIVE": MembershipState.GONE,
}

AWS_ERRORS = (botocore.exceptions.ClientError, botocore.exceptions.BotoCoreError)


def aws_client_config(timeout):
    # no botocore-level retries, callers decide how often to retry
    return botocore.config.Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"total_max_attempts": 1},
    )


class Registry:
    """The ecs side of the fleet: lists container instances and cordons them."""

    def __init__(self, client=None, region=None, timeout=config_module.DEFAULT_CALL_TIMEOUT):
        if client is None:
            client = boto3.client("ecs", region_name=region, config=aws_client_config(timeout))
        self.client = client

    def describe_hosts(self, cluster_id):
        try:
            arns = []
            paginator = self.client.get_paginator("list_container_instances")
            for page in paginator.paginate(cluster=cluster_id):
                arns.extend(page.get("containerInstanceArns", []))

        except AWS_ERRORS as e:
            raise RegistryUnavailable(f"error listing container instances in {cluster_id}: {e}") from e
        return self.describe(cluster_id, arns)

    def describe(self, cluster_id, arns):
        records = []
        try:
            for batch in utils.chunked(list(arns), DESCRIBE_BATCH_SIZE):
                resp = self.client.describe_container_instances(cluster=cluster_id, containerInstances=batch)
                for failure in resp.get("failures", []):
                    logger.warning("describe failure for %s: %s" % (failure.get("arn"), failure.get("reason")))
                records.extend(resp.get("containerInstances", []))
        except AWS_ERRORS as e:
            raise RegistryUnavailable(f"error describing container instances in {cluster_id}: {e}") from e
        return records

    def request_cordon(self, cluster_id, host):
        try:
            resp = self.client.update_container_instances_state(
                cluster=cluster_id,
                containerInstances=[host.registry_ref],
                status="DRAINING",
            )
        except AWS_ERRORS as e:
            raise RegistryUnavailable(f"error cordoning {host.id}: {e}") from e

        for failure in resp.get("failures", []):
            # the instance has been deregistered since the snapshot
            if failure.get("reason") == "MISSING":
                return CallResult.ALREADY
            raise RegistryUnavailable(f"cordon of {host.id} failed: {failure.get('reason')}")
        return CallResult.DONE


class WorkloadInspector:
    """Reads membership state and workload counts for every host in a cluster.

    State and counts for a host come from the same describe record, so a
    snapshot never mixes two instants for one host.
    """

    def __init__(self, registry):
        self.registry = registry

    def list_hosts(self, cluster_id):
        hosts = self.records_to_hosts(self.registry.describe_hosts(cluster_id))
        logger.debug("%s: %s host(s) in registry" % (cluster_id, len(hosts)))
        return hosts

    def refresh_host(self, cluster_id, host):
        """Re-read a single host, for re-verification right before a destroy.

        Returns None if the registry no longer knows the host.
        """
        hosts = self.records_to_hosts(self.registry.describe(cluster_id, [host.registry_ref]))
        for a_host in hosts:
            if a_host.id == host.id:
                return a_host.with_utilization(host.utilization)
        return None

    def records_to_hosts(self, records):
        hosts = []
        for record in records:
            host_id = record.get("ec2InstanceId")
            ecs_status = record.get("status")
            if not host_id:
                logger.warning("container instance without ec2 id: %s" % record.get("containerInstanceArn"))
                continue
            if ecs_status not in ECS_STATE_MAP:
                # REGISTERING and REGISTRATION_FAILED hold no work, leave them alone
                logger.debug("%s: skipping, ecs status %s" % (host_id, ecs_status))
                continue
            hosts.append(
                Host(
                    host_id,
                    ECS_STATE_MAP[ecs_status],
                    record.get("runningTasksCount", 0) + record.get("pendingTasksCount", 0),
                    registry_ref=record.get("containerInstanceArn"),
                ),
            )
        return hosts
