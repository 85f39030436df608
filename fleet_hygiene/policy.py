from fleet_hygiene.config import DEFAULT_TASK_COUNT_THRESHOLD, DEFAULT_UTILIZATION_THRESHOLD
from fleet_hygiene.models import MembershipState, Verdict


def classify(
    host,
    utilization_threshold=DEFAULT_UTILIZATION_THRESHOLD,
    task_count_threshold=DEFAULT_TASK_COUNT_THRESHOLD,
):
    """Decide what should happen to one host. No i/o, first matching rule wins.

    - draining and nearly idle: destroy
    - draining with work left: wait
    - active and over the utilization threshold: drain
    - anything else, including unknown utilization: keep
    """
    if host.membership_state == MembershipState.DRAINING:
        if host.active_workload_count < task_count_threshold:
            return Verdict.REQUEST_DESTROY
        return Verdict.KEEP
    if (
        host.membership_state == MembershipState.ACTIVE
        and host.utilization is not None
        and host.utilization > utilization_threshold
    ):
        return Verdict.REQUEST_DRAIN
    return Verdict.KEEP


def classify_all(
    hosts,
    utilization_threshold=DEFAULT_UTILIZATION_THRESHOLD,
    task_count_threshold=DEFAULT_TASK_COUNT_THRESHOLD,
):
    return {
        host.id: classify(
            host,
            utilization_threshold=utilization_threshold,
            task_count_threshold=task_count_threshold,
        )
        for host in hosts
    }


def still_destroyable(host, task_count_threshold=DEFAULT_TASK_COUNT_THRESHOLD):
    return host.membership_state == MembershipState.DRAINING and host.active_workload_count < task_count_threshold
