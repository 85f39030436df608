# host records and the small vocabularies shared by the policy, sequencer and report.
#   - plain string constants so reports serialize to json without conversion


class MembershipState:
    ACTIVE = "ACTIVE"
    DRAINING = "DRAINING"
    GONE = "GONE"

    ALL = (ACTIVE, DRAINING, GONE)


class Verdict:
    KEEP = "KEEP"
    REQUEST_DRAIN = "REQUEST_DRAIN"
    REQUEST_DESTROY = "REQUEST_DESTROY"


class Outcome:
    KEPT = "kept"
    CORDONED = "cordoned"
    ALREADY_CORDONED = "already_cordoned"
    DESTROYED = "destroyed"
    ALREADY_DESTROYED = "already_destroyed"
    DRY_RUN = "dry_run"
    SKIPPED_STALE = "skipped_stale"
    ABANDONED = "abandoned"
    FAILED = "failed"


# what a mutating collaborator call reports back
class CallResult:
    DONE = "done"
    ALREADY = "already"


class Host:
    def __init__(
        self,
        host_id,
        membership_state,
        active_workload_count,
        utilization=None,
        registry_ref=None,
    ):
        if membership_state not in MembershipState.ALL:
            raise ValueError(f"unknown membership state '{membership_state}' for {host_id}")
        if active_workload_count < 0:
            raise ValueError(f"negative workload count for {host_id}")
        self.id = host_id
        self.membership_state = membership_state
        self.active_workload_count = active_workload_count
        # None means no recent sample
        self.utilization = utilization
        # registry handle (ecs container instance arn), defaults to the host id
        self.registry_ref = registry_ref or host_id

    @property
    def resource_id(self):
        return self.id

    def with_utilization(self, utilization):
        return Host(
            self.id,
            self.membership_state,
            self.active_workload_count,
            utilization=utilization,
            registry_ref=self.registry_ref,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "membership_state": self.membership_state,
            "active_workload_count": self.active_workload_count,
            "utilization": self.utilization,
        }

    def __eq__(self, other):
        if not isinstance(other, Host):
            return NotImplemented
        return self.to_dict() == other.to_dict() and self.registry_ref == other.registry_ref

    def __repr__(self):
        return "Host(%s, %s, tasks=%s, util=%s)" % (
            self.id,
            self.membership_state,
            self.active_workload_count,
            self.utilization,
        )


class HostAction:
    """Result of sequencing one host in a pass."""

    def __init__(self, host, verdict, outcome, error=None, attempts=0):
        self.host = host
        self.verdict = verdict
        self.outcome = outcome
        self.error = error
        self.attempts = attempts

    # true when a collaborator call ran out of retries
    @property
    def exhausted(self):
        return self.outcome == Outcome.FAILED

    def to_dict(self):
        result = {
            "verdict": self.verdict,
            "outcome": self.outcome,
            "attempts": self.attempts,
            "membership_state": self.host.membership_state,
            "active_workload_count": self.host.active_workload_count,
            "utilization": self.host.utilization,
        }
        if self.error:
            result["error"] = self.error
        return result

    def __repr__(self):
        return "HostAction(%s, %s, %s)" % (self.host.id, self.verdict, self.outcome)
