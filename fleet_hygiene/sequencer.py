import time
from multiprocessing.pool import ThreadPool

from fleet_hygiene import logger, policy, utils
from fleet_hygiene.errors import ProviderUnavailable, RegistryUnavailable, StaleSnapshot
from fleet_hygiene.models import CallResult, HostAction, MembershipState, Outcome, Verdict


def is_cancelled(cancel_event):
    return cancel_event is not None and cancel_event.is_set()


class RetirementSequencer:
    """Carries out verdicts: cordon first, destroy only once a host has drained.

    Every action is independent; a failure is recorded on the host's
    HostAction and never stops the other hosts. Cordons and destroys the
    collaborators report as already done count as success.
    """

    def __init__(self, registry, provider, config, recheck=None, sleep=time.sleep):
        self.registry = registry
        self.provider = provider
        self.config = config
        # optional callable(host) -> Host or None, a fresher view used before destroying
        self.recheck = recheck
        self.sleep = sleep

    def apply_all(self, cluster_id, plan, cancel_event=None):
        """plan is a list of (host, verdict). KEEP entries are ignored."""
        work = [(cluster_id, host, verdict, cancel_event) for host, verdict in plan if verdict != Verdict.KEEP]
        if not work:
            return []
        pool = ThreadPool(min(self.config.max_workers, len(work)))
        try:
            results = pool.starmap(self.apply, work)
        finally:
            pool.close()
            pool.join()
        return results

    def apply(self, cluster_id, host, verdict, cancel_event=None):
        # failures stay with their host
        try:
            if verdict == Verdict.REQUEST_DRAIN:
                return self.drain(cluster_id, host, cancel_event)
            if verdict == Verdict.REQUEST_DESTROY:
                return self.destroy(cluster_id, host, cancel_event)
        except StaleSnapshot as e:
            logger.warning("%s: not destroying: %s" % (host.id, e))
            return HostAction(host, verdict, Outcome.SKIPPED_STALE, error=str(e))
        except Exception as e:
            logger.exception("%s: unexpected error applying %s" % (host.id, verdict))
            return HostAction(host, verdict, Outcome.FAILED, error=str(e))
        return HostAction(host, verdict, Outcome.KEPT)

    def drain(self, cluster_id, host, cancel_event=None):
        verdict = Verdict.REQUEST_DRAIN
        if host.membership_state != MembershipState.ACTIVE:
            return HostAction(host, verdict, Outcome.ALREADY_CORDONED)
        if self.config.dry_run:
            logger.info("%s: dry run, would cordon (utilization %s)" % (host.id, host.utilization))
            return HostAction(host, verdict, Outcome.DRY_RUN)
        if is_cancelled(cancel_event):
            return HostAction(host, verdict, Outcome.ABANDONED)

        return self._call(
            host,
            verdict,
            lambda: self.registry.request_cordon(cluster_id, host),
            RegistryUnavailable,
            self.config.cordon_retries,
            cancel_event,
            done=Outcome.CORDONED,
            already=Outcome.ALREADY_CORDONED,
            description=f"{host.id}: cordon",
        )

    def verify_destroyable(self, host):
        """Returns the host view to act on, raises StaleSnapshot if it no longer qualifies."""
        current = host
        if self.recheck is not None:
            try:
                current = self.recheck(host)
            except Exception as e:
                # an unreadable host is never destroyed
                raise StaleSnapshot(f"re-check failed: {e}") from e
            if current is None:
                raise StaleSnapshot("host no longer in registry")
        if current.membership_state == MembershipState.GONE:
            return current
        if not policy.still_destroyable(current, self.config.task_count_threshold):
            raise StaleSnapshot(
                "state %s with %s task(s), threshold %s"
                % (current.membership_state, current.active_workload_count, self.config.task_count_threshold),
            )
        return current

    def destroy(self, cluster_id, host, cancel_event=None):
        verdict = Verdict.REQUEST_DESTROY
        if host.membership_state == MembershipState.GONE:
            return HostAction(host, verdict, Outcome.ALREADY_DESTROYED)

        current = self.verify_destroyable(host)
        if current.membership_state == MembershipState.GONE:
            return HostAction(current, verdict, Outcome.ALREADY_DESTROYED)
        if self.config.dry_run:
            logger.info("%s: dry run, would destroy (%s task(s))" % (host.id, current.active_workload_count))
            return HostAction(current, verdict, Outcome.DRY_RUN)
        if is_cancelled(cancel_event):
            return HostAction(current, verdict, Outcome.ABANDONED)

        return self._call(
            current,
            verdict,
            lambda: self.provider.destroy_resource(current.resource_id),
            ProviderUnavailable,
            self.config.destroy_retries,
            cancel_event,
            done=Outcome.DESTROYED,
            already=Outcome.ALREADY_DESTROYED,
            description=f"{host.id}: destroy",
        )

    def _call(self, host, verdict, func, retry_on, retries_allowed, cancel_event, done, already, description):
        attempts = []

        def counted():
            attempts.append(1)
            return func()

        try:
            result, _attempt_count = utils.retry_call(
                counted,
                retry_on,
                retries_allowed,
                backoff_factor=self.config.backoff_factor,
                should_continue=lambda: not is_cancelled(cancel_event),
                sleep=self.sleep,
                description=description,
            )
        except retry_on as e:
            # gave up early because of cancellation, not exhaustion
            if len(attempts) <= retries_allowed and is_cancelled(cancel_event):
                return HostAction(host, verdict, Outcome.ABANDONED, error=str(e), attempts=len(attempts))
            return HostAction(host, verdict, Outcome.FAILED, error=str(e), attempts=len(attempts))

        if result == CallResult.ALREADY:
            logger.info("%s: already done" % description)
            return HostAction(host, verdict, already, attempts=len(attempts))
        logger.info("%s: done" % description)
        return HostAction(host, verdict, done, attempts=len(attempts))
