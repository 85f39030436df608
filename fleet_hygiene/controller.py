import functools
from multiprocessing.pool import ThreadPool

from fleet_hygiene import logger, policy
from fleet_hygiene.metrics import ALL_HOSTS, MetricSampler
from fleet_hygiene.models import HostAction, Outcome, Verdict
from fleet_hygiene.provider import Ec2Provider
from fleet_hygiene.registry import Registry, WorkloadInspector
from fleet_hygiene.report import PassReport
from fleet_hygiene.sequencer import RetirementSequencer


def merge_snapshot(hosts, samples):
    """Attach utilization to registry hosts by id. No sample means unknown."""
    merged = []
    known_ids = set()
    for host in hosts:
        known_ids.add(host.id)
        merged.append(host.with_utilization(samples.get(host.id)))
    for host_id in set(samples) - known_ids:
        logger.debug("%s: has metrics but isn't in the registry, ignoring" % host_id)
    return merged


class Controller:
    """Runs one pass: snapshot, classify, sequence, report.

    Repeating passes (cron, a timer) is up to the caller.
    """

    def __init__(self, config, sampler, inspector, sequencer):
        self.config = config
        self.sampler = sampler
        self.inspector = inspector
        self.sequencer = sequencer

    # alternate constructor, wires up the ecs/ec2/datadog collaborators
    @classmethod
    def from_config(cls, config):
        config.validate()
        registry = Registry(region=config.region, timeout=config.call_timeout)
        inspector = WorkloadInspector(registry)
        provider = Ec2Provider(region=config.region, timeout=config.call_timeout)
        recheck = None
        if config.recheck:
            recheck = functools.partial(inspector.refresh_host, config.cluster_id)
        sequencer = RetirementSequencer(registry, provider, config, recheck=recheck)
        return cls(config, MetricSampler.from_config(config), inspector, sequencer)

    def fetch_snapshot(self):
        # both reads are independent, but both have to finish before classifying
        pool = ThreadPool(2)
        try:
            hosts_result = pool.apply_async(self.inspector.list_hosts, (self.config.cluster_id,))
            samples_result = pool.apply_async(
                self.sampler.sample_utilization,
                (self.config.cluster_id, ALL_HOSTS, self.config.window_seconds),
            )
            pool.close()
            pool.join()
            hosts = hosts_result.get()
            samples = samples_result.get()
        finally:
            pool.terminate()
        return merge_snapshot(hosts, samples)

    def run_pass(self, cancel_event=None):
        self.config.validate()
        report = PassReport(self.config.cluster_id, dry_run=self.config.dry_run)

        # any read failure propagates and aborts the pass before any action
        snapshot = self.fetch_snapshot()
        verdicts = policy.classify_all(
            snapshot,
            utilization_threshold=self.config.utilization_threshold,
            task_count_threshold=self.config.task_count_threshold,
        )

        plan = []
        for host in snapshot:
            verdict = verdicts[host.id]
            if verdict == Verdict.KEEP:
                report.add(HostAction(host, verdict, Outcome.KEPT))
            else:
                plan.append((host, verdict))
        logger.info(
            "%s: %s host(s), %s to drain, %s to destroy"
            % (
                self.config.cluster_id,
                len(snapshot),
                len([v for _h, v in plan if v == Verdict.REQUEST_DRAIN]),
                len([v for _h, v in plan if v == Verdict.REQUEST_DESTROY]),
            ),
        )

        for action in self.sequencer.apply_all(self.config.cluster_id, plan, cancel_event=cancel_event):
            report.add(action)
        return report.finish()
