import threading

import pytest

from conftest import FakeProvider, FakeRegistry, make_host
from fleet_hygiene.errors import RegistryUnavailable
from fleet_hygiene.models import CallResult, MembershipState, Outcome, Verdict
from fleet_hygiene.sequencer import RetirementSequencer


@pytest.fixture
def sequencer(registry, provider, config, sleeps):
    return RetirementSequencer(registry, provider, config, sleep=sleeps.append)


def test_drain_issues_one_cordon(sequencer, registry):
    host = make_host("i-1", utilization=0.9)
    action = sequencer.apply("core-production", host, Verdict.REQUEST_DRAIN)
    assert action.outcome == Outcome.CORDONED
    assert action.attempts == 1
    assert registry.calls == [("core-production", "i-1")]


def test_drain_on_draining_host_is_a_noop(sequencer, registry):
    host = make_host("i-1", MembershipState.DRAINING, tasks=4)
    action = sequencer.apply("core-production", host, Verdict.REQUEST_DRAIN)
    assert action.outcome == Outcome.ALREADY_CORDONED
    assert not action.exhausted
    assert registry.calls == []


def test_drain_registry_says_already(provider, config, sleeps):
    registry = FakeRegistry(result=CallResult.ALREADY)
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-1", utilization=0.9), Verdict.REQUEST_DRAIN)
    assert action.outcome == Outcome.ALREADY_CORDONED


def test_drain_retries_with_backoff_then_succeeds(provider, config, sleeps):
    config.backoff_factor = 0.5
    registry = FakeRegistry(fail_for=["i-1"], fail_times=2)
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-1", utilization=0.9), Verdict.REQUEST_DRAIN)
    assert action.outcome == Outcome.CORDONED
    assert action.attempts == 3
    assert sleeps == [0.5, 1.0]


def test_drain_failure_is_reported_after_retries(provider, config, sleeps):
    registry = FakeRegistry(fail_for=["i-1"])
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-1", utilization=0.9), Verdict.REQUEST_DRAIN)
    assert action.outcome == Outcome.FAILED
    assert action.exhausted
    assert action.attempts == config.cordon_retries + 1
    assert "i-1" in action.error
    assert len(registry.calls) == config.cordon_retries + 1


def test_destroy_issues_one_terminate(sequencer, provider):
    host = make_host("i-2", MembershipState.DRAINING, tasks=2)
    action = sequencer.apply("c", host, Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.DESTROYED
    assert provider.calls == ["i-2"]


def test_destroy_on_gone_host_is_a_noop(sequencer, provider):
    action = sequencer.apply("c", make_host("i-2", MembershipState.GONE), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.ALREADY_DESTROYED
    assert provider.calls == []


def test_destroy_provider_says_already(registry, config, sleeps):
    provider = FakeProvider(result=CallResult.ALREADY)
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-2", MembershipState.DRAINING), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.ALREADY_DESTROYED
    assert not action.exhausted


def test_destroy_is_retried_once(registry, config, sleeps):
    provider = FakeProvider(fail_for=["i-2"])
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-2", MembershipState.DRAINING), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.FAILED
    assert provider.calls == ["i-2", "i-2"]
    assert action.attempts == 2


def test_destroy_refuses_active_host(sequencer, provider):
    # a verdict that doesn't match the snapshot never gets forced through
    action = sequencer.apply("c", make_host("i-3", MembershipState.ACTIVE), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.SKIPPED_STALE
    assert provider.calls == []


def test_destroy_refuses_busy_host(sequencer, provider):
    action = sequencer.apply("c", make_host("i-3", MembershipState.DRAINING, tasks=9), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.SKIPPED_STALE
    assert provider.calls == []


def test_destroy_uses_recheck_hook(registry, provider, config, sleeps):
    snapshot_host = make_host("i-4", MembershipState.DRAINING, tasks=0)
    fresher = make_host("i-4", MembershipState.DRAINING, tasks=6)
    seen = []

    def recheck(host):
        seen.append(host.id)
        return fresher

    sequencer = RetirementSequencer(registry, provider, config, recheck=recheck, sleep=sleeps.append)
    action = sequencer.apply("c", snapshot_host, Verdict.REQUEST_DESTROY)
    assert seen == ["i-4"]
    assert action.outcome == Outcome.SKIPPED_STALE
    assert "6 task(s)" in action.error
    assert provider.calls == []


def test_destroy_recheck_vanished_host_is_skipped(registry, provider, config, sleeps):
    sequencer = RetirementSequencer(registry, provider, config, recheck=lambda host: None, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-4", MembershipState.DRAINING), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.SKIPPED_STALE
    assert provider.calls == []


def test_destroy_recheck_failure_is_skipped(registry, provider, config, sleeps):
    def recheck(host):
        raise RegistryUnavailable("throttled")

    sequencer = RetirementSequencer(registry, provider, config, recheck=recheck, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-4", MembershipState.DRAINING), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.SKIPPED_STALE
    assert "throttled" in action.error
    assert provider.calls == []


def test_destroy_recheck_reports_gone(registry, provider, config, sleeps):
    gone = make_host("i-4", MembershipState.GONE)
    sequencer = RetirementSequencer(registry, provider, config, recheck=lambda host: gone, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-4", MembershipState.DRAINING), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.ALREADY_DESTROYED
    assert provider.calls == []


def test_dry_run_issues_nothing(registry, provider, config, sleeps):
    config.dry_run = True
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    plan = [
        (make_host("i-1", utilization=0.9), Verdict.REQUEST_DRAIN),
        (make_host("i-2", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
    ]
    actions = sequencer.apply_all("c", plan)
    assert [a.outcome for a in actions] == [Outcome.DRY_RUN, Outcome.DRY_RUN]
    assert registry.calls == []
    assert provider.calls == []


def test_dry_run_still_skips_stale_destroys(registry, provider, config, sleeps):
    config.dry_run = True
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    action = sequencer.apply("c", make_host("i-2", MembershipState.DRAINING, tasks=8), Verdict.REQUEST_DESTROY)
    assert action.outcome == Outcome.SKIPPED_STALE


def test_one_host_failing_does_not_block_others(config, sleeps):
    registry = FakeRegistry(fail_for=["A"])
    provider = FakeProvider(fail_for=["C"])
    sequencer = RetirementSequencer(registry, provider, config, sleep=sleeps.append)
    plan = [
        (make_host("A", utilization=0.9), Verdict.REQUEST_DRAIN),
        (make_host("B", utilization=0.9), Verdict.REQUEST_DRAIN),
        (make_host("C", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
        (make_host("D", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
    ]
    outcomes = {a.host.id: a.outcome for a in sequencer.apply_all("c", plan)}
    assert outcomes == {
        "A": Outcome.FAILED,
        "B": Outcome.CORDONED,
        "C": Outcome.FAILED,
        "D": Outcome.DESTROYED,
    }
    assert ("c", "B") in registry.calls
    assert "D" in provider.calls


def test_unexpected_errors_stay_with_their_host(registry, config, sleeps):
    class BrokenProvider(FakeProvider):
        def destroy_resource(self, resource_id):
            if resource_id == "E":
                raise KeyError("TerminatingInstances")
            return super().destroy_resource(resource_id)

    def recheck(host):
        if host.id == "A":
            raise RuntimeError("describe blew up")
        return host

    provider = BrokenProvider()
    sequencer = RetirementSequencer(registry, provider, config, recheck=recheck, sleep=sleeps.append)
    plan = [
        (make_host("A", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
        (make_host("B", utilization=0.9), Verdict.REQUEST_DRAIN),
        (make_host("D", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
        (make_host("E", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
    ]
    actions = {a.host.id: a for a in sequencer.apply_all("c", plan)}
    assert actions["A"].outcome == Outcome.SKIPPED_STALE
    assert "describe blew up" in actions["A"].error
    assert actions["B"].outcome == Outcome.CORDONED
    assert actions["D"].outcome == Outcome.DESTROYED
    assert actions["E"].outcome == Outcome.FAILED
    assert "TerminatingInstances" in actions["E"].error
    assert "A" not in provider.calls


def test_apply_all_skips_keep(sequencer, registry, provider):
    plan = [(make_host("i-1"), Verdict.KEEP)]
    assert sequencer.apply_all("c", plan) == []
    assert registry.calls == []
    assert provider.calls == []


def test_running_twice_is_idempotent(sequencer, registry, provider):
    draining = make_host("i-1", MembershipState.DRAINING, tasks=5)
    gone = make_host("i-2", MembershipState.GONE)
    for _ in range(2):
        assert sequencer.apply("c", draining, Verdict.REQUEST_DRAIN).outcome == Outcome.ALREADY_CORDONED
        assert sequencer.apply("c", gone, Verdict.REQUEST_DESTROY).outcome == Outcome.ALREADY_DESTROYED
    assert registry.calls == []
    assert provider.calls == []


def test_cancelled_pass_abandons_unissued_actions(sequencer, registry, provider):
    cancel = threading.Event()
    cancel.set()
    plan = [
        (make_host("i-1", utilization=0.9), Verdict.REQUEST_DRAIN),
        (make_host("i-2", MembershipState.DRAINING), Verdict.REQUEST_DESTROY),
    ]
    actions = sequencer.apply_all("c", plan, cancel_event=cancel)
    assert [a.outcome for a in actions] == [Outcome.ABANDONED, Outcome.ABANDONED]
    assert not any(a.exhausted for a in actions)
    assert registry.calls == []
    assert provider.calls == []


def test_cancel_during_retries_stops_retrying(provider, config):
    cancel = threading.Event()
    registry = FakeRegistry(fail_for=["i-1"])
    sequencer = RetirementSequencer(registry, provider, config, sleep=lambda s: None)

    # the first failed attempt is in flight when ctrl-c arrives
    original = registry.request_cordon

    def cordon_then_cancel(cluster_id, host):
        cancel.set()
        return original(cluster_id, host)

    registry.request_cordon = cordon_then_cancel
    action = sequencer.apply("c", make_host("i-1", utilization=0.9), Verdict.REQUEST_DRAIN, cancel_event=cancel)
    assert action.outcome == Outcome.ABANDONED
    assert action.attempts == 1
    assert len(registry.calls) == 1


def test_cancel_during_destroy_lets_it_finish(registry, config):
    cancel = threading.Event()
    provider = FakeProvider()
    sequencer = RetirementSequencer(registry, provider, config, sleep=lambda s: None)

    # ctrl-c arrives while the terminate call is in flight
    original = provider.destroy_resource

    def destroy_then_cancel(resource_id):
        cancel.set()
        return original(resource_id)

    provider.destroy_resource = destroy_then_cancel
    host = make_host("i-2", MembershipState.DRAINING, tasks=1)
    action = sequencer.apply("c", host, Verdict.REQUEST_DESTROY, cancel_event=cancel)
    assert action.outcome == Outcome.DESTROYED
    assert action.attempts == 1
    assert provider.calls == ["i-2"]
    assert cancel.is_set()
