import threading

import pytest

from fleet_hygiene.config import RetirementConfig
from fleet_hygiene.errors import MetricsUnavailable, ProviderUnavailable, RegistryUnavailable
from fleet_hygiene.models import CallResult, Host, MembershipState


def make_host(host_id, state=MembershipState.ACTIVE, tasks=0, utilization=None):
    return Host(host_id, state, tasks, utilization=utilization, registry_ref=f"arn:aws:ecs:::container-instance/{host_id}")


class FakeRegistry:
    """request_cordon fails for hosts in fail_for (forever, or fail_times times)."""

    def __init__(self, fail_for=(), fail_times=None, result=CallResult.DONE):
        self.fail_for = set(fail_for)
        self.fail_times = fail_times
        self.result = result
        self.calls = []
        self.lock = threading.Lock()

    def request_cordon(self, cluster_id, host):
        with self.lock:
            self.calls.append((cluster_id, host.id))
            failures_so_far = len([c for c in self.calls if c[1] == host.id])
        if host.id in self.fail_for and (self.fail_times is None or failures_so_far <= self.fail_times):
            raise RegistryUnavailable(f"cordon of {host.id} failed")
        return self.result


class FakeProvider:
    def __init__(self, fail_for=(), fail_times=None, result=CallResult.DONE):
        self.fail_for = set(fail_for)
        self.fail_times = fail_times
        self.result = result
        self.calls = []
        self.lock = threading.Lock()

    def destroy_resource(self, resource_id):
        with self.lock:
            self.calls.append(resource_id)
            failures_so_far = self.calls.count(resource_id)
        if resource_id in self.fail_for and (self.fail_times is None or failures_so_far <= self.fail_times):
            raise ProviderUnavailable(f"terminate of {resource_id} failed")
        return self.result


class FakeInspector:
    def __init__(self, hosts=None, error=None):
        self.hosts = hosts or []
        self.error = error
        self.calls = 0

    def list_hosts(self, cluster_id):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.hosts)


class FakeSampler:
    def __init__(self, samples=None, error=None):
        self.samples = samples or {}
        self.error = error
        self.calls = []

    def sample_utilization(self, cluster_id, host_id="*", window_seconds=300):
        self.calls.append((cluster_id, host_id, window_seconds))
        if self.error:
            raise self.error
        return dict(self.samples)


@pytest.fixture
def config():
    return RetirementConfig("core-production", backoff_factor=0, dd_api_key="x", dd_app_key="y")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def metrics_down():
    return FakeSampler(error=MetricsUnavailable("read timed out"))
