import json

import pendulum
import requests

from fleet_hygiene import USER_AGENT_STRING, logger
from fleet_hygiene import config as config_module
from fleet_hygiene import utils
from fleet_hygiene.errors import MetricsUnavailable

ALL_HOSTS = "*"
HOST_TAG_PREFIX = "host:"


def normalize_utilization(value, percent=False):
    """Return value as a fraction in [0, 1], or None if it can't be one.

    With percent set the metric is read as 0-100 and scaled down. Anything
    out of range is unknown, never rescaled.
    """
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    if value != value:
        # nan
        return None
    if percent:
        value = value / 100
    if 0 <= value <= 1:
        return value
    return None


def host_from_scope(scope):
    # scope looks like 'account_name:production,ecs_cluster:core,host:i-0abc'
    for tag in scope.split(","):
        tag = tag.strip()
        if tag.startswith(HOST_TAG_PREFIX):
            return tag[len(HOST_TAG_PREFIX) :]
    return None


def latest_point(pointlist):
    # pointlist is [[timestamp_ms, value], ...], oldest first; nulls are gaps
    for point in reversed(pointlist or []):
        if len(point) > 1 and point[1] is not None:
            return point[1]
    return None


class MetricSampler:
    """Fetches the latest utilization sample per host from datadog.

    'No data in the window' is a valid answer (None), only transport, auth and
    decode problems raise MetricsUnavailable.
    """

    def __init__(
        self,
        api_key,
        app_key,
        site=config_module.DEFAULT_DATADOG_SITE,
        account_name=config_module.DEFAULT_ACCOUNT_NAME,
        metric_query=config_module.DEFAULT_METRIC_QUERY,
        timeout=config_module.DEFAULT_CALL_TIMEOUT,
        percent_utilization=False,
        session=None,
    ):
        self.api_key = api_key
        self.app_key = app_key
        self.api_url = f"https://api.{site}/api/v1/query"
        self.account_name = account_name
        self.metric_query = metric_query
        self.timeout = timeout
        self.percent_utilization = percent_utilization
        self.session = session or utils.requests_retry_session()

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.dd_api_key,
            app_key=config.dd_app_key,
            site=config.datadog_site,
            account_name=config.account_name,
            metric_query=config.metric_query,
            timeout=config.call_timeout,
            percent_utilization=config.percent_utilization,
        )

    def build_query(self, cluster_id, host_id=ALL_HOSTS):
        scope = f"account_name:{self.account_name},ecs_cluster:{cluster_id}"
        if host_id != ALL_HOSTS:
            scope += f",{HOST_TAG_PREFIX}{host_id}"
        return self.metric_query % {"scope": scope}

    def query(self, query, from_ts, to_ts):
        headers = {
            "User-Agent": USER_AGENT_STRING,
            "DD-API-KEY": self.api_key or "",
            "DD-APPLICATION-KEY": self.app_key or "",
        }
        params = {"from": from_ts, "to": to_ts, "query": query}
        try:
            response = self.session.get(self.api_url, headers=headers, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise MetricsUnavailable(f"error querying datadog metrics: {e}") from e
        if response.status_code != 200:
            raise MetricsUnavailable(f"received non-200 response from datadog: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise MetricsUnavailable(f"undecodable response from datadog: {e}") from e

    def sample_utilization(self, cluster_id, host_id=ALL_HOSTS, window_seconds=config_module.DEFAULT_WINDOW_SECONDS):
        to_dt = pendulum.now(tz="UTC")
        from_dt = to_dt.subtract(seconds=window_seconds)
        output = self.query(
            self.build_query(cluster_id, host_id),
            int(from_dt.timestamp()),
            int(to_dt.timestamp()),
        )
        if output.get("status") == "error":
            raise MetricsUnavailable("datadog query error: %s" % output.get("error", json.dumps(output)))

        samples = {}
        for series in output.get("series") or []:
            a_host = host_from_scope(series.get("scope", ""))
            if a_host is None:
                logger.debug("series without a host tag: %s" % series.get("scope"))
                continue
            raw_value = latest_point(series.get("pointlist"))
            value = normalize_utilization(raw_value, percent=self.percent_utilization)
            if raw_value is not None and value is None:
                logger.warning("%s: discarding out of range utilization %s" % (a_host, raw_value))
            # several series per host shouldn't happen with 'by {host}', keep the highest
            if samples.get(a_host) is not None and (value is None or value < samples[a_host]):
                continue
            samples[a_host] = value

        if host_id != ALL_HOSTS:
            return {host_id: samples.get(host_id)}
        logger.debug("sampled %s host(s) in %s" % (len(samples), cluster_id))
        return samples
