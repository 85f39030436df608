import os

import tomlkit

from fleet_hygiene.errors import ConfigInvalid

DEFAULT_UTILIZATION_THRESHOLD = 0.85
DEFAULT_TASK_COUNT_THRESHOLD = 3
DEFAULT_WINDOW_SECONDS = 300
DEFAULT_MAX_WORKERS = 4
DEFAULT_CORDON_RETRIES = 3
DEFAULT_DESTROY_RETRIES = 1
DEFAULT_BACKOFF_FACTOR = 0.3
DEFAULT_CALL_TIMEOUT = 30
DEFAULT_ACCOUNT_NAME = "production"
DEFAULT_DATADOG_SITE = "datadoghq.com"
# %(scope)s is filled with the tag filter, e.g. 'account_name:production,ecs_cluster:core-production'
DEFAULT_METRIC_QUERY = "max:system.disk.in_use{%(scope)s} by {host}"

CONFIG_TABLE = "retirement"


def tomlkit_to_popo(d):
    try:
        result = getattr(d, "value")
    except AttributeError:
        result = d

    if isinstance(result, list):
        result = [tomlkit_to_popo(x) for x in result]
    elif isinstance(result, dict):
        result = {tomlkit_to_popo(key): tomlkit_to_popo(val) for key, val in result.items()}
    elif isinstance(result, tomlkit.items.Integer):
        result = int(result)
    elif isinstance(result, tomlkit.items.Float):
        result = float(result)
    elif isinstance(result, tomlkit.items.String):
        result = str(result)
    elif isinstance(result, tomlkit.items.Bool):
        result = bool(result)

    return result


class RetirementConfig:
    # keys accepted in the [retirement] table of a config file
    file_keys = (
        "cluster_id",
        "utilization_threshold",
        "task_count_threshold",
        "dry_run",
        "window_seconds",
        "max_workers",
        "cordon_retries",
        "destroy_retries",
        "backoff_factor",
        "call_timeout",
        "region",
        "account_name",
        "datadog_site",
        "metric_query",
        "recheck",
        "percent_utilization",
    )

    def __init__(
        self,
        cluster_id,
        utilization_threshold=DEFAULT_UTILIZATION_THRESHOLD,
        task_count_threshold=DEFAULT_TASK_COUNT_THRESHOLD,
        dry_run=False,
        window_seconds=DEFAULT_WINDOW_SECONDS,
        max_workers=DEFAULT_MAX_WORKERS,
        cordon_retries=DEFAULT_CORDON_RETRIES,
        destroy_retries=DEFAULT_DESTROY_RETRIES,
        backoff_factor=DEFAULT_BACKOFF_FACTOR,
        call_timeout=DEFAULT_CALL_TIMEOUT,
        region=None,
        account_name=DEFAULT_ACCOUNT_NAME,
        datadog_site=DEFAULT_DATADOG_SITE,
        metric_query=DEFAULT_METRIC_QUERY,
        recheck=False,
        percent_utilization=False,
        dd_api_key=None,
        dd_app_key=None,
    ):
        self.cluster_id = cluster_id
        self.utilization_threshold = utilization_threshold
        self.task_count_threshold = task_count_threshold
        self.dry_run = dry_run
        self.window_seconds = window_seconds
        self.max_workers = max_workers
        self.cordon_retries = cordon_retries
        self.destroy_retries = destroy_retries
        self.backoff_factor = backoff_factor
        self.call_timeout = call_timeout
        self.region = region
        self.account_name = account_name
        self.datadog_site = datadog_site
        self.metric_query = metric_query
        # re-read a host from the registry right before destroying it
        self.recheck = recheck
        # the metric reports 0-100 instead of a fraction
        self.percent_utilization = percent_utilization
        self.dd_api_key = dd_api_key if dd_api_key is not None else os.environ.get("DD_CLIENT_API_KEY")
        self.dd_app_key = dd_app_key if dd_app_key is not None else os.environ.get("DD_CLIENT_APP_KEY")

    # alternate constructor
    @classmethod
    def from_toml(cls, path, **overrides):
        """Load the [retirement] table of a toml file.

        Keyword overrides (typically cli flags) win over file values; None
        overrides are ignored so unset flags don't clobber the file.
        """
        if not os.path.exists(path):
            raise ConfigInvalid(f"config file '{path}' doesn't exist")
        with open(path, "r") as f:
            try:
                data = tomlkit_to_popo(tomlkit.load(f))
            except tomlkit.exceptions.ParseError as e:
                raise ConfigInvalid(f"invalid format in config file ({path}): {e}")

        table = data.get(CONFIG_TABLE, {})
        if not isinstance(table, dict):
            raise ConfigInvalid(f"'{CONFIG_TABLE}' in '{path}' must be a table")
        unknown = set(table) - set(cls.file_keys)
        if unknown:
            raise ConfigInvalid(f"unknown key(s) in '{path}': {', '.join(sorted(unknown))}")

        values = dict(table)
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        if "cluster_id" not in values:
            raise ConfigInvalid("cluster_id is required")
        return cls(**values)

    def validate(self):
        if not self.cluster_id or not isinstance(self.cluster_id, str):
            raise ConfigInvalid("cluster_id must be a non-empty string")
        if isinstance(self.utilization_threshold, bool) or not isinstance(self.utilization_threshold, (int, float)):
            raise ConfigInvalid(f"utilization_threshold must be a number, got {self.utilization_threshold!r}")
        if not 0 <= self.utilization_threshold <= 1:
            raise ConfigInvalid(f"utilization_threshold must be within [0, 1], got {self.utilization_threshold}")
        for name in ("task_count_threshold", "cordon_retries", "destroy_retries"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigInvalid(f"{name} must be a non-negative integer, got {value!r}")
        for name in ("window_seconds", "max_workers"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigInvalid(f"{name} must be a positive integer, got {value!r}")
        for name in ("backoff_factor", "call_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigInvalid(f"{name} must be a number, got {value!r}")
        if self.backoff_factor < 0:
            raise ConfigInvalid(f"backoff_factor must not be negative, got {self.backoff_factor}")
        if self.call_timeout <= 0:
            raise ConfigInvalid(f"call_timeout must be positive, got {self.call_timeout}")
        for name in ("dry_run", "recheck", "percent_utilization"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ConfigInvalid(f"{name} must be true or false, got {value!r}")
        for name in ("account_name", "datadog_site", "metric_query"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigInvalid(f"{name} must be a non-empty string, got {value!r}")
        if self.region is not None and not isinstance(self.region, str):
            raise ConfigInvalid(f"region must be a string, got {self.region!r}")
        if "%(scope)s" not in self.metric_query:
            raise ConfigInvalid("metric_query must contain '%(scope)s'")
        return self

    def to_dict(self):
        return {key: getattr(self, key) for key in self.file_keys}
