import json

import colorama
import pendulum
from natsort import natsorted

from fleet_hygiene.models import Outcome

OUTCOME_COLORS = {
    Outcome.KEPT: colorama.Style.DIM,
    Outcome.CORDONED: colorama.Fore.YELLOW,
    Outcome.ALREADY_CORDONED: colorama.Style.DIM,
    Outcome.DESTROYED: colorama.Fore.RED,
    Outcome.ALREADY_DESTROYED: colorama.Style.DIM,
    Outcome.DRY_RUN: colorama.Fore.CYAN,
    Outcome.SKIPPED_STALE: colorama.Fore.MAGENTA,
    Outcome.ABANDONED: colorama.Fore.MAGENTA,
    Outcome.FAILED: colorama.Fore.RED + colorama.Style.BRIGHT,
}

COUNT_KEYS = {
    "drained": (Outcome.CORDONED,),
    "destroyed": (Outcome.DESTROYED,),
    "already": (Outcome.ALREADY_CORDONED, Outcome.ALREADY_DESTROYED),
    "dry_run": (Outcome.DRY_RUN,),
    "skipped": (Outcome.SKIPPED_STALE,),
    "abandoned": (Outcome.ABANDONED,),
    "failed": (Outcome.FAILED,),
    "kept": (Outcome.KEPT,),
}


class PassReport:
    def __init__(self, cluster_id, dry_run=False, started_at=None):
        self.cluster_id = cluster_id
        self.dry_run = dry_run
        self.started_at = started_at or pendulum.now(tz="UTC")
        self.finished_at = None
        self.actions = {}

    def add(self, action):
        self.actions[action.host.id] = action

    def finish(self):
        self.finished_at = pendulum.now(tz="UTC")
        return self

    @property
    def exhausted(self):
        return any(action.exhausted for action in self.actions.values())

    def counts(self):
        result = {}
        for key, outcomes in COUNT_KEYS.items():
            result[key] = len([a for a in self.actions.values() if a.outcome in outcomes])
        result["total"] = len(self.actions)
        return result

    def outcome_of(self, host_id):
        return self.actions[host_id].outcome

    def to_dict(self):
        return {
            "cluster_id": self.cluster_id,
            "dry_run": self.dry_run,
            "started_at": self.started_at.to_iso8601_string(),
            "finished_at": self.finished_at.to_iso8601_string() if self.finished_at else None,
            "counts": self.counts(),
            "exhausted": self.exhausted,
            "hosts": {host_id: self.actions[host_id].to_dict() for host_id in natsorted(self.actions)},
        }

    def to_json(self):
        return json.dumps(self.to_dict(), indent=2)

    def format_human(self, only_actions=False):
        lines = []
        host_ids = natsorted(self.actions)
        width = max([len(h) for h in host_ids] + [4]) + 2
        for host_id in host_ids:
            action = self.actions[host_id]
            if only_actions and action.outcome == Outcome.KEPT:
                continue
            if action.host.utilization is None:
                util_str = "unknown"
            else:
                util_str = "%.1f%%" % (action.host.utilization * 100)
            line = "%s%-9s tasks %-4s util %-8s %-16s %s" % (
                host_id.ljust(width),
                action.host.membership_state,
                action.host.active_workload_count,
                util_str,
                action.verdict,
                OUTCOME_COLORS.get(action.outcome, "") + action.outcome + colorama.Style.RESET_ALL,
            )
            if action.error:
                line += " (%s)" % action.error
            lines.append(line)
        counts = self.counts()
        summary = ", ".join("%s %s" % (counts[key], key) for key in COUNT_KEYS if counts[key])
        lines.append(
            "%s: %s host(s)%s: %s"
            % (
                self.cluster_id,
                counts["total"],
                " (dry run)" if self.dry_run else "",
                summary or "nothing to do",
            ),
        )
        return "\n".join(lines)
