from __future__ import annotations

from .models import FirewallRuleSpec, ManagedResource, ObservedState, spec_as
from .system import CommandRunner


def parse_active(status_output: str) -> bool:
    for line in status_output.splitlines():
        line = line.strip().lower()
        if line.startswith("status:"):
            return line.split(":", 1)[1].strip() == "active"
    return False


def parse_added_rules(show_added_output: str) -> list[str]:
    """Rules from ``ufw show added``, without the leading ``ufw``."""
    rules = []
    for line in show_added_output.splitlines():
        line = line.strip()
        if line.startswith("ufw "):
            rules.append(line[len("ufw "):])
    return rules


class FirewallHandler:
    """One ``allow`` rule plus firewall enablement.

    The rule being added but the firewall inactive is the stopped state.
    """

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def probe(self, resource: ManagedResource) -> ObservedState:
        spec = spec_as(resource, FirewallRuleSpec)
        added = parse_added_rules(self.runner.run(["ufw", "show", "added"]).stdout)
        if f"allow {spec.rule}" not in added:
            return ObservedState.ABSENT
        if parse_active(self.runner.run(["ufw", "status"]).stdout):
            return ObservedState.PRESENT_RUNNING
        return ObservedState.PRESENT_STOPPED

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, FirewallRuleSpec)
        self.runner.run(["ufw", "allow", spec.rule])
        self.runner.run(["ufw", "--force", "enable"])

    def start(self, resource: ManagedResource) -> None:
        self.runner.run(["ufw", "--force", "enable"])
