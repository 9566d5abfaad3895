from __future__ import annotations

import logging
import shlex
from typing import List, Optional

from ..config import settings
from ..utils.paths import append_line_once
from .commands import CommandRunner


log = logging.getLogger(__name__)

RULE_COMMENT = "mf-gateway"
OWNED_TABLES = ("nat", "filter")


def _comment(args: List[str]) -> Optional[str]:
    if "--comment" not in args:
        return None
    idx = args.index("--comment") + 1
    return args[idx] if idx < len(args) else None


class Netfilter:
    """IPv4 forwarding and iptables rules owned by the gateway."""

    def __init__(self, runner: Optional[CommandRunner] = None, sysctl_conf: Optional[str] = None) -> None:
        self._runner = runner or CommandRunner()
        self._sysctl_conf = sysctl_conf or settings.sysctl_conf

    @staticmethod
    def _tagged(rule: List[str]) -> List[str]:
        return [*rule, "-m", "comment", "--comment", RULE_COMMENT]

    def ensure_rule(self, table: str, chain: str, rule: List[str], *, insert: bool = False) -> bool:
        """Add ``rule`` to ``chain`` unless it is already there.

        Returns True when a rule was added.
        """
        tagged = self._tagged(rule)
        exists = self._runner.run(["iptables", "-t", table, "-C", chain, *tagged], check=False)
        if exists.ok:
            return False
        action = ["-I", chain, "1"] if insert else ["-A", chain]
        self._runner.run(["iptables", "-t", table, *action, *tagged])
        log.info("iptables -t %s %s %s", table, " ".join(action), " ".join(rule))
        return True

    def owned_rules(self, table: str) -> List[List[str]]:
        """Rules in ``table`` carrying the gateway comment, as ``-A`` argument lists."""
        out = self._runner.run(["iptables", "-t", table, "-S"]).stdout
        rules: List[List[str]] = []
        for line in out.splitlines():
            args = shlex.split(line)
            if args[:1] == ["-A"] and _comment(args) == RULE_COMMENT:
                rules.append(args)
        return rules

    def delete_rule(self, table: str, rule: List[str]) -> None:
        self._runner.run(["iptables", "-t", table, "-D", *rule[1:]])
        log.info("iptables -t %s -D %s", table, " ".join(rule[1:]))

    def remove_owned(self) -> int:
        """Delete every rule the gateway installed; returns how many were removed."""
        removed = 0
        for table in OWNED_TABLES:
            for rule in self.owned_rules(table):
                self.delete_rule(table, rule)
                removed += 1
        return removed

    def enable_forwarding(self) -> None:
        self._runner.run(["sysctl", "-w", "net.ipv4.ip_forward=1"])
        append_line_once(self._sysctl_conf, "net.ipv4.ip_forward = 1")
