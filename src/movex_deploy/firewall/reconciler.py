"""Declarative firewall reconciliation on top of ufw."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .. import catalog
from ..config import DeploySettings
from ..errors import DeployError
from ..local.session import ActionRunner
from ..probe.readiness import ReadinessProber, ReadinessTarget
from ..utils.logging import banner, get_logger

logger = get_logger(__name__)


class FirewallActivationRisk(DeployError):
    """Raised when a rule set would cut off the remote control channel."""


class RuleAction(Enum):
    ALLOW = "allow"
    DENY = "deny"
    LIMIT = "limit"


@dataclass(frozen=True)
class FirewallRule:
    action: RuleAction
    port: Optional[int] = None
    protocol: str = "tcp"
    source: Optional[str] = None
    interface: Optional[str] = None
    comment: str = ""


@dataclass
class FirewallRuleSet:
    """Default-deny posture plus explicit allow, deny and rate-limit lists."""

    control_port: int
    default_inbound: str = "deny"
    default_outbound: str = "allow"
    allow: List[FirewallRule] = field(default_factory=list)
    deny: List[FirewallRule] = field(default_factory=list)
    networks: List[FirewallRule] = field(default_factory=list)
    rate_limits: List[FirewallRule] = field(default_factory=list)
    logging_level: str = "medium"

    def control_rule(self) -> Optional[FirewallRule]:
        for rule in self.allow:
            if rule.action is RuleAction.ALLOW and rule.port == self.control_port and rule.source is None:
                return rule
        return None

    def validate(self) -> None:
        if self.control_rule() is None:
            raise FirewallActivationRisk(
                f"Rule set has no allow rule for the control channel (port {self.control_port}/tcp); "
                "activating it would lock out remote administration"
            )
        if any(rule.port == self.control_port for rule in self.deny):
            raise FirewallActivationRisk(
                f"Rule set denies the control channel port {self.control_port}"
            )

    def ordered_rules(self) -> List[FirewallRule]:
        """Control channel first, then public allows, denies, networks, rate limits."""
        control = self.control_rule()
        allows = [rule for rule in self.allow if rule != control]
        head = [control] if control else []
        return head + allows + self.deny + self.networks + self.rate_limits


@dataclass(frozen=True)
class EffectivePolicy:
    """What the firewall enforces after a successful apply."""

    default_inbound: str
    default_outbound: str
    rules: Tuple[FirewallRule, ...]
    logging_level: str
    enabled: bool = True

    def allows_port(self, port: int) -> bool:
        return any(
            rule.action in (RuleAction.ALLOW, RuleAction.LIMIT) and rule.port == port and rule.source is None
            for rule in self.rules
        )


class UfwBackend:
    """Translates the rule model into ufw command lines."""

    binary = "ufw"

    def reset(self) -> str:
        return f"{self.binary} --force reset"

    def defaults(self, inbound: str, outbound: str) -> List[str]:
        return [
            f"{self.binary} default {inbound} incoming",
            f"{self.binary} default {outbound} outgoing",
        ]

    def rule(self, rule: FirewallRule) -> str:
        parts = [self.binary, rule.action.value]
        if rule.interface:
            parts += ["in", "on", rule.interface]
        elif rule.source and rule.port is None:
            parts += ["in", "from", rule.source]
        elif rule.action is RuleAction.DENY:
            parts += ["from", rule.source or "any", "to", "any", "port", str(rule.port)]
        else:
            parts.append(f"{rule.port}/{rule.protocol}")
        command = " ".join(parts)
        if rule.comment:
            command += f" comment {shlex.quote(rule.comment)}"
        return command

    def logging(self, level: str) -> str:
        return f"{self.binary} logging {level}"

    def enable(self) -> str:
        return f"{self.binary} --force enable"

    def status(self) -> str:
        return f"{self.binary} status verbose"


class FirewallReconciler:
    """Resets the firewall and re-applies a rule set; safe to re-run."""

    def __init__(
        self,
        runner: ActionRunner,
        backend: Optional[UfwBackend] = None,
        *,
        control_check: Optional[ReadinessTarget] = None,
        prober: Optional[ReadinessProber] = None,
    ) -> None:
        self.runner = runner
        self.backend = backend or UfwBackend()
        self.control_check = control_check
        self.prober = prober or ReadinessProber(max_attempts=3)

    def plan(self, rule_set: FirewallRuleSet) -> List[str]:
        rule_set.validate()
        commands = [self.backend.reset()]
        commands += self.backend.defaults(rule_set.default_inbound, rule_set.default_outbound)
        commands += [self.backend.rule(rule) for rule in rule_set.ordered_rules()]
        commands.append(self.backend.logging(rule_set.logging_level))
        commands.append(self.backend.enable())
        return commands

    def apply(self, rule_set: FirewallRuleSet) -> EffectivePolicy:
        commands = self.plan(rule_set)
        logger.info("Applying %d firewall commands (default %s incoming, %s outgoing)",
                    len(commands), rule_set.default_inbound, rule_set.default_outbound)
        for command in commands:
            logger.info("  $ %s", command)
            result = self.runner.run("firewall", command)
            result.raise_for_status()

        status = self.runner.check(self.backend.status())
        if status.stdout:
            for line in status.stdout.splitlines():
                logger.info("  %s", line)

        if self.control_check is not None:
            if self.prober.wait_until_ready(self.control_check):
                logger.info("Control channel answers on port %d", rule_set.control_port)
            else:
                logger.error("Could not confirm the control channel on port %d after activation", rule_set.control_port)
        logger.warning("IMPORTANT: Verify you can still SSH to the server on port %d!", rule_set.control_port)
        logger.warning("If locked out, use the cloud provider console to disable the firewall.")

        return EffectivePolicy(
            default_inbound=rule_set.default_inbound,
            default_outbound=rule_set.default_outbound,
            rules=tuple(rule_set.ordered_rules()),
            logging_level=rule_set.logging_level,
        )


def platform_rule_set(settings: DeploySettings) -> FirewallRuleSet:
    """SSH, API gateway and frontend open; service, database and cache ports closed."""
    return FirewallRuleSet(
        control_port=settings.ssh_port,
        allow=[
            FirewallRule(RuleAction.ALLOW, settings.ssh_port, comment="SSH access"),
            FirewallRule(RuleAction.ALLOW, settings.nginx_api_port, comment="MoveX API Gateway"),
            FirewallRule(RuleAction.ALLOW, settings.nginx_frontend_port, comment="MoveX Frontend"),
        ],
        deny=[
            FirewallRule(RuleAction.DENY, port, comment=f"Block external access to internal port {port}")
            for port in catalog.internal_ports(settings)
        ],
        networks=[FirewallRule(RuleAction.ALLOW, interface=catalog.CONTAINER_INTERFACE)]
        + [
            FirewallRule(RuleAction.ALLOW, source=cidr, comment=comment)
            for cidr, comment in catalog.CONTAINER_NETWORKS
        ],
        rate_limits=[FirewallRule(RuleAction.LIMIT, settings.ssh_port, comment="Rate limit SSH")],
    )


def configure_firewall(
    settings: DeploySettings,
    runner: ActionRunner,
    control_check: Optional[ReadinessTarget] = None,
) -> EffectivePolicy:
    banner(logger, "MoveX Firewall Configuration")
    reconciler = FirewallReconciler(runner, control_check=control_check)
    return reconciler.apply(platform_rule_set(settings))
