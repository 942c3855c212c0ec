"""Firewall reconciliation."""

from .reconciler import (
    EffectivePolicy,
    FirewallActivationRisk,
    FirewallReconciler,
    FirewallRule,
    FirewallRuleSet,
    RuleAction,
    UfwBackend,
    configure_firewall,
    platform_rule_set,
)

__all__ = [
    "EffectivePolicy",
    "FirewallActivationRisk",
    "FirewallReconciler",
    "FirewallRule",
    "FirewallRuleSet",
    "RuleAction",
    "UfwBackend",
    "configure_firewall",
    "platform_rule_set",
]
