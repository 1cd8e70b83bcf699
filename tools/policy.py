"""
Tool Policy
-----------
Auto-approval and default-parameter resolution for tool names.

Rules:
- Policy is built once from settings and never mutated
- Exclude-list membership always requires approval, whatever else matches
- Every approval decision is logged with the rule that produced it
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional, Pattern, Tuple
import logging
import re

from infra.logging import get_call_id
from infra.settings import AutoApproveSettings, Settings


READ_ONLY_PREFIXES = ("get", "list", "show", "view", "read", "fetch")
READ_ONLY_SUFFIXES = ("_get", "_list", "_show", "_view", "_read", "_fetch", "_status", "_statuses")


class ApprovalStatus(Enum):
    """Outcome of an auto-approval check."""
    APPROVED = auto()
    REQUIRES_APPROVAL = auto()


class ApprovalRule(Enum):
    """Which rule decided."""
    DISABLED = "disabled"
    EXCLUDED = "excluded"
    ALL = "all"
    SPECIFIC = "specific"
    PATTERN = "pattern"
    READ_ONLY = "read_only"
    DEFAULT = "default"


@dataclass(frozen=True)
class PolicyDecision:
    """
    Result of a policy check.

    All decisions are logged with the current call_id for auditability.
    """
    status: ApprovalStatus
    tool_name: str
    rule: ApprovalRule
    reason: str = ""
    matched_pattern: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.status == ApprovalStatus.APPROVED

    @property
    def needs_approval(self) -> bool:
        return self.status == ApprovalStatus.REQUIRES_APPROVAL


def compile_glob(pattern: str) -> Pattern[str]:
    """
    Compile a glob into an anchored regex.

    `*` matches any run of characters, `?` exactly one; everything else is
    literal.
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def glob_match(pattern: str, name: str) -> bool:
    return compile_glob(pattern).fullmatch(name) is not None


def is_read_only_name(tool_name: str) -> bool:
    """Naming-convention heuristic for operations without side effects."""
    lowered = tool_name.lower()
    return lowered.startswith(READ_ONLY_PREFIXES) or lowered.endswith(READ_ONLY_SUFFIXES)


@dataclass(frozen=True)
class _DefaultsEntry:
    key: str
    regex: Pattern[str]
    params: Tuple[Tuple[str, Any], ...]


class PolicyMatcher:
    """
    Central policy for auto-approval and parameter defaults.

    Approval order, first match wins:
    master switch off -> exclude list -> all -> exact name -> pattern ->
    read-only heuristic -> requires approval.
    """

    def __init__(
        self,
        auto_approve: Optional[AutoApproveSettings] = None,
        default_params: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self._rules = auto_approve or AutoApproveSettings()
        self._logger = logging.getLogger("meraki.tools.policy")

        tools = self._rules.tools
        self._exclude = frozenset(tools.exclude)
        self._specific = frozenset(tools.specific)
        self._patterns: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
            (p, compile_glob(p)) for p in tools.patterns
        )

        # Declaration order is merge order
        self._defaults: Tuple[_DefaultsEntry, ...] = tuple(
            _DefaultsEntry(key=key, regex=compile_glob(key), params=tuple(params.items()))
            for key, params in (default_params or {}).items()
        )
        self._exact_defaults: Dict[str, Tuple[Tuple[str, Any], ...]] = {
            entry.key: entry.params for entry in self._defaults
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "PolicyMatcher":
        return cls(settings.auto_approve, settings.default_params)

    def check(self, tool_name: str) -> PolicyDecision:
        """
        Decide whether a tool may run without confirmation.

        This is the main entry point for approval checks.
        All decisions are logged.
        """
        decision = self._decide(tool_name)
        self._log_decision(decision)
        return decision

    def should_auto_approve(self, tool_name: str) -> bool:
        return self.check(tool_name).approved

    def _decide(self, tool_name: str) -> PolicyDecision:
        if not self._rules.enabled:
            return self._requires(tool_name, ApprovalRule.DISABLED, "Auto-approval is disabled")

        if tool_name in self._exclude:
            return self._requires(tool_name, ApprovalRule.EXCLUDED, "Tool is explicitly excluded")

        if self._rules.tools.all:
            return self._approve(tool_name, ApprovalRule.ALL, "All tools enabled")

        if tool_name in self._specific:
            return self._approve(tool_name, ApprovalRule.SPECIFIC, "Specific match")

        for pattern, regex in self._patterns:
            if regex.fullmatch(tool_name):
                return self._approve(
                    tool_name, ApprovalRule.PATTERN, f"Pattern match: {pattern}", pattern
                )

        if self._rules.read_only_by_default and is_read_only_name(tool_name):
            return self._approve(tool_name, ApprovalRule.READ_ONLY, "Read-only by default")

        return self._requires(tool_name, ApprovalRule.DEFAULT, "Requires manual approval")

    @staticmethod
    def _approve(tool_name, rule, reason, pattern=None) -> PolicyDecision:
        return PolicyDecision(ApprovalStatus.APPROVED, tool_name, rule, reason, pattern)

    @staticmethod
    def _requires(tool_name, rule, reason) -> PolicyDecision:
        return PolicyDecision(ApprovalStatus.REQUIRES_APPROVAL, tool_name, rule, reason)

    def default_params(self, tool_name: str) -> Dict[str, Any]:
        """
        Default parameters for a tool.

        Every matching pattern contributes in declaration order (later wins
        on collision); the exact-name entry is applied last.
        """
        defaults: Dict[str, Any] = {}

        for entry in self._defaults:
            if entry.regex.fullmatch(tool_name):
                defaults.update(entry.params)

        exact = self._exact_defaults.get(tool_name)
        if exact:
            defaults.update(exact)

        return defaults

    def _log_decision(self, decision: PolicyDecision) -> None:
        """Log a policy decision for audit."""
        level = logging.INFO if decision.approved else logging.DEBUG

        self._logger.log(
            level,
            f"Policy decision: {decision.status.name} | "
            f"tool={decision.tool_name} | "
            f"rule={decision.rule.value} | "
            f"reason={decision.reason} | "
            f"call_id={get_call_id() or 'N/A'}"
        )
