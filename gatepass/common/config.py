"""Workflow configuration for gatepass.

Handles loading and validation of the YAML workflow file that describes
roles and their legacy aliases, approval flows per leave type and partner
institutions. Every section is optional; missing sections fall back to the
built-in defaults.

Example::

    roles:
      - canonical: campus_admin
        aliases: [director]
      - canonical: os
        aliases: [ao]
    approval_flows:
      academic: [warden, os]
      non_academic: [warden, campus_admin]
    partner_institutions:
      - name: SCMS Hyderabad
        email_domains: [scmshyd.siu.edu.in]
        schools: [SYMBIOSIS CENTRE FOR MANAGEMENT STUDIES]
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from gatepass.core.roles.aliases import RoleAliasTable, RoleIdentity
from gatepass.core.roles.roles import LEGACY_ALIASES, Role


# Roles required per leave type
DEFAULT_APPROVAL_FLOWS: Dict[str, List[str]] = {
    "academic": ["warden", "os"],
    "non_academic": ["warden", "campus_admin"],
    "long_leave": ["warden", "campus_admin", "os"],
    "short_leave": ["warden", "campus_admin", "os"],
    "vacation": ["warden", "campus_admin", "os"],
}

DEFAULT_FLOW_LEAVE_TYPE = "long_leave"

# Institutions whose office-staff sign-off happens outside this system
DEFAULT_PARTNER_INSTITUTIONS: List[Dict[str, Any]] = [
    {
        "name": "SCMS Hyderabad",
        "email_domains": ["scmshyd.siu.edu.in"],
        "schools": ["SYMBIOSIS CENTRE FOR MANAGEMENT STUDIES"],
        "auto_approve_roles": ["os"],
    },
]


@dataclass
class RoleConfig:
    """A canonical role and its legacy names."""

    canonical: str
    aliases: List[str] = field(default_factory=list)


@dataclass
class PartnerInstitutionConfig:
    """An institution whose requesters get some roles pre-resolved."""

    name: str
    email_domains: List[str] = field(default_factory=list)
    schools: List[str] = field(default_factory=list)
    auto_approve_roles: List[str] = field(default_factory=lambda: ["os"])

    def matches(self, email: Optional[str], school: Optional[str]) -> bool:
        """Check if a requester belongs to this institution.

        Matches on the email domain or on the school name (case-insensitive
        substring, since imported school names carry campus suffixes).
        """
        if email and "@" in email:
            domain = email.rsplit("@", 1)[1].strip().lower()
            if domain in {d.lower() for d in self.email_domains}:
                return True

        if school:
            school_upper = school.upper()
            for name in self.schools:
                if name and name.upper() in school_upper:
                    return True

        return False


@dataclass
class WorkflowConfig:
    """Top-level workflow configuration."""

    roles: List[RoleConfig] = field(default_factory=list)
    approval_flows: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_APPROVAL_FLOWS.items()}
    )
    default_flow_leave_type: str = DEFAULT_FLOW_LEAVE_TYPE
    partner_institutions: List[PartnerInstitutionConfig] = field(default_factory=list)

    def alias_table(self) -> RoleAliasTable:
        """Build the immutable role alias table described by this config."""
        if not self.roles:
            return RoleAliasTable.default()

        identities = {
            role.value: set(LEGACY_ALIASES.get(role, frozenset())) for role in Role
        }
        for role_config in self.roles:
            identities.setdefault(role_config.canonical.lower(), set()).update(
                a.lower() for a in role_config.aliases
            )

        return RoleAliasTable(
            RoleIdentity(canonical=canonical, aliases=frozenset(aliases))
            for canonical, aliases in identities.items()
        )


def parse_role_config(role_dict: Dict[str, Any]) -> RoleConfig:
    """Parse a role entry.

    Args:
        role_dict: Role configuration dictionary

    Returns:
        RoleConfig instance
    """
    canonical = role_dict.get("canonical")
    if not canonical:
        raise ValueError(f"Role entry without 'canonical' name: {role_dict}")
    return RoleConfig(
        canonical=str(canonical),
        aliases=[str(a) for a in role_dict.get("aliases", []) or []],
    )


def parse_partner_config(partner_dict: Dict[str, Any]) -> PartnerInstitutionConfig:
    """Parse a partner institution entry.

    Args:
        partner_dict: Partner institution dictionary

    Returns:
        PartnerInstitutionConfig instance
    """
    return PartnerInstitutionConfig(
        name=partner_dict.get("name", ""),
        email_domains=list(partner_dict.get("email_domains", []) or []),
        schools=list(partner_dict.get("schools", []) or []),
        auto_approve_roles=list(partner_dict.get("auto_approve_roles", ["os"]) or []),
    )


def parse_config(config_dict: Dict[str, Any]) -> WorkflowConfig:
    """Parse the full workflow configuration dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        WorkflowConfig instance
    """
    roles = [parse_role_config(r) for r in config_dict.get("roles", []) or []]

    flows = {k: list(v) for k, v in DEFAULT_APPROVAL_FLOWS.items()}
    for leave_type, flow in (config_dict.get("approval_flows") or {}).items():
        if not isinstance(flow, list):
            raise TypeError(f"Approval flow for {leave_type} must be a list of roles")
        flows[leave_type] = [str(role) for role in flow]

    if "partner_institutions" in config_dict:
        partner_dicts = config_dict.get("partner_institutions") or []
    else:
        partner_dicts = DEFAULT_PARTNER_INSTITUTIONS

    default_flow = config_dict.get("default_flow_leave_type", DEFAULT_FLOW_LEAVE_TYPE)
    if default_flow not in flows:
        raise ValueError(f"default_flow_leave_type '{default_flow}' has no approval flow")

    return WorkflowConfig(
        roles=roles,
        approval_flows=flows,
        default_flow_leave_type=default_flow,
        partner_institutions=[parse_partner_config(p) for p in partner_dicts],
    )


def load_config(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_workflow_config(config_path: Optional[str] = None) -> WorkflowConfig:
    """Load and parse the workflow configuration.

    Args:
        config_path: Path to the YAML file; built-in defaults when None

    Returns:
        WorkflowConfig instance
    """
    if config_path is None:
        return parse_config({})
    return parse_config(load_config(config_path))
