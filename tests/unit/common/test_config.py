"""Tests for workflow configuration and settings."""

import pytest
import yaml

from gatepass.common.config import (
    DEFAULT_APPROVAL_FLOWS,
    PartnerInstitutionConfig,
    WorkflowConfig,
    load_config,
    load_workflow_config,
    parse_config,
    parse_partner_config,
    parse_role_config,
)
from gatepass.core.config import Settings


def _write_config(tmp_path, data):
    config_file = tmp_path / "workflow.yaml"
    config_file.write_text(yaml.dump(data))
    return str(config_file)


class TestDefaults:
    """Tests for built-in defaults."""

    def test_default_flows(self):
        """Test defaults when no file is given."""
        config = load_workflow_config()

        assert config.approval_flows == DEFAULT_APPROVAL_FLOWS
        assert config.default_flow_leave_type == "long_leave"
        assert config.roles == []

    def test_default_partner(self):
        """Test SCMS is a partner institution by default."""
        config = load_workflow_config()

        assert [p.name for p in config.partner_institutions] == ["SCMS Hyderabad"]
        assert config.partner_institutions[0].auto_approve_roles == ["os"]

    def test_default_alias_table(self):
        table = WorkflowConfig().alias_table()
        assert table.lookup("director") == "campus_admin"

    def test_flows_are_copies(self):
        config = parse_config({})
        config.approval_flows["academic"].append("campus_admin")
        assert DEFAULT_APPROVAL_FLOWS["academic"] == ["warden", "os"]


class TestParseConfig:
    """Tests for parsing configuration sections."""

    def test_flow_override(self):
        """Test a configured flow replaces the default for its leave type only."""
        config = parse_config({"approval_flows": {"academic": ["warden"]}})

        assert config.approval_flows["academic"] == ["warden"]
        assert config.approval_flows["non_academic"] == ["warden", "campus_admin"]

    def test_flow_must_be_list(self):
        with pytest.raises(TypeError, match="must be a list"):
            parse_config({"approval_flows": {"academic": "warden"}})

    def test_default_leave_type_needs_flow(self):
        """Test the fallback leave type must have a flow."""
        with pytest.raises(ValueError, match="has no approval flow"):
            parse_config({"default_flow_leave_type": "sabbatical"})

    def test_empty_partner_list(self):
        """Test partners can be switched off by configuration."""
        config = parse_config({"partner_institutions": []})
        assert config.partner_institutions == []

    def test_role_entry_requires_canonical(self):
        with pytest.raises(ValueError, match="canonical"):
            parse_role_config({"aliases": ["rector"]})

    def test_role_aliases_extend_defaults(self):
        """Test configured aliases are added to the built-in ones."""
        config = parse_config({"roles": [{"canonical": "Warden", "aliases": ["Rector"]}]})
        table = config.alias_table()

        assert table.lookup("rector") == "warden"
        assert table.lookup("ao") == "os"
        assert table.lookup("director") == "campus_admin"

    def test_partner_defaults(self):
        partner = parse_partner_config({"name": "SCMS"})
        assert partner.auto_approve_roles == ["os"]
        assert partner.email_domains == []


class TestPartnerMatching:
    """Tests for partner institution membership."""

    PARTNER = PartnerInstitutionConfig(
        name="SCMS Hyderabad",
        email_domains=["scmshyd.siu.edu.in"],
        schools=["SYMBIOSIS CENTRE FOR MANAGEMENT STUDIES"],
    )

    def test_email_domain(self):
        assert self.PARTNER.matches("ravi@ScmsHyd.siu.edu.in", None)

    def test_school_substring(self):
        """Test school names with campus suffixes match."""
        assert self.PARTNER.matches(None, "Symbiosis Centre for Management Studies, Hyderabad")

    def test_no_match(self):
        assert not self.PARTNER.matches("asha@sithyd.siu.edu.in", "SYMBIOSIS INSTITUTE OF TECHNOLOGY")
        assert not self.PARTNER.matches(None, None)
        assert not self.PARTNER.matches("not-an-email", "")


class TestLoadConfig:
    """Tests for loading YAML files."""

    def test_load_from_file(self, tmp_path):
        """Test a YAML file is parsed."""
        path = _write_config(
            tmp_path,
            {
                "approval_flows": {"vacation": ["warden", "director"]},
                "partner_institutions": [{"name": "Law School", "email_domains": ["slshyd.edu.in"]}],
            },
        )
        config = load_workflow_config(path)

        assert config.approval_flows["vacation"] == ["warden", "director"]
        assert config.partner_institutions[0].name == "Law School"

    def test_env_vars_expanded(self, tmp_path, monkeypatch):
        """Test environment variables in values are expanded."""
        monkeypatch.setenv("PARTNER_DOMAIN", "scmshyd.siu.edu.in")
        path = _write_config(
            tmp_path,
            {"partner_institutions": [{"name": "SCMS", "email_domains": ["${PARTNER_DOMAIN}"]}]},
        )

        config = load_workflow_config(path)

        assert config.partner_institutions[0].email_domains == ["scmshyd.siu.edu.in"]

    def test_empty_file(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert load_config(str(config_file)) == {}

    def test_non_mapping_root(self, tmp_path):
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- warden\n- os\n")
        with pytest.raises(TypeError, match="mapping"):
            load_config(str(config_file))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow_config(str(tmp_path / "missing.yaml"))


class TestSettings:
    """Tests for environment settings."""

    def test_env_prefix(self, monkeypatch):
        """Test settings are read from GATEPASS_ variables."""
        monkeypatch.setenv("GATEPASS_WARDEN_BYPASS_ENABLED", "true")
        monkeypatch.setenv("GATEPASS_STORE_MAX_RETRIES", "7")

        settings = Settings()

        assert settings.warden_bypass_enabled is True
        assert settings.store_max_retries == 7

    def test_celery_urls_default_to_redis(self, monkeypatch):
        monkeypatch.setenv("GATEPASS_REDIS_URL", "redis://cache:6379/2")
        settings = Settings()

        assert settings.celery_broker == "redis://cache:6379/2"
        assert settings.celery_backend == "redis://cache:6379/2"

    def test_explicit_broker(self):
        settings = Settings(celery_broker_url="amqp://broker//")
        assert settings.celery_broker == "amqp://broker//"
