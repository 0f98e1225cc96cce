"""
Tests for the application factory, operator CLI and structured logging.
"""

import json
import logging

from scrapops.config import TestingConfig, config
from scrapops.core.logging_config import JSONFormatter, ReadableFormatter
from scrapops.services import field_configuration_service


def _record(msg="Level L4 completed", **extra):
    record = logging.LogRecord(
        name="scrapops.services.workflow_engine", level=logging.INFO,
        pathname=__file__, lineno=1, msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestAppFactory:
    def test_testing_config_selected(self, app):
        assert app.config["TESTING"] is True
        assert config["testing"] is TestingConfig

    def test_seed_default_fields_command(self, app, tenant_id):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-default-fields", "--tenant", tenant_id])

        assert result.exit_code == 0, result.output
        assert f"Seeded 6 field configurations for tenant {tenant_id}." in result.output
        assert len(field_configuration_service.get_field_configurations(tenant_id)) == 6

    def test_seed_default_fields_requires_tenant(self, app):
        result = app.test_cli_runner().invoke(args=["seed-default-fields"])
        assert result.exit_code != 0


class TestFormatters:
    def test_json_formatter_emits_workflow_context(self):
        payload = json.loads(JSONFormatter().format(
            _record(tenant_id="t-1", transaction_id="txn-9", operational_level=4),
        ))

        assert payload["message"] == "Level L4 completed"
        assert payload["level"] == "INFO"
        assert payload["tenant_id"] == "t-1"
        assert payload["transaction_id"] == "txn-9"
        assert payload["operational_level"] == 4
        assert "config_id" not in payload

    def test_readable_formatter_appends_transaction(self):
        line = ReadableFormatter().format(_record(transaction_id="txn-9"))
        assert "Level L4 completed" in line
        assert "[txn=txn-9]" in line

    def test_readable_formatter_shows_transaction_level(self):
        line = ReadableFormatter().format(_record(transaction_id="txn-9", operational_level=4))
        assert line.endswith("Level L4 completed [txn=txn-9 L4]")

    def test_readable_formatter_shows_config_version(self):
        line = ReadableFormatter().format(
            _record("Field updated", config_id="cfg-3", version=2, operational_level=5),
        )
        assert line.endswith("Field updated [cfg=cfg-3 v2]")
        assert ReadableFormatter().format(_record("Seeded", operational_level=1)).endswith("Seeded [L1]")
        assert ReadableFormatter().format(_record("Plain")).endswith("Plain")
