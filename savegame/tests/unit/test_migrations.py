"""Unit tests for the version migration pipeline."""

import pytest

from savegame.errors import VersionMismatchError
from savegame.migrations import (
    DEFAULT_MIGRATION_STEPS,
    MigrationStep,
    VersionMigrationPipeline,
    parse_version,
    versions_match,
)
from savegame.models.save_data import ContractStatus
from savegame.tests.helpers import make_save_data


class BrokenMigration(MigrationStep):
    from_version = "1.0.0"
    to_version = "1.1.0"
    description = "Always fails"

    def apply(self, save_data):
        raise RuntimeError("step failure")


@pytest.mark.unit()
class TestParseVersion:
    def test_parse(self):
        assert parse_version("1.4.0") == (1, 4, 0)
        assert parse_version("1.10") > parse_version("1.9.9")

    def test_short_versions_pad_to_patch(self):
        assert parse_version("1.0") == parse_version("1.0.0") == (1, 0, 0)
        assert parse_version("2") == (2, 0, 0)
        assert parse_version("1.0.0.0") == (1, 0, 0)
        assert parse_version("1.0.0.1") > parse_version("1.0")

    def test_versions_match(self):
        assert versions_match("1.4", "1.4.0")
        assert not versions_match("1.4.0", "1.4.1")
        assert versions_match("Unknown", "Unknown")
        assert not versions_match("Unknown", "1.4.0")

    @pytest.mark.parametrize("version", ["", "1.x", "abc"])
    def test_invalid(self, version):
        with pytest.raises(ValueError):
            parse_version(version)


@pytest.mark.unit()
class TestVersionMigrationPipeline:
    """Test path planning and migration."""

    def setup_method(self):
        self.pipeline = VersionMigrationPipeline(DEFAULT_MIGRATION_STEPS)

    def test_supported_versions(self):
        assert self.pipeline.get_supported_versions() == [
            "1.0.0",
            "1.1.0",
            "1.2.0",
            "1.3.0",
            "1.4.0",
        ]
        assert self.pipeline.get_latest_supported_version() == "1.4.0"

    def test_plan_forward_path(self):
        path = self.pipeline.plan_path("1.0.0", "1.2.0")
        assert [step.to_version for step in path] == ["1.1.0", "1.2.0"]
        assert len(self.pipeline.get_migration_path("1.0.0", "1.4.0")) == 4

    def test_plan_accepts_short_versions(self):
        path = self.pipeline.plan_path("1.0", "1.2")
        assert [step.to_version for step in path] == ["1.1.0", "1.2.0"]
        assert not self.pipeline.is_migration_required("1.4", "1.4.0")

    def test_migrate_short_version_of_current_is_noop(self):
        save_data = make_save_data(save_version="1.4")
        result = self.pipeline.migrate(save_data, "1.4.0")
        assert result.save_data is save_data

    def test_no_backward_path(self):
        assert self.pipeline.plan_path("1.4.0", "1.0.0") == []
        assert not self.pipeline.can_migrate("1.4.0", "1.0.0")

    def test_no_path_for_unknown_version(self):
        assert not self.pipeline.can_migrate("0.9.0", "1.4.0")
        assert not self.pipeline.can_migrate("1.0.0", "1.5.0")
        assert not self.pipeline.can_migrate("garbage", "1.4.0")

    def test_backward_step_is_rejected(self):
        class Backward(MigrationStep):
            from_version = "1.2.0"
            to_version = "1.1.0"

        with pytest.raises(ValueError):
            self.pipeline.register_step(Backward())

    def test_migrate_sets_version_and_checksum(self):
        save_data = make_save_data(save_version="1.0.0", with_instances=True)
        save_data.contract_instances[0].delivery_progress = 1.0
        save_data.fuel_prices = {"Springfield": 2.0}
        save_data.prepare_for_save("slot1")

        result = self.pipeline.migrate(save_data, "1.2.0")

        migrated = result.save_data
        assert result.success
        assert len(result.completed_steps) == 2
        assert migrated.save_version == "1.2.0"
        assert migrated.verify_checksum()
        assert migrated.vehicle_instances[0].last_maintenance is not None
        assert migrated.contract_instances[0].status == ContractStatus.COMPLETED.value
        assert migrated.game_state.owned_licenses == ["standard"]
        assert migrated.fuel_prices["Springfield"] == pytest.approx(2.2)

        # Source record is untouched
        assert save_data.save_version == "1.0.0"
        assert save_data.fuel_prices["Springfield"] == 2.0

    def test_migrate_same_version_is_noop(self):
        save_data = make_save_data(save_version="1.4.0")
        result = self.pipeline.migrate(save_data, "1.4.0")
        assert result.success
        assert result.save_data is save_data

    def test_migrate_without_path_raises(self):
        with pytest.raises(VersionMismatchError):
            self.pipeline.migrate(make_save_data(save_version="1.4.0"), "1.0.0")

    def test_failing_step_raises(self):
        pipeline = VersionMigrationPipeline([BrokenMigration])
        with pytest.raises(VersionMismatchError, match="Always fails"):
            pipeline.migrate(make_save_data(save_version="1.0.0"), "1.1.0")

    def test_full_chain_sets_company_reputation(self):
        result = self.pipeline.migrate(make_save_data(save_version="1.0.0"), "1.4.0")
        assert result.save_data.game_state.company_reputation == 100.0
