"""Unit tests for save record validation and sanitization."""

import pytest

from savegame.models.save_data import ContractInstanceData, VehicleInstanceData
from savegame.tests.helpers import make_save_data
from savegame.validation.types import ValidationResult, ValidationSeverity
from savegame.validation.validator import SaveValidator


@pytest.mark.unit()
class TestValidationResult:
    """Test severity grading."""

    def test_empty_result_is_valid(self):
        result = ValidationResult()
        assert result.calculate_severity() == ValidationSeverity.VALID
        assert result.get_summary() == "Save data is valid"

    def test_few_warnings_grade_as_info(self):
        result = ValidationResult()
        result.add_warning("one")
        assert result.calculate_severity() == ValidationSeverity.INFO
        assert result.is_valid

    def test_many_warnings_grade_as_warning(self):
        result = ValidationResult()
        for i in range(6):
            result.add_warning(f"warning {i}")
        assert result.calculate_severity() == ValidationSeverity.WARNING

    def test_errors_outrank_warnings(self):
        result = ValidationResult()
        result.add_warning("warning")
        result.add_error("error")
        assert result.calculate_severity() == ValidationSeverity.ERROR
        assert result.is_loadable
        assert not result.is_valid

    def test_critical_error(self):
        result = ValidationResult()
        result.add_error("broken", critical=True)
        result.calculate_severity()

        assert result.is_critical
        assert not result.is_loadable
        assert result.errors == ["broken"]
        assert "Errors:" in result.get_detailed_report()


@pytest.mark.unit()
class TestSaveValidator:
    """Test record validation rules."""

    def setup_method(self):
        self.validator = SaveValidator(app_version="1.4.0")

    def _prepared(self, **kwargs):
        save_data = make_save_data(**kwargs)
        save_data.prepare_for_save("slot1")
        return save_data

    def test_clean_record_is_valid(self):
        result = self.validator.validate_save_data(self._prepared(with_instances=True))
        assert result.severity == ValidationSeverity.VALID, result.issues

    def test_none_is_critical(self):
        assert self.validator.validate_save_data(None).is_critical

    def test_missing_save_name_is_critical(self):
        save_data = self._prepared()
        save_data.save_name = ""
        save_data.checksum = save_data.compute_checksum()

        result = self.validator.validate_save_data(save_data)
        assert result.is_critical
        assert "Save name is required" in result.critical_errors

    def test_missing_game_state_is_critical(self):
        save_data = self._prepared()
        save_data.game_state = None
        save_data.checksum = save_data.compute_checksum()

        assert self.validator.validate_save_data(save_data).is_critical

    def test_checksum_mismatch_is_critical(self):
        save_data = self._prepared()
        save_data.game_state.current_credits = 1.0

        result = self.validator.validate_save_data(save_data)
        assert result.is_critical
        assert any("Checksum" in error for error in result.critical_errors)

    def test_missing_checksum_is_critical(self):
        save_data = self._prepared()
        save_data.checksum = ""

        result = self.validator.validate_save_data(save_data)
        assert result.is_critical
        assert "Save data has no checksum" in result.critical_errors

    def test_negative_credits_is_error(self):
        save_data = self._prepared(credits=-50.0)

        result = self.validator.validate_save_data(save_data)
        assert result.severity == ValidationSeverity.ERROR

    def test_duplicate_instances_are_errors(self):
        save_data = make_save_data(with_instances=True)
        save_data.vehicle_instances.append(
            VehicleInstanceData(instance_id="truck-1", vehicle_type="van")
        )
        save_data.prepare_for_save("slot1")

        result = self.validator.validate_save_data(save_data)
        assert any("Duplicate vehicle ID" in error for error in result.errors)
        assert result.is_loadable

    def test_dangling_contract_reference_is_error(self):
        save_data = make_save_data(with_instances=True)
        save_data.contract_instances[0].assigned_vehicle_id = "ghost"
        save_data.prepare_for_save("slot1")

        result = self.validator.validate_save_data(save_data)
        assert any("non-existent vehicle" in error for error in result.errors)

    def test_older_version_requires_migration(self):
        result = self.validator.validate_save_data(self._prepared(save_version="1.2.0"))
        assert result.requires_migration
        assert result.is_loadable

    def test_newer_version_is_flagged(self):
        result = self.validator.validate_save_data(self._prepared(save_version="2.0.0"))
        assert not result.requires_migration
        assert any("newer version" in warning for warning in result.warnings)

    def test_lazy_record_skips_checksum_and_references(self):
        save_data = self._prepared(with_instances=True)
        save_data.defer_sections()

        result = self.validator.validate_save_data(save_data)
        assert result.is_loadable
        assert result.is_valid

    def test_validator_exception_is_critical(self, monkeypatch):
        def explode(save_data, result):
            raise RuntimeError("boom")

        monkeypatch.setattr(self.validator, "_validate_financial_data", explode)

        result = self.validator.validate_save_data(self._prepared())
        assert result.is_critical


@pytest.mark.unit()
class TestSanitize:
    """Test record repair."""

    def setup_method(self):
        self.validator = SaveValidator(app_version="1.4.0")

    def test_sanitize_repairs_ranges_and_duplicates(self):
        save_data = make_save_data(with_instances=True)
        save_data.game_state.current_credits = -10.0
        save_data.vehicle_instances[0].wear_level = 3.0
        save_data.vehicle_instances[0].current_fuel = 500.0
        save_data.vehicle_instances.append(VehicleInstanceData(instance_id="truck-1"))
        save_data.contract_instances.append(ContractInstanceData(instance_id=""))
        save_data.city_instances[0].current_fuel_price = 0.0
        save_data.prepare_for_save("slot1")

        sanitized = self.validator.sanitize_save_data(save_data)

        assert sanitized.current_credits == 0.0
        assert len(sanitized.vehicle_instances) == 1
        assert sanitized.vehicle_instances[0].wear_level == 1.0
        assert sanitized.vehicle_instances[0].current_fuel == 100.0
        assert len(sanitized.contract_instances) == 1
        assert sanitized.city_instances[0].current_fuel_price == 1.5
        assert sanitized.verify_checksum()
        assert self.validator.validate_save_data(sanitized).is_valid

    def test_sanitize_does_not_modify_input(self):
        save_data = make_save_data(credits=-10.0)
        save_data.prepare_for_save("slot1")

        self.validator.sanitize_save_data(save_data)

        assert save_data.current_credits == -10.0

    def test_sanitize_fills_identity_fields(self):
        save_data = make_save_data(save_name="")
        save_data.slot_name = "slot7"
        save_data.creation_date = None

        sanitized = self.validator.sanitize_save_data(save_data)

        assert sanitized.save_name == "slot7"
        assert sanitized.creation_date is not None
