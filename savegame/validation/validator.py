"""Save record validation, sanitization and migration.

Validation never raises for bad data: issues are collected on a
``ValidationResult`` and graded. Errors that make a record untrustworthy
(missing identity fields, missing game state, missing or mismatched
checksum) are critical and prevent loading; everything else is repairable
by ``sanitize_save_data``.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..errors import VersionMismatchError
from ..migrations import (
    DEFAULT_MIGRATION_STEPS,
    VersionMigrationPipeline,
    parse_version,
    versions_match,
)
from ..models.save_data import ContractStatus, SaveData
from .types import ValidationResult, ValidationSeverity

logger = logging.getLogger(__name__)

MIN_CHECKSUM_LENGTH = 8
MAX_CREDITS = 999_999_999.0
MAX_PLAYTIME = 100_000.0
MAX_VEHICLES = 1000
MAX_CONTRACTS = 100_000
MAX_CITIES = 10_000
# Tolerance between credits and earnings minus expenses
CREDIT_BALANCE_TOLERANCE = 1000.0
DEFAULT_FUEL_PRICE = 1.5


class SaveValidator:
    """Validates, repairs and migrates save records."""

    def __init__(
        self,
        app_version: str = "1.4.0",
        migration_pipeline: Optional[VersionMigrationPipeline] = None,
    ):
        self.app_version = app_version
        self.migration_pipeline = migration_pipeline or VersionMigrationPipeline(
            DEFAULT_MIGRATION_STEPS
        )

    def validate_save_data(self, save_data: Optional[SaveData]) -> ValidationResult:
        """Validate a record.

        Args:
            save_data: Record to validate

        Returns:
            Graded validation result
        """
        result = ValidationResult()

        if save_data is None:
            result.add_error("Save data is null", critical=True)
            result.calculate_severity()
            return result

        try:
            self._validate_core_data(save_data, result)
            self._validate_financial_data(save_data, result)
            self._validate_vehicle_instances(save_data, result)
            self._validate_contract_instances(save_data, result)
            self._validate_city_instances(save_data, result)
            self._validate_cross_references(save_data, result)
            self._validate_version(save_data, result)
            self._validate_checksum(save_data, result)
        except Exception as e:
            logger.error(f"Validation of {save_data.save_name} raised: {e}")
            result.add_error(f"Validation exception: {e}", critical=True)

        result.calculate_severity()
        logger.debug(
            f"Validated {save_data.save_name or save_data.slot_name}: "
            f"{result.get_summary()}"
        )
        return result

    def _validate_core_data(
        self, save_data: SaveData, result: ValidationResult
    ) -> None:
        if not save_data.save_name:
            result.add_error("Save name is required", critical=True)
        if not save_data.save_version:
            result.add_error("Save version is required", critical=True)

        if save_data.creation_date is None:
            result.add_error("Creation date is invalid", critical=True)
        else:
            if save_data.creation_date > datetime.now() + timedelta(days=1):
                result.add_warning("Creation date is in the future")
            if (
                save_data.last_modified is not None
                and save_data.last_modified < save_data.creation_date
            ):
                result.add_error("Last modified date cannot be before creation date")

        if save_data.game_state is None:
            result.add_error("Game state is required", critical=True)
        if save_data.player_progress is None:
            result.add_warning("Player progress is missing")
        if save_data.settings is None:
            result.add_warning("Settings data is missing")

    def _validate_financial_data(
        self, save_data: SaveData, result: ValidationResult
    ) -> None:
        game_state = save_data.game_state
        if game_state is None:
            return

        credits = game_state.current_credits
        if credits < 0:
            result.add_error(f"Credits cannot be negative: {credits}")
        if credits > MAX_CREDITS:
            result.add_warning(f"Credits are unusually high: {credits:,.0f}")

        if game_state.total_earnings < 0:
            result.add_error(
                f"Total earnings cannot be negative: {game_state.total_earnings}"
            )
        if game_state.total_expenses < 0:
            result.add_error(
                f"Total expenses cannot be negative: {game_state.total_expenses}"
            )

        if game_state.total_play_time < 0:
            result.add_error(
                f"Play time cannot be negative: {game_state.total_play_time}"
            )
        elif game_state.total_play_time > MAX_PLAYTIME:
            result.add_warning(
                f"Play time is unusually high: {game_state.total_play_time}"
            )

        if game_state.total_earnings or game_state.total_expenses:
            expected = game_state.total_earnings - game_state.total_expenses
            if abs(credits - expected) > CREDIT_BALANCE_TOLERANCE:
                result.add_warning(
                    "Credits don't match earnings/expenses calculation. "
                    f"Expected: {expected:,.0f}, Actual: {credits:,.0f}"
                )

    def _validate_vehicle_instances(
        self, save_data: SaveData, result: ValidationResult
    ) -> None:
        vehicles = save_data.vehicle_instances
        if len(vehicles) > MAX_VEHICLES:
            result.add_warning(f"Unusually high vehicle count: {len(vehicles)}")

        now = datetime.now() + timedelta(days=1)
        seen = set()
        for i, vehicle in enumerate(vehicles):
            prefix = f"Vehicle {i}"
            if not vehicle.instance_id:
                result.add_error(f"{prefix}: Instance ID is required")
                continue
            if vehicle.instance_id in seen:
                result.add_error(
                    f"{prefix}: Duplicate vehicle ID: {vehicle.instance_id}"
                )
            seen.add(vehicle.instance_id)

            if vehicle.current_fuel < 0:
                result.add_error(
                    f"{prefix}: Fuel cannot be negative: {vehicle.current_fuel}"
                )
            if vehicle.current_fuel > vehicle.fuel_capacity * 1.1:
                result.add_error(
                    f"{prefix}: Fuel exceeds capacity: "
                    f"{vehicle.current_fuel}/{vehicle.fuel_capacity}"
                )
            if vehicle.current_weight < 0:
                result.add_error(
                    f"{prefix}: Weight cannot be negative: {vehicle.current_weight}"
                )
            if vehicle.current_weight > vehicle.weight_capacity * 1.05:
                result.add_warning(
                    f"{prefix}: Weight exceeds capacity: "
                    f"{vehicle.current_weight}/{vehicle.weight_capacity}"
                )
            if not 0 <= vehicle.wear_level <= 1:
                result.add_error(
                    f"{prefix}: Wear level must be 0-1: {vehicle.wear_level}"
                )
            if vehicle.total_distance < 0:
                result.add_error(
                    f"{prefix}: Total distance cannot be negative: "
                    f"{vehicle.total_distance}"
                )
            if vehicle.total_revenue < 0 or vehicle.total_expenses < 0:
                result.add_error(f"{prefix}: Revenue and expenses cannot be negative")
            if vehicle.purchase_date and vehicle.purchase_date > now:
                result.add_warning(f"{prefix}: Purchase date is in the future")
            if vehicle.last_maintenance and vehicle.last_maintenance > now:
                result.add_warning(f"{prefix}: Last maintenance date is in the future")

    def _validate_contract_instances(
        self, save_data: SaveData, result: ValidationResult
    ) -> None:
        contracts = save_data.contract_instances
        if len(contracts) > MAX_CONTRACTS:
            result.add_warning(f"Unusually high contract count: {len(contracts)}")

        seen = set()
        for i, contract in enumerate(contracts):
            prefix = f"Contract {i}"
            if not contract.instance_id:
                result.add_error(f"{prefix}: Instance ID is required")
                continue
            if contract.instance_id in seen:
                result.add_error(
                    f"{prefix}: Duplicate contract ID: {contract.instance_id}"
                )
            seen.add(contract.instance_id)

            if (
                contract.acceptance_time
                and contract.deadline
                and contract.deadline < contract.acceptance_time
            ):
                result.add_error(f"{prefix}: Deadline cannot be before acceptance time")
            if not 0 <= contract.progress_percentage <= 100:
                result.add_error(
                    f"{prefix}: Progress percentage must be 0-100: "
                    f"{contract.progress_percentage}"
                )
            if min(contract.agreed_reward, contract.actual_reward) < 0:
                result.add_error(f"{prefix}: Rewards cannot be negative")
            if contract.penalty_amount < 0:
                result.add_error(
                    f"{prefix}: Penalty amount cannot be negative: "
                    f"{contract.penalty_amount}"
                )

            self._validate_contract_status(contract, result, prefix)

    def _validate_contract_status(self, contract, result, prefix):
        status = contract.status
        if status == ContractStatus.AVAILABLE and contract.assigned_vehicle_id:
            result.add_warning(
                f"{prefix}: Available contract should not have assigned vehicle"
            )
        elif status == ContractStatus.ACCEPTED and not contract.assigned_vehicle_id:
            result.add_warning(
                f"{prefix}: Accepted contract should have assigned vehicle"
            )
        elif status == ContractStatus.COMPLETED:
            if contract.progress_percentage < 100:
                result.add_warning(
                    f"{prefix}: Completed contract should have 100% progress"
                )
            if contract.actual_reward == 0 and contract.agreed_reward > 0:
                result.add_warning(
                    f"{prefix}: Completed contract should have actual reward"
                )
        elif status in (ContractStatus.CANCELLED, ContractStatus.EXPIRED):
            if contract.actual_reward > 0:
                result.add_warning(
                    f"{prefix}: Cancelled/expired contract should not have "
                    "actual reward"
                )

    def _validate_city_instances(
        self, save_data: SaveData, result: ValidationResult
    ) -> None:
        cities = save_data.city_instances
        if len(cities) > MAX_CITIES:
            result.add_warning(f"Unusually high city count: {len(cities)}")

        seen = set()
        for i, city in enumerate(cities):
            prefix = f"City {i}"
            if not city.instance_id:
                result.add_error(f"{prefix}: Instance ID is required")
                continue
            if city.instance_id in seen:
                result.add_error(f"{prefix}: Duplicate city ID: {city.instance_id}")
            seen.add(city.instance_id)

            if city.current_fuel_price <= 0:
                result.add_error(
                    f"{prefix}: Fuel price must be positive: {city.current_fuel_price}"
                )
            if city.economic_multiplier <= 0:
                result.add_error(
                    f"{prefix}: Economic multiplier must be positive: "
                    f"{city.economic_multiplier}"
                )
            if city.current_population < 0:
                result.add_error(
                    f"{prefix}: Population cannot be negative: "
                    f"{city.current_population}"
                )
            if city.player_reputation < 0:
                result.add_error(
                    f"{prefix}: Player reputation cannot be negative: "
                    f"{city.player_reputation}"
                )
            if city.traffic_level < 0:
                result.add_error(
                    f"{prefix}: Traffic level cannot be negative: {city.traffic_level}"
                )
            if (
                city.is_discovered
                and city.discovery_date
                and city.discovery_date > datetime.now() + timedelta(days=1)
            ):
                result.add_warning(f"{prefix}: Discovery date is in the future")

    def _validate_cross_references(
        self, save_data: SaveData, result: ValidationResult
    ) -> None:
        # Deferred collections are empty, so references into them cannot be checked
        if save_data.is_lazy:
            return

        vehicle_ids = {v.instance_id for v in save_data.vehicle_instances}
        contract_ids = {c.instance_id for c in save_data.contract_instances}
        city_names = {c.city_name for c in save_data.city_instances if c.city_name}

        for contract in save_data.contract_instances:
            if (
                contract.assigned_vehicle_id
                and contract.assigned_vehicle_id not in vehicle_ids
            ):
                result.add_error(
                    f"Contract {contract.instance_id} references non-existent vehicle: "
                    f"{contract.assigned_vehicle_id}"
                )

        for vehicle in save_data.vehicle_instances:
            if (
                vehicle.assigned_contract_id
                and vehicle.assigned_contract_id not in contract_ids
            ):
                result.add_warning(
                    f"Vehicle {vehicle.instance_id} references non-existent contract: "
                    f"{vehicle.assigned_contract_id}"
                )
            if city_names:
                if (
                    vehicle.current_city_name
                    and vehicle.current_city_name not in city_names
                ):
                    result.add_warning(
                        f"Vehicle {vehicle.instance_id} is in non-existent city: "
                        f"{vehicle.current_city_name}"
                    )
                if (
                    vehicle.destination_city_name
                    and vehicle.destination_city_name not in city_names
                ):
                    result.add_warning(
                        f"Vehicle {vehicle.instance_id} has non-existent destination: "
                        f"{vehicle.destination_city_name}"
                    )

    def _validate_version(self, save_data: SaveData, result: ValidationResult) -> None:
        save_version = save_data.save_version
        if not save_version or versions_match(save_version, self.app_version):
            return

        result.add_warning(
            f"Save version ({save_version}) differs from current version "
            f"({self.app_version})"
        )
        try:
            newer = parse_version(save_version) > parse_version(self.app_version)
        except ValueError:
            result.add_warning(f"Save version is not a valid version: {save_version}")
            return

        if newer:
            result.add_warning("Save file was written by a newer version")
        else:
            result.requires_migration = True
            result.add_warning("Save file requires migration to current version")

    def _validate_checksum(self, save_data: SaveData, result: ValidationResult) -> None:
        if not save_data.checksum:
            result.add_error("Save data has no checksum", critical=True)
            return
        if len(save_data.checksum) < MIN_CHECKSUM_LENGTH:
            result.add_warning("Checksum appears to be too short")

        # Lazy records have dropped content the checksum was computed over
        if save_data.is_lazy:
            return

        if save_data.checksum != save_data.compute_checksum():
            result.add_error(
                "Checksum validation failed - data may be corrupted", critical=True
            )

    def sanitize_save_data(self, save_data: SaveData) -> SaveData:
        """Return a repaired copy of a record.

        Fixes missing identity fields, clamps numeric ranges, drops instances
        without IDs and duplicates, then refreshes the checksum. The input
        record is not modified.
        """
        sanitized = save_data.model_copy(deep=True)

        if not sanitized.save_name:
            sanitized.save_name = (
                sanitized.slot_name or f"Save Game {datetime.now():%Y-%m-%d}"
            )
        if not sanitized.save_version:
            sanitized.save_version = self.app_version
        if sanitized.creation_date is None:
            sanitized.creation_date = sanitized.last_modified or datetime.now()
        if (
            sanitized.last_modified is None
            or sanitized.last_modified < sanitized.creation_date
        ):
            sanitized.last_modified = sanitized.creation_date

        game_state = sanitized.game_state
        if game_state is not None:
            game_state.current_credits = max(0.0, game_state.current_credits)
            game_state.total_play_time = max(0.0, game_state.total_play_time)
            game_state.total_earnings = max(0.0, game_state.total_earnings)
            game_state.total_expenses = max(0.0, game_state.total_expenses)

        sanitized.vehicle_instances = _unique_by_id(sanitized.vehicle_instances)
        for vehicle in sanitized.vehicle_instances:
            vehicle.current_fuel = min(
                max(0.0, vehicle.current_fuel), vehicle.fuel_capacity
            )
            vehicle.current_weight = max(0.0, vehicle.current_weight)
            vehicle.wear_level = min(max(0.0, vehicle.wear_level), 1.0)
            vehicle.total_distance = max(0.0, vehicle.total_distance)
            vehicle.total_revenue = max(0.0, vehicle.total_revenue)
            vehicle.total_expenses = max(0.0, vehicle.total_expenses)

        sanitized.contract_instances = _unique_by_id(sanitized.contract_instances)
        for contract in sanitized.contract_instances:
            contract.progress_percentage = min(
                max(0.0, contract.progress_percentage), 100.0
            )
            contract.agreed_reward = max(0.0, contract.agreed_reward)
            contract.actual_reward = max(0.0, contract.actual_reward)
            contract.penalty_amount = max(0.0, contract.penalty_amount)

        sanitized.city_instances = _unique_by_id(sanitized.city_instances)
        for city in sanitized.city_instances:
            if city.current_fuel_price <= 0:
                city.current_fuel_price = DEFAULT_FUEL_PRICE
            if city.economic_multiplier <= 0:
                city.economic_multiplier = 1.0
            city.current_population = max(0, city.current_population)
            city.player_reputation = max(0.0, city.player_reputation)
            city.traffic_level = max(0.0, city.traffic_level)

        if not sanitized.is_lazy:
            sanitized.checksum = sanitized.compute_checksum()

        logger.info(f"Sanitized save data for {sanitized.save_name}")
        return sanitized

    def can_migrate(self, from_version: str, to_version: Optional[str] = None) -> bool:
        return self.migration_pipeline.can_migrate(
            from_version, to_version or self.app_version
        )

    def migrate_save_data(
        self, save_data: SaveData, target_version: Optional[str] = None
    ) -> Optional[SaveData]:
        """Migrate a copy of a record forward to the target version.

        Args:
            save_data: Record to migrate
            target_version: Version to reach (defaults to the running version)

        Returns:
            Migrated record, or None if no forward path exists or a step failed
        """
        target_version = target_version or self.app_version
        try:
            result = self.migration_pipeline.migrate(save_data, target_version)
        except VersionMismatchError as e:
            logger.error(
                f"Failed to migrate save data from {save_data.save_version} "
                f"to {target_version}: {e}"
            )
            return None
        return result.save_data

    def is_loadable(self, result: ValidationResult) -> bool:
        return result.severity < ValidationSeverity.CRITICAL


def _unique_by_id(instances: list) -> list:
    """Drop instances without an ID and later duplicates."""
    seen = set()
    unique = []
    for instance in instances:
        if not instance.instance_id or instance.instance_id in seen:
            continue
        seen.add(instance.instance_id)
        unique.append(instance)
    return unique
