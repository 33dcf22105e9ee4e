"""Registered save schema migrations.

1.0.0 -> 1.1.0
    Vehicles gain a maintenance date (defaults to 30 days ago); accepted
    contracts with full delivery progress are marked completed.
1.1.0 -> 1.2.0
    Licenses are introduced (every company starts with "standard"); fuel
    prices are adjusted for the new price format.
1.2.0 -> 1.3.0
    Cities gain player reputation (default 50); vehicle wear is derived
    from total distance.
1.3.0 -> 1.4.0
    Loans are introduced and clamped at zero; companies start with a
    reputation of 100.
"""

import logging
from datetime import datetime, timedelta

from ..models.save_data import ContractStatus, SaveData
from .pipeline import MigrationStep

logger = logging.getLogger(__name__)


class AddVehicleMaintenanceMigration(MigrationStep):
    from_version = "1.0.0"
    to_version = "1.1.0"
    description = "Add vehicle maintenance dates and settle delivered contracts"

    def apply(self, save_data: SaveData) -> SaveData:
        default_maintenance = datetime.now() - timedelta(days=30)
        for vehicle in save_data.vehicle_instances:
            if vehicle.last_maintenance is None:
                vehicle.last_maintenance = default_maintenance

        for contract in save_data.contract_instances:
            if (
                contract.status == ContractStatus.ACCEPTED
                and contract.delivery_progress >= 1.0
            ):
                contract.status = ContractStatus.COMPLETED
                logger.debug(
                    f"Marked delivered contract {contract.instance_id} completed"
                )

        return save_data


class AddLicenseSystemMigration(MigrationStep):
    from_version = "1.1.0"
    to_version = "1.2.0"
    description = "Grant default licenses and convert fuel prices"

    fuel_price_factor = 1.1

    def apply(self, save_data: SaveData) -> SaveData:
        if save_data.game_state is not None and not save_data.game_state.owned_licenses:
            save_data.game_state.owned_licenses = ["standard"]

        save_data.fuel_prices = {
            city: price * self.fuel_price_factor
            for city, price in save_data.fuel_prices.items()
        }
        return save_data


class AddCityReputationMigration(MigrationStep):
    from_version = "1.2.0"
    to_version = "1.3.0"
    description = "Add city reputation and recalculate vehicle wear"

    default_reputation = 50.0
    # Distance at which a vehicle is fully worn
    full_wear_distance = 100000.0

    def apply(self, save_data: SaveData) -> SaveData:
        for city in save_data.city_instances:
            if city.player_reputation <= 0:
                city.player_reputation = self.default_reputation

        for vehicle in save_data.vehicle_instances:
            if vehicle.total_distance > 0:
                vehicle.wear_level = min(
                    1.0, vehicle.total_distance / self.full_wear_distance
                )
        return save_data


class AddLoanSystemMigration(MigrationStep):
    from_version = "1.3.0"
    to_version = "1.4.0"
    description = "Add loans and company reputation"

    default_company_reputation = 100.0

    def apply(self, save_data: SaveData) -> SaveData:
        game_state = save_data.game_state
        if game_state is not None:
            if game_state.outstanding_loans < 0:
                game_state.outstanding_loans = 0.0
            if game_state.company_reputation <= 0:
                game_state.company_reputation = self.default_company_reputation
        return save_data


DEFAULT_MIGRATION_STEPS = (
    AddVehicleMaintenanceMigration,
    AddLicenseSystemMigration,
    AddCityReputationMigration,
    AddLoanSystemMigration,
)
