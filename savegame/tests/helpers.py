"""Test helpers for building records and recording events."""

from savegame.events.manager import EventManager
from savegame.models.save_data import (
    CityInstanceData,
    ContractInstanceData,
    GameState,
    SaveData,
    VehicleInstanceData,
)


class EventRecorder:
    """Collects every event emitted for the subscribed types."""

    def __init__(self, event_manager: EventManager, *event_types):
        self.events: list[tuple[str, dict]] = []
        for event_type in event_types:
            event_manager.subscribe_to_events(event_type, self)

    def __call__(self, event_type: str, data: dict) -> None:
        self.events.append((event_type, data))

    def of_type(self, event_type) -> list[dict]:
        key = getattr(event_type, "value", event_type)
        return [data for name, data in self.events if name == key]

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def make_save_data(
    save_name: str = "Test Save",
    save_version: str = "1.4.0",
    credits: float = 5000.0,
    play_time: float = 2.5,
    contracts: int = 3,
    with_instances: bool = False,
) -> SaveData:
    """Build a record that validates cleanly at the given version."""
    save_data = SaveData(
        save_name=save_name,
        save_version=save_version,
        game_state=GameState(
            company_name="Test Logistics",
            current_credits=credits,
            total_play_time=play_time,
            total_contracts=contracts,
        ),
    )
    if with_instances:
        save_data.vehicle_instances = [
            VehicleInstanceData(
                instance_id="truck-1",
                vehicle_type="truck",
                current_fuel=50.0,
                current_city_name="Springfield",
                assigned_contract_id="contract-1",
            )
        ]
        save_data.contract_instances = [
            ContractInstanceData(
                instance_id="contract-1",
                contract_type="delivery",
                status="accepted",
                assigned_vehicle_id="truck-1",
                agreed_reward=1200.0,
            )
        ]
        save_data.city_instances = [
            CityInstanceData(instance_id="city-1", city_name="Springfield")
        ]
    return save_data
