from __future__ import annotations

from dataclasses import dataclass, field

FEDERATED_APPOINTMENT_WRITE = "federated-appointment-write"
FEDERATED_APPOINTMENT_READ = "federated-appointment-read"
FEDERATED_DOCTOR_LOOKUP = "federated-doctor-lookup"
FEDERATED_PATIENT_LOOKUP = "federated-patient-lookup"

CAPABILITIES: list[tuple[str, str]] = [
    (FEDERATED_APPOINTMENT_WRITE, "Populate clinic doctor/patient links when appointments are created"),
    (FEDERATED_APPOINTMENT_READ, "Serve appointment reads through clinic doctor/patient links"),
    (FEDERATED_DOCTOR_LOOKUP, "List clinic doctors from clinic doctor profiles"),
    (FEDERATED_PATIENT_LOOKUP, "List clinic patients from clinic patient profiles"),
]
CAPABILITY_CODES = frozenset(code for code, _ in CAPABILITIES)


@dataclass(frozen=True)
class RolloutConfig:
    enabled: frozenset[str] = frozenset()
    clinic_allowlist: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        unknown = set(self.enabled) - CAPABILITY_CODES
        if unknown:
            raise ValueError(f"Unknown capability codes: {', '.join(sorted(unknown))}")

    @classmethod
    def from_settings(cls, settings) -> "RolloutConfig":
        enabled: set[str] = set()
        if settings.feature_federated_appointments or settings.feature_federated_appointment_write:
            enabled.add(FEDERATED_APPOINTMENT_WRITE)
        if settings.feature_federated_appointments or settings.feature_federated_appointment_read:
            enabled.add(FEDERATED_APPOINTMENT_READ)
        if settings.feature_federated_doctor_lookup:
            enabled.add(FEDERATED_DOCTOR_LOOKUP)
        if settings.feature_federated_patient_lookup:
            enabled.add(FEDERATED_PATIENT_LOOKUP)
        return cls(enabled=frozenset(enabled), clinic_allowlist=settings.clinic_allowlist())


class RolloutGate:
    """Decides per capability whether the federated shape is consulted.

    The gate never decides tenant checks; those apply in both shapes.
    """

    def __init__(self, config: RolloutConfig):
        self._config = config

    @property
    def config(self) -> RolloutConfig:
        return self._config

    def is_enabled(self, capability: str, clinic_id: int | None = None) -> bool:
        if capability not in CAPABILITY_CODES:
            raise ValueError(f"Unknown capability code: {capability}")
        if capability not in self._config.enabled:
            return False
        if not self._config.clinic_allowlist:
            return True
        return clinic_id is not None and clinic_id in self._config.clinic_allowlist

    def describe(self) -> dict[str, object]:
        return {
            "capabilities": {
                code: code in self._config.enabled for code, _ in CAPABILITIES
            },
            "clinic_allowlist": sorted(self._config.clinic_allowlist),
        }
