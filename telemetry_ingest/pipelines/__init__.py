from .device_resolver import (
    AutoProvision,
    DeviceResolutionPolicy,
    DeviceResolver,
    RequireProvisioned,
    policy_from_name,
)
from .ingestor import Ingestor

__all__ = [
    "AutoProvision",
    "DeviceResolutionPolicy",
    "DeviceResolver",
    "Ingestor",
    "RequireProvisioned",
    "policy_from_name",
]
