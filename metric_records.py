from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(str, Enum):
    DATASTORE = "datastore"
    VIRTUAL_MACHINE = "virtual_machine"


# --- Property Specifications (fixed per kind) ---
PROPERTY_SPECS: Dict[EntityKind, List[str]] = {
    EntityKind.DATASTORE: ["summary"],
    EntityKind.VIRTUAL_MACHINE: ["name", "config", "summary"],
}


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# --- Datastore ---
class DatastoreTags(_FrozenModel):
    name: str = Field(..., min_length=1)
    type: Optional[str] = None
    url: Optional[str] = None


class DatastoreMeasurements(_FrozenModel):
    capacity: Optional[int] = Field(None, description="Bytes")
    freespace: Optional[int] = Field(None, description="Bytes")


class DatastoreRecord(_FrozenModel):
    kind: Literal["datastore"] = "datastore"
    moid: str
    tags: DatastoreTags
    measurements: DatastoreMeasurements


# --- Virtual Machine ---
class VirtualMachineTags(_FrozenModel):
    name: str = Field(..., min_length=1)
    guest_full_name: Optional[str] = None
    connection_state: Optional[str] = None
    overall_status: Optional[str] = None
    vm_path_name: Optional[str] = None
    ip_address: Optional[str] = None
    hostname: Optional[str] = None
    guest_id: Optional[str] = None
    is_guest_tools_running: Optional[str] = None


class VirtualMachineMeasurements(_FrozenModel):
    mem_mb: Optional[int] = None
    num_cpu: Optional[int] = None
    num_cores_per_socket: Optional[int] = None
    host_mem_usage: Optional[int] = Field(None, description="MB")
    guest_mem_usage: Optional[int] = Field(None, description="MB")
    overall_cpu_usage: Optional[int] = Field(None, description="MHz")
    overall_cpu_demand: Optional[int] = Field(None, description="MHz")
    swap_mem: Optional[int] = Field(None, description="MB")
    uptime_sec: Optional[int] = None
    storage_committed: Optional[int] = Field(None, description="Bytes")
    storage_uncommitted: Optional[int] = Field(None, description="Bytes")
    max_cpu_usage: Optional[int] = Field(None, description="MHz")
    max_mem_usage: Optional[int] = Field(None, description="MB")


class VirtualMachineRecord(_FrozenModel):
    kind: Literal["virtual_machine"] = "virtual_machine"
    moid: str
    tags: VirtualMachineTags
    measurements: VirtualMachineMeasurements


MetricRecord = Annotated[
    Union[DatastoreRecord, VirtualMachineRecord], Field(discriminator="kind")
]

RECORD_MODELS = {
    EntityKind.DATASTORE: (DatastoreRecord, DatastoreTags, DatastoreMeasurements),
    EntityKind.VIRTUAL_MACHINE: (VirtualMachineRecord, VirtualMachineTags, VirtualMachineMeasurements),
}


def absent_fields(record: Union[DatastoreRecord, VirtualMachineRecord]) -> List[str]:
    """Names of the tags and measurements the source did not report."""
    missing = [f"tags.{k}" for k, v in record.tags.model_dump().items() if v is None]
    missing += [f"measurements.{k}" for k, v in record.measurements.model_dump().items() if v is None]
    return missing


class CollectionState(str, Enum):
    UNSTARTED = "unstarted"
    SCOPE_RESOLVED = "scope_resolved"
    VOLUMES_COLLECTED = "volumes_collected"
    VMS_COLLECTED = "vms_collected"
    DONE = "done"
    FAILED = "failed"


@dataclass
class CollectionResult:
    """Outcome of one collection pass over a single datacenter.

    ``records`` only holds kinds whose collection completed; a kind that failed
    appears in ``errors`` instead and contributes no records at all.
    """

    datacenter: str
    records: Dict[EntityKind, List[MetricRecord]] = field(default_factory=dict)
    errors: Dict[EntityKind, Exception] = field(default_factory=dict)
    state: CollectionState = CollectionState.UNSTARTED

    @property
    def ok(self) -> bool:
        return self.state == CollectionState.DONE and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datacenter": self.datacenter,
            "state": self.state.value,
            "records": {kind.value: [r.model_dump() for r in recs] for kind, recs in self.records.items()},
            "errors": {kind.value: str(err) for kind, err in self.errors.items()},
        }
