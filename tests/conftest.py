import fnmatch
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
from pyVmomi import vim

from metric_records import EntityKind
from vsphere_collector import InventoryScope, ScopeResolutionError, StructuredRecord


def datastore_summary(name="ds1", capacity=1000, free_space=400, ds_type="VMFS", url=None):
    return SimpleNamespace(
        name=name,
        type=ds_type,
        url=url or f"ds:///vmfs/volumes/{name}/",
        capacity=capacity,
        freeSpace=free_space,
    )


def vm_properties(name="web01", with_config=True):
    props = {
        "name": name,
        "summary": SimpleNamespace(
            overallStatus="green",
            runtime=SimpleNamespace(connectionState="connected", maxCpuUsage=4788, maxMemoryUsage=4096),
            config=SimpleNamespace(vmPathName=f"[ds1] {name}/{name}.vmx"),
            guest=SimpleNamespace(
                ipAddress="10.0.0.15",
                hostName=f"{name}.example.com",
                toolsRunningStatus="guestToolsRunning",
            ),
            quickStats=SimpleNamespace(
                hostMemoryUsage=2100,
                guestMemoryUsage=819,
                overallCpuUsage=120,
                overallCpuDemand=130,
                swappedMemory=0,
                uptimeSeconds=86400,
            ),
            storage=SimpleNamespace(committed=21474836480, uncommitted=1073741824),
        ),
    }
    if with_config:
        props["config"] = SimpleNamespace(
            guestFullName="Ubuntu Linux (64-bit)",
            guestId="ubuntu64Guest",
            hardware=SimpleNamespace(memoryMB=4096, numCPU=2, numCoresPerSocket=1),
        )
    return props


class FakeInventoryClient:
    """In-memory inventory that records every call made against it."""

    def __init__(
        self,
        datacenters: List[str] = ("dc1",),
        objects: Optional[Dict[EntityKind, List[StructuredRecord]]] = None,
        failing_kinds: Optional[Dict[EntityKind, Exception]] = None,
    ):
        self.datacenters = list(datacenters)
        self.objects = objects or {}
        self.failing_kinds = failing_kinds or {}
        self.calls = []

    def resolve_default_scope(self, datacenter=None):
        self.calls.append(("resolve_default_scope", datacenter))
        names = [datacenter] if datacenter in self.datacenters else self.datacenters
        if datacenter and datacenter not in self.datacenters:
            raise ScopeResolutionError(f"datacenter '{datacenter}' not found")
        if len(names) != 1:
            raise ScopeResolutionError("no datacenter found" if not names else "multiple datacenters")
        return InventoryScope(name=names[0], datacenter=SimpleNamespace(name=names[0]))

    def list_objects(self, scope, kind, pattern):
        self.calls.append(("list_objects", kind))
        return [
            record.ref
            for record in self.objects.get(kind, [])
            if fnmatch.fnmatchcase(self._name(record), pattern)
        ]

    def retrieve_properties(self, refs, field_names):
        kind = EntityKind.DATASTORE if isinstance(refs[0], vim.Datastore) else EntityKind.VIRTUAL_MACHINE
        self.calls.append(("retrieve_properties", kind, len(refs), list(field_names)))
        if kind in self.failing_kinds:
            raise self.failing_kinds[kind]
        wanted = {ref._moId for ref in refs}
        # Reversed so callers cannot rely on positional correlation.
        return [r for r in reversed(self.objects.get(kind, [])) if r.ref._moId in wanted]

    @staticmethod
    def _name(record):
        if "name" in record.properties:
            return record.properties["name"]
        return getattr(record.properties.get("summary"), "name", "")

    def count(self, method, kind=None):
        return len([c for c in self.calls if c[0] == method and (kind is None or c[1] == kind)])


def make_datastores(count):
    return [
        StructuredRecord(vim.Datastore(f"datastore-{i}"), {"summary": datastore_summary(name=f"ds{i}")})
        for i in range(1, count + 1)
    ]


def make_vms(count):
    return [
        StructuredRecord(vim.VirtualMachine(f"vm-{i}"), vm_properties(name=f"vm{i}"))
        for i in range(1, count + 1)
    ]


@pytest.fixture
def inventory():
    return FakeInventoryClient(
        objects={
            EntityKind.DATASTORE: [
                StructuredRecord(vim.Datastore("datastore-11"), {"summary": datastore_summary()})
            ],
            EntityKind.VIRTUAL_MACHINE: make_vms(3),
        }
    )
