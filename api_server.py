import asyncio
from fastapi import FastAPI, HTTPException, status, Path, Query
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import List, Dict, Any, Optional
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pydantic import BaseModel, Field
import vsphere_collector
from metric_records import DatastoreRecord, EntityKind, VirtualMachineRecord

# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format=vsphere_collector.LOG_FORMAT,
)
logger = logging.getLogger(__name__)

# --- Application State ---
app_state = {
    "result": None,
    "last_collection_timestamp_utc": None,
    "last_collection_status": "Not yet run",
    "last_collection_message": "",
    "is_collecting": False,
}

# --- Data Collection Logic ---
async def collect_and_cache_data():
    if app_state["is_collecting"]:
        logger.warning("Data collection attempt while another is in progress.")
        return False, "Data collection is already in progress."
    app_state["is_collecting"] = True
    logger.info("Starting data collection from vSphere...")
    start_time = datetime.now(timezone.utc)
    try:
        load_dotenv()
        config = vsphere_collector.CollectorConfig.from_env()
        result = await asyncio.to_thread(vsphere_collector.run_collection_pass, config)
        end_time = datetime.now(timezone.utc)
        duration = end_time - start_time
        app_state["result"] = result
        app_state["last_collection_timestamp_utc"] = end_time
        if result.ok:
            app_state["last_collection_status"] = "Success"
            app_state["last_collection_message"] = (
                f"Data collected from '{result.datacenter}' at {end_time.isoformat()} "
                f"(took {duration.total_seconds():.2f}s)"
            )
            logger.info(app_state["last_collection_message"])
            return True, app_state["last_collection_message"]
        errors = "; ".join(str(e) for e in result.errors.values())
        app_state["last_collection_status"] = "Partial"
        app_state["last_collection_message"] = f"Collection finished with errors at {end_time.isoformat()}: {errors}"
        logger.error(app_state["last_collection_message"])
        return False, app_state["last_collection_message"]
    except vsphere_collector.CollectorError as e:
        end_time = datetime.now(timezone.utc)
        duration = end_time - start_time
        error_message = f"Collection failed: {e} (took {duration.total_seconds():.2f}s)"
        app_state["last_collection_status"] = "Failed"
        app_state["last_collection_message"] = error_message
        logger.error(error_message)
        return False, error_message
    except Exception as e:
        error_message = f"Exception during data collection: {e.__class__.__name__} - {e}"
        app_state["last_collection_status"] = "Failed (Exception)"
        app_state["last_collection_message"] = error_message
        logger.error(error_message, exc_info=True)
        return False, error_message
    finally:
        app_state["is_collecting"] = False

# --- Application Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API Server starting up, initiating first data collection...")
    await collect_and_cache_data()
    yield
    logger.info("API Server shutting down...")

# --- FastAPI Application Setup ---
app = FastAPI(
    title="vSphere Metrics API",
    description="Datastore and virtual machine metrics from a single vSphere datacenter.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Response Models ---
class CollectionStatus(BaseModel):
    status: str
    message: str
    datacenter: Optional[str] = None
    last_collection_timestamp_utc: Optional[datetime] = None
    is_collecting: bool
    errors: Dict[str, str] = Field(default_factory=dict)

# --- Helper Functions ---
def get_records_from_cache(kind: EntityKind) -> List[Any]:
    result = app_state["result"]
    if result is None:
        logger.warning("Attempted to access cache, but it's not initialized.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data cache not initialized. Please try refreshing data.",
        )
    if kind not in result.records:
        error = result.errors.get(kind)
        logger.warning(f"No {kind.value} records in cache: {error}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{kind.value} collection failed: {error}",
        )
    return result.records[kind]

def filter_and_paginate(records: List[Any], skip: int = 0, limit: int = 100, name_contains: Optional[str] = None) -> List[Any]:
    if name_contains:
        records = [r for r in records if name_contains.lower() in r.tags.name.lower()]
    return records[skip : skip + limit]

# --- API Endpoints ---
@app.get("/api/v1/status", response_model=CollectionStatus, tags=["Status"])
async def get_collection_status():
    result = app_state["result"]
    return CollectionStatus(
        status=app_state["last_collection_status"],
        message=app_state["last_collection_message"],
        datacenter=result.datacenter if result else None,
        last_collection_timestamp_utc=app_state["last_collection_timestamp_utc"],
        is_collecting=app_state["is_collecting"],
        errors={kind.value: str(err) for kind, err in result.errors.items()} if result else {},
    )

@app.post("/api/v1/refresh", status_code=status.HTTP_202_ACCEPTED, tags=["Status"])
async def refresh_vsphere_data_endpoint():
    if app_state["is_collecting"]:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Data collection is already in progress.")
    asyncio.create_task(collect_and_cache_data())
    return {"message": "Data collection started."}

@app.get("/api/v1/datastores", response_model=List[DatastoreRecord], tags=["Datastores"])
async def list_datastores(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    name_contains: Optional[str] = None,
):
    return filter_and_paginate(get_records_from_cache(EntityKind.DATASTORE), skip, limit, name_contains)

@app.get("/api/v1/vms", response_model=List[VirtualMachineRecord], tags=["Virtual Machines"])
async def list_vms(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    name_contains: Optional[str] = None,
):
    return filter_and_paginate(get_records_from_cache(EntityKind.VIRTUAL_MACHINE), skip, limit, name_contains)

@app.get("/api/v1/vms/{vm_name}", response_model=VirtualMachineRecord, tags=["Virtual Machines"])
async def get_vm(vm_name: str = Path(..., description="VM name or managed object id")):
    for record in get_records_from_cache(EntityKind.VIRTUAL_MACHINE):
        if record.tags.name == vm_name or record.moid == vm_name:
            return record
    logger.warning(f"VM with identifier '{vm_name}' not found in cache.")
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"VM '{vm_name}' not found.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
