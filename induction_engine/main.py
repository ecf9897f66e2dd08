from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import threading

from . import __version__
from .categories import CATEGORY_TABLE
from .config import EngineConfig
from .exceptions import DataUnavailable, InvalidWeights, OptimizationCancelled, SnapshotValidationError
from .loader import FleetSnapshotLoader, InMemorySnapshotLoader
from .metrics import get_metrics
from .middleware import LoggingMiddleware, MetricsMiddleware
from .performance_monitor import performance_monitor
from .pipeline import InductionScheduler
from .schemas import ScheduleRequest, ScheduleResult

config = EngineConfig.from_env()

DISCONNECT_POLL_SECONDS = 0.5

# Configure logging
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Fleet Induction Engine",
    description="Nightly train induction ranking and trip assignment using OR-Tools",
    version=__version__
)

app.add_middleware(LoggingMiddleware)
app.add_middleware(MetricsMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

loader = FleetSnapshotLoader(config.data_dir)
scheduler = InductionScheduler(loader, config, performance_monitor)


def get_scheduler() -> InductionScheduler:
    return scheduler


@app.get("/")
async def root():
    return {"message": "Fleet Induction Engine", "version": __version__, "solver": "ortools-cp-sat"}


async def watch_disconnect(http_request: Request, cancel_event: threading.Event,
                           poll_seconds: float = DISCONNECT_POLL_SECONDS):
    """Set cancel_event as soon as the client goes away; returns once it is set"""
    while not cancel_event.is_set():
        if await http_request.is_disconnected():
            logger.warning("Client disconnected; cancelling optimization")
            cancel_event.set()
            return
        await asyncio.sleep(poll_seconds)


@app.post("/schedule", response_model=ScheduleResult)
async def generate_schedule(request: ScheduleRequest, http_request: Request,
                            active: InductionScheduler = Depends(get_scheduler)):
    """
    Generate the induction ranking and trip assignment for a planning date
    """
    if request.fleet is not None:
        inline = InMemorySnapshotLoader()
        try:
            inline.add(request.planning_date, request.fleet, request.trips or [])
        except SnapshotValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        active = InductionScheduler(inline, active.config, active.monitor)
    elif request.trips is not None:
        raise HTTPException(status_code=422, detail="trips can only be supplied together with fleet")

    logger.info(f"Received schedule request for {request.planning_date}")
    cancel_event = threading.Event()
    watcher = asyncio.create_task(watch_disconnect(http_request, cancel_event))
    try:
        # The solve blocks, so it runs in the threadpool while the watcher polls
        return await run_in_threadpool(
            active.generate,
            planning_date=request.planning_date,
            constraint_weights=request.constraint_weights,
            time_limit_seconds=request.time_limit_seconds,
            cancel_event=cancel_event,
        )
    except OptimizationCancelled as e:
        raise HTTPException(status_code=499, detail=str(e))
    except InvalidWeights as e:
        logger.warning(f"Rejected weights: {e}")
        raise HTTPException(status_code=422, detail={"message": str(e), "problems": e.problems})
    except SnapshotValidationError as e:
        logger.error(f"Snapshot invalid: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except DataUnavailable as e:
        logger.warning(str(e))
        raise HTTPException(status_code=404, detail=str(e))
    finally:
        watcher.cancel()


@app.get("/weights")
async def get_weights():
    """Default constraint weights and their accepted ranges"""
    return {
        "constraints": [
            {
                "id": spec.category.value,
                "key": spec.ui_key,
                "name": spec.name,
                "description": spec.description,
                "type": "hard" if spec.hard else "soft",
                "default": spec.default_weight,
                "min": spec.min_weight,
                "max": spec.max_weight,
            }
            for spec in CATEGORY_TABLE
        ]
    }


@app.get("/snapshots")
async def list_snapshots(active: InductionScheduler = Depends(get_scheduler)):
    return {"dates": [d.isoformat() for d in active.loader.available_dates()]}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "solver": "ortools-cp-sat",
        "data_dir": config.data_dir,
    }


@app.get("/performance")
async def performance():
    return performance_monitor.get_performance_summary()


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return get_metrics()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
