from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union
import json
import logging

from pydantic import ValidationError

from .exceptions import DataUnavailable, SnapshotValidationError
from .schemas import FleetSnapshot, Train, TripDemand

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = "_input_data.json"


class SnapshotLoader(ABC):
    """Read-only source of per-date fleet snapshots"""

    @abstractmethod
    def load(self, planning_date: date) -> FleetSnapshot:
        """Return the snapshot for exactly this date or raise DataUnavailable"""

    @abstractmethod
    def available_dates(self) -> List[date]:
        """Dates with a snapshot, ascending"""

    def load_with_fallback(self, planning_date: date, max_days_back: int = 0) -> FleetSnapshot:
        """Load the snapshot for a date, or re-date the most recent earlier one.

        Only missing snapshots trigger the fallback; a snapshot that exists
        but fails validation is reported as-is.
        """
        try:
            return self.load(planning_date)
        except SnapshotValidationError:
            raise
        except DataUnavailable:
            if max_days_back <= 0:
                raise

        for days_back in range(1, max_days_back + 1):
            candidate = planning_date - timedelta(days=days_back)
            try:
                snapshot = self.load(candidate)
            except SnapshotValidationError as e:
                logger.warning(f"Skipping invalid fallback snapshot for {candidate}: {e}")
                continue
            except DataUnavailable:
                continue
            logger.warning(f"No snapshot for {planning_date}; falling back to {candidate}")
            return FleetSnapshot(
                planning_date=planning_date,
                trains=snapshot.trains,
                trips=snapshot.trips,
                source_date=candidate,
                cleaning_bays=snapshot.cleaning_bays,
            )

        raise DataUnavailable(
            planning_date,
            f"No fleet snapshot for {planning_date.isoformat()} or the {max_days_back} preceding day(s)",
        )


class FleetSnapshotLoader(SnapshotLoader):
    """Loads `<YYYY-MM-DD>_input_data.json` files from a data directory"""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def snapshot_path(self, planning_date: date) -> Path:
        return self.data_dir / f"{planning_date.isoformat()}{SNAPSHOT_SUFFIX}"

    def load(self, planning_date: date) -> FleetSnapshot:
        path = self.snapshot_path(planning_date)
        if not path.is_file():
            raise DataUnavailable(planning_date)

        try:
            with open(path, "r") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotValidationError(planning_date, [f"{path.name}: {e}"]) from e

        if not isinstance(raw, dict):
            raise SnapshotValidationError(planning_date, [f"{path.name}: expected a JSON object"])

        depot = raw.get("depot_resources") or {}
        if not isinstance(depot, dict):
            raise SnapshotValidationError(planning_date, [f"{path.name}: depot_resources must be an object"])

        try:
            snapshot = FleetSnapshot(
                planning_date=planning_date,
                trains=raw.get("fleet_details", []),
                trips=raw.get("trip_details", []),
                cleaning_bays=depot.get("cleaning_bays"),
            )
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise SnapshotValidationError(planning_date, errors) from e

        logger.info(f"Loaded snapshot {path.name}: {len(snapshot.trains)} trains, {len(snapshot.trips)} trips")
        return snapshot

    def available_dates(self) -> List[date]:
        if not self.data_dir.is_dir():
            return []
        dates = []
        for path in self.data_dir.glob(f"*{SNAPSHOT_SUFFIX}"):
            stem = path.name[:-len(SNAPSHOT_SUFFIX)]
            try:
                dates.append(datetime.strptime(stem, "%Y-%m-%d").date())
            except ValueError:
                continue
        return sorted(dates)


class InMemorySnapshotLoader(SnapshotLoader):
    """Serves snapshots supplied directly by the caller"""

    def __init__(self, snapshots: Optional[Dict[date, FleetSnapshot]] = None):
        self._snapshots: Dict[date, FleetSnapshot] = dict(snapshots or {})

    def add(self, planning_date: date, trains: List[Train], trips: List[TripDemand],
            cleaning_bays: Optional[int] = None) -> FleetSnapshot:
        try:
            snapshot = FleetSnapshot(planning_date=planning_date, trains=trains, trips=trips,
                                     cleaning_bays=cleaning_bays)
        except ValidationError as e:
            raise SnapshotValidationError(planning_date, [err["msg"] for err in e.errors()]) from e
        self._snapshots[planning_date] = snapshot
        return snapshot

    def load(self, planning_date: date) -> FleetSnapshot:
        if planning_date not in self._snapshots:
            raise DataUnavailable(planning_date)
        return self._snapshots[planning_date]

    def available_dates(self) -> List[date]:
        return sorted(self._snapshots)
