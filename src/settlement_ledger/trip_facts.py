"""Trusted trip and driver facts.

Commission discounts and the performance bonus depend on the trip
distance, the driver's rating and the driver's trip count. Those facts
belong to the dispatch and rating services, never to the rider paying
for the trip. The ledger reaches them through the TripFactsProvider
protocol when a request comes from a party who could inflate them.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from settlement_ledger.models.common import Reservation


@dataclass(frozen=True)
class TripFacts:
    """Inputs to commission and bonus calculation.

    The defaults are neutral: base commission rate and no bonus.
    """

    distance_km: float = 0.0
    driver_rating: float = 0.0
    driver_trips_this_month: int = 0

    def reservation(self, reservation_id: str, rider_id: str, driver_id: str) -> Reservation:
        return Reservation(
            reservation_id=reservation_id,
            rider_id=rider_id,
            driver_id=driver_id,
            distance_km=self.distance_km,
            driver_rating=self.driver_rating,
            driver_trips_this_month=self.driver_trips_this_month,
        )


class TripFactsProvider(Protocol):
    """Source of trip and driver facts the platform vouches for."""

    def trip_facts(self, reservation_id: str, driver_id: str) -> TripFacts:
        ...


class InMemoryTripFacts:
    """Facts registered by the dispatch side of the platform.

    Unknown trips and drivers get neutral facts.
    """

    def __init__(self) -> None:
        self._distances: dict[str, float] = {}
        self._drivers: dict[str, tuple[float, int]] = {}
        self._mutex = threading.Lock()

    def record_trip(self, reservation_id: str, distance_km: float) -> None:
        if distance_km < 0:
            raise ValueError("distance_km must not be negative")
        with self._mutex:
            self._distances[reservation_id] = distance_km

    def record_driver(self, driver_id: str, rating: float, trips_this_month: int) -> None:
        if not 0 <= rating <= 5:
            raise ValueError("rating must be between 0 and 5")
        if trips_this_month < 0:
            raise ValueError("trips_this_month must not be negative")
        with self._mutex:
            self._drivers[driver_id] = (rating, trips_this_month)

    def trip_facts(self, reservation_id: str, driver_id: str) -> TripFacts:
        with self._mutex:
            distance = self._distances.get(reservation_id, 0.0)
            rating, trips = self._drivers.get(driver_id, (0.0, 0))
        return TripFacts(distance_km=distance, driver_rating=rating, driver_trips_this_month=trips)
