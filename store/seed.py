"""
Demo records for development: three village routes, their buses and
timetables, and one active API key per bus.

Keys follow the simulator's default template, ``simulation_key_{bus_id}``,
so a freshly started development server can be driven by the simulator
without further setup.
"""

from typing import List

from store.models import ApiKeyGrant, Bus, Route, Schedule

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
ALL_DAYS = WEEKDAYS + ["Saturday", "Sunday"]

VILLAGE_CENTER = (40.7128, -74.0060)


def demo_routes() -> List[Route]:
    return [
        Route(
            id="route-1",
            route_number="R1",
            name="Village Center - Market Town",
            description="Main line through Millbrook and Oak Hollow",
        ),
        Route(
            id="route-2",
            route_number="R2",
            name="Village Center - Hillside Farms",
            description="Loop serving the northern farmsteads",
        ),
        Route(
            id="route-3",
            route_number="R3",
            name="School Shuttle",
            description="Term-time service to the district school",
        ),
    ]


def demo_buses() -> List[Bus]:
    lat, lon = VILLAGE_CENTER
    return [
        Bus(id="bus-1", bus_number="101", route_id="route-1",
            current_location="Village Center", latitude=lat, longitude=lon),
        Bus(id="bus-2", bus_number="102", route_id="route-1",
            current_location="Millbrook Stop", latitude=lat + 0.02, longitude=lon - 0.015),
        Bus(id="bus-3", bus_number="201", route_id="route-2",
            current_location="Hillside Farms", latitude=lat + 0.035, longitude=lon + 0.01),
        # Out of service; kept to show inactive buses are not listed
        Bus(id="bus-4", bus_number="301", route_id="route-3",
            current_location="Depot", latitude=lat - 0.01, longitude=lon, is_active=False),
    ]


def demo_schedules() -> List[Schedule]:
    return [
        Schedule(id="sched-1", route_id="route-1", departure_time="07:00",
                 arrival_time="07:45", frequency="hourly", days_of_week=WEEKDAYS),
        Schedule(id="sched-2", route_id="route-2", departure_time="08:15",
                 arrival_time="09:00", frequency="daily", days_of_week=ALL_DAYS),
        Schedule(id="sched-3", route_id="route-1", departure_time="12:30",
                 arrival_time="13:15", frequency="hourly", days_of_week=ALL_DAYS),
        Schedule(id="sched-4", route_id="route-3", departure_time="07:30",
                 arrival_time="08:05", frequency="school days", days_of_week=WEEKDAYS),
        Schedule(id="sched-5", route_id="route-2", departure_time="17:45",
                 arrival_time="18:30", frequency="daily", days_of_week=ALL_DAYS,
                 is_active=False),
    ]


def demo_api_key_grants() -> List[ApiKeyGrant]:
    return [
        ApiKeyGrant(api_key=f"simulation_key_{bus.id}", bus_id=bus.id)
        for bus in demo_buses()
    ]
