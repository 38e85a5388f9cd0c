import pytest

from ambudispatch.schemas.hospital import HospitalOut
from ambudispatch.services.navigation import directions_link, haversine_km, nearest_hospitals, tel_link


def test_tel_link_strips_whitespace():
    assert tel_link("+91 98 7654 3210") == "tel:+919876543210"
    assert tel_link("") is None
    assert tel_link(None) is None


def test_directions_link_uses_destination_coordinates():
    assert directions_link(28.62, 77.21) == "https://www.google.com/maps/dir/?api=1&destination=28.62,77.21"


def test_haversine_known_distance():
    # Delhi to Mumbai is roughly 1150 km great-circle.
    assert haversine_km(28.6139, 77.2090, 19.0760, 72.8777) == pytest.approx(1153, rel=0.01)
    assert haversine_km(10.0, 10.0, 10.0, 10.0) == 0.0


def test_nearest_hospitals_sorted_and_annotated():
    hospitals = [
        HospitalOut(id="far", name="Far", address="", phone="+91 1", latitude=28.70, longitude=77.30),
        HospitalOut(id="near", name="Near", address="", phone="+91 2 3", latitude=28.614, longitude=77.209),
        HospitalOut(id="mid", name="Mid", address="", phone="", latitude=28.63, longitude=77.22),
    ]

    ranked = nearest_hospitals(hospitals, 28.6139, 77.2090)

    assert [h.id for h in ranked] == ["near", "mid", "far"]
    assert ranked[0].distance_km < ranked[1].distance_km < ranked[2].distance_km
    assert ranked[0].phone_link == "tel:+9123"
    assert ranked[1].phone_link is None
    assert ranked[2].directions_link.endswith("destination=28.7,77.3")
    assert len(nearest_hospitals(hospitals, 28.6139, 77.2090, limit=2)) == 2
