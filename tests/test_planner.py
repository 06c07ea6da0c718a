import pytest

from imgshrink.compression.planner import DimensionPlanner


def test_images_within_bounds_are_untouched():
    planner = DimensionPlanner(1920, 1080)
    assert planner.plan(800, 600) == (800, 600)
    assert planner.plan(1920, 1080) == (1920, 1080)


def test_never_upscales():
    assert DimensionPlanner(4000, 4000).plan(10, 20) == (10, 20)


def test_landscape_photo_is_height_bound():
    assert DimensionPlanner(1920, 1080).plan(3000, 2000) == (1620, 1080)


def test_wide_banner_is_width_bound():
    assert DimensionPlanner(1920, 1080).plan(6000, 1000) == (1920, 320)


@pytest.mark.parametrize("width", [1, 500, 1921, 2500, 4000, 9999])
@pytest.mark.parametrize("height", [1, 700, 1081, 3000, 8000])
def test_plan_stays_within_bounds(width, height):
    planned_width, planned_height = DimensionPlanner(1920, 1080).plan(width, height)

    assert 1 <= planned_width <= min(width, 1920)
    assert 1 <= planned_height <= min(height, 1080)


@pytest.mark.parametrize("width,height", [
    (3000, 2000), (2000, 3000), (4032, 3024), (1921, 1081), (5000, 1200), (2400, 2400), (7680, 4320),
])
def test_plan_keeps_aspect_ratio(width, height):
    planned_width, planned_height = DimensionPlanner(1920, 1080).plan(width, height)

    assert planned_width / planned_height == pytest.approx(width / height, rel=0.01)


def test_extreme_ratio_keeps_at_least_one_pixel():
    assert DimensionPlanner(100, 100).plan(100_000, 10) == (100, 1)
