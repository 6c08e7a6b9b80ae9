from driverless_cdp.motion.geometry import (
    Overlap,
    bias_0dot5,
    biased_random,
    edge_intersection,
    get_bounds,
    intersect_rectangles,
    is_point_in_polygon,
    point_in_rectangle,
    polygon_area,
    quad_from_box,
    rand_mid_loc,
    rectangle_overlap,
)
from driverless_cdp.motion.path import combined_path, generate_path, position_at_time

__all__ = [
    "Overlap",
    "bias_0dot5",
    "biased_random",
    "combined_path",
    "edge_intersection",
    "generate_path",
    "get_bounds",
    "intersect_rectangles",
    "is_point_in_polygon",
    "point_in_rectangle",
    "polygon_area",
    "position_at_time",
    "quad_from_box",
    "rand_mid_loc",
    "rectangle_overlap",
]
