from driverless_cdp.element.service import ElementHandle, is_navigation_race, is_stale_error
from driverless_cdp.element.views import BoxModel, By

__all__ = ["BoxModel", "By", "ElementHandle", "is_navigation_race", "is_stale_error"]
