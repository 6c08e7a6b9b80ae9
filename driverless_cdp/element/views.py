from enum import StrEnum

from pydantic import BaseModel

from driverless_cdp.motion.geometry import Point, get_bounds, polygon_area, quad_from_box


class By(StrEnum):
    ID = "id"
    NAME = "name"
    CLASS_NAME = "class name"
    TAG_NAME = "tag name"
    CSS_SELECTOR = "css selector"
    XPATH = "xpath"

    @classmethod
    def parse(cls, value: "str | By") -> "By":
        if isinstance(value, By):
            return value
        if value == "css":
            return cls.CSS_SELECTOR
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unsupported locator strategy {value!r}") from None


def xpath_literal(value: str) -> str:
    """Quote a string for use inside an XPath expression."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


def to_xpath(by: By, value: str) -> str | None:
    """XPath equivalent for attribute-based locators, None for the others."""
    if by == By.ID:
        return f".//*[@id={xpath_literal(value)}]"
    if by == By.NAME:
        return f".//*[@name={xpath_literal(value)}]"
    if by == By.CLASS_NAME:
        return f'.//*[contains(concat(" ", normalize-space(@class), " "), {xpath_literal(" " + value + " ")})]'
    if by == By.XPATH:
        return value
    return None


# Run against `obj`, the root element or document. Results are arrays so deep
# serialization returns every node with its backendNodeId.
_FIND_SCRIPTS = {
    By.CSS_SELECTOR: "return Array.from(obj.querySelectorAll(arguments[0]))",
    By.TAG_NAME: "return Array.from(obj.getElementsByTagName(arguments[0]))",
}


_XPATH_SCRIPT = """
const doc = obj.ownerDocument || obj;
const snapshot = doc.evaluate(arguments[0], obj, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
const nodes = [];
for (let i = 0; i < snapshot.snapshotLength; i++) nodes.push(snapshot.snapshotItem(i));
return nodes;
"""


def find_script(by: "str | By", value: str) -> tuple[str, str]:
    """Script and its single argument for finding elements under `obj`."""
    by = By.parse(by)
    if by in _FIND_SCRIPTS:
        return _FIND_SCRIPTS[by], value
    xpath = to_xpath(by, value)
    if xpath is None:
        raise ValueError(f"No find script for locator strategy {by.value!r}")
    return _XPATH_SCRIPT, xpath


class BoxModel(BaseModel):
    content: list[float]
    padding: list[float]
    border: list[float]
    margin: list[float]
    width: float
    height: float

    @property
    def border_quad(self) -> list[Point]:
        return quad_from_box(self.border)

    @property
    def content_quad(self) -> list[Point]:
        return quad_from_box(self.content)

    @property
    def area(self) -> float:
        return polygon_area(self.border_quad)

    def rect(self) -> dict[str, float]:
        x_min, y_min, x_max, y_max = get_bounds(self.border_quad)
        return {"x": x_min, "y": y_min, "width": x_max - x_min, "height": y_max - y_min}

    def center(self) -> Point:
        quad = self.border_quad
        return sum(p[0] for p in quad) / 4, sum(p[1] for p in quad) / 4
