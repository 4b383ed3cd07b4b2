"""Diagram Detection — suggest a geometry/data diagram for a student's question.

Scores every template by keyword hits in the message, picks the best one and
fills its dimensions from numbers found in the text. Rendering happens in the
browser; this module only returns the template, shape and dimensions.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DiagramTemplate:
    key: str
    keywords: tuple[str, ...]
    shape: str
    prompt: str
    default_dimensions: dict = field(default_factory=dict)


DIAGRAM_TEMPLATES: tuple[DiagramTemplate, ...] = (
    # Angle problems
    DiagramTemplate(
        "parallel_lines_angles",
        ("parallel lines", "transversal", "corresponding", "alternate", "co-interior"),
        "parallel_lines",
        "This looks like a parallel lines and angles problem. Does this diagram help visualize what you're working with?",
        {"showAngles": True},
    ),
    DiagramTemplate(
        "triangle_angles",
        ("triangle", "angle", "find", "missing", "sum"),
        "triangle_find_angle",
        "I see you're working with triangle angles. Does this diagram match your problem?",
        {"angle1": None, "angle2": None, "angle3": None},
    ),
    DiagramTemplate(
        "angles_on_line",
        ("straight line", "angles on", "supplementary", "180"),
        "angles_on_line",
        "This appears to be about angles on a straight line. Is this similar to your setup?",
        {"knownAngles": [], "total": 180, "isAroundPoint": False},
    ),
    # 2D shapes
    DiagramTemplate(
        "rectangle_area",
        ("rectangle", "area", "length", "width", "perimeter"),
        "rectangle",
        "Working with a rectangle? Here's a diagram to help visualize it.",
        {"length": 8, "width": 5},
    ),
    DiagramTemplate(
        "triangle_area",
        ("triangle", "area", "base", "height"),
        "triangle",
        "This looks like a triangle area problem. Does this help?",
        {"base": 8, "height": 6},
    ),
    DiagramTemplate(
        "circle_properties",
        ("circle", "area", "circumference", "radius", "diameter"),
        "circle",
        "Circle problem detected! Here's a visual to work with.",
        {"radius": 5},
    ),
    # 3D shapes
    DiagramTemplate(
        "cylinder_volume",
        ("cylinder", "volume", "surface area", "radius", "height"),
        "cylinder",
        "This seems to involve a cylinder. Does this match your problem?",
        {"height": 6, "radius": 4},
    ),
    DiagramTemplate(
        "cone_volume",
        ("cone", "volume", "surface area", "radius", "height"),
        "cone",
        "Cone problem? Here's a 3D visualization.",
        {"height": 5, "radius": 3},
    ),
    # Statistics and number
    DiagramTemplate(
        "probability_tree",
        ("probability", "tree diagram", "outcomes", "events", "branches"),
        "probability_tree",
        "This looks like a probability problem. Would this tree diagram help?",
        {"events": ["First", "Second"], "outcomes": [["A", "B"], ["X", "Y"]]},
    ),
    DiagramTemplate(
        "bar_chart",
        ("bar chart", "bar graph", "frequency", "data", "survey"),
        "bar_chart",
        "I see you're working with data. Here's a bar chart visualization.",
        {"categories": ["A", "B", "C", "D"], "values": [10, 15, 8, 12], "title": "Data Chart"},
    ),
    DiagramTemplate(
        "coordinate_plane",
        ("coordinate", "graph", "plot", "x-axis", "y-axis", "cartesian"),
        "coordinate_plane",
        "Working with coordinates? Here's a coordinate plane.",
        {"xRange": [-10, 10], "yRange": [-10, 10], "points": [], "showGrid": True},
    ),
    DiagramTemplate(
        "linear_equation_graph",
        ("linear equation", "straight line", "slope", "y-intercept", "gradient"),
        "linear_graph",
        "Linear equation spotted! Here's the graphical representation.",
        {"slope": 2, "yIntercept": 3, "equation": "y = 2x + 3"},
    ),
    DiagramTemplate(
        "factor_tree",
        ("factor tree", "prime factors", "factorization", "prime numbers"),
        "factor_tree",
        "Need to find prime factors? Here's a factor tree structure.",
        {"number": 60, "factors": []},
    ),
    DiagramTemplate(
        "number_line",
        ("number line", "integers", "plot", "negative"),
        "number_line",
        "Number line problem? Here's a visual reference.",
        {"min": -10, "max": 10, "highlights": []},
    ),
    DiagramTemplate(
        "trapezium_area",
        ("trapezium", "trapezoid", "parallel sides", "area"),
        "trapezium",
        "Trapezium area problem? Here's the shape with parallel sides.",
        {"topBase": 6, "bottomBase": 10, "height": 4},
    ),
    DiagramTemplate(
        "rectangular_prism",
        ("rectangular prism", "cuboid", "box", "length width height"),
        "rectangular_prism",
        "3D rectangular prism problem? Here's the visualization.",
        {"length": 8, "width": 6, "height": 5},
    ),
    DiagramTemplate(
        "pie_chart",
        ("pie chart", "pie graph", "sectors", "percentage breakdown"),
        "pie_chart",
        "Pie chart needed? Here's a circular representation of your data.",
        {"segments": [
            {"label": "Red", "value": 40, "color": "#ff6b6b"},
            {"label": "Blue", "value": 30, "color": "#4ecdc4"},
            {"label": "Green", "value": 20, "color": "#45b7d1"},
            {"label": "Yellow", "value": 10, "color": "#f9ca24"},
        ]},
    ),
    DiagramTemplate(
        "coordinate_points",
        ("plot points", "coordinate plane", "coordinates", "cartesian"),
        "coordinate_points",
        "Plotting coordinates? Here's a coordinate plane ready for your points.",
        {"points": [{"x": 2, "y": 3}, {"x": -1, "y": 4}, {"x": 0, "y": -2}],
         "xRange": [-5, 5], "yRange": [-5, 5]},
    ),
    DiagramTemplate(
        "number_sequence",
        ("sequence", "pattern", "next term", "arithmetic sequence", "nth term"),
        "number_sequence",
        "Number sequence problem? Here's the pattern visualization.",
        {"sequence": [5, 11, 17, 23, 29], "difference": 6, "rule": "+6"},
    ),
    DiagramTemplate(
        "isosceles_triangle",
        ("isosceles triangle", "base angles", "equal sides"),
        "isosceles_triangle",
        "Isosceles triangle problem? Here's the special triangle with equal sides.",
        {"baseAngles": 65, "apexAngle": None},
    ),
)

# Notation that nudges templates whose keywords mention the concept
_MATH_SYMBOLS = {
    "equation": re.compile(r"="),
    "fraction": re.compile(r"\d+/\d+"),
    "percentage": re.compile(r"%"),
    "angle": re.compile(r"°|degree"),
    "coordinates": re.compile(r"\(\s*-?\d+\s*,\s*-?\d+\s*\)"),
    "power": re.compile(r"\^|\*\*|²|³"),
}

_NUMBER = re.compile(r"\b\d+(?:\.\d+)?\b")
_ANGLE = re.compile(r"(\d+)\s*(?:degree|°)")
_LINEAR = re.compile(r"y\s*=\s*([+-]?\d*\.?\d*)\s*x\s*([+-]\s*\d+\.?\d*)?")


def _number(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def score_template(template: DiagramTemplate, msg: str) -> int:
    """Keyword score of ``template`` against a lower-cased message."""
    words = msg.split(" ")
    score = 0
    for keyword in template.keywords:
        if keyword in msg:
            score += 3 if keyword in words else 2

    if template.key == "parallel_lines_angles" and "parallel" in msg and "transversal" in msg:
        score += 5
    if template.key == "triangle_angles" and "triangle" in msg and "angle" in msg:
        score += 3

    for concept, pattern in _MATH_SYMBOLS.items():
        if pattern.search(msg) and any(concept in k for k in template.keywords):
            score += 1
    return score


def _parse_linear(msg: str) -> dict | None:
    match = _LINEAR.search(msg)
    if not match:
        return None
    try:
        slope = float(match.group(1))
    except ValueError:
        slope = 0.0
    slope = slope or 1
    intercept = float(match.group(2).replace(" ", "")) if match.group(2) else 0
    slope, intercept = _number(slope), _number(intercept)
    sign = "+" if intercept >= 0 else ""
    return {"slope": slope, "yIntercept": intercept, "equation": f"y = {slope}x {sign}{intercept}"}


def _dimensions_for(template: DiagramTemplate, msg: str) -> dict:
    dims = copy.deepcopy(template.default_dimensions)
    numbers = [_number(float(n)) for n in _NUMBER.findall(msg)]
    shape = template.shape

    if shape == "rectangle" and len(numbers) >= 2:
        dims["length"], dims["width"] = numbers[0], numbers[1]
    elif shape == "triangle" and len(numbers) >= 2:
        dims["base"], dims["height"] = numbers[0], numbers[1]
    elif shape == "circle" and numbers:
        dims["radius"] = numbers[0]
    elif shape in ("cylinder", "cone") and len(numbers) >= 2:
        dims["radius"], dims["height"] = numbers[0], numbers[1]
    elif shape == "triangle_find_angle":
        angles = [int(a) for a in _ANGLE.findall(msg)]
        if angles:
            padded = angles + [0, 0, 0]
            dims["angle1"] = padded[0] or None
            dims["angle2"] = padded[1] or None
            dims["angle3"] = padded[2] or None
    elif shape == "linear_graph":
        parsed = _parse_linear(msg)
        if parsed:
            dims.update(parsed)
    elif shape == "factor_tree" and numbers:
        dims["number"] = numbers[0]
    elif shape == "bar_chart" and len(numbers) >= 2:
        dims["values"] = numbers[:4]
    return dims


def detect_math_diagram(message: str) -> dict | None:
    """Best-matching diagram for ``message``, or None when nothing scores.

    Ties go to the template declared first.
    """
    msg = (message or "").lower()
    best: DiagramTemplate | None = None
    best_score = 0
    for template in DIAGRAM_TEMPLATES:
        score = score_template(template, msg)
        if score > best_score:
            best, best_score = template, score

    if best is None:
        return None

    return {
        "template": best.key,
        "shape": best.shape,
        "dimensions": _dimensions_for(best, msg),
        "prompt": best.prompt,
        "confidence": min(best_score / max(len(best.keywords), 3), 1),
    }
