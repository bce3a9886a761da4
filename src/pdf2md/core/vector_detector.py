"""Vector graphics region detection over page content-stream operators."""

import logging
from dataclasses import dataclass, field

from pdf2md.models.document import VectorRegion, VectorRegionType

log = logging.getLogger(__name__)

Matrix = tuple[float, float, float, float, float, float]

IDENTITY_MATRIX: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

# Path painting operators, grouped by what they paint
STROKE_OPS = {"S", "s"}
FILL_OPS = {"f", "F", "f*"}
FILL_STROKE_OPS = {"B", "B*", "b", "b*"}
PAINT_OPS = STROKE_OPS | FILL_OPS | FILL_STROKE_OPS


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class Viewport:
    """Output coordinate space.

    ``width``/``height`` are in output units (page size times ``scale``).
    ``transform`` is an optional affine ``(a, b, c, d, e, f)`` from PDF user
    space to output space; without it the Y axis is flipped around ``height``.
    """

    width: float
    height: float
    scale: float = 1.0
    transform: Matrix | None = None


@dataclass
class DetectorOptions:
    min_region_size: float = 20
    proximity_threshold: float = 15
    exclude_text_underlines: bool = True


@dataclass
class PathBounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


@dataclass
class PathInfo:
    """A painted path in top-down output coordinates."""

    bounds: PathBounds
    op_count: int
    has_stroke: bool = False
    has_fill: bool = False


@dataclass
class _PathBuilder:
    points: list[tuple[float, float]] = field(default_factory=list)
    op_count: int = 0

    def reset(self) -> None:
        self.points = []
        self.op_count = 0


# =============================================================================
# Geometry
# =============================================================================


def multiply_matrix(m1: Matrix, m2: Matrix) -> Matrix:
    """Return ``m1 x m2`` (apply m1 first, then m2)."""
    a1, b1, c1, d1, e1, f1 = m1
    a2, b2, c2, d2, e2, f2 = m2
    return (
        a1 * a2 + b1 * c2,
        a1 * b2 + b1 * d2,
        c1 * a2 + d1 * c2,
        c1 * b2 + d1 * d2,
        e1 * a2 + f1 * c2 + e2,
        e1 * b2 + f1 * d2 + f2,
    )


def apply_matrix(m: Matrix, x: float, y: float) -> tuple[float, float]:
    a, b, c, d, e, f = m
    return a * x + c * y + e, b * x + d * y + f


def _to_output(ctm: Matrix, viewport: Viewport, x: float, y: float) -> tuple[float, float]:
    px, py = apply_matrix(ctm, x, y)
    if viewport.transform is not None:
        return apply_matrix(viewport.transform, px, py)
    return px * viewport.scale, viewport.height - py * viewport.scale


def _bounds_of(points: list[tuple[float, float]]) -> PathBounds:
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return PathBounds(min(xs), min(ys), max(xs), max(ys))


def _axis_gap(min_a: float, max_a: float, min_b: float, max_b: float) -> float:
    return max(0.0, max(min_a, min_b) - min(max_a, max_b))


def is_near(a: PathBounds, b: PathBounds, threshold: float) -> bool:
    """True when both the horizontal and vertical gaps are within threshold."""
    gap_x = _axis_gap(a.min_x, a.max_x, b.min_x, b.max_x)
    gap_y = _axis_gap(a.min_y, a.max_y, b.min_y, b.max_y)
    return gap_x <= threshold and gap_y <= threshold


# =============================================================================
# Operator Stream Walk
# =============================================================================


def _op_name(operator) -> str:
    if isinstance(operator, bytes):
        return operator.decode("latin-1")
    return str(operator)


def extract_paths(
    operations: list[tuple[list, object]],
    viewport: Viewport,
    options: DetectorOptions | None = None,
) -> list[PathInfo]:
    """Walk ``(operands, operator)`` pairs and collect painted paths."""
    options = options or DetectorOptions()
    ctm = IDENTITY_MATRIX
    ctm_stack: list[Matrix] = []
    in_text = False
    builder = _PathBuilder()
    paths: list[PathInfo] = []

    def add_point(x, y) -> None:
        builder.points.append(_to_output(ctm, viewport, float(x), float(y)))

    for operands, operator in operations:
        op = _op_name(operator)
        try:
            if op == "q":
                ctm_stack.append(ctm)
            elif op == "Q":
                ctm = ctm_stack.pop() if ctm_stack else IDENTITY_MATRIX
            elif op == "cm" and len(operands) >= 6:
                ctm = multiply_matrix(tuple(float(v) for v in operands[:6]), ctm)
            elif op == "BT":
                in_text = True
            elif op == "ET":
                in_text = False
            elif op in ("m", "l"):
                add_point(operands[0], operands[1])
                builder.op_count += 1
            elif op == "c":
                for i in range(0, 6, 2):
                    add_point(operands[i], operands[i + 1])
                builder.op_count += 1
            elif op in ("v", "y"):
                for i in range(0, 4, 2):
                    add_point(operands[i], operands[i + 1])
                builder.op_count += 1
            elif op == "h":
                builder.op_count += 1
            elif op == "re":
                x, y, w, h = (float(v) for v in operands[:4])
                for cx, cy in ((x, y), (x + w, y), (x, y + h), (x + w, y + h)):
                    add_point(cx, cy)
                builder.op_count += 1
            elif op in PAINT_OPS:
                if builder.points and not (in_text and options.exclude_text_underlines):
                    paths.append(
                        PathInfo(
                            bounds=_bounds_of(builder.points),
                            op_count=builder.op_count,
                            has_stroke=op in STROKE_OPS or op in FILL_STROKE_OPS,
                            has_fill=op in FILL_OPS or op in FILL_STROKE_OPS,
                        )
                    )
                builder.reset()
            elif op == "n":
                builder.reset()
        except (IndexError, TypeError, ValueError) as e:
            log.debug(f"Skipping malformed '{op}' operator: {e}")
            continue

    return paths


# =============================================================================
# Clustering
# =============================================================================


def cluster_paths(paths: list[PathInfo], threshold: float) -> list[list[PathInfo]]:
    """Group paths by iterative proximity expansion."""
    assigned = [False] * len(paths)
    clusters: list[list[PathInfo]] = []

    for i, seed in enumerate(paths):
        if assigned[i]:
            continue
        assigned[i] = True
        cluster = [seed]

        changed = True
        while changed:
            changed = False
            for j, candidate in enumerate(paths):
                if assigned[j]:
                    continue
                if any(is_near(m.bounds, candidate.bounds, threshold) for m in cluster):
                    cluster.append(candidate)
                    assigned[j] = True
                    changed = True

        clusters.append(cluster)

    return clusters


def classify_region(
    width: float, height: float, op_count: int, has_stroke: bool, has_fill: bool
) -> VectorRegionType:
    """Best-effort guess at what a cluster depicts."""
    aspect_ratio = width / height if height > 0 else float("inf")

    if width < 200 and height < 200 and 0.5 < aspect_ratio < 2 and has_fill:
        return VectorRegionType.LOGO
    if (aspect_ratio > 10 or aspect_ratio < 0.1) and op_count < 5:
        return VectorRegionType.DECORATION
    if op_count > 20 and has_stroke and has_fill:
        return VectorRegionType.DIAGRAM
    if 0.5 < aspect_ratio < 3 and op_count > 10:
        return VectorRegionType.CHART
    return VectorRegionType.UNKNOWN


def _cluster_to_region(cluster: list[PathInfo]) -> VectorRegion:
    min_x = min(p.bounds.min_x for p in cluster)
    min_y = min(p.bounds.min_y for p in cluster)
    max_x = max(p.bounds.max_x for p in cluster)
    max_y = max(p.bounds.max_y for p in cluster)
    width = max_x - min_x
    height = max_y - min_y
    op_count = sum(p.op_count for p in cluster)
    has_stroke = any(p.has_stroke for p in cluster)
    has_fill = any(p.has_fill for p in cluster)

    return VectorRegion(
        bbox=[min_x, min_y, width, height],
        type=classify_region(width, height, op_count, has_stroke, has_fill),
        path_count=len(cluster),
        complexity=min(1.0, op_count / 100),
    )


def detect_vector_regions(
    operations: list[tuple[list, object]],
    viewport: Viewport,
    options: DetectorOptions | None = None,
) -> list[VectorRegion]:
    """Find clusters of vector drawing on a page.

    Args:
        operations: Content stream as ``(operands, operator)`` pairs, as
            produced by ``pypdf.generic.ContentStream.operations``
        viewport: Target coordinate space
        options: Size and proximity thresholds

    Returns:
        Regions in top-down output coordinates
    """
    options = options or DetectorOptions()

    paths = [
        p
        for p in extract_paths(operations, viewport, options)
        if p.bounds.width >= options.min_region_size
        or p.bounds.height >= options.min_region_size
    ]

    regions: list[VectorRegion] = []
    for cluster in cluster_paths(paths, options.proximity_threshold):
        op_count = sum(p.op_count for p in cluster)
        # Lone strokes are usually rules or underlines
        if len(cluster) < 2 and op_count < 5:
            continue
        regions.append(_cluster_to_region(cluster))

    log.debug(f"Detected {len(regions)} vector regions from {len(paths)} paths")
    return regions


def generate_simple_svg(region: VectorRegion) -> str:
    """Placeholder SVG outlining a region."""
    x, y, width, height = region.bbox
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="{x} {y} {width} {height}" '
        f'width="{width}" height="{height}">\n'
        f'  <rect x="{x}" y="{y}" width="{width}" height="{height}" '
        f'fill="none" stroke="#ccc" stroke-dasharray="4"/>\n'
        f'  <text x="{x + width / 2}" y="{y + height / 2}" text-anchor="middle" '
        f'dominant-baseline="middle" font-size="12" fill="#666">\n'
        f"    [Vector Graphic: {region.type.value}]\n"
        f"  </text>\n"
        f"</svg>"
    )
