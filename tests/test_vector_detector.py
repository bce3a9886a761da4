"""Tests for vector graphics region detection."""

import pytest

from pdf2md.core.vector_detector import (
    IDENTITY_MATRIX,
    PathBounds,
    PathInfo,
    Viewport,
    classify_region,
    cluster_paths,
    detect_vector_regions,
    extract_paths,
    generate_simple_svg,
    is_near,
    multiply_matrix,
)
from pdf2md.models.document import VectorRegion, VectorRegionType

LETTER = Viewport(width=612, height=792)


def filled_rect(x, y, w, h):
    return [([x, y, w, h], "re"), ([], "f")]


def path(min_x, min_y, max_x, max_y, op_count=1) -> PathInfo:
    return PathInfo(bounds=PathBounds(min_x, min_y, max_x, max_y), op_count=op_count)


class TestGeometry:
    """Tests for matrix and proximity helpers."""

    def test_identity(self):
        """Should leave a matrix unchanged when multiplied by identity."""
        m = (2.0, 0.0, 0.0, 2.0, 5.0, 7.0)
        assert multiply_matrix(m, IDENTITY_MATRIX) == m
        assert multiply_matrix(IDENTITY_MATRIX, m) == m

    def test_is_near(self):
        """Should compare both axis gaps with the threshold."""
        a = PathBounds(0, 0, 10, 10)
        assert is_near(a, PathBounds(20, 0, 30, 10), 15)
        assert not is_near(a, PathBounds(40, 0, 50, 10), 15)
        assert not is_near(a, PathBounds(20, 40, 30, 50), 15)


class TestExtractPaths:
    """Tests for extract_paths."""

    def test_flips_y_axis(self):
        """Should convert PDF user space to top-down coordinates."""
        paths = extract_paths(filled_rect(100, 100, 50, 50), LETTER)

        assert len(paths) == 1
        bounds = paths[0].bounds
        assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (100, 642, 150, 692)
        assert paths[0].has_fill and not paths[0].has_stroke

    def test_applies_current_transform(self):
        """Should transform points through the cm matrix."""
        operations = [([2, 0, 0, 2, 10, 10], "cm")] + filled_rect(0, 0, 10, 10)
        bounds = extract_paths(operations, LETTER)[0].bounds
        assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (10, 762, 30, 782)

    def test_restores_saved_state(self):
        """Should restore the transform on Q."""
        operations = (
            [([], "q"), ([1, 0, 0, 1, 100, 0], "cm"), ([], "Q")]
            + filled_rect(0, 0, 10, 10)
        )
        assert extract_paths(operations, LETTER)[0].bounds.min_x == 0

    def test_skips_text_underlines(self):
        """Should ignore paths painted inside text objects."""
        operations = [([], "BT")] + filled_rect(0, 0, 100, 2) + [([], "ET")]
        assert extract_paths(operations, LETTER) == []

    def test_accepts_bytes_operators(self):
        """Should decode operator names given as bytes."""
        operations = [([0, 0, 10, 10], b"re"), ([], b"f")]
        assert len(extract_paths(operations, LETTER)) == 1

    def test_skips_malformed_operators(self):
        """Should skip operators with missing operands."""
        operations = [([1], "m"), ([], "S")] + filled_rect(0, 0, 10, 10)
        assert len(extract_paths(operations, LETTER)) == 1


class TestClustering:
    """Tests for cluster_paths and classify_region."""

    def test_transitive_clusters(self):
        """Should join paths connected through a chain of neighbours."""
        paths = [path(0, 0, 10, 10), path(20, 0, 30, 10), path(40, 0, 50, 10)]
        clusters = cluster_paths(paths, 15)
        assert len(clusters) == 1
        assert len(clusters[0]) == 3

    def test_separate_clusters(self):
        """Should keep distant paths apart."""
        clusters = cluster_paths([path(0, 0, 10, 10), path(300, 300, 310, 310)], 15)
        assert len(clusters) == 2

    @pytest.mark.parametrize(
        "width,height,op_count,stroke,fill,expected",
        [
            (100, 100, 5, False, True, VectorRegionType.LOGO),
            (500, 2, 2, True, False, VectorRegionType.DECORATION),
            (400, 300, 30, True, True, VectorRegionType.DIAGRAM),
            (400, 300, 15, True, False, VectorRegionType.CHART),
            (400, 300, 3, True, False, VectorRegionType.UNKNOWN),
        ],
    )
    def test_classify_region(self, width, height, op_count, stroke, fill, expected):
        """Should classify clusters by size, aspect ratio and operator count."""
        assert classify_region(width, height, op_count, stroke, fill) == expected


class TestDetectVectorRegions:
    """Tests for detect_vector_regions."""

    def test_groups_nearby_shapes(self):
        """Should merge nearby shapes into one region."""
        operations = filled_rect(100, 100, 50, 50) + filled_rect(155, 100, 50, 50)

        regions = detect_vector_regions(operations, LETTER)

        assert len(regions) == 1
        assert regions[0].bbox == [100, 642, 105, 50]
        assert regions[0].path_count == 2

    def test_drops_lone_rules(self):
        """Should ignore a single simple stroke such as a horizontal rule."""
        operations = [([0, 100], "m"), ([500, 100], "l"), ([], "S")]
        assert detect_vector_regions(operations, LETTER) == []

    def test_drops_tiny_paths(self):
        """Should drop paths smaller than the minimum region size."""
        operations = filled_rect(0, 0, 5, 5) + filled_rect(6, 0, 5, 5)
        assert detect_vector_regions(operations, LETTER) == []


class TestGenerateSimpleSvg:
    def test_placeholder(self):
        """Should outline the region and label its type."""
        svg = generate_simple_svg(VectorRegion(bbox=[0, 0, 100, 50], type=VectorRegionType.LOGO))
        assert svg.startswith("<svg")
        assert "[Vector Graphic: logo]" in svg
