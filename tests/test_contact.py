"""
Tests for the Contact Enforcement Pass

Tests cover:
- Contact test and nearest-neighbour lookup
- Pulling a floating fragment onto its neighbour
- Side classification of wing-like / foot-like fragments
- Same-side chaining and fixed anchors
"""

import pytest
import numpy as np
from pathlib import Path
import sys

import trimesh

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from common.config import ContactParams
from common.scene import SceneNode
from contact import ensure_connectivity, ensure_contact, classify_sides, ContactReport
from contact.enforce import has_contact, nearest_by_center
from placement.engine import nodes_overlap


# ============== Fixtures ==============

def make_box(position=(0.0, 0.0, 0.0), name="box", extents=(1.0, 1.0, 1.0)):
    node = SceneNode.from_mesh(trimesh.creation.box(extents=extents), name=name)
    node.position = np.array(position, dtype=float)
    return node


@pytest.fixture
def torso():
    return make_box(name="torso")


@pytest.fixture
def params():
    return ContactParams()


# ============== Helper Tests ==============

class TestHelpers:
    """Test contact helpers."""

    def test_has_contact(self, torso, params):
        """Contact uses the 90% volume."""
        assert has_contact(make_box((0.85, 0.0, 0.0)), [torso], params.contact_tolerance)
        assert not has_contact(make_box((0.95, 0.0, 0.0)), [torso], params.contact_tolerance)

    def test_nearest_by_center(self, torso):
        """Nearest neighbour is chosen by box center distance."""
        far = make_box((5.0, 0.0, 0.0), name="far")
        node = make_box((0.0, 2.0, 0.0))
        assert nearest_by_center(node, [far, torso]) is torso

    def test_nearest_without_geometry(self, torso):
        """A node with no geometry has no nearest neighbour."""
        assert nearest_by_center(SceneNode.group("empty"), [torso]) is None


# ============== ensure_contact Tests ==============

class TestEnsureContact:
    """Test pulling one fragment onto its neighbours."""

    def test_already_touching_is_untouched(self, torso, params):
        """Nodes in contact keep their position."""
        node = make_box((0.5, 0.0, 0.0))
        assert ensure_contact(node, [torso], params)
        np.testing.assert_allclose(node.position, [0.5, 0.0, 0.0])

    def test_floating_node_is_pulled_in(self, torso, params):
        """A far fragment is snapped onto the nearest sibling from its own side."""
        node = make_box((5.0, 0.0, 0.0), name="stray")
        assert ensure_contact(node, [torso], params)
        assert nodes_overlap(node, torso, params.contact_tolerance)
        # 1 + (-0.2 * 1 * 1.5)
        np.testing.assert_allclose(node.position, [0.7, 0.0, 0.0], atol=1e-9)

    def test_keeps_side(self, torso, params):
        """The pull never flips a fragment through its anchor."""
        node = make_box((-4.0, -3.0, 0.0))
        ensure_contact(node, [torso], params)
        assert node.position[0] < 0
        assert node.position[1] < 0

    def test_no_others(self, params):
        """A lone fragment trivially satisfies contact."""
        assert ensure_contact(make_box(), [], params)

    def test_positive_penetration_uses_growing_pull(self, torso):
        """When the snap leaves a gap the accumulated pull closes it."""
        params = ContactParams(penetration=0.2)
        node = make_box((3.0, 0.0, 0.0))
        assert ensure_contact(node, [torso], params)
        assert nodes_overlap(node, torso, params.contact_tolerance)


# ============== classify_sides Tests ==============

class TestClassifySides:
    """Test positional side grouping."""

    def test_wing_and_foot_groups(self, params):
        """Centers decide the group and the sign of x decides the side."""
        right_wing = make_box((1.0, 0.0, 0.0))
        left_foot = make_box((-0.5, -1.0, 0.0))
        central = make_box((0.0, 0.0, 0.0))
        groups = classify_sides([right_wing, left_foot, central], params)
        assert groups["wing"]["right"] == [right_wing]
        assert groups["foot"]["left"] == [left_foot]
        assert groups["wing"]["left"] == []
        assert central not in groups["foot"]["right"] + groups["foot"]["left"]

    def test_fragment_in_both_groups(self, params):
        """A low side fragment can be wing-like and foot-like at once."""
        node = make_box((0.5, -0.4, 0.0))
        groups = classify_sides([node], params)
        assert groups["wing"]["right"] == [node]
        assert groups["foot"]["right"] == [node]


# ============== ensure_connectivity Tests ==============

class TestEnsureConnectivity:
    """Test the full connectivity pass."""

    def test_single_fragment(self, torso, params):
        """One fragment needs no contact."""
        report = ensure_connectivity([torso], params)
        assert report.fully_connected
        assert report.adjusted == []

    def test_floating_head_reconnected(self, torso, params):
        """Every fragment touches a sibling afterwards."""
        head = make_box((0.0, 4.0, 0.0), name="head")
        tail = make_box((0.0, 0.0, 6.0), name="tail")
        report = ensure_connectivity([torso, head, tail], params, fixed=[torso])
        assert isinstance(report, ContactReport)
        assert report.fully_connected
        assert set(report.adjusted) == {"head", "tail"}
        for node in (head, tail):
            assert has_contact(node, [torso], params.contact_tolerance)

    def test_fixed_anchor_never_moves(self, torso, params):
        """The anchor stays put even if it starts disconnected."""
        stray = make_box((3.0, 0.0, 0.0), name="stray")
        ensure_connectivity([torso, stray], params, fixed=[torso])
        np.testing.assert_allclose(torso.position, np.zeros(3))
        assert nodes_overlap(stray, torso, params.contact_tolerance)

    def test_same_side_wings_chain(self, torso, params):
        """A second same-side wing is pulled onto the first one."""
        wing_a = make_box((-0.8, 0.0, -0.5), name="wing_a")
        wing_b = make_box((-0.8, 0.0, 0.5), name="wing_b")
        assert not nodes_overlap(wing_a, wing_b, params.contact_tolerance)

        report = ensure_connectivity([torso, wing_a, wing_b], params, fixed=[torso])

        assert "wing_b" in report.adjusted
        assert nodes_overlap(wing_a, wing_b, params.contact_tolerance)
        np.testing.assert_allclose(wing_b.position, [-0.8, 0.0, 0.2], atol=1e-9)

    def test_unresolvable_is_reported_not_raised(self, torso, params):
        """A fragment that cannot be connected is listed, nothing raises."""
        empty = SceneNode.group("ghost")
        report = ensure_connectivity([torso, empty], params)
        assert not report.fully_connected
        assert "ghost" in report.unresolved
