"""
Tests for the Assembly Orchestrator

Tests cover:
- Role assignment and reserve logic
- Left/right splitting with mirroring
- Full assembly: anchor, role counts, placement sides, determinism
- Synthesis entry points (sync and paced async)
"""

import asyncio
import pytest
import numpy as np
from pathlib import Path
import sys

import trimesh

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from common.config import Config, PacingParams, make_rng
from common.scene import SceneNode
from assembly import (
    assemble,
    assign_roles,
    split_sides,
    synthesize_creature,
    synthesize_creature_async,
    paced,
    Fragment,
    Role,
)
from contact.enforce import has_contact


# ============== Fixtures ==============

def box_fragment(category, size=0.6):
    group = SceneNode.group(f"{category}_fragment")
    group.add(SceneNode.from_mesh(trimesh.creation.box(extents=[size, size, size]), name=category))
    return Fragment(category=category, node=group)


@pytest.fixture
def seven_fragments():
    """Torso plus six same-sized parts."""
    return [box_fragment("torso", size=1.0)] + [box_fragment(f"part{i}") for i in range(6)]


@pytest.fixture
def rng():
    return make_rng(11)


@pytest.fixture
def quiet_config():
    """Config with no artificial delay."""
    return Config(pacing=PacingParams(min_delay_ms=0.0, max_delay_ms=0.0))


# ============== Role Assignment Tests ==============

class TestAssignRoles:
    """Test reserve logic and ordering."""

    def test_first_fragment_is_torso(self, seven_fragments, rng):
        """Fragment 0 is never shuffled."""
        roles = assign_roles(seven_fragments, rng)
        assert roles.torso is seven_fragments[0]

    def test_seven_fragments(self, seven_fragments, rng):
        """R=4 reserves tail and foot, leaving two wings."""
        roles = assign_roles(seven_fragments, rng)
        assert roles.head is not None
        assert roles.belly is not None
        assert len(roles.wings) == 2
        assert roles.tail is not None
        assert len(roles.feet) == 1
        assert roles.reserve == 2

    @pytest.mark.parametrize("n, wings, tail, feet, reserve", [
        (1, 0, False, 0, 0),
        (3, 0, False, 0, 0),
        (4, 0, False, 1, 1),
        (5, 1, False, 1, 1),
        (6, 1, True, 1, 2),
        (9, 4, True, 1, 2),
    ])
    def test_reserve_table(self, rng, n, wings, tail, feet, reserve):
        """Reserve is 2 when R > 2, 1 when R > 0."""
        fragments = [box_fragment(f"f{i}") for i in range(n)]
        roles = assign_roles(fragments, rng)
        assert len(roles.wings) == wings
        assert (roles.tail is not None) == tail
        assert len(roles.feet) == feet
        assert roles.reserve == reserve

    def test_every_fragment_used_once(self, seven_fragments, rng):
        """Assignment is a partition of the input."""
        roles = assign_roles(seven_fragments, rng)
        used = [roles.torso, roles.head, roles.belly, roles.tail] + roles.wings + roles.feet
        assert sorted(id(f) for f in used) == sorted(id(f) for f in seven_fragments)

    def test_empty(self, rng):
        """No fragments, no roles."""
        roles = assign_roles([], rng)
        assert roles.torso is None


# ============== Side Split Tests ==============

class TestSplitSides:
    """Test alternating sides and mirroring."""

    def test_single_part_is_mirrored(self):
        """One part populates both sides, the copy flagged as mirrored."""
        part = box_fragment("wing")
        sides = split_sides([part])
        assert sides["left"] == [(part, False)]
        assert sides["right"] == [(part, True)]

    def test_alternates(self):
        """Even indices go left, odd go right."""
        parts = [box_fragment(f"w{i}") for i in range(3)]
        sides = split_sides(parts)
        assert [p for p, _ in sides["left"]] == [parts[0], parts[2]]
        assert [p for p, _ in sides["right"]] == [parts[1]]
        assert not any(m for _, m in sides["left"] + sides["right"])

    def test_empty(self):
        """Nothing in, nothing out."""
        assert split_sides([]) == {"left": [], "right": []}


# ============== Assembly Tests ==============

class TestAssemble:
    """Test full creature assembly."""

    def test_single_torso(self, rng):
        """One fragment gives a lone torso at the origin."""
        creature = assemble([box_fragment("torso", 1.0)], rng=rng)
        assert len(creature) == 1
        assert creature.torso.role is Role.TORSO
        np.testing.assert_allclose(creature.torso.node.position, np.zeros(3))
        np.testing.assert_allclose(creature.torso.node.scale, np.ones(3))
        assert creature.contact is None

    def test_seven_fragment_role_counts(self, seven_fragments, rng):
        """Two wings, one tail and a mirrored pair of feet."""
        creature = assemble(seven_fragments, rng=rng)
        assert creature.role_counts() == {
            "torso": 1, "head": 1, "belly": 1, "wing": 2, "tail": 1, "foot": 2,
        }
        feet = creature.with_role(Role.FOOT)
        assert sum(p.mirrored for p in feet) == 1

    @pytest.mark.parametrize("n, expected", [
        (2, {"torso": 1, "head": 1}),
        (3, {"torso": 1, "head": 1, "belly": 1}),
        (4, {"torso": 1, "head": 1, "belly": 1, "foot": 2}),
        (5, {"torso": 1, "head": 1, "belly": 1, "wing": 2, "foot": 2}),
        (6, {"torso": 1, "head": 1, "belly": 1, "wing": 2, "tail": 1, "foot": 2}),
    ])
    def test_role_counts_by_size(self, rng, n, expected):
        """Optional roles appear as more fragments are supplied."""
        fragments = [box_fragment("torso", 1.0)] + [box_fragment(f"p{i}") for i in range(n - 1)]
        counts = {k: v for k, v in assemble(fragments, rng=rng).role_counts().items() if v}
        assert counts == expected

    def test_torso_anchor(self, seven_fragments, rng):
        """Torso is fragment 0, at the origin, after the contact pass."""
        creature = assemble(seven_fragments, rng=rng)
        torso = creature.torso
        assert torso.role is Role.TORSO
        assert torso.category == "torso"
        np.testing.assert_allclose(torso.node.position, np.zeros(3))

    def test_parts_on_expected_sides(self, seven_fragments, rng):
        """Head above, belly and feet below, wings out to their side."""
        creature = assemble(seven_fragments, rng=rng)
        assert creature.with_role(Role.HEAD)[0].node.position[1] > 0
        assert creature.with_role(Role.BELLY)[0].node.position[1] < 0
        for foot in creature.with_role(Role.FOOT):
            assert foot.node.position[1] < 0
        for wing in creature.with_role(Role.WING):
            sign = -1 if wing.side == "left" else 1
            assert sign * wing.node.position[0] > 0

    def test_head_touches_torso(self, seven_fragments, rng):
        """The head interlocks with the torso it was snapped to."""
        creature = assemble(seven_fragments, rng=rng)
        head = creature.with_role(Role.HEAD)[0].node
        assert has_contact(head, [creature.torso.node], 0.9)

    def test_inputs_not_mutated(self, seven_fragments, rng):
        """Placed parts are clones; inputs keep their transforms."""
        creature = assemble(seven_fragments, rng=rng)
        for fragment in seven_fragments:
            np.testing.assert_allclose(fragment.node.position, np.zeros(3))
            np.testing.assert_allclose(fragment.node.rotation, np.zeros(3))
            assert "role" not in fragment.node.user_data
        placed_ids = {id(n) for n in creature.nodes}
        assert not placed_ids & {id(f.node) for f in seven_fragments}

    def test_nodes_parented_to_root(self, seven_fragments, rng):
        """Every placed part is a child of the creature root."""
        creature = assemble(seven_fragments, rng=rng)
        assert creature.root.children == creature.nodes
        assert all("role" in n.user_data for n in creature.nodes)

    def test_deterministic(self, seven_fragments):
        """Same seed, same creature."""
        a = assemble(seven_fragments, rng=make_rng(5))
        b = assemble(seven_fragments, rng=make_rng(5))
        for node_a, node_b in zip(a.nodes, b.nodes):
            assert node_a.name == node_b.name
            np.testing.assert_allclose(node_a.position, node_b.position)

    def test_empty_input(self, rng):
        """No fragments gives an empty creature."""
        creature = assemble([], rng=rng)
        assert len(creature) == 0
        assert creature.torso is None
        assert creature.root.children == []

    def test_accepts_mappings(self, rng):
        """``{category, mesh}`` mappings are accepted as fragments."""
        node = box_fragment("torso", 1.0).node
        creature = assemble([{"category": "torso", "mesh": node}], rng=rng)
        assert len(creature) == 1

    def test_rejects_unknown_items(self, rng):
        """Anything that is not a fragment is a programming error."""
        with pytest.raises(ValueError):
            assemble([42], rng=rng)
        with pytest.raises(ValueError):
            assemble([{"category": "torso"}], rng=rng)

    def test_without_contact_pass(self, seven_fragments, rng):
        """The contact pass can be skipped."""
        creature = assemble(seven_fragments, rng=rng, enforce_contact=False)
        assert creature.contact is None


# ============== Synthesis Tests ==============

class TestSynthesis:
    """Test synthesis entry points."""

    def test_metadata(self, seven_fragments, rng, quiet_config):
        """Root carries synthesis metadata."""
        creature = synthesize_creature(seven_fragments, rng=rng, config=quiet_config)
        data = creature.root.user_data
        assert data["synthesized"] is True
        assert data["fragment_count"] == 7
        assert data["part_types"][0] == "torso"

    def test_async_matches_sync(self, seven_fragments, quiet_config):
        """The paced variant returns the same creature as the sync one."""
        sync = synthesize_creature(seven_fragments, rng=make_rng(2), config=quiet_config)
        paced_result = asyncio.run(
            synthesize_creature_async(seven_fragments, rng=make_rng(2), config=quiet_config))
        assert paced_result.role_counts() == sync.role_counts()
        for a, b in zip(sync.nodes, paced_result.nodes):
            np.testing.assert_allclose(a.position, b.position)

    def test_paced_decorator(self):
        """Decorated functions become coroutines returning the wrapped result."""
        @paced(0, 1)
        def add(a, b):
            return a + b

        assert asyncio.iscoroutinefunction(add)
        assert asyncio.run(add(2, 3)) == 5

    def test_default_pacing_window(self, seven_fragments, monkeypatch):
        """Default pacing awaits between 0.5 and 1.5 seconds."""
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", record_sleep)
        for seed in range(5):
            asyncio.run(synthesize_creature_async(seven_fragments, rng=make_rng(seed), config=Config()))
        assert len(delays) == 5
        assert all(0.5 <= d <= 1.5 for d in delays)

    def test_paced_rejects_bad_window(self):
        """Inverted windows are a programming error."""
        with pytest.raises(ValueError):
            paced(10, 5)
