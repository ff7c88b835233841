from __future__ import annotations
import math
import pytest
from delta_calibrator.mesh.delta_mesh import DeltaMesh
from delta_calibrator.mesh.refinement import MeshGeometry, Refiner


@pytest.fixture(scope="module")
def default_mesh():
    return DeltaMesh()


def _walk(tetra):
    yield tetra
    for child in tetra.children():
        yield from _walk(child)


class TestMeshGeometry:
    def test_defaults(self):
        g = MeshGeometry.resolve()
        assert g.r_in == 195
        assert g.z_min == -50
        assert g.height == pytest.approx(551.5432893255071)
        assert g.z_max == pytest.approx(501.5432893255071)
        assert g.z_planes == 5
        assert g.r_out == 390

    def test_height_determines_z_max_and_r_in(self):
        g = MeshGeometry.resolve(height=100)
        assert g.z_max == 50
        assert g.r_in == pytest.approx(100 / (2 * math.sqrt(2)))

    def test_z_max_determines_height(self):
        g = MeshGeometry.resolve(z_min=-49, z_max=60, r_in=195)
        assert g.height == 109
        assert g.r_in == 195

    def test_all_given_kept(self):
        g = MeshGeometry.resolve(r_in=195, z_min=-50, z_max=501.5432893255071,
                                 height=551.5432893255071)
        assert g.z_max == 501.5432893255071
        assert g.height == 551.5432893255071

    def test_z_planes_clamped(self):
        assert MeshGeometry.resolve(z_planes=1).z_planes == 2
        assert MeshGeometry.resolve(z_planes=0).z_planes == 5

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            MeshGeometry.resolve(z_min=10, z_max=0)

    def test_vertex_separation(self):
        g = MeshGeometry.resolve(r_in=195, z_min=-49, z_max=60, z_planes=7)
        assert g.vertex_separation == pytest.approx(21.109, abs=1e-3)


class TestRefiner:
    def test_no_refinement_for_two_planes(self):
        refiner = Refiner(MeshGeometry.resolve())
        level = refiner.refine_z_planes(2)
        assert level == [refiner.root]
        assert refiner.root.is_leaf
        assert len(refiner.vertex_map) == 4

    def test_refinement_levels(self):
        refiner = Refiner(MeshGeometry.resolve())
        deepest = refiner.refine_z_planes(5)
        assert len(refiner.level_tetras) == 4
        assert len(deepest) == 142
        assert all(t.z_min() == -50 for t in deepest)
        assert refiner.refine_z_planes(5) is deepest

    def test_refine_red_is_idempotent(self):
        refiner = Refiner(MeshGeometry.resolve())
        first = refiner.refine_red(refiner.root)
        n = len(refiner.vertex_map)
        assert refiner.refine_red(refiner.root) is first
        assert len(refiner.vertex_map) == n == 10
        assert len(first) == 8

    def test_deepest_level_pruning(self):
        refiner = Refiner(MeshGeometry.resolve())
        deepest = refiner.refine_z_planes(5)
        for tetra in deepest:
            assert not all(v.external for v in tetra.vertices)
        unpruned = 0
        for parent in refiner.level_tetras[2]:
            unpruned += sum(1 for t in parent.partitions if t is None or t.z_min() == -50)
        assert unpruned > len(deepest)

    def test_root_is_never_pruned(self):
        refiner = Refiner(MeshGeometry.resolve())
        refiner.refine_red(refiner.root)
        assert all(t is not None for t in refiner.root.partitions)


class TestDeltaMeshConstruction:
    def test_root_vertices(self, default_mesh):
        t0, t1, t2, t3 = default_mesh.root.vertices
        n = t0.norm()
        assert t1.norm() == pytest.approx(n, abs=1e-12)
        assert t2.norm() == pytest.approx(n, abs=1e-12)
        assert (t0.x, t0.y, t0.z) == (0, 390, -50)
        assert (t3.x, t3.y) == (0, 0)
        assert t3.z == default_mesh.z_max

    def test_vertex_count(self, default_mesh):
        assert len(default_mesh.vertex_map) == 107

    def test_vertices_are_shared(self, default_mesh):
        by_identity = {id(v) for v in default_mesh.vertex_map.values()}
        by_position = {}
        for tetra in _walk(default_mesh.root):
            for v in tetra.vertices:
                assert id(v) in by_identity
                key = (v.x, v.y, v.z)
                assert by_position.setdefault(key, v) is v

    def test_volume_conservation(self, default_mesh):
        for tetra in _walk(default_mesh.root):
            if tetra.is_leaf:
                continue
            total = sum(child.volume() for child in tetra.children())
            if None in tetra.partitions:
                assert total < tetra.volume()
            else:
                assert total == pytest.approx(tetra.volume(), rel=1e-9)

    def test_coords_extend_parent(self, default_mesh):
        for tetra in _walk(default_mesh.root):
            for i, child in enumerate(tetra.partitions or []):
                if child is not None:
                    assert child.parent is tetra
                    assert child.coord == tetra.coord + (i,)

    def test_external_flag(self, default_mesh):
        limit = default_mesh.r_in ** 2 * 1.05
        for v in default_mesh.vertices:
            assert v.external == (v.x ** 2 + v.y ** 2 > limit)

    def test_midpoint_levels(self, default_mesh):
        assert all(v.level == 0 for v in default_mesh.root.vertices)
        for v in default_mesh.tetra_at_coord("00").vertices[:3]:
            assert v.level == 1

    def test_pruned_children_are_external(self, default_mesh):
        pruned = 0
        for tetra in _walk(default_mesh.root):
            if tetra is default_mesh.root or tetra.is_leaf:
                continue
            pruned += tetra.partitions.count(None)
        assert pruned > 0

    def test_sub_tetras(self, default_mesh):
        assert len(default_mesh.sub_tetras()) == 318
        assert len(default_mesh.sub_tetras(default_mesh.tetra_at_coord("01"))) == 50
        assert len(default_mesh.sub_tetras(default_mesh.tetra_at_coord("02"))) == 50
        assert default_mesh.sub_tetras(default_mesh.tetra_at_coord("010")) == []
        sub04 = default_mesh.sub_tetras(default_mesh.tetra_at_coord("04"))
        assert len(sub04) == 16
        assert all(t.coord_str.startswith("04") for t in sub04)
