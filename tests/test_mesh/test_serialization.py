from __future__ import annotations
import json
import pytest
from delta_calibrator.core.event_bus import EventBus
from delta_calibrator.core.models import DataMismatchError
from delta_calibrator.geometry.xyz import XYZ
from delta_calibrator.mesh.delta_mesh import DeltaMesh
from delta_calibrator.mesh.serialization import geometry_args, parse_record, round_to_scale

HEIGHT = 551.5432893255071
Z_MAX = 501.5432893255071


@pytest.fixture
def record():
    return {
        "type": "DeltaMesh",
        "rIn": 195.0,
        "height": HEIGHT,
        "zPlanes": 5,
        "zMin": -50.0,
        "zMax": Z_MAX,
        "data": [
            {"temp": 50, "x": 0.0, "y": -48.75, "z": -50.0},
            {"humidity": 60, "x": -42.2187, "y": 24.375, "z": -50.0},
            {"temp": 70, "humidity": 80, "x": 42.2187, "y": 24.375, "z": -50.0},
        ],
    }


def _by_xy(data):
    return sorted(data, key=lambda d: (d["x"], d["y"], d["z"]))


class TestExport:
    def test_empty_mesh(self):
        record = DeltaMesh().export()
        assert record["type"] == "DeltaMesh"
        assert record["rIn"] == 195.0
        assert record["zPlanes"] == 5
        assert record["zMin"] == -50.0
        assert record["height"] == pytest.approx(HEIGHT)
        assert record["zMax"] == pytest.approx(Z_MAX)
        assert record["data"] == []

    def test_properties(self, record):
        mesh = DeltaMesh()
        mesh.vertex_at_xyz(XYZ(0, -48.75, -50)).set("temp", 50)
        mesh.vertex_at_xyz(XYZ(-42.2187, 24.375, -50)).set("humidity", 60)
        v = mesh.vertex_at_xyz(XYZ(42.2187, 24.375, -50))
        v.set("temp", 70)
        v.set("humidity", 80)
        exported = mesh.export()
        assert _by_xy(exported["data"]) == _by_xy(record["data"])
        assert json.loads(json.dumps(exported)) == exported

    def test_tolerance(self):
        mesh = DeltaMesh()
        mesh.vertex_at_xyz(XYZ(42.2187, 24.375, -50)).set("temp", 1)
        (entry,) = mesh.export(tolerance=0.1)["data"]
        assert entry["x"] == 42.2
        assert entry["y"] == 24.4

    def test_external_vertices_exported(self):
        mesh = DeltaMesh()
        corner = mesh.root.vertices[0]
        assert corner.external
        corner.set("temp", 5)
        assert mesh.export()["data"] == [{"temp": 5, "x": 0.0, "y": 390.0, "z": -50.0}]

    def test_round_to_scale(self):
        assert round_to_scale(1.25, 10) == 1.3
        assert round_to_scale(-1.25, 10) == -1.2
        assert round_to_scale(42.21874, 1e4) == 42.2187


class TestImport:
    def test_from_record(self, record):
        mesh = DeltaMesh.from_record(record)
        assert mesh.height == pytest.approx(HEIGHT)
        assert mesh.z_max == pytest.approx(Z_MAX)
        assert mesh.vertex_at_xyz(XYZ(0, -48.75, -50)).get("temp") == 50
        v = mesh.vertex_at_xyz(XYZ(42.2187, 24.375, -50))
        assert v.props == {"temp": 70, "humidity": 80}

    def test_round_trip(self, record):
        exported = DeltaMesh.from_record(record).export()
        assert _by_xy(exported["data"]) == _by_xy(record["data"])
        for key in ("rIn", "zPlanes", "zMin"):
            assert exported[key] == record[key]

    def test_json_string(self, record):
        mesh = DeltaMesh.from_record(json.dumps(record))
        assert mesh.vertex_at_xyz(XYZ(-42.2187, 24.375, -50)).get("humidity") == 60

    def test_import_rebuilds_geometry(self, record):
        mesh = DeltaMesh(height=100)
        result = mesh.import_record(record)
        assert result.ok
        assert result.matched == 3
        assert result.assigned == 4
        assert mesh.r_in == 195.0
        assert mesh.z_max == pytest.approx(Z_MAX)

    def test_geometry_args(self, record):
        assert geometry_args(record) == {
            "r_in": 195.0, "z_min": -50.0, "z_max": Z_MAX, "height": HEIGHT, "z_planes": 5,
        }
        assert geometry_args({}) == dict.fromkeys(["r_in", "z_min", "z_max", "height", "z_planes"])

    def test_strict_mismatch(self, record):
        record["data"].append({"temp": 1, "x": 1000.0, "y": 1000.0, "z": -50.0})
        mesh = DeltaMesh()
        with pytest.raises(DataMismatchError) as excinfo:
            mesh.import_record(record, strict=True)
        assert len(excinfo.value.records) == 1
        assert all(not v.props for v in mesh.vertices)

    def test_failed_strict_import_keeps_mesh(self):
        mesh = DeltaMesh(z_planes=5)
        vertex = mesh.vertex_at_xyz(XYZ(0, -48.75, -50))
        vertex.set("offset", 1.5)
        n_vertices = len(mesh.vertices)
        record = {
            "type": "DeltaMesh", "rIn": 100.0, "zMin": -50.0, "zPlanes": 3,
            "data": [{"offset": 2.0, "x": 5000.0, "y": 0.0, "z": -50.0}],
        }
        with pytest.raises(DataMismatchError):
            mesh.import_record(record, strict=True)
        assert mesh.r_in == 195.0
        assert mesh.z_planes == 5
        assert len(mesh.vertices) == n_vertices
        assert mesh.vertex_at_xyz(XYZ(0, -48.75, -50)) is vertex
        assert vertex.get("offset") == 1.5

    def test_invalid_geometry_keeps_mesh(self):
        mesh = DeltaMesh()
        mesh.root.vertices[3].set("t", 1.0)
        with pytest.raises(ValueError):
            mesh.import_record({"type": "DeltaMesh", "zMin": 10.0, "zMax": 0.0, "data": []})
        assert mesh.root.vertices[3].get("t") == 1.0

    def test_lenient_mismatch(self, record, caplog):
        record["data"].append({"temp": 1, "x": 1000.0, "y": 1000.0, "z": -50.0})
        mesh = DeltaMesh()
        with caplog.at_level("WARNING", logger="delta_calibrator.mesh.serialization"):
            result = mesh.import_record(record)
        assert not result.ok
        assert len(result.skipped) == 1
        assert result.matched == 3
        assert "Could not import" in caplog.text

    def test_missing_coordinates_skipped(self, record):
        record["data"].append({"temp": 1, "x": 0.0, "y": 0.0})
        record["data"].append("not an entry")
        result = DeltaMesh().import_record(record)
        assert len(result.skipped) == 2

    def test_snap_distance(self, record):
        mesh = DeltaMesh()
        record["data"] = [{"temp": 1, "x": 1.0, "y": -48.75, "z": -50.0}]
        assert mesh.import_record(record).matched == 1
        assert mesh.import_record(record, snap_distance=0.5).matched == 0

    def test_first_entry_wins(self, record):
        record["data"] = [
            {"temp": 1, "x": 0.0, "y": -48.75, "z": -50.0},
            {"temp": 2, "x": 0.0, "y": -48.75, "z": -50.0},
        ]
        mesh = DeltaMesh.from_record(record)
        assert mesh.vertex_at_xyz(XYZ(0, -48.75, -50)).get("temp") == 1

    def test_non_numeric_property(self, record, caplog):
        record["data"] = [{"label": "left", "flag": True, "temp": 3, "x": 0.0, "y": -48.75, "z": -50.0}]
        with caplog.at_level("WARNING", logger="delta_calibrator.mesh.serialization"):
            mesh = DeltaMesh.from_record(record)
        assert mesh.vertex_at_xyz(XYZ(0, -48.75, -50)).props == {"temp": 3}
        assert "non-numeric" in caplog.text

    def test_record_type(self, record, caplog):
        record["type"] = "SomethingElse"
        with pytest.raises(DataMismatchError):
            DeltaMesh().import_record(record, strict=True)
        with caplog.at_level("WARNING", logger="delta_calibrator.mesh.serialization"):
            result = DeltaMesh().import_record(record)
        assert result.matched == 3
        assert "Importing anyway" in caplog.text

    def test_not_an_object(self):
        with pytest.raises(DataMismatchError):
            parse_record("[1, 2, 3]")
        with pytest.raises(json.JSONDecodeError):
            parse_record("{not json")

    def test_import_event(self, record):
        bus = EventBus(keep_history=True)
        DeltaMesh.from_record(record, event_bus=bus)
        (event,) = bus.get_history("mesh.imported")
        assert event["data"] == {"matched": 3, "assigned": 4, "skipped": 0}
