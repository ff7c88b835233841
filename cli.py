"""DeltaMeshCalibrator command-line interface."""
from __future__ import annotations

import argparse
import json
import os
import sys

VERSION = "0.1.0"


def _add_mesh_args(p):
    p.add_argument("--config", help="YAML configuration file")
    p.add_argument("--r-in", type=float, help="Inscribed radius of the base (mm)")
    p.add_argument("--z-min", type=float, help="Height of the lowest plane (mm)")
    p.add_argument("--z-max", type=float, help="Height of the apex (mm)")
    p.add_argument("--height", type=float, help="Apex height above z-min (mm)")
    p.add_argument("--z-planes", type=int, help="Number of z-planes (>= 2)")


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="delta-mesh",
        description="Tetrahedral calibration mesh for delta robots",
    )
    parser.add_argument("--version", action="version", version="DeltaMeshCalibrator v%s" % VERSION)

    sub = parser.add_subparsers(dest="command")

    build = sub.add_parser("build", help="Build a mesh and summarize its planes")
    _add_mesh_args(build)
    build.add_argument("--json", action="store_true", help="Print the summary as JSON")

    export = sub.add_parser("export", help="Write a mesh record")
    _add_mesh_args(export)
    export.add_argument("--input", help="Existing mesh record to re-export")
    export.add_argument("--tolerance", type=float, help="Coordinate rounding (mm)")
    export.add_argument("--output", help="Output file (default: stdout)")

    mend = sub.add_parser("mend", help="Fill missing property values on one plane")
    mend.add_argument("--config", help="YAML configuration file")
    mend.add_argument("--input", required=True, help="Mesh record to mend")
    mend.add_argument("--prop", required=True, help="Property name")
    mend.add_argument("--plane", type=int, default=0, help="Plane index (default 0)")
    mend.add_argument("--scale", type=float, help="Round balanced averages to 1/scale")
    mend.add_argument("--strict", action="store_true", help="Fail on unmatched records")
    mend.add_argument("--output", help="Output file (default: overwrite input)")

    info = sub.add_parser("info", help="Summarize a mesh record")
    info.add_argument("--input", required=True, help="Mesh record")

    return parser


def _load_config(args):
    from delta_calibrator.core.config import AppConfig

    config = AppConfig(getattr(args, "config", None))
    for key, attr in (("mesh.r_in", "r_in"), ("mesh.z_min", "z_min"), ("mesh.z_max", "z_max"),
                      ("mesh.height", "height"), ("mesh.z_planes", "z_planes")):
        value = getattr(args, attr, None)
        if value is not None:
            config.set(key, value)
    return config


def _read_record(path):
    if not os.path.exists(path):
        print("Error: input file not found: %s" % path, file=sys.stderr)
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_record(record, path):
    text = json.dumps(record, indent=2)
    if path:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print("Wrote %d records to %s" % (len(record["data"]), path))
    else:
        print(text)


def _print_summary(mesh):
    s = mesh.summary()
    print("=" * 60)
    print("  DeltaMesh")
    print("=" * 60)
    print("  rIn:         %.4f" % s.r_in)
    print("  zMin:        %.4f" % s.z_min)
    print("  zMax:        %.4f" % s.z_max)
    print("  height:      %.4f" % s.height)
    print("  separation:  %.4f" % s.vertex_separation)
    print("  vertices:    %d" % s.n_vertices)
    print("  tetrahedra:  %d" % s.n_tetras)
    print()
    print("  --- Planes ---")
    print("  %-6s %10s %10s %10s" % ("plane", "z", "height", "vertices"))
    for i, count in enumerate(s.plane_counts):
        print("  %-6d %10.4f %10.4f %10d" % (i, mesh.z_plane_z(i), mesh.z_plane_height(i), count))
    print("=" * 60)


def _do_build(args):
    from delta_calibrator.mesh.delta_mesh import DeltaMesh

    mesh = DeltaMesh.from_config(_load_config(args))
    if args.json:
        print(json.dumps(mesh.summary().to_dict(), indent=2))
    else:
        _print_summary(mesh)
    return 0


def _do_export(args):
    from delta_calibrator.mesh.delta_mesh import DeltaMesh

    config = _load_config(args)
    if args.input:
        record = _read_record(args.input)
        if record is None:
            return 1
        mesh = DeltaMesh.from_record(record, strict=config.get("import.strict", False))
    else:
        mesh = DeltaMesh.from_config(config)
    tolerance = args.tolerance or config.get("export.tolerance", 0.0001)
    _write_record(mesh.export(tolerance=tolerance), args.output)
    return 0


def _do_mend(args):
    from delta_calibrator.core.models import DataMismatchError
    from delta_calibrator.mesh.delta_mesh import DeltaMesh

    config = _load_config(args)
    record = _read_record(args.input)
    if record is None:
        return 1
    try:
        mesh = DeltaMesh.from_record(record, strict=args.strict or config.get("import.strict", False))
    except DataMismatchError as e:
        print("Error: %s" % e, file=sys.stderr)
        return 1
    if mesh.z_plane_z(args.plane) is None:
        print("Error: plane %d is outside 0..%d" % (args.plane, mesh.top_plane), file=sys.stderr)
        return 1
    scale = args.scale if args.scale is not None else config.get("mend.scale")
    result = mesh.mend_z_plane(args.plane, args.prop, scale=scale)
    print("  Mended %r on plane %d: %d patched, %d holes"
          % (args.prop, args.plane, result.n_patched, result.holes))
    _write_record(mesh.export(), args.output or args.input)
    return 0


def _do_info(args):
    from delta_calibrator.mesh.delta_mesh import DeltaMesh

    record = _read_record(args.input)
    if record is None:
        return 1
    mesh = DeltaMesh.from_record(record)
    _print_summary(mesh)
    props = sorted({k for d in record.get("data", []) for k in d if k not in ("x", "y", "z")})
    print("  records:     %d" % len(record.get("data", [])))
    print("  properties:  %s" % (", ".join(props) or "-"))
    return 0


def main():
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "build":
        return _do_build(args)
    elif args.command == "export":
        return _do_export(args)
    elif args.command == "mend":
        return _do_mend(args)
    elif args.command == "info":
        return _do_info(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
