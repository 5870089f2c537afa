#!/usr/bin/env python3
"""Convert SC3D (.scw) models to glTF format.

Usage:
    python convert.py <input> [-o <output>] [-f <folder>] [-l <library>]... [--no-skeleton] [--no-animation]

Examples:
    # Convert a single file, resolving libraries next to it
    python convert.py character.scw -o ./output

    # Convert all .scw files from a directory
    python convert.py ./sc3d/ -o ./output

    # Resolve libraries from another folder
    python convert.py character.scw -f ./game/sc3d -o ./output

    # Search extra libraries for node targets
    python convert.py scene.scw -l props -l characters -o ./output
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from gltf_exporter import GLTFExporter
from sc3d_library import LibraryResolver

IMPORT_PATH_ENV = "SC3D_IMPORT_PATH"


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Convert SC3D models to glTF format"
    )
    parser.add_argument(
        "input",
        help="Input .scw file or directory containing .scw files",
    )
    parser.add_argument(
        "-o", "--output",
        default="./output",
        help="Output directory for glTF files (default: ./output)",
    )
    parser.add_argument(
        "-f", "--folder",
        default=os.environ.get(IMPORT_PATH_ENV),
        help=f"Library search folder (default: ${IMPORT_PATH_ENV} or the input's folder)",
    )
    parser.add_argument(
        "-l", "--lib",
        action="append",
        default=[],
        metavar="LIBRARY",
        help="Extra library to search for node targets (single file only, repeatable)",
    )
    parser.add_argument(
        "--no-skeleton",
        action="store_true",
        help="Skip skin export",
    )
    parser.add_argument(
        "--no-animation",
        action="store_true",
        help="Skip animation export",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    # Collect input files
    input_path = Path(args.input)
    if input_path.is_file():
        files = [input_path]
        search_root = input_path.parent
    elif input_path.is_dir():
        files = sorted(input_path.glob("**/*.scw"))
        search_root = input_path
        if not files:
            print(f"No .scw files found in {input_path}", file=sys.stderr)
            return 1
    else:
        print(f"Input not found: {args.input}", file=sys.stderr)
        return 1

    os.makedirs(args.output, exist_ok=True)
    resolver = LibraryResolver(args.folder or search_root)

    libraries = []
    if args.lib and len(files) > 1:
        print("Ignoring --lib, it applies to a single input file only", file=sys.stderr)
    elif args.lib:
        try:
            libraries = [resolver.resolve(name) for name in args.lib]
        except (OSError, ValueError) as e:
            print(f"Failed: {e}", file=sys.stderr)
            return 1

    success_count = 0
    fail_count = 0

    for scw_file in files:
        output_file = Path(args.output) / f"{scw_file.stem}.glb"

        try:
            exporter = GLTFExporter(str(scw_file), resolver=resolver, libraries=libraries)
            exporter.export(
                str(output_file),
                include_skeleton=not args.no_skeleton,
                include_animations=not args.no_animation,
            )
            logging.info(f"Exported: {scw_file} -> {output_file}")
            success_count += 1
        except (OSError, ValueError) as e:
            print(f"Failed: {scw_file} - {e}", file=sys.stderr)
            fail_count += 1

    total = success_count + fail_count
    print(f"\nConverted {success_count}/{total} files to {args.output}")

    return 0 if fail_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
