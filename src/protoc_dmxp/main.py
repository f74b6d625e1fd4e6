from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Sequence

from protoc_dmxp.generator.code_generator import (
    GeneratorOptions,
    generate,
    output_file_name,
)
from protoc_dmxp.generator.type_tables import Target
from protoc_dmxp.loader import SchemaLoadError, load_schema, write_output
from protoc_dmxp.parser.schema_parser import SchemaParseError, parse_schema


def run(
    schema_path: str,
    targets: Sequence[Target],
    output_dir: str,
    options: GeneratorOptions | None = None,
) -> List[str]:
    """Main pipeline: load, parse, generate, write. Returns the written paths."""
    options = options or GeneratorOptions()

    # 1. Load and parse
    schema = parse_schema(load_schema(schema_path))
    print(
        f"Parsed {schema_path}: {len(schema.messages)} message(s), "
        f"{len(schema.services)} service(s), {len(schema.enums)} enum(s), "
        f"{len(schema.channels)} channel(s)"
    )

    # 2. Generate one file per target
    written: List[str] = []
    for target in targets:
        source = generate(schema, target, options)
        file_path = os.path.join(output_dir, target.value, output_file_name(schema, target, options))
        written.append(write_output(file_path, source))
        print(f"  Generated {target.value}: {file_path}")

    return written


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="DMXP schema parser and stub generator",
    )
    parser.add_argument(
        "--schema",
        required=True,
        help="Path to the .proto schema file",
    )
    parser.add_argument(
        "--target",
        action="append",
        choices=[t.value for t in Target],
        help="Target language (repeatable); defaults to all targets",
    )
    parser.add_argument(
        "--output-dir",
        required=True,
        help="Directory that receives one sub-directory per target",
    )
    parser.add_argument(
        "--package-override",
        help="Package/namespace to use instead of the schema's package",
    )
    parser.add_argument(
        "--no-dmxp",
        action="store_true",
        help="Skip DMXP channel bindings and constants",
    )
    parser.add_argument(
        "--async",
        dest="use_async",
        action="store_true",
        help="Generate async service signatures",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log parser and generator details",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    targets = [Target(t) for t in args.target] if args.target else list(Target)
    options = GeneratorOptions(
        include_dmxp=not args.no_dmxp,
        use_async=args.use_async,
        package_override=args.package_override,
    )

    try:
        run(args.schema, targets, args.output_dir, options)
    except (SchemaLoadError, SchemaParseError) as e:
        print(f"FATAL: {e}", file=sys.stderr)
        sys.exit(1)

    print("Done!")


if __name__ == "__main__":
    main()
