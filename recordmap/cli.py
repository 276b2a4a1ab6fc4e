"""
Command-line tool for recordmap schema files.

Commands:
- validate: Define every collection in a schema file and report errors
- describe: Print the effective fields and host store of each collection

Usage:
    recordmap validate schema.yaml
    recordmap describe schema.yaml --format json

Schema files are YAML or JSON holding either a list of collection
definitions or a mapping with a ``collections`` key. Collections are defined
in file order, so a collection can only extend one listed before it.

Invariants:
    - Definitions are checked against an in-memory mapper; nothing is written
    - Invalid files cause a non-zero exit code

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from .config import MapperSettings, setup_logging
from .errors import RecordMapError
from .mapper import RecordMapper

logger = logging.getLogger(__name__)


def load_definitions(path: str) -> list[dict[str, Any]]:
    """Load collection definitions from a YAML or JSON file.

    Raises:
        ValueError: If the file does not hold a list of definitions
    """
    text = Path(path).read_text()
    if path.endswith(".json"):
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)

    return as_definition_list(data, path)


def as_definition_list(data: Any, source: str = "schema") -> list[dict[str, Any]]:
    """Collection definitions from a list or a mapping with a ``collections`` key.

    Raises:
        ValueError: If ``data`` holds no list of definitions
    """
    if isinstance(data, dict):
        data = data.get("collections")
    if not isinstance(data, list):
        raise ValueError(f"{source}: expected a list of collection definitions")
    return data


class SchemaFileCLI:
    """Checks and describes schema files.

    Example:
        >>> cli = SchemaFileCLI()
        >>> errors = cli.validate(definitions)
    """

    async def _define_all(
        self,
        definitions: list[dict[str, Any]] | dict[str, Any],
    ) -> tuple[RecordMapper, list[str]]:
        definitions = as_definition_list(definitions)
        mapper = RecordMapper(MapperSettings(backend="memory"))
        await mapper.connect()
        errors = []
        for index, definition in enumerate(definitions):
            try:
                await mapper.define_collection(definition)
            except RecordMapError as e:
                name = definition.get("name") if isinstance(definition, dict) else None
                errors.append(f"{name or f'#{index}'}: {e.message}")
        return mapper, errors

    def validate(self, definitions: list[dict[str, Any]] | dict[str, Any]) -> list[str]:
        """Define every collection and return the error messages.

        Args:
            definitions: List of definitions, or a mapping with a
                ``collections`` key as found in schema files

        Raises:
            ValueError: If no list of definitions is given
        """

        async def run() -> list[str]:
            mapper, errors = await self._define_all(definitions)
            await mapper.close()
            return errors

        return asyncio.run(run())

    def describe(
        self, definitions: list[dict[str, Any]] | dict[str, Any]
    ) -> tuple[dict[str, Any], list[str]]:
        """Effective layout of every collection that could be defined.

        Returns:
            Tuple of (description keyed by collection name, error messages)
        """

        async def run() -> tuple[dict[str, Any], list[str]]:
            mapper, errors = await self._define_all(definitions)
            description = {}
            for collection in mapper.collections.collections():
                schema = collection.get_schema()
                description[schema.get_name()] = {
                    "host": schema.get_host_name(),
                    "extends": schema.get_extends(),
                    "final": schema.is_final(),
                    "fields": [f.get_definition().to_dict() for f in schema.get_fields()],
                }
            await mapper.close()
            return description, errors

        return asyncio.run(run())


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="recordmap schema tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a schema file")
    validate_parser.add_argument("file", help="YAML or JSON schema file")

    # describe command
    describe_parser = subparsers.add_parser("describe", help="Show effective collection fields")
    describe_parser.add_argument("file", help="YAML or JSON schema file")
    describe_parser.add_argument(
        "--format", choices=["json", "yaml"], default="yaml", help="Output format"
    )

    args = parser.parse_args(argv)
    setup_logging(MapperSettings(log_level="WARNING"))
    cli = SchemaFileCLI()

    try:
        definitions = load_definitions(args.file)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Cannot load {args.file}: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "validate":
        errors = cli.validate(definitions)
        if not errors:
            print(f"Schema is valid ({len(definitions)} collection(s))")
            sys.exit(0)
        else:
            print(f"Schema validation failed with {len(errors)} error(s):")
            for error in errors:
                print(f"  - {error}")
            sys.exit(1)

    elif args.command == "describe":
        description, errors = cli.describe(definitions)
        if args.format == "json":
            print(json.dumps(description, indent=2, default=str))
        else:
            print(yaml.dump(description, default_flow_style=False, sort_keys=False), end="")
        for error in errors:
            print(f"error: {error}", file=sys.stderr)
        sys.exit(1 if errors else 0)


if __name__ == "__main__":
    main()
