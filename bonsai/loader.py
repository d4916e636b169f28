"""
YAML data loader with schema validation.

Loads world and generation configuration from YAML files and validates
against JSON schemas.
"""

import yaml
import json
from pathlib import Path
from typing import Optional
import jsonschema

from .data_types import WorldConfig, PhysicsConfig, VMConfig, GenerationConfig


class DataLoadError(Exception):
    """Raised when data loading or validation fails"""
    pass


def load_yaml(file_path: Path) -> dict:
    """Load YAML file and return parsed dict"""
    file_path = Path(file_path)
    if not file_path.exists():
        raise DataLoadError(f"File not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DataLoadError(f"YAML parse error in {file_path}: {e}")


def validate_against_schema(data: dict, schema_path: Path, data_path: Path):
    """Validate data dict against JSON schema"""
    if not schema_path.exists():
        # Schema validation optional
        return

    try:
        with open(schema_path, 'r') as f:
            schema = json.load(f)
    except json.JSONDecodeError as e:
        raise DataLoadError(f"Invalid JSON schema {schema_path}: {e}")

    validator = jsonschema.Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda err: [str(part) for part in err.path])
    if errors:
        first = errors[0]
        where = "/".join(str(part) for part in first.path) or "<root>"
        raise DataLoadError(
            f"Validation error in {data_path} at {where}: {first.message} "
            f"({len(errors)} error(s))")


def parse_world_config(data: dict) -> WorldConfig:
    """Build WorldConfig from an already-parsed world document"""
    try:
        physics = PhysicsConfig(**data.get('physics', {}))
        vm = VMConfig(**data.get('vm', {}))
        return WorldConfig(
            world_id=data['world_id'],
            name=data['name'],
            size=tuple(data['size']),
            physics=physics,
            vm=vm,
            description=data.get('description')
        )
    except (KeyError, TypeError) as e:
        raise DataLoadError(f"Malformed world config: {e}")


def parse_generation_config(data: dict) -> GenerationConfig:
    """Build GenerationConfig from the 'generation' section (may be empty)"""
    try:
        return GenerationConfig(**(data or {}))
    except TypeError as e:
        raise DataLoadError(f"Malformed generation config: {e}")


def load_world(file_path: Path, schema_dir: Optional[Path] = None) -> WorldConfig:
    """Load world configuration from YAML"""
    data = load_yaml(file_path)

    # Validate if schema available
    if schema_dir:
        schema_path = Path(schema_dir) / "world.schema.json"
        validate_against_schema(data, schema_path, file_path)

    return parse_world_config(data)


def load_all_data(data_root: Path, schema_dir: Optional[Path] = None, world_name: str = "default") -> dict:
    """Load all simulation data from data directory

    Returns dict with keys: world, generation
    """
    data_root = Path(data_root)
    world_path = data_root / "world" / f"{world_name}.yaml"

    data = load_yaml(world_path)
    if schema_dir:
        validate_against_schema(data, Path(schema_dir) / "world.schema.json", world_path)

    return {
        'world': parse_world_config(data),
        'generation': parse_generation_config(data.get('generation')),
    }
