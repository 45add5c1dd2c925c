"""Rule manifest loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .errors import MalformedNameError
from .models import Rule, parse_qualified_name

logger = logging.getLogger(__name__)

MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max manifest file

RULE_KIND = "Rule"


class SpecLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


def load_rule_manifest(manifest_path: Path) -> Rule:
    """Load and validate a Rule manifest from YAML.

    Besides schema validation, the trigger and a direct action name are
    parsed, so a manifest that loads cleanly will not fail reconciliation
    with a malformed name.

    Args:
        manifest_path: Path to a single-document YAML manifest.

    Returns:
        Validated Rule.

    Raises:
        SpecLoadError: If the manifest cannot be loaded or fails validation.
    """
    if not manifest_path.exists():
        raise SpecLoadError(f"Manifest file not found: {manifest_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = manifest_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat manifest file {manifest_path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: "
            f"{manifest_path}"
        )

    try:
        content = manifest_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read manifest file {manifest_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {manifest_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Manifest file must contain a YAML mapping: {manifest_path}")

    kind = raw_data.get("kind", RULE_KIND)
    if kind != RULE_KIND:
        raise SpecLoadError(f"Expected kind {RULE_KIND}, got {kind}: {manifest_path}")

    try:
        rule = Rule.model_validate(raw_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {manifest_path}:\n{error_list}") from e

    names = [("spec.trigger", rule.spec.trigger)]
    if rule.spec.function is not None:
        names.append(("spec.function", rule.spec.function))
    for field_name, value in names:
        try:
            parse_qualified_name(value)
        except MalformedNameError as e:
            raise SpecLoadError(
                f"Validation failed for {manifest_path}:\n  - {field_name}: {e}"
            ) from e

    logger.info("Loaded rule '%s/%s' from %s", rule.namespace, rule.name, manifest_path)
    return rule
