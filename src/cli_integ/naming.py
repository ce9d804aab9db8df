"""Stack-name prefix generation and validation.

Every fixture gets its own prefix so that tests running in parallel (across
CI matrix jobs, xdist workers, or developer machines) never collide on
stacks in a shared cloud account. Prefixes satisfy the CloudFormation
stack-name rules:
- Alphanumeric characters and hyphens only
- Must start with a letter
- Full stack names are at most 128 characters
"""

import re
import secrets
import string
import threading

from .exceptions import ValidationError

PREFIX_ROOT = "cdktest"
"""Leading component of every generated prefix; used to find orphaned stacks."""

RANDOM_SUFFIX_LENGTH = 10

MAX_PREFIX_LENGTH = 64
"""Leaves room for the logical stack name within the 128-char CloudFormation limit."""

MAX_STACK_NAME_LENGTH = 128

NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

_issued_lock = threading.Lock()
_issued: set[str] = set()


def validate_name(
    name: str, *, field: str = "name", max_length: int = MAX_STACK_NAME_LENGTH
) -> None:
    """
    Validate a stack name or stack-name prefix.

    Args:
        name: The candidate name
        field: Field name reported in the error
        max_length: Maximum allowed length

    Raises:
        ValidationError: If the name is not a valid CloudFormation stack name
    """
    if not name:
        raise ValidationError(field, name, "Name cannot be empty")

    if "_" in name:
        raise ValidationError(
            field,
            name,
            "Contains underscore. Use hyphens instead (e.g., 'test-stack' not 'test_stack')",
        )
    if " " in name:
        raise ValidationError(field, name, "Contains spaces. Use hyphens instead")

    if not NAME_PATTERN.match(name):
        raise ValidationError(
            field,
            name,
            "Must start with a letter and contain only alphanumeric characters and hyphens.",
        )

    if len(name) > max_length:
        raise ValidationError(field, name, f"Too long. Exceeds {max_length} character limit.")


def sanitize_run_id(run_id: str) -> str:
    """Reduce a CI run identifier to characters valid inside a stack name."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", run_id).strip("-")
    return cleaned[:20].rstrip("-")


def generate_stack_name_prefix(run_id: str | None = None) -> str:
    """
    Generate a stack-name prefix that no other fixture in this process holds.

    The prefix is ``cdktest-[<run id>-]<random>``. The random part makes
    collisions across processes and CI runs improbable; the in-process
    registry makes them impossible within one test session.

    Args:
        run_id: Optional CI run identifier (e.g. ``GITHUB_RUN_ID``)

    Returns:
        A validated, previously unissued prefix
    """
    parts = [PREFIX_ROOT]
    if run_id:
        cleaned = sanitize_run_id(run_id)
        if cleaned:
            parts.append(cleaned)

    with _issued_lock:
        while True:
            suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(RANDOM_SUFFIX_LENGTH))
            prefix = "-".join([*parts, suffix])
            if prefix not in _issued:
                break
        validate_name(prefix, field="stack_name_prefix", max_length=MAX_PREFIX_LENGTH)
        _issued.add(prefix)
    return prefix


def full_stack_name(prefix: str, name: str) -> str:
    """
    Join a fixture prefix and a logical stack name.

    Raises:
        ValidationError: If the resulting stack name is invalid
    """
    stack_name = f"{prefix}-{name}"
    validate_name(stack_name, field="stack_name")
    return stack_name


def construct_safe(prefix: str) -> str:
    """Strip the characters CDK drops when deriving ids from a stack name."""
    return re.sub(r"[^A-Za-z0-9]", "", prefix)
