"""Assertion helpers for synthesized templates and bundled assets."""

from __future__ import annotations

import random
import re
import string
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .naming import construct_safe

if TYPE_CHECKING:
    from .fixture import IntegrationFixture

ASSET_PATH_PATTERN = r"asset\.[0-9a-zA-Z]{64}"

# Template metadata keys written by the CDK for SAM
CDK_PATH_KEY = "aws:cdk:path"
ASSET_PATH_KEY = "aws:asset:path"
ASSET_IS_BUNDLED_KEY = "aws:asset:is-bundled"
ASSET_DOCKERFILE_PATH_KEY = "aws:asset:dockerfile-path"
ASSET_PROPERTY_KEY = "aws:asset:property"


def random_integer(minimum: int, maximum: int) -> int:
    """Random integer in ``[minimum, maximum)``, e.g. for picking a local port."""
    return random.randrange(minimum, maximum)


def random_string(length: int = 10) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class StringMatching:
    """Compares equal to any string in which ``pattern`` is found."""

    def __init__(self, pattern: str | re.Pattern[str]) -> None:
        self.regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    def __eq__(self, other: object) -> bool:
        return isinstance(other, str) and self.regex.search(other) is not None

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"StringMatching({self.regex.pattern!r})"


class _Anything:
    """Compares equal to every value; the key it sits under must still exist."""

    def __eq__(self, other: object) -> bool:
        return True

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return "ANY"


ANY = _Anything()


def shape_mismatches(
    actual: Any, expected: Any, *, exact: bool = False, path: str = "$"
) -> list[str]:
    """
    Describe how ``actual`` differs from the ``expected`` shape.

    Mappings are compared key by key. With ``exact=False`` keys missing from
    ``expected`` are ignored; with ``exact=True`` extra keys are reported,
    and an expected value of None means "absent or None". Sequences (other
    than strings) compare element-wise. Leaves compare with ``==``, so
    matchers such as :class:`StringMatching` work anywhere.

    Returns:
        Human-readable differences; empty when the shapes match
    """
    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            return [f"{path}: expected a mapping, got {type(actual).__name__}"]
        problems: list[str] = []
        for key, value in expected.items():
            child = f"{path}.{key}"
            if key not in actual:
                if exact and value is None:
                    continue
                problems.append(f"{child}: missing")
                continue
            problems.extend(shape_mismatches(actual[key], value, exact=exact, path=child))
        if exact:
            for key in actual:
                if key not in expected:
                    problems.append(f"{path}.{key}: unexpected key")
        return problems

    if isinstance(expected, Sequence) and not isinstance(expected, (str, bytes)):
        if not isinstance(actual, Sequence) or isinstance(actual, (str, bytes)):
            return [f"{path}: expected a sequence, got {type(actual).__name__}"]
        if len(actual) != len(expected):
            return [f"{path}: expected {len(expected)} items, got {len(actual)}"]
        problems = []
        for i, (a, e) in enumerate(zip(actual, expected)):
            problems.extend(shape_mismatches(a, e, exact=exact, path=f"{path}[{i}]"))
        return problems

    if not expected == actual:
        return [f"{path}: expected {expected!r}, got {actual!r}"]
    return []


def matches_partial(actual: Any, expected: Any) -> bool:
    """True if every key/value in ``expected`` is present and equal in ``actual``."""
    return not shape_mismatches(actual, expected)


@dataclass(frozen=True)
class ExpectedResource:
    """A resource whose asset metadata a test checks.

    Attributes:
        id: Logical id in the template
        cdk_id: Construct id under the stack
        property: Resource property the asset is bound to
        is_bundled: Expected bundling flag (None when the CDK omits it)
        docker_file_path: Expected Dockerfile path for image assets
    """

    id: str
    cdk_id: str
    property: str
    is_bundled: bool | None = None
    docker_file_path: str | None = None


@dataclass(frozen=True)
class BundledAsset:
    """Files that must exist in a resource's asset directory."""

    id: str
    files: tuple[str, ...] = field(default_factory=tuple)


def expected_asset_metadata(
    fixture: IntegrationFixture, stack_name: str, resource: ExpectedResource
) -> dict[str, Any]:
    """Build the ``Metadata`` block the CDK writes for an asset-backed resource."""
    return {
        CDK_PATH_KEY: f"{fixture.full_stack_name(stack_name)}/{resource.cdk_id}/Resource",
        ASSET_PATH_KEY: StringMatching(ASSET_PATH_PATTERN),
        ASSET_IS_BUNDLED_KEY: resource.is_bundled,
        ASSET_DOCKERFILE_PATH_KEY: resource.docker_file_path,
        ASSET_PROPERTY_KEY: resource.property,
    }


def resource_metadata_mismatches(
    fixture: IntegrationFixture,
    template: Mapping[str, Any],
    stack_name: str,
    resource: ExpectedResource,
) -> list[str]:
    """Differences between a resource's metadata and what the CDK should write."""
    resources = template.get("Resources", {})
    if resource.id not in resources:
        return [f"$.Resources.{resource.id}: missing"]
    return shape_mismatches(
        resources[resource.id].get("Metadata"),
        expected_asset_metadata(fixture, stack_name, resource),
        exact=True,
        path=f"$.Resources.{resource.id}.Metadata",
    )


def nested_template_pattern(
    fixture: IntegrationFixture, stack_name: str, nested_stack_id: str
) -> str:
    """Regex for the asset file name of a nested stack's template."""
    return (
        re.escape(construct_safe(fixture.stack_name_prefix))
        + re.escape(construct_safe(stack_name))
        + re.escape(construct_safe(nested_stack_id))
        + r"[0-9A-Z]{8}\.nested\.template\.json"
    )


def asset_path(template: Mapping[str, Any], logical_id: str) -> str:
    """The asset path recorded in a resource's metadata."""
    return str(template["Resources"][logical_id]["Metadata"][ASSET_PATH_KEY])


def bundling_flag(template: Mapping[str, Any], logical_id: str) -> Any:
    """The ``aws:asset:is-bundled`` metadata value of a resource, or None when absent."""
    metadata = template["Resources"][logical_id].get("Metadata", {})
    return metadata.get(ASSET_IS_BUNDLED_KEY)


def missing_bundled_files(
    fixture: IntegrationFixture, template: Mapping[str, Any], asset: BundledAsset
) -> list[str]:
    """Files declared for ``asset`` that are absent from its asset directory."""
    directory = fixture.asset_dir(asset_path(template, asset.id))
    return [f for f in asset.files if not (directory / f).exists()]
