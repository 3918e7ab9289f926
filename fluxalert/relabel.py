"""Relabel rules and the default relabel strategy.

Rules follow the Prometheus relabel_config schema and semantics. A rule
document is YAML holding either a single rule mapping or a list of rules;
unknown fields and duplicate keys are rejected.
"""

import hashlib
import logging
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import cached_property
from typing import Any, Callable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from fluxalert.errors import RelabelConfigError

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = ";"
DEFAULT_REGEX = "(.*)"
DEFAULT_REPLACEMENT = "$1"

LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
# Target labels of replace rules may reference capture groups.
REPLACE_TARGET_RE = re.compile(r"(?:(?:[a-zA-Z_]|\$(?:\{\w+\}|\w+))+\w*)+")
_TEMPLATE_RE = re.compile(r"\$(?:\$|\{([a-zA-Z0-9_]+)\}|([a-zA-Z0-9_]+))")


class RelabelAction(str, Enum):
    REPLACE = "replace"
    KEEP = "keep"
    DROP = "drop"
    KEEP_EQUAL = "keepequal"
    DROP_EQUAL = "dropequal"
    HASHMOD = "hashmod"
    LABELMAP = "labelmap"
    LABELDROP = "labeldrop"
    LABELKEEP = "labelkeep"
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"


_TARGET_REQUIRED = {
    RelabelAction.REPLACE,
    RelabelAction.HASHMOD,
    RelabelAction.LOWERCASE,
    RelabelAction.UPPERCASE,
    RelabelAction.KEEP_EQUAL,
    RelabelAction.DROP_EQUAL,
}


class RelabelConfig(BaseModel):
    """A single relabel rule."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    source_labels: tuple[str, ...] = Field(default=())
    separator: str = DEFAULT_SEPARATOR
    regex: str = DEFAULT_REGEX
    modulus: int = Field(default=0, ge=0)
    target_label: str = ""
    replacement: str = DEFAULT_REPLACEMENT
    action: RelabelAction = RelabelAction.REPLACE

    @field_validator("action", mode="before")
    @classmethod
    def _lower_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("source_labels")
    @classmethod
    def _check_source_labels(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for name in value:
            if not LABEL_NAME_RE.fullmatch(name):
                raise ValueError(f"{name!r} is not a valid label name")
        return value

    @field_validator("regex")
    @classmethod
    def _check_regex(cls, value: str) -> str:
        try:
            re.compile(f"(?:{value})")
        except re.error as e:
            raise ValueError(f"invalid regex {value!r}: {e}") from e
        return value

    @model_validator(mode="after")
    def _check_action(self) -> "RelabelConfig":
        action = self.action
        if action is RelabelAction.HASHMOD and self.modulus == 0:
            raise ValueError("relabel configuration for hashmod requires non-zero modulus")
        if action in _TARGET_REQUIRED and not self.target_label:
            raise ValueError(
                f"relabel configuration for {action.value} action requires 'target_label' value"
            )
        if action is RelabelAction.REPLACE and not REPLACE_TARGET_RE.fullmatch(self.target_label):
            raise ValueError(
                f"{self.target_label!r} is invalid 'target_label' for {action.value} action"
            )
        if action in _TARGET_REQUIRED - {RelabelAction.REPLACE}:
            if not LABEL_NAME_RE.fullmatch(self.target_label):
                raise ValueError(
                    f"{self.target_label!r} is invalid 'target_label' for {action.value} action"
                )
        if action in (RelabelAction.LABELDROP, RelabelAction.LABELKEEP):
            if (
                self.source_labels
                or self.target_label
                or self.modulus
                or self.separator != DEFAULT_SEPARATOR
                or self.replacement != DEFAULT_REPLACEMENT
            ):
                raise ValueError(f"{action.value} action requires only 'regex', and no other fields")
        if action in (RelabelAction.KEEP_EQUAL, RelabelAction.DROP_EQUAL):
            if (
                self.regex != DEFAULT_REGEX
                or self.modulus
                or self.separator != DEFAULT_SEPARATOR
                or self.replacement != DEFAULT_REPLACEMENT
            ):
                raise ValueError(
                    f"{action.value} action requires only 'source_labels' and 'target_label', "
                    "and no other fields"
                )
        return self

    @cached_property
    def pattern(self) -> re.Pattern[str]:
        return re.compile(f"(?:{self.regex})")

    def apply(self, labels: dict[str, str]) -> bool:
        """Apply the rule to labels in place. Returns False if the set is dropped."""
        value = self.separator.join(labels.get(name, "") for name in self.source_labels)
        action = self.action

        if action is RelabelAction.DROP:
            return self.pattern.fullmatch(value) is None
        if action is RelabelAction.KEEP:
            return self.pattern.fullmatch(value) is not None
        if action is RelabelAction.DROP_EQUAL:
            return labels.get(self.target_label, "") != value
        if action is RelabelAction.KEEP_EQUAL:
            return labels.get(self.target_label, "") == value

        if action is RelabelAction.REPLACE:
            match = self.pattern.fullmatch(value)
            if match is None:
                return True
            target = _expand(self.target_label, match)
            if not LABEL_NAME_RE.fullmatch(target):
                return True
            _set(labels, target, _expand(self.replacement, match))
        elif action is RelabelAction.LOWERCASE:
            _set(labels, self.target_label, value.lower())
        elif action is RelabelAction.UPPERCASE:
            _set(labels, self.target_label, value.upper())
        elif action is RelabelAction.HASHMOD:
            digest = hashlib.md5(value.encode("utf-8")).digest()
            _set(labels, self.target_label, str(int.from_bytes(digest[8:], "big") % self.modulus))
        elif action is RelabelAction.LABELMAP:
            for name, label_value in list(labels.items()):
                match = self.pattern.fullmatch(name)
                if match is not None:
                    _set(labels, _expand(self.replacement, match), label_value)
        elif action is RelabelAction.LABELDROP:
            for name in [n for n in labels if self.pattern.fullmatch(n)]:
                del labels[name]
        elif action is RelabelAction.LABELKEEP:
            for name in [n for n in labels if not self.pattern.fullmatch(n)]:
                del labels[name]
        return True


RelabelRules = tuple[RelabelConfig, ...]
Relabeler = Callable[[Mapping[str, str], RelabelRules], dict[str, str]]


def _set(labels: dict[str, str], name: str, value: str) -> None:
    # An empty value removes the label.
    if value:
        labels[name] = value
    else:
        labels.pop(name, None)


def _expand(template: str, match: re.Match[str]) -> str:
    """Expand $1, ${1}, $name, ${name} and $$ in template from match."""

    def repl(m: re.Match[str]) -> str:
        if m.group(0) == "$$":
            return "$"
        name = m.group(1) or m.group(2)
        if name.isdigit():
            index = int(name)
            if index > match.re.groups:
                return ""
            return match.group(index) or ""
        if name not in match.re.groupindex:
            return ""
        return match.group(name) or ""

    return _TEMPLATE_RE.sub(repl, template)


def process(labels: Mapping[str, str], rules: RelabelRules) -> dict[str, str]:
    """Apply rules in order to a copy of labels.

    Returns an empty mapping when a rule drops the label set.
    """
    result = {name: value for name, value in labels.items() if value}
    for rule in rules:
        if not rule.apply(result):
            logger.debug(f"Label set dropped by {rule.action.value} rule")
            return {}
    return result


class _StrictLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate mapping keys."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            self.flatten_mapping(node)
            seen = set()
            for key_node, _ in node.value:
                key = self.construct_object(key_node, deep=deep)
                try:
                    duplicate = key in seen
                except TypeError:
                    continue
                if duplicate:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping",
                        node.start_mark,
                        f"found duplicate key {key!r}",
                        key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_relabel_config(document: str) -> RelabelRules | None:
    """Parse a relabel rule document.

    Returns None when the document is empty, which disables relabeling.
    Raises RelabelConfigError on malformed YAML or schema violations.
    """
    if not document or not document.strip():
        return None

    try:
        data = yaml.load(document, Loader=_StrictLoader)
    except yaml.YAMLError as e:
        raise RelabelConfigError(f"invalid relabel config: {e}") from e

    if data is None:
        return None
    if isinstance(data, Mapping):
        data = [data]
    if not isinstance(data, Sequence) or isinstance(data, str):
        raise RelabelConfigError(
            f"invalid relabel config: expected a mapping or a list, got {type(data).__name__}"
        )

    rules: list[RelabelConfig] = []
    for i, item in enumerate(data):
        try:
            rules.append(RelabelConfig.model_validate(item))
        except ValidationError as e:
            raise RelabelConfigError(f"invalid relabel config at rule {i}: {e}") from e

    if not rules:
        return None

    logger.info(f"Loaded {len(rules)} relabel rule(s)")
    return tuple(rules)
