"""Template parameter extraction, coercion and merging.

Provides the two halves of parameter resolution:

- ``extract_parameter_specs`` / ``parse_parameter_specs`` read the
  top-level ``parameters`` section of a pipeline definition into
  ``ParameterSpec`` objects.
- ``resolve_parameters`` combines declared defaults (or interactive
  answers), ``--param key=value`` overrides and forwarded ``--flag``
  arguments into the final ``templateParameters`` mapping.

Sources are merged by strict precedence, lowest first: declared
defaults, interactive answers, explicit overrides, forwarded flags.
A later source overwrites an earlier one key by key; keys present in
only one source always survive.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import json
import logging
import math
import re
from typing import TYPE_CHECKING, Any

import yaml

from azdo_cli.errors import DefinitionUnreadableError
from azdo_cli.models import ParameterSpec, ParameterType, ParamValue, infer_param_type

if TYPE_CHECKING:
    from azdo_cli.interactive import Prompter

logger = logging.getLogger(__name__)

_NEGATIVE_NUMBER: re.Pattern[str] = re.compile(r"^-\d")


# ---------------------------------------------------------------------------
# Spec extraction
# ---------------------------------------------------------------------------


def _normalize_spec(item: Any) -> ParameterSpec | None:
    """Turn one element of a sequence-form ``parameters`` list into a spec.

    Args:
        item: A bare string or a mapping with at least a ``name`` key.

    Returns:
        The normalized spec, or ``None`` when the element is unusable.
    """
    if isinstance(item, str):
        return ParameterSpec(name=item, type=ParameterType.STRING) if item else None

    if not isinstance(item, dict):
        return None

    name = item.get("name")
    if not isinstance(name, str) or not name:
        return None

    declared_type = item.get("type")
    fields: dict[str, Any] = {
        "name": name,
        "type": declared_type
        if isinstance(declared_type, str)
        else infer_param_type(item.get("default")),
    }
    if "default" in item:
        fields["default"] = item["default"]
    for values_key in ("values", "allowedValues"):
        values = item.get(values_key)
        if isinstance(values, list):
            fields["allowed_values"] = values
            break
    return ParameterSpec(**fields)


def extract_parameter_specs(document: Any) -> list[ParameterSpec]:
    """Extract declared parameters from a parsed definition document.

    Supports the sequence form (``- name: x`` entries or bare names) and
    the keyed mapping form (``name: default``). Any other shape, or a
    missing section, yields an empty list.

    Args:
        document: The parsed YAML document.

    Returns:
        Specs in declaration order.
    """
    if not isinstance(document, dict):
        return []
    params = document.get("parameters")
    if not params:
        return []

    if isinstance(params, list):
        specs = [spec for spec in (_normalize_spec(p) for p in params) if spec is not None]
        if len(specs) != len(params):
            logger.debug("Dropped %d unusable parameter entries", len(params) - len(specs))
        return specs

    if isinstance(params, dict):
        return [
            ParameterSpec(name=str(name), type=infer_param_type(value), default=value)
            for name, value in params.items()
            if str(name)
        ]

    return []


def parse_parameter_specs(yaml_text: str) -> list[ParameterSpec]:
    """Parse definition text and extract its declared parameters.

    Args:
        yaml_text: Raw YAML content of a pipeline definition.

    Returns:
        Specs in declaration order.

    Raises:
        DefinitionUnreadableError: If the text is not valid YAML.
    """
    try:
        document = yaml.safe_load(yaml_text)
    except yaml.YAMLError as exc:
        msg = f"Could not parse pipeline YAML: {exc}"
        raise DefinitionUnreadableError(msg) from exc
    return extract_parameter_specs(document)


def _same_value(left: Any, right: Any) -> bool:
    """Strict equality: ``True`` does not equal ``1``."""
    return type(left) is type(right) and left == right


def prompt_default(spec: ParameterSpec) -> Any:
    """Initial value offered when prompting for *spec*.

    For enumerated parameters this is the declared default when it is
    one of the allowed values, else the first allowed value. Otherwise
    it is the declared default (``None`` when absent).

    Args:
        spec: The parameter being prompted for.

    Returns:
        The value to pre-select.
    """
    if spec.allowed_values:
        if spec.has_default and any(_same_value(v, spec.default) for v in spec.allowed_values):
            return spec.default
        return spec.allowed_values[0]
    return spec.default if spec.has_default else None


def defaults_from_specs(specs: Iterable[ParameterSpec]) -> dict[str, Any]:
    """Collect ``name -> default`` for every spec that declares a default."""
    return {spec.name: spec.default for spec in specs if spec.has_default}


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _parse_number(text: str) -> int | float | None:
    """Parse *text* as a finite number, or return ``None``."""
    candidate = text.strip()
    if not candidate or "_" in candidate:
        return None
    try:
        return int(candidate)
    except ValueError:
        pass
    try:
        number = float(candidate)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_param_value(raw: str) -> str | int | float | bool:
    """Coerce a command-line parameter value.

    ``true``/``false`` become booleans, numeric text becomes a number,
    anything else stays text (trimmed).

    Args:
        raw: The raw value as typed.

    Returns:
        The coerced value.
    """
    trimmed = raw.strip()
    if trimmed == "true":
        return True
    if trimmed == "false":
        return False
    number = _parse_number(trimmed)
    return trimmed if number is None else number


def parse_param_overrides(entries: Iterable[str]) -> dict[str, ParamValue]:
    """Parse repeatable ``key=value`` overrides.

    The key is everything before the first ``=``, trimmed; entries
    without ``=`` or with an empty key are ignored.

    Args:
        entries: Raw ``--param`` values in command-line order.

    Returns:
        Parsed overrides; later entries win on duplicate keys.
    """
    params: dict[str, ParamValue] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key:
            continue
        params[key] = parse_param_value(value)
    return params


def parse_unknown_param_flags(args: Sequence[str]) -> dict[str, ParamValue]:
    """Turn command-line flags the CLI does not recognise into parameters.

    ``--name value`` and ``--name=value`` set ``name`` (coerced with
    ``parse_param_value``); ``--no-name`` sets it to ``False``; a
    ``--name`` followed by nothing or by another flag sets it to
    ``True``. A following value such as ``-5`` is still consumed as a
    value. Bare positional words are ignored.

    Args:
        args: Leftover arguments in command-line order.

    Returns:
        Parsed flag parameters.
    """
    params: dict[str, ParamValue] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        i += 1
        if not arg or arg == "--":
            continue

        if arg.startswith("--no-"):
            key = arg[5:]
            if key:
                params[key] = False
            continue

        if not arg.startswith("--"):
            continue

        key, sep, value = arg[2:].partition("=")
        if sep:
            if key:
                params[key] = parse_param_value(value)
            continue

        if not key:
            continue
        following = args[i] if i < len(args) else None
        if following and (not following.startswith("-") or _NEGATIVE_NUMBER.match(following)):
            params[key] = parse_param_value(following)
            i += 1
        else:
            params[key] = True
    return params


# ---------------------------------------------------------------------------
# Interactive prompting
# ---------------------------------------------------------------------------


def _stringify_default(value: Any) -> str | None:
    """Render a default as the initial text of a free-text prompt."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def coerce_text_answer(spec: ParameterSpec, answer: str) -> Any:
    """Interpret a free-text answer according to the declared type.

    Numbers and JSON values that fail to parse are kept as the raw text.

    Args:
        spec: The parameter being answered.
        answer: The non-empty text the user entered.

    Returns:
        The coerced value.
    """
    kind = spec.kind
    if kind == ParameterType.NUMBER:
        number = _parse_number(answer)
        return answer if number is None else number
    if kind in (ParameterType.OBJECT, ParameterType.ARRAY):
        try:
            return json.loads(answer)
        except json.JSONDecodeError:
            return answer
    return answer


def prompt_for_parameters(specs: Sequence[ParameterSpec], prompter: Prompter) -> dict[str, Any]:
    """Ask the user for a value for each declared parameter.

    Enumerated parameters are a single choice, booleans a yes/no
    question seeded by the default, everything else free text where an
    empty answer falls back to the default (or leaves the parameter
    unset when there is none).

    Args:
        specs: Declared parameters, prompted in order.
        prompter: Interactive prompt provider.

    Returns:
        Answers keyed by parameter name.

    Raises:
        PromptCancelledError: If the user cancels any prompt.
    """
    answers: dict[str, Any] = {}
    for spec in specs:
        label = f"Parameter: {spec.name} (press Enter for default)"

        if spec.allowed_values:
            answers[spec.name] = prompter.select(
                label,
                [(value, str(value)) for value in spec.allowed_values],
                initial=prompt_default(spec),
            )
            continue

        if spec.kind == ParameterType.BOOLEAN:
            initial = spec.default if isinstance(spec.default, bool) else False
            answers[spec.name] = bool(prompter.confirm(label, initial=initial))
            continue

        answer = prompter.text(label, initial=_stringify_default(spec.default))
        if answer.strip() == "":
            if spec.has_default:
                answers[spec.name] = spec.default
            continue
        answers[spec.name] = coerce_text_answer(spec, answer)
    return answers


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_parameters(*sources: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge parameter sources, later sources overwriting earlier ones.

    Args:
        *sources: Parameter mappings from lowest to highest precedence;
            ``None`` entries are skipped.

    Returns:
        The union of all keys with the highest-precedence value for each.
    """
    merged: dict[str, Any] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged


def resolve_parameters(
    specs: Sequence[ParameterSpec],
    *,
    prompter: Prompter | None = None,
    overrides: Iterable[str] = (),
    extra_args: Sequence[str] = (),
) -> dict[str, Any]:
    """Build the final template parameters for a run.

    With a *prompter* the declared specs are answered interactively;
    without one their declared defaults are used.

    Args:
        specs: Declared parameters of the definition (may be empty).
        prompter: Prompt provider, or ``None`` to skip prompting.
        overrides: Raw ``key=value`` overrides.
        extra_args: Unrecognised command-line arguments.

    Returns:
        The merged parameters.
    """
    if not specs:
        declared: dict[str, Any] = {}
    elif prompter is None:
        declared = defaults_from_specs(specs)
    else:
        declared = prompt_for_parameters(specs, prompter)

    merged = merge_parameters(
        declared,
        parse_param_overrides(overrides),
        parse_unknown_param_flags(extra_args),
    )
    logger.debug("Resolved %d template parameters: %s", len(merged), sorted(merged))
    return merged
