"""
Duration policy: turns (requested, template default, template max) into the
single duration an access request is granted for.
"""
from dataclasses import dataclass
from datetime import timedelta

from tollgate.core.errors import InvalidDurationError
from tollgate.models.request import AccessRequest
from tollgate.models.template import AccessTemplate
from tollgate.validators import format_duration, parse_duration

REASON_DEFAULTED = "Defaulted"
REASON_CUSTOM_ACCEPTED = "CustomDurationAccepted"
REASON_CLAMPED = "ClampedToMaximum"
REASON_INVALID = "InvalidDuration"
REASON_TEMPLATE_NOT_FOUND = "TemplateNotFound"

FIELD_REQUEST_DURATION = "spec.duration"
FIELD_TEMPLATE_DEFAULT = "Template spec.accessConfig.defaultDuration"
FIELD_TEMPLATE_MAX = "Template spec.accessConfig.maxDuration"


@dataclass(frozen=True)
class DurationDecision:
    """The resolved grant duration plus why it was chosen."""
    duration: timedelta
    reason: str
    message: str
    was_capped: bool = False


def resolve_duration(requested: timedelta, default: timedelta, maximum: timedelta) -> DurationDecision:
    """
    Pure resolution rule, evaluated in order:
      1. nothing requested        -> template default
      2. requested <= template max -> requested
      3. requested >  template max -> template max (clamped, not rejected)
    """
    if requested <= timedelta(0):
        return DurationDecision(
            duration=default,
            reason=REASON_DEFAULTED,
            message=f"Access request duration defaulting to template duration time ({format_duration(default)})",
        )

    if requested <= maximum:
        return DurationDecision(
            duration=requested,
            reason=REASON_CUSTOM_ACCEPTED,
            message=f"Access requested custom duration ({format_duration(requested)})",
        )

    return DurationDecision(
        duration=maximum,
        reason=REASON_CLAMPED,
        message=(
            f"Access requested duration ({format_duration(requested)}) larger than "
            f"template maximum duration ({format_duration(maximum)}), clamped to maximum"
        ),
        was_capped=True,
    )


def _parse_field(field_name: str, value: str, required: bool) -> timedelta:
    try:
        parsed = parse_duration(value)
    except ValueError as e:
        raise InvalidDurationError(field_name, value, str(e)) from e

    # A zero template bound would expire every request on its first pass.
    if required and parsed <= timedelta(0):
        raise InvalidDurationError(field_name, value, "must be a positive duration")
    return parsed


def resolve_request_duration(request: AccessRequest, template: AccessTemplate) -> DurationDecision:
    """
    Parses the three duration fields and resolves them.

    Raises:
        InvalidDurationError: naming the first field that failed to parse
    """
    requested = _parse_field(FIELD_REQUEST_DURATION, request.duration, required=False)
    default = _parse_field(FIELD_TEMPLATE_DEFAULT, template.default_duration, required=True)
    maximum = _parse_field(FIELD_TEMPLATE_MAX, template.max_duration, required=True)
    return resolve_duration(requested, default, maximum)
