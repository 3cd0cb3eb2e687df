import math
from numbers import Real


def resolve_choice(value, choices, what):
    """
    Map a setting to its index in `choices`.
    Accepts the numeric index itself or a case-insensitive keyword.
    """
    if isinstance(value, str):
        for idx, choice in enumerate(choices):
            if value.lower() == str(choice).lower():
                return idx
        names = ", ".join(f"'{c}'" for c in choices)
        raise ValueError(f"{what} '{value}' not recognized! Use one of {names} or an index in [0;{len(choices) - 1}]")

    idx = check_int_range(value, 0, len(choices) - 1, what)
    return idx


def _as_real(value, what):
    if isinstance(value, bool) or not isinstance(value, Real):
        raise TypeError(f"{what} should be a number, got {value!r}")
    return value


def check_range(value, low, high, what):
    """Inclusive range check, returns the value as float."""
    value = _as_real(value, what)
    if not low <= value <= high:
        raise ValueError(f"{what} should be in the range [{low};{high}], got {value}")
    return float(value)


def check_int_range(value, low, high, what):
    """Integer check plus inclusive range check, returns an int."""
    value = _as_real(value, what)
    if not float(value).is_integer() or not low <= value <= high:
        raise ValueError(f"{what} should be an integer in the range [{low};{high}], got {value}")
    return int(value)


def check_finite(value, what):
    value = _as_real(value, what)
    if not math.isfinite(value):
        raise ValueError(f"{what} should be a finite number, got {value}")
    return float(value)
