"""
Built-in functions available to ``function`` steps.
"""

import json
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from loguru import logger


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected a number, got {value!r}") from None
    return int(number) if number.is_integer() and "." not in str(value) else number


def _numbers(values: Any) -> List[float]:
    if isinstance(values, str):
        values = json.loads(values)
    return [_number(v) for v in values]


def add(a, b):
    return _number(a) + _number(b)


def subtract(a, b):
    return _number(a) - _number(b)


def multiply(a, b):
    return _number(a) * _number(b)


def divide(a, b):
    divisor = _number(b)
    if divisor == 0:
        raise ValueError("Division by zero")
    return _number(a) / divisor


def round_number(value, digits=0):
    return round(_number(value), int(digits))


def total(values):
    return sum(_numbers(values))


def average(values):
    numbers = _numbers(values)
    if not numbers:
        raise ValueError("Cannot average an empty list")
    return sum(numbers) / len(numbers)


def minimum(values):
    return min(_numbers(values))


def maximum(values):
    return max(_numbers(values))


def concat(*values, separator=""):
    return str(separator).join(str(v) for v in values)


def replace(text, old, new):
    return str(text).replace(str(old), str(new))


def split(text, separator=None):
    return str(text).split(separator)


def join(values, separator=""):
    if isinstance(values, str):
        values = json.loads(values)
    return str(separator).join(str(v) for v in values)


def now(tz="utc"):
    current = datetime.now(timezone.utc) if tz == "utc" else datetime.now()
    return current.isoformat()


def today():
    return datetime.now(timezone.utc).date().isoformat()


def format_date(value, fmt="%Y-%m-%d"):
    return datetime.fromisoformat(str(value)).strftime(fmt)


def add_days(value, days):
    return (datetime.fromisoformat(str(value)) + timedelta(days=int(days))).isoformat()


def json_parse(text):
    return json.loads(text)


def json_stringify(value, indent=None):
    return json.dumps(value, indent=indent, ensure_ascii=False)


def get(data, path, default=None):
    current = json.loads(data) if isinstance(data, str) else data
    for part in str(path).split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def pick(data, keys):
    if isinstance(keys, str):
        keys = [k.strip() for k in keys.split(",")]
    return {k: data[k] for k in keys if k in data}


def merge(*objects):
    merged: Dict[str, Any] = {}
    for obj in objects:
        merged.update(obj)
    return merged


def count(values):
    return len(values)


BUILTINS: Dict[str, Callable[..., Any]] = {
    "add": add,
    "subtract": subtract,
    "multiply": multiply,
    "divide": divide,
    "round": round_number,
    "sum": total,
    "average": average,
    "min": minimum,
    "max": maximum,
    "sqrt": lambda value: math.sqrt(_number(value)),
    "upper": lambda text: str(text).upper(),
    "lower": lambda text: str(text).lower(),
    "trim": lambda text: str(text).strip(),
    "length": lambda value: len(value),
    "concat": concat,
    "replace": replace,
    "split": split,
    "join": join,
    "now": now,
    "today": today,
    "format_date": format_date,
    "add_days": add_days,
    "json_parse": json_parse,
    "json_stringify": json_stringify,
    "get": get,
    "pick": pick,
    "merge": merge,
    "keys": lambda data: list(data.keys()),
    "values": lambda data: list(data.values()),
    "count": count,
}


class FunctionLibrary:
    """Name to callable registry for function steps."""

    def __init__(self, include_builtins: bool = True):
        self.functions: Dict[str, Callable[..., Any]] = dict(BUILTINS) if include_builtins else {}

    def register(self, name: str, func: Callable[..., Any]) -> None:
        if name in self.functions:
            logger.debug(f"Overriding function '{name}'")
        self.functions[name] = func

    def names(self) -> List[str]:
        return sorted(self.functions)

    def has(self, name: str) -> bool:
        return name in self.functions

    async def call(self, name: str, args: Any = None) -> Any:
        """
        Call a function with rendered arguments.

        ``args`` may be a dict (keyword arguments), a list (positional) or
        None. Coroutine functions are awaited.

        Raises:
            KeyError: Unknown function
        """
        func = self.functions[name]
        if isinstance(args, dict):
            result = func(**args)
        elif isinstance(args, (list, tuple)):
            result = func(*args)
        elif args is None:
            result = func()
        else:
            result = func(args)

        if hasattr(result, "__await__"):
            result = await result
        return result
