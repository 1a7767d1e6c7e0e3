"""
FFmpeg filter graph builder.

FFmpeg parses a -filter_complex string at two levels:

1. The graph parser splits chains/filters on ``[ ] , ;`` and strips one
   layer of quoting (text inside '...' is literal, outside it ``\\x`` -> x).
2. Each filter's option parser splits on ``:`` and strips a second layer
   (``\\`` escapes ``\\``, ``'`` and ``:``).

User-controlled values (display text, file paths) must survive both levels
unchanged, so option values are always emitted through ``escape_filter_value``
rather than interpolated directly.

Example:
    graph = FilterGraphBuilder()
    graph.chain(["0:v"], "base").stage("scale", 1240, 1748).stage("setsar", 1)
    graph.build()  # "[0:v]scale=1240:1748,setsar=1[base]"
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Union

OptionValue = Union[str, int, float]

# Values made only of these characters need no escaping at either level
_SAFE_VALUE = re.compile(r"^[A-Za-z0-9_.+\-*/()#]+$")
_SAFE_LABEL = re.compile(r"^[A-Za-z0-9_:]+$")
_SAFE_NAME = re.compile(r"^[a-z0-9_]+$")


def escape_option_level(value: str) -> str:
    """Escape a value for the filter option parser (second level)."""
    return (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace(":", "\\:")
    )


def quote_graph_level(value: str) -> str:
    """Quote a value for the graph parser (first level)."""
    # Inside quotes nothing is special except the closing quote itself:
    # close, emit an escaped quote, reopen
    return "'" + value.replace("'", "'\\''") + "'"


def escape_filter_value(value: OptionValue) -> str:
    """Render an option value so FFmpeg reads back exactly ``value``."""
    text = str(value)
    if _SAFE_VALUE.match(text):
        return text
    return quote_graph_level(escape_option_level(text))


def normalize_filter_path(path: str) -> str:
    """Use forward slashes, which FFmpeg accepts on every platform."""
    return str(path).replace("\\", "/")


@dataclass
class FilterStage:
    """A single filter with positional and named options."""

    name: str
    args: tuple[OptionValue, ...] = ()
    options: dict[str, OptionValue] = field(default_factory=dict)

    def __post_init__(self):
        if not _SAFE_NAME.match(self.name):
            raise ValueError(f"Invalid filter name: {self.name!r}")
        for key in self.options:
            if not _SAFE_NAME.match(key):
                raise ValueError(f"Invalid option name for {self.name}: {key!r}")

    def render(self) -> str:
        parts = [escape_filter_value(arg) for arg in self.args]
        parts.extend(
            f"{key}={escape_filter_value(value)}" for key, value in self.options.items()
        )
        if not parts:
            return self.name
        return f"{self.name}=" + ":".join(parts)


@dataclass
class FilterChain:
    """Linear sequence of filters between labeled input and output pads."""

    inputs: list[str]
    output: Optional[str] = None
    stages: list[FilterStage] = field(default_factory=list)

    def stage(self, name: str, *args: OptionValue, **options: OptionValue) -> "FilterChain":
        """Append a filter stage; returns self for chaining."""
        self.stages.append(FilterStage(name=name, args=args, options=dict(options)))
        return self

    def render(self) -> str:
        if not self.stages:
            raise ValueError("Filter chain has no stages")
        labels = [*self.inputs] + ([self.output] if self.output else [])
        for label in labels:
            if not _SAFE_LABEL.match(label):
                raise ValueError(f"Invalid pad label: {label!r}")

        pads_in = "".join(f"[{label}]" for label in self.inputs)
        pads_out = f"[{self.output}]" if self.output else ""
        body = ",".join(stage.render() for stage in self.stages)
        return f"{pads_in}{body}{pads_out}"


class FilterGraphBuilder:
    """Accumulates filter chains into a -filter_complex description."""

    def __init__(self):
        self.chains: list[FilterChain] = []

    def chain(self, inputs: list[str], output: Optional[str] = None) -> FilterChain:
        """Start a new chain reading ``inputs`` and writing ``output``."""
        chain = FilterChain(inputs=list(inputs), output=output)
        self.chains.append(chain)
        return chain

    def build(self) -> str:
        if not self.chains:
            raise ValueError("Filter graph is empty")
        return ";".join(chain.render() for chain in self.chains)
