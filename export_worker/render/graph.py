"""Typed FFmpeg filter graph.

The compiler builds a list of ``FilterNode`` objects (input labels, a chain of
filters, output labels) and only turns them into ``-filter_complex`` text in
``FilterGraph.serialize``. All quoting and escaping lives here.
"""

from dataclasses import dataclass, field

# Characters that would split a filter chain or graph if left unquoted.
_CHAIN_SEPARATORS = (",", ";", "[", "]")


def format_seconds(value: float) -> str:
    """Fixed-point seconds with millisecond precision (``2.5 -> "2.500"``)."""
    return f"{float(value):.3f}"


def hex_to_ffmpeg_color(color: str) -> str:
    """``#rrggbb`` -> ``0xrrggbb``; named colors pass through."""
    return color.replace("#", "0x")


def escape_drawtext(text: str) -> str:
    """Escape literal text for a single-quoted drawtext ``text`` value."""
    escaped = (
        text.replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("%", "\\%")
        .replace("'", "'\\''")
    )
    return f"'{escaped}'"


def quote(value: str) -> str:
    return f"'{value}'"


def _format_value(value: object) -> str:
    text = str(value)
    if text.startswith("'") and text.endswith("'"):
        return text
    if any(sep in text for sep in _CHAIN_SEPARATORS):
        return quote(text)
    return text


@dataclass(frozen=True)
class Filter:
    """One filter invocation, e.g. ``scale=1920:1080`` or ``overlay=x=0:y=0``.

    ``args`` are positional values; ``kwargs`` are ``key=value`` pairs kept in
    insertion order.
    """

    name: str
    args: tuple[object, ...] = ()
    kwargs: tuple[tuple[str, object], ...] = ()

    @classmethod
    def of(cls, name: str, *args: object, **kwargs: object) -> "Filter":
        return cls(name=name, args=args, kwargs=tuple(kwargs.items()))

    def render(self) -> str:
        params = [_format_value(arg) for arg in self.args]
        params.extend(f"{key}={_format_value(value)}" for key, value in self.kwargs)
        if not params:
            return self.name
        return f"{self.name}={':'.join(params)}"


@dataclass
class FilterNode:
    inputs: list[str]
    chain: list[Filter]
    outputs: list[str]

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{','.join(f.render() for f in self.chain)}{outs}"


@dataclass
class FilterGraph:
    nodes: list[FilterNode] = field(default_factory=list)
    _counter: int = 0

    def label(self, prefix: str) -> str:
        """Next unique stream label; one counter shared by all prefixes."""
        name = f"{prefix}{self._counter}"
        self._counter += 1
        return name

    def add(self, inputs: list[str], chain: list[Filter], output: str) -> str:
        self.nodes.append(FilterNode(inputs=list(inputs), chain=list(chain), outputs=[output]))
        return output

    def add_node(self, node: FilterNode) -> list[str]:
        self.nodes.append(node)
        return node.outputs

    def rendered_nodes(self) -> list[str]:
        return [node.render() for node in self.nodes]

    def serialize(self) -> str:
        return ";".join(self.rendered_nodes())
