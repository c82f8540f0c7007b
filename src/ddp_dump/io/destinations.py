from __future__ import annotations

"""Output path templating and the destination -> collections mapping.

Rules for `-o/--output` (checked in this order):
- no output: everything is printed to stdout as one JSON object
- first output contains "%s": one file per collection (only one -o allowed)
- as many outputs as collections: positional 1:1
- several outputs otherwise: ambiguous, rejected
- a single plain path: all collections merged into that file
"""

from typing import Dict, Iterator, List, Literal, Optional, Sequence, Tuple

from ..types import CONSOLE, ConfigError, Destination


MARKER = "%s"
DEFAULT_TEMPLATE = "%s.json"

Mode = Literal["merge", "split"]


def format_path(template: Optional[str], name: str) -> str:
    if not template:
        template = DEFAULT_TEMPLATE
    if MARKER in template:
        # first occurrence only, like a single-argument printf
        return template.replace(MARKER, name, 1)
    return template


class DestinationMapping:
    def __init__(self, outputs: Sequence[str] = (), mode: Mode = "merge"):
        self.outputs: tuple[str, ...] = tuple(outputs)
        self.mode: Mode = mode
        self._entries: Dict[Destination, List[str]] = {}

    @classmethod
    def build(cls, collections: Sequence[str], outputs: Sequence[str] = ()) -> "DestinationMapping":
        """Assign every requested collection to exactly one destination.

        Raises ConfigError when the outputs can't be matched to the collections.
        """
        colls = list(collections)
        outs = list(outputs)

        if not outs:
            mapping = cls(outs, mode="merge")
            for name in colls:
                mapping.add(CONSOLE, name)
            return mapping

        if MARKER in outs[0]:
            if len(outs) > 1:
                raise ConfigError(f'Only one output option is supported when using "{MARKER}".')
            mapping = cls(outs, mode="split")
            for name in colls:
                mapping.add(format_path(outs[0], name), name)
            return mapping

        if len(outs) == len(colls):
            mapping = cls(outs, mode="split")
            for out, name in zip(outs, colls):
                mapping.add(format_path(out, name), name)
            return mapping

        if len(outs) > 1:
            raise ConfigError("More output files than collections given.")

        mapping = cls(outs, mode="merge")
        for name in colls:
            mapping.add(format_path(outs[0], name), name)
        return mapping

    def add(self, destination: Destination, name: str) -> None:
        self._entries.setdefault(destination, []).append(name)

    def destination_for_new(self, name: str) -> Destination:
        if not self.outputs:
            return CONSOLE
        return format_path(self.outputs[0], name)

    def extend(self, name: str) -> Optional[Destination]:
        """Bind a collection discovered after completion.

        Returns the destination, or None when the name is already mapped.
        """
        if self.has_collection(name):
            return None
        dest = self.destination_for_new(name)
        self.add(dest, name)
        return dest

    def has_collection(self, name: str) -> bool:
        return any(name in names for names in self._entries.values())

    def items(self) -> Iterator[Tuple[Destination, List[str]]]:
        for dest, names in self._entries.items():
            yield dest, list(names)

    def as_dict(self) -> Dict[Destination, List[str]]:
        return {dest: list(names) for dest, names in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DestinationMapping(mode={self.mode!r}, entries={self.as_dict()!r})"
