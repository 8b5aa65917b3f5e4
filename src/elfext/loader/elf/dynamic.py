from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional

from elftools.common.exceptions import ELFError
from elftools.construct import ConstructError
from elftools.elf.dynamic import Dynamic
from loguru import logger

from elfext.exceptions import NotFoundError


class ElfDynamicTable:
    """The entries of an ELF ``PT_DYNAMIC`` segment (or ``.dynamic``
    section), keyed by tag name (``"DT_PLTGOT"``, ``"DT_NEEDED"``, ...).

    A tag may appear more than once; entries keep their table order.
    """

    #: Map from tag name to all the values recorded for it
    entries: Dict[str, List[int]]

    def __init__(self, entries: Optional[Mapping[str, Iterable[int]]] = None):
        self.entries = defaultdict(list)
        for tag, values in (entries or {}).items():
            self.entries[tag].extend(values)

    @classmethod
    def from_dynamic(cls, dynamic: Dynamic) -> "ElfDynamicTable":
        """Build the table from a pyelftools ``Dynamic`` object.

        A malformed table is read up to the first bad entry.
        """
        table = cls()
        try:
            for tag in dynamic.iter_tags():
                if tag["d_tag"] == "DT_NULL":
                    break
                table.add(tag["d_tag"], tag["d_val"])
        except (ELFError, ConstructError):
            logger.exception("Exception while processing the dynamic table")
        return table

    def add(self, tag: str, value: int):
        self.entries[tag].append(value)

    def contains_dynamic_value(self, tag: str) -> bool:
        return bool(self.entries.get(tag))

    def __contains__(self, tag: str) -> bool:
        return self.contains_dynamic_value(tag)

    def get_dynamic_value(self, tag: str) -> int:
        """Get the (first) value of ``tag``.

        Raises:
            NotFoundError: The table has no entry for ``tag``.

        """
        values = self.entries.get(tag)
        if not values:
            raise NotFoundError(f"Dynamic table has no {tag} entry")
        return values[0]

    def get_dynamic_values(self, tag: str) -> List[int]:
        return list(self.entries.get(tag, []))

    def __len__(self) -> int:
        return sum(map(len, self.entries.values()))

    def __repr__(self):
        tags = ", ".join(f"{tag}={values}" for tag, values in self.entries.items())
        return f"ElfDynamicTable({tags})"
