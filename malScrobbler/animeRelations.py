"""
Anime relations: cross-database episode number remapping rules.

Some shows are catalogued as one continuous series by one database and split
into seasons by another, so episode 15 of one entry may really be episode 3 of
its sequel. The bundled rule file describes these mismatches.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════

RELATIONS_PATH: str = os.path.join(os.path.dirname(__file__), "data", "anime-relations.txt")
RULES_HEADER: str = "::rules"

# Stands in for "?" inside episode ranges, so an unknown bound never matches a real episode
UNKNOWN_EPISODE: int = 99999

LINE_RE = re.compile(
    r"- ([0-9?]+)\|([0-9?]+)\|([0-9?]+):([0-9\-?]+) -> ([0-9?~]+)\|([0-9?~]+)\|([0-9?~]+):([0-9\-?]+)!?\s*$"
)


class RelationsParseError(ValueError):
    """Raised when the relations text can't be parsed."""


class AnimeDb(Enum):
    """Anime databases known to the relations file, in rule field order."""

    MAL = "mal"
    KITSU = "kitsu"
    ANILIST = "anilist"


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# RULES
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class AnimeRelationRule:
    """A remapping of an episode range of one entry onto another entry."""

    # Hashed by its ranges only, dicts aren't hashable
    db_mappings: dict[AnimeDb, tuple[int, int]] = field(hash=False)
    range_src: range
    range_dst: range

    def has_rule_for(self, anime_db: AnimeDb, anime_id: int) -> bool:
        """Whether this rule's source for ``anime_db`` is ``anime_id``."""
        mapping = self.db_mappings.get(anime_db)
        return mapping is not None and mapping[0] == anime_id

    def convert_episode_number(self, anime_db: AnimeDb, anime_id: int, episode: int) -> tuple[int, int]:
        """
        Convert an episode number using this rule.

        Args:
            anime_db (AnimeDb): Database the ID belongs to.
            anime_id (int): Source ID, must have a rule (see has_rule_for).
            episode (int): Episode number relative to the source entry.

        Returns:
            tuple[int, int]: (destination ID, destination episode) if the episode falls inside
            the source range, otherwise (anime_id, episode) unchanged.

        Raises:
            ValueError: If the rule doesn't apply to (anime_db, anime_id).
        """
        if not self.has_rule_for(anime_db, anime_id):
            raise ValueError(f"Rule has no mapping for {anime_db.name} ID {anime_id}")

        if episode in self.range_src:
            dst_id = self.db_mappings[anime_db][1]
            return dst_id, self.range_dst.start + (episode - self.range_src.start)
        return anime_id, episode

    def swapped(self) -> "AnimeRelationRule":
        """Copy of this rule with the source and destination IDs swapped for every database."""
        return AnimeRelationRule(
            {db: (dst, src) for db, (src, dst) in self.db_mappings.items()}, self.range_src, self.range_dst
        )


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# RULE SET
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class AnimeRelations:
    """Immutable, ordered set of relation rules."""

    def __init__(self, rules: tuple[AnimeRelationRule, ...]) -> None:
        self._rules = rules

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> tuple[AnimeRelationRule, ...]:
        return self._rules

    def get_rules(self, anime_db: AnimeDb, anime_id: int) -> list[AnimeRelationRule]:
        """
        Get every rule with ``anime_id`` as its source, in file order.

        Args:
            anime_db (AnimeDb): Database the ID belongs to.
            anime_id (int): Native ID.

        Returns:
            list[AnimeRelationRule]: Matching rules, possibly empty.
        """
        return [rule for rule in self._rules if rule.has_rule_for(anime_db, anime_id)]

    @classmethod
    def load(cls, path: Optional[str] = None) -> "AnimeRelations":
        """Load and build the rules from a file, the bundled one by default."""
        path = path or RELATIONS_PATH
        with open(path, encoding="utf-8") as f:
            relations = cls.build(f.read())
        logger.debug("Loaded %d anime relation rules from %s", len(relations), path)
        return relations

    @classmethod
    def build(cls, text: str) -> "AnimeRelations":
        """
        Build rules from the relations text.

        Only lines after the ``::rules`` header that start with ``- `` are rules. A line ending
        with ``!`` also produces a second rule with source and destination IDs swapped.

        Args:
            text (str): Contents of the relations file.

        Returns:
            AnimeRelations: The parsed rule set.

        Raises:
            RelationsParseError: If the header is missing or a rule line is malformed.
        """
        header_pos = text.find(RULES_HEADER)
        if header_pos == -1:
            raise RelationsParseError(f"Relations text has no '{RULES_HEADER}' section")

        # Line numbers are reported relative to the whole text
        first_line = text.count("\n", 0, header_pos) + 1
        rules: list[AnimeRelationRule] = []
        for line_no, line in enumerate(text[header_pos:].splitlines(), start=first_line):
            if not line.startswith("- "):
                continue
            rule = cls.build_rule(line, line_no)
            rules.append(rule)
            if line.rstrip().endswith("!"):
                rules.append(rule.swapped())

        return cls(tuple(rules))

    @classmethod
    def build_rule(cls, line: str, line_no: int = 0) -> AnimeRelationRule:
        """Parse a single ``- src:range -> dst:range`` line."""
        match = LINE_RE.match(line.strip())
        if not match:
            raise RelationsParseError(f"Malformed relation rule on line {line_no}: {line!r}")

        groups = match.groups()
        src_ids = [cls.convert_src_id(s) for s in groups[0:3]]
        dst_ids = [cls.convert_dst_id(d, s) for d, s in zip(groups[4:7], src_ids)]

        mappings: dict[AnimeDb, tuple[int, int]] = {}
        for anime_db, src, dst in zip(AnimeDb, src_ids, dst_ids):
            if src is not None and dst is not None:
                mappings[anime_db] = (src, dst)

        range_src = cls.convert_range(groups[3])
        range_dst = cls.convert_range(groups[7])
        if len(range_src) != len(range_dst):
            logger.debug("Line %d: source range %s and destination range %s differ", line_no, range_src, range_dst)

        return AnimeRelationRule(mappings, range_src, range_dst)

    @staticmethod
    def convert_src_id(s: str) -> Optional[int]:
        return None if s == "?" else int(s)

    @staticmethod
    def convert_dst_id(s: str, src: Optional[int]) -> Optional[int]:
        if s == "?":
            return None
        if s == "~":
            return src
        return int(s)

    @staticmethod
    def convert_range(s: str) -> range:
        """Convert ``N`` or inclusive ``N-M`` into an end-exclusive range."""
        s = s.replace("?", str(UNKNOWN_EPISODE))
        if "-" in s:
            start, end = s.split("-", 1)
            return range(int(start), int(end) + 1)
        num = int(s)
        return range(num, num + 1)


_default_relations: Optional[AnimeRelations] = None


def default_relations() -> AnimeRelations:
    """Get the bundled relations, built once and shared."""
    global _default_relations
    if _default_relations is None:
        _default_relations = AnimeRelations.load()
    return _default_relations
