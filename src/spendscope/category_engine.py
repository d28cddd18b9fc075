"""
Category rule engine for transaction classification.

Loads the category schema from YAML and classifies free-text descriptions.
Evaluation is first-match over rules sorted by priority (highest first, ties
keep declaration order). Within a rule, exclude patterns veto the rule, then
patterns are tried before keywords.

File format:
    categories:
      Uber Eats:
        keywords: [ubereats, uber eats]
        patterns: ['uber.*eats']
        priority: 100
        color: '#22d3ee'
        icon: '🥡'

      Rideshare:
        keywords: [uber canada, lyft]
        patterns: ['uber\\s*(?:canada|trip)']
        exclude_patterns: [eats]
        priority: 95

    groups:
      Restaurants:
        children: [Japanese Restaurants, Fast Food]
        color: '#f43f5e'
        icon: '🍽️'
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .logging_setup import get_logger

logger = get_logger(__name__)

OTHER_CATEGORY = 'Other'
DEFAULT_COLOR = '#64748b'
DEFAULT_ICON = '📌'
GROUP_PRIORITY = 85

BUILTIN_CATEGORIES = Path(__file__).parent / 'categories.yaml'

_RULE_KEYS = {'keywords', 'patterns', 'exclude_patterns', 'priority', 'color', 'icon'}
_GROUP_KEYS = {'children', 'color', 'icon'}


class CategoryParseError(ValueError):
    """Error loading the category schema."""

    def __init__(self, message: str, rule_name: str = ""):
        self.rule_name = rule_name
        if rule_name:
            message = f"Category '{rule_name}': {message}"
        super().__init__(message)


# =============================================================================
# Matchers
# =============================================================================

class Matcher:
    """Something that can be tested against a description."""

    source: str = ""

    def matches(self, text: str) -> bool:
        raise NotImplementedError


class RegexMatcher(Matcher):
    """Case-insensitive regular expression search."""

    def __init__(self, pattern: str):
        self.source = pattern
        self._regex = re.compile(pattern, re.IGNORECASE)

    def matches(self, text: str) -> bool:
        return self._regex.search(text) is not None

    def __repr__(self):
        return f"RegexMatcher({self.source!r})"


class SubstringMatcher(Matcher):
    """Case-insensitive substring test."""

    def __init__(self, keyword: str):
        self.source = keyword
        self._needle = keyword.lower()

    def matches(self, text: str) -> bool:
        return self._needle in text.lower()

    def __repr__(self):
        return f"SubstringMatcher({self.source!r})"


# =============================================================================
# Schema records
# =============================================================================

@dataclass
class CategoryRule:
    """One category label and the matchers that select it."""

    name: str
    keywords: List[Matcher] = field(default_factory=list)
    patterns: List[Matcher] = field(default_factory=list)
    exclude_patterns: List[Matcher] = field(default_factory=list)
    priority: int = 0
    color: str = DEFAULT_COLOR
    icon: str = DEFAULT_ICON

    def excluded_by(self, description: str) -> Optional[Matcher]:
        """Return the exclude matcher that vetoes this rule, if any."""
        for matcher in self.exclude_patterns:
            if matcher.matches(description):
                return matcher
        return None

    def match(self, description: str) -> Optional[Tuple[str, Matcher]]:
        """Return ('pattern'|'keyword', matcher) for the first hit, or None.

        Exclusions are not checked here; see CategoryEngine.classify().
        """
        for matcher in self.patterns:
            if matcher.matches(description):
                return 'pattern', matcher
        for matcher in self.keywords:
            if matcher.matches(description):
                return 'keyword', matcher
        return None

    @property
    def config(self) -> Dict[str, Any]:
        return {'color': self.color, 'icon': self.icon, 'priority': self.priority}


@dataclass
class CategoryGroup:
    """Display-only parent for a set of child categories."""

    name: str
    children: List[str] = field(default_factory=list)
    color: str = DEFAULT_COLOR
    icon: str = DEFAULT_ICON


@dataclass
class Explanation:
    """Why a description landed in its category."""

    category: str
    rule: Optional[CategoryRule] = None
    match_type: str = ""  # 'pattern', 'keyword' or '' for Other
    matcher: Optional[Matcher] = None
    excluded: List[Tuple[str, str]] = field(default_factory=list)  # (rule, exclude pattern)


# =============================================================================
# Engine
# =============================================================================

class CategoryEngine:
    """
    Holds the category schema and classifies descriptions.

    The rule list keeps declaration order; evaluation order is computed once
    per load by a stable sort on descending priority.
    """

    def __init__(self):
        self.rules: List[CategoryRule] = []
        self.groups: Dict[str, CategoryGroup] = {}
        self._by_name: Dict[str, CategoryRule] = {}
        self._ordered: List[CategoryRule] = []
        self._parent_of: Dict[str, str] = {}

    def load_file(self, filepath) -> None:
        """Load the schema from a YAML file."""
        content = Path(filepath).read_text(encoding='utf-8')
        self.parse(content)
        logger.debug("Loaded %d categories from %s", len(self.rules), filepath)

    def parse(self, content: str) -> None:
        """Parse YAML schema content."""
        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise CategoryParseError(f"Invalid YAML: {e}")
        if not isinstance(data, dict):
            raise CategoryParseError("Schema must be a mapping with a 'categories' key")
        self.load_data(data.get('categories') or {}, data.get('groups') or {})

    def load_data(self, categories: Dict[str, Dict], groups: Optional[Dict[str, Dict]] = None) -> None:
        """Build rules and groups from plain mappings (in declaration order)."""
        if not isinstance(categories, dict):
            raise CategoryParseError("'categories' must be a mapping of name -> rule")

        self.rules = []
        self.groups = {}
        self._by_name = {}
        self._parent_of = {}

        for name, rule_data in categories.items():
            self._add_rule(str(name), rule_data or {})

        for name, group_data in (groups or {}).items():
            self._add_group(str(name), group_data or {})

        # sorted() is stable, so equal priorities keep declaration order
        self._ordered = sorted(self.rules, key=lambda r: r.priority, reverse=True)

    def _add_rule(self, name: str, rule_data: Dict[str, Any]) -> None:
        if not isinstance(rule_data, dict):
            raise CategoryParseError("Rule body must be a mapping", name)
        if name in self._by_name:
            raise CategoryParseError("Duplicate category", name)

        unknown = set(rule_data) - _RULE_KEYS
        if unknown:
            raise CategoryParseError(f"Unknown property: {', '.join(sorted(unknown))}", name)

        priority = rule_data.get('priority', 0)
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise CategoryParseError(f"priority must be an integer, got {priority!r}", name)

        rule = CategoryRule(
            name=name,
            keywords=[SubstringMatcher(str(k)) for k in _as_list(rule_data.get('keywords'))],
            patterns=self._compile(name, rule_data.get('patterns')),
            exclude_patterns=self._compile(name, rule_data.get('exclude_patterns')),
            priority=priority,
            color=rule_data.get('color', DEFAULT_COLOR),
            icon=rule_data.get('icon', DEFAULT_ICON),
        )
        self.rules.append(rule)
        self._by_name[name] = rule

    @staticmethod
    def _compile(name: str, patterns) -> List[Matcher]:
        matchers = []
        for pattern in _as_list(patterns):
            try:
                matchers.append(RegexMatcher(str(pattern)))
            except re.error as e:
                raise CategoryParseError(f"Invalid pattern {pattern!r}: {e}", name)
        return matchers

    def _add_group(self, name: str, group_data: Dict[str, Any]) -> None:
        if not isinstance(group_data, dict):
            raise CategoryParseError("Group body must be a mapping", name)
        unknown = set(group_data) - _GROUP_KEYS
        if unknown:
            raise CategoryParseError(f"Unknown group property: {', '.join(sorted(unknown))}", name)

        children = [str(c) for c in _as_list(group_data.get('children'))]
        for child in children:
            if child in self._parent_of:
                raise CategoryParseError(
                    f"'{child}' already belongs to group '{self._parent_of[child]}'", name
                )
            self._parent_of[child] = name

        self.groups[name] = CategoryGroup(
            name=name,
            children=children,
            color=group_data.get('color', DEFAULT_COLOR),
            icon=group_data.get('icon', DEFAULT_ICON),
        )

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def rules_by_priority(self) -> List[CategoryRule]:
        """Rules in evaluation order."""
        return list(self._ordered)

    def classify(self, description: str) -> str:
        """Return the category label for a description, or 'Other'."""
        for rule in self._ordered:
            if rule.excluded_by(description):
                continue
            if rule.match(description):
                return rule.name
        return OTHER_CATEGORY

    def explain(self, description: str) -> Explanation:
        """Classify and report the deciding rule and matcher."""
        result = Explanation(category=OTHER_CATEGORY)
        for rule in self._ordered:
            veto = rule.excluded_by(description)
            if veto:
                # Only worth reporting when the rule would otherwise have matched
                if rule.match(description):
                    result.excluded.append((rule.name, veto.source))
                continue
            hit = rule.match(description)
            if hit:
                result.category = rule.name
                result.rule = rule
                result.match_type, result.matcher = hit
                return result
        return result

    # -------------------------------------------------------------------------
    # Lookups and grouping
    # -------------------------------------------------------------------------

    @property
    def category_names(self) -> List[str]:
        return [r.name for r in self.rules]

    def get_rule(self, name: str) -> Optional[CategoryRule]:
        return self._by_name.get(name)

    def category_config(self, name: str) -> Dict[str, Any]:
        """Color/icon/priority for a category, with defaults for unknown labels."""
        rule = self._by_name.get(name)
        if rule:
            return rule.config
        return {'color': DEFAULT_COLOR, 'icon': DEFAULT_ICON, 'priority': 0}

    def display_category(self, name: str) -> str:
        """Parent group name for a child category, otherwise the name itself."""
        return self._parent_of.get(name, name)

    def display_config(self, name: str) -> Dict[str, Any]:
        """Config for a display category; group names use the group's look."""
        group = self.groups.get(name)
        if group:
            return {'color': group.color, 'icon': group.icon, 'priority': GROUP_PRIORITY}
        return self.category_config(name)

    def is_child_category(self, name: str) -> bool:
        return name in self._parent_of

    def child_categories(self, group_name: str) -> List[str]:
        group = self.groups.get(group_name)
        return list(group.children) if group else []


def _as_list(value) -> List:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def parse_categories(content: str) -> CategoryEngine:
    """Parse schema content and return a configured engine."""
    engine = CategoryEngine()
    engine.parse(content)
    return engine


def load_categories_file(filepath=None) -> CategoryEngine:
    """Load a schema file (the built-in schema when filepath is None)."""
    engine = CategoryEngine()
    engine.load_file(filepath or BUILTIN_CATEGORIES)
    return engine


_default_engine: Optional[CategoryEngine] = None


def default_engine() -> CategoryEngine:
    """The built-in schema, loaded once per process."""
    global _default_engine
    if _default_engine is None:
        _default_engine = load_categories_file()
    return _default_engine
