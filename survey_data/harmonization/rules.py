"""
Harmonization Rule Table

Rules are plain frozen records keyed by (target variable, year range). A rule
names the source variable(s) that hold the target in its years, the sentinel
convention for those fields, and an ordered list of code mappings. The whole
table is validated up front so that gaps and overlaps in year coverage are
caught before any row is touched.

Rule tables are written in YAML:

    span: {first_year: 2011, last_year: 2024}
    variables:
      - target: income_cat
        width: 2
        periods:
          - years: [2011, 2020]
            sources: [income2]
            map:
              - {range: [1, 8], value: keep}
          - years: [2021, 2024]
            sources: [income3, income2]
            map:
              - {range: [1, 8], value: keep}
              - {range: [9, 11], value: 8}
    indicators:
      - {target: fair_or_poor, source: genhealth, range: [4, 5]}

A map value is a code, `keep` (identity) or `missing` (documented code with
no usable answer). Variable-level keys (width, sentinels, missing, map,
derive, dtype) are inherited by every period unless the period overrides
them.
"""

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import pandas as pd
import structlog
import yaml

from survey_data.exceptions import RuleCoverageError
from survey_data.harmonization.sentinels import SENTINEL_CODES, sentinels_for_width

log = structlog.get_logger()

KEEP = "keep"
MISSING = "missing"
DTYPES = ("int", "float")


def per_hundred(values: pd.Series) -> pd.Series:
    """Implied two decimals, e.g. BMI stored as 2534 means 25.34."""
    return values / 100


# Named derivations a rule may apply to its mapped values.
DERIVATIONS = {
    "per_hundred": per_hundred,
}


@dataclass(frozen=True)
class YearRange:
    """Inclusive span of survey years."""

    first: int
    last: int

    def contains(self, year: int) -> bool:
        return self.first <= year <= self.last

    def __str__(self) -> str:
        return f"{self.first}-{self.last}"


@dataclass(frozen=True)
class CodeMapping:
    """Maps raw codes in [low, high] to a harmonized value.

    A value of None keeps the raw code; NaN marks a documented code that
    carries no usable answer (e.g. "pre-diabetes" for a yes/no item).
    """

    low: float
    high: float
    value: Optional[float] = None

    @property
    def keeps(self) -> bool:
        return self.value is None

    def matches(self, values: pd.Series) -> pd.Series:
        return values.between(self.low, self.high) & values.notna()


@dataclass(frozen=True)
class HarmonizationRule:
    """How one target variable is produced for one year range."""

    target: str
    years: YearRange
    sources: Tuple[str, ...]
    width: Optional[int] = None
    sentinel_codes: Optional[FrozenSet[float]] = None
    missing_codes: FrozenSet[float] = frozenset()
    mapping: Tuple[CodeMapping, ...] = ()
    derive: Optional[str] = None
    dtype: str = "int"

    @property
    def non_response_codes(self) -> FrozenSet[float]:
        """Codes recoded to missing before any mapping is applied."""
        if self.sentinel_codes is not None:
            base = self.sentinel_codes
        else:
            base = sentinels_for_width(self.width)
        return frozenset(base) | self.missing_codes


@dataclass(frozen=True)
class IndicatorRule:
    """0/1 indicator of an already harmonized variable falling in `mapping`."""

    target: str
    source: str
    mapping: Tuple[CodeMapping, ...]

    def apply(self, values: pd.Series) -> pd.Series:
        values = values.astype("float64")
        hit = pd.Series(False, index=values.index)
        for entry in self.mapping:
            hit |= entry.matches(values)
        result = hit.astype("float64").mask(values.isna())
        return result.astype("Int64")


@dataclass(frozen=True)
class RuleSet:
    """An ordered, validated collection of harmonization rules."""

    first_year: int
    last_year: int
    rules: Tuple[HarmonizationRule, ...]
    indicators: Tuple[IndicatorRule, ...] = ()
    name: str = "rules"

    @property
    def span(self) -> YearRange:
        return YearRange(self.first_year, self.last_year)

    @property
    def targets(self) -> List[str]:
        """Harmonized targets in table order."""
        seen = []
        for rule in self.rules:
            if rule.target not in seen:
                seen.append(rule.target)
        return seen

    def rules_for(self, target: str) -> List[HarmonizationRule]:
        return sorted(
            (r for r in self.rules if r.target == target),
            key=lambda r: (r.years.first, r.years.last),
        )

    def rule_for(self, target: str, year: int) -> HarmonizationRule:
        """The single rule covering `year` for `target`."""
        matches = [r for r in self.rules_for(target) if r.years.contains(year)]
        if len(matches) != 1:
            raise RuleCoverageError(
                target, year, f"{len(matches)} rules match, expected exactly one"
            )
        return matches[0]

    def validate(self) -> None:
        """Check that every target's year ranges partition the supported span.

        Raises:
            RuleCoverageError: A target has a gap, an overlap, or a range
                reaching outside the span.
            ValueError: Malformed rule (unknown derivation, bad dtype,
                indicator of an unknown variable, duplicate target name).
        """
        if self.first_year > self.last_year:
            raise ValueError(
                f"Invalid span {self.first_year}-{self.last_year}: first year after last year"
            )

        errors = []
        for rule in self.rules:
            if rule.years.first > rule.years.last:
                errors.append(f"{rule.target}: empty year range {rule.years}")
            if not rule.sources:
                errors.append(f"{rule.target} {rule.years}: no source variables")
            if rule.derive is not None and rule.derive not in DERIVATIONS:
                errors.append(f"{rule.target} {rule.years}: unknown derivation '{rule.derive}'")
            if rule.width is not None and rule.width not in SENTINEL_CODES:
                errors.append(f"{rule.target} {rule.years}: no sentinel convention for width {rule.width}")
            if rule.dtype not in DTYPES:
                errors.append(f"{rule.target} {rule.years}: dtype must be one of {DTYPES}")

        targets = self.targets
        for indicator in self.indicators:
            if indicator.source not in targets:
                errors.append(
                    f"indicator {indicator.target}: source '{indicator.source}' is not a harmonized variable"
                )
            if indicator.target in targets:
                errors.append(f"indicator {indicator.target}: name already used by a harmonized variable")

        indicator_names = [i.target for i in self.indicators]
        duplicates = {n for n in indicator_names if indicator_names.count(n) > 1}
        for name in sorted(duplicates):
            errors.append(f"indicator {name}: defined more than once")

        if errors:
            log.error("Rule table is malformed", rule_set=self.name, errors=errors)
            raise ValueError(
                "Rule table validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        for target in targets:
            self._check_coverage(target)

        log.info(
            "Rule table validated",
            rule_set=self.name,
            span=str(self.span),
            targets=len(targets),
            rules=len(self.rules),
            indicators=len(self.indicators),
        )

    def _check_coverage(self, target: str) -> None:
        expected = self.first_year
        for rule in self.rules_for(target):
            if rule.years.first < expected:
                if rule.years.first < self.first_year:
                    raise RuleCoverageError(
                        target, rule.years.first,
                        f"range {rule.years} starts before supported span {self.span}"
                    )
                raise RuleCoverageError(
                    target, rule.years.first,
                    f"range {rule.years} overlaps an earlier range"
                )
            if rule.years.first > expected:
                raise RuleCoverageError(
                    target, expected,
                    f"no rule covers {expected}-{rule.years.first - 1}"
                )
            expected = rule.years.last + 1

        if expected <= self.last_year:
            raise RuleCoverageError(
                target, expected, f"no rule covers {expected}-{self.last_year}"
            )
        if expected > self.last_year + 1:
            raise RuleCoverageError(
                target, self.last_year + 1,
                f"rules extend past supported span {self.span}"
            )

    def signature(self) -> str:
        """SHA256 of the rule table contents, stable across runs."""
        payload = {
            "span": [self.first_year, self.last_year],
            "rules": [_rule_to_dict(r) for r in self.rules],
            "indicators": [
                {"target": i.target, "source": i.source,
                 "mapping": [[m.low, m.high, m.value] for m in i.mapping]}
                for i in self.indicators
            ],
        }
        json_str = json.dumps(payload, sort_keys=True)
        return hashlib.sha256(json_str.encode("utf-8")).hexdigest()


def _rule_to_dict(rule: HarmonizationRule) -> Dict[str, Any]:
    return {
        "target": rule.target,
        "years": [rule.years.first, rule.years.last],
        "sources": list(rule.sources),
        "non_response": sorted(rule.non_response_codes),
        "mapping": [[m.low, m.high, m.value] for m in rule.mapping],
        "derive": rule.derive,
        "dtype": rule.dtype,
    }


def _parse_mapping(entries: Optional[List[Mapping[str, Any]]], where: str) -> Tuple[CodeMapping, ...]:
    """Parse `map` entries: {codes: [...], value: v} or {range: [lo, hi], value: v}."""
    mapping = []
    for entry in entries or []:
        value = entry.get("value", KEEP)
        if value == KEEP:
            value = None
        elif value == MISSING:
            value = float("nan")
        else:
            value = float(value)

        if "range" in entry:
            low, high = entry["range"]
            mapping.append(CodeMapping(float(low), float(high), value))
        elif "codes" in entry:
            for code in entry["codes"]:
                mapping.append(CodeMapping(float(code), float(code), value))
        else:
            raise ValueError(f"{where}: map entry needs 'codes' or 'range': {entry}")
    return tuple(mapping)


def _parse_codes(codes: Optional[List[Any]]) -> Optional[FrozenSet[float]]:
    if codes is None:
        return None
    return frozenset(float(c) for c in codes)


def parse_rule_set(config: Mapping[str, Any], name: str = "rules") -> RuleSet:
    """Build a RuleSet from a parsed YAML document.

    Args:
        config: Parsed rule table (see module docstring for the layout)
        name: Label used in log events

    Returns:
        RuleSet: Unvalidated rule set; call `validate()` before use

    Raises:
        ValueError: If required keys are missing or entries are malformed
    """
    if "span" not in config or "variables" not in config:
        raise ValueError(f"Rule table '{name}' must define 'span' and 'variables'")

    span = config["span"]
    rules = []
    for variable in config["variables"]:
        target = variable.get("target")
        if not target:
            raise ValueError(f"Rule table '{name}': variable without 'target': {variable}")

        periods = variable.get("periods")
        if not periods:
            # A variable with the same source in every year.
            periods = [{"years": [span["first_year"], span["last_year"]]}]

        for period in periods:
            settings = {**variable, **period}
            where = f"{target} {period.get('years')}"
            if "years" not in period or len(period["years"]) != 2:
                raise ValueError(f"{where}: 'years' must be [first, last]")

            sources = settings.get("sources") or [settings.get("source", target)]
            rules.append(HarmonizationRule(
                target=target,
                years=YearRange(int(period["years"][0]), int(period["years"][1])),
                sources=tuple(str(s).lower() for s in sources),
                width=settings.get("width"),
                sentinel_codes=_parse_codes(settings.get("sentinels")),
                missing_codes=_parse_codes(settings.get("missing")) or frozenset(),
                mapping=_parse_mapping(settings.get("map"), where),
                derive=settings.get("derive"),
                dtype=settings.get("dtype", "int"),
            ))

    indicators = []
    for entry in config.get("indicators") or []:
        where = f"indicator {entry.get('target')}"
        if "target" not in entry or "source" not in entry:
            raise ValueError(f"{where}: needs 'target' and 'source'")
        indicators.append(IndicatorRule(
            target=entry["target"],
            source=entry["source"],
            mapping=_parse_mapping([{**entry, "value": 1}], where),
        ))

    return RuleSet(
        first_year=int(span["first_year"]),
        last_year=int(span["last_year"]),
        rules=tuple(rules),
        indicators=tuple(indicators),
        name=name,
    )


def load_rule_set(rules_path: str, validate: bool = True) -> RuleSet:
    """Load a rule table from YAML and (by default) validate its coverage.

    Raises:
        FileNotFoundError: If the rule file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        RuleCoverageError: If a target's year ranges have gaps or overlaps
    """
    rules_file = Path(rules_path)

    log.debug("Loading rule table", path=str(rules_file))

    if not rules_file.exists():
        log.error("Rule table not found", path=str(rules_file))
        raise FileNotFoundError(f"Harmonization rule table not found: {rules_file}")

    try:
        with open(rules_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        log.error("Failed to parse rule table", path=str(rules_file), error=str(e))
        raise yaml.YAMLError(f"Failed to parse rule table: {rules_file}\nError: {e}") from e

    if not config:
        raise ValueError(f"Rule table is empty: {rules_file}")

    rule_set = parse_rule_set(config, name=rules_file.stem)
    if validate:
        rule_set.validate()
    return rule_set
