"""
Error taxonomy for the survey data pipeline.

Every error here is fatal for a run: each one points at a missing input file
or a defect in the harmonization rule table, never at a transient condition,
so nothing is retried.
"""

from typing import Iterable, Optional


class SurveyDataError(Exception):
    """Base class for pipeline errors."""


class MissingFileError(SurveyDataError, FileNotFoundError):
    """A requested survey year has no source file on disk."""

    def __init__(self, year: int, path: str):
        self.year = year
        self.path = str(path)
        super().__init__(
            f"Source file for survey year {year} not found: {self.path}\n"
            f"Download the file for {year} into the raw data directory or "
            f"narrow the requested year range."
        )


class RuleCoverageError(SurveyDataError):
    """Harmonization rules leave a gap or overlap for a target variable."""

    def __init__(self, target: str, year: Optional[int], message: str):
        self.target = target
        self.year = year
        super().__init__(f"Rule coverage error for '{target}'"
                         f"{f' in {year}' if year is not None else ''}: {message}")


class UnresolvedSourceVariableError(SurveyDataError):
    """A rule or design field names a source variable absent for a year."""

    def __init__(self, year: int, variables: Iterable[str], target: Optional[str] = None):
        self.year = year
        self.variables = tuple(variables)
        self.target = target
        names = " / ".join(self.variables)
        where = f" (needed by '{target}')" if target else ""
        super().__init__(
            f"Source variable {names} not present in survey year {year}{where}. "
            f"Check the rule table for this year range."
        )


class UnexpectedCodeError(SurveyDataError):
    """A source value is neither a documented code nor a sentinel (strict mode)."""

    def __init__(self, target: str, year: int, variable: str, values: Iterable):
        self.target = target
        self.year = year
        self.variable = variable
        self.values = sorted(values)
        preview = ", ".join(str(v) for v in self.values[:10])
        super().__init__(
            f"Undocumented code(s) {preview} for '{variable}' in {year} "
            f"while harmonizing '{target}'"
        )
