"""
Criteria validator - raw input to SearchCriteria, reporting every violation.
"""
import logging
from typing import Any, Mapping

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from ..errors import CriteriaValidationError, Violation
from ..models.criteria import SearchCriteria, cross_field_violations


logger = logging.getLogger(__name__)


class CriteriaValidator:
    """
    Validates raw criteria in one pass. Side-effect free: no quota, rate
    limit or network is touched.
    """

    def validate(self, raw: Mapping[str, Any]) -> SearchCriteria:
        """
        Args:
            raw: Criteria as received (camelCase or snake_case keys)

        Returns:
            Immutable SearchCriteria

        Raises:
            CriteriaValidationError: With all field and cross-field violations
        """
        if not isinstance(raw, Mapping):
            raise CriteriaValidationError([Violation(field="criteria", message="must be an object")])

        try:
            return SearchCriteria.model_validate(dict(raw))
        except ValidationError as e:
            violations = self._collect(raw, e)
            logger.info(f"Rejected criteria: {[v.field for v in violations]}")
            raise CriteriaValidationError(violations) from e

    def _collect(self, raw: Mapping[str, Any], error: ValidationError) -> list[Violation]:
        violations: list[Violation] = []
        for item in error.errors():
            # Cross-field failures come from the model validator; they are
            # re-derived below with proper field names
            if not item["loc"]:
                continue
            field = to_snake(str(item["loc"][0]))
            violations.append(Violation(field=field, message=item["msg"]))

        # Cross-field checks run on the raw values too, so they are reported
        # even when some other field already failed
        snake_raw = {to_snake(str(key)): value for key, value in raw.items()}
        violations.extend(cross_field_violations(snake_raw))

        unique: list[Violation] = []
        for violation in violations:
            if violation not in unique:
                unique.append(violation)
        return unique
