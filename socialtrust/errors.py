"""
SocialTrust — Error Taxonomy

    InvalidInputs        fatal to the call, never retried
    SchemeInvalid        fatal at scheme construction / activation
    ValidatorFailure     local to one metric, recorded and defaulted to 0
    CacheUnavailable     transient storage trouble, retried, then skipped
    ConstraintViolation  malformed key or row, surfaced immediately
"""
from typing import List, Optional


class TrustScoreError(Exception):
    code = "TRUST_SCORE_ERROR"


class InvalidInputs(TrustScoreError):
    code = "INVALID_INPUTS"

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__(f"Invalid metric inputs: {', '.join(self.problems)}")


class SchemeInvalid(TrustScoreError):
    code = "SCHEME_INVALID"

    def __init__(self, name: str, violations: List[str]):
        self.name = name
        self.violations = list(violations)
        super().__init__(f"Invalid weighting scheme {name!r}: {', '.join(self.violations)}")


class ValidatorFailure(TrustScoreError):
    code = "VALIDATOR_FAILURE"

    def __init__(self, metric: str, message: str, identity: Optional[str] = None):
        self.metric = metric
        self.identity = identity
        super().__init__(f"{metric} validation failed: {message}")


class CacheUnavailable(TrustScoreError):
    code = "CACHE_UNAVAILABLE"


class ConstraintViolation(TrustScoreError):
    code = "CONSTRAINT_VIOLATION"
