# Intel Module - Risk Scorer
#
# Pure scoring of one (threat, tenant) impact on a 0-100 scale:
#
#   base      = cvss / 10 * 100
#   exploited = x2.0 when the disclosure is actively exploited
#   endpoints = x min(1 + (n - 1) * 0.1, 2.0)
#   exposure  = x1.3 when a matched device is internet-exposed
#   critical  = x1.2 when a matched device is business-critical
#
# The product is rounded and clamped into [0, 100].

import math

from .models import RiskFactors

MAX_RISK_SCORE = 100
MIN_RISK_SCORE = 0

EXPLOITED_MULTIPLIER = 2.0
ENDPOINT_STEP = 0.1
MAX_ENDPOINT_FACTOR = 2.0
EXPOSURE_FACTOR = 1.3
CRITICALITY_FACTOR = 1.2


def exploited_multiplier(exploited: bool) -> float:
    return EXPLOITED_MULTIPLIER if exploited else 1.0


def endpoint_factor(endpoint_count: int) -> float:
    """Blast-radius factor; one endpoint is neutral, capped at 2x."""
    return min(1 + (endpoint_count - 1) * ENDPOINT_STEP, MAX_ENDPOINT_FACTOR)


def calculate_risk_score(factors: RiskFactors) -> int:
    """Compute the clamped integer risk score for a set of risk factors."""
    score = (factors.cvss_score / 10) * 100
    score *= factors.exploited_multiplier
    score *= endpoint_factor(factors.endpoint_count)
    if factors.internet_exposure:
        score *= EXPOSURE_FACTOR
    if factors.critical_system:
        score *= CRITICALITY_FACTOR
    # half-up rounding, not banker's rounding
    return max(MIN_RISK_SCORE, min(MAX_RISK_SCORE, int(math.floor(score + 0.5))))


def build_risk_factors(
    cvss_score: float,
    exploited: bool,
    endpoint_count: int,
    internet_exposure: bool = False,
    critical_system: bool = False,
) -> RiskFactors:
    return RiskFactors(
        cvss_score=cvss_score,
        exploited_multiplier=exploited_multiplier(exploited),
        endpoint_count=endpoint_count,
        internet_exposure=internet_exposure,
        critical_system=critical_system,
    )
