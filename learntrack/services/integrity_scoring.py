"""
learntrack/services/integrity_scoring.py
Integrity Scoring Engine - telemetry snapshot -> integrity score, flags, severity

SCORING RULES:
==============
1. Each measured metric is normalized to a 0-1 risk contribution
   risk = min(value, cap) / cap
   inverse metrics (typing delay: faster is riskier):
   risk = (cap - min(value, cap)) / cap
2. A metric crossing its threshold adds its flag code
   (inverse metrics flag when below the threshold)
3. integrity_score = 100 - sum(risk * weight), clamped to [0, 100]
4. severity:
   high   -> score < low_bound OR >= 2 high-severity flags
   medium -> score < mid_bound OR any flag
   low    -> otherwise

CONSTRAINTS:
============
- Deterministic: same snapshot + config -> same result
- Absent metrics contribute nothing and raise no flag
- Negative or NaN telemetry is clamped to 0, never rejected
- +inf is clamped to MAX_METRIC_VALUE (maximal risk, still finite)
- The no-face ratio is bounded to [0, 1]
- Flags come out in the fixed METRIC_ORDER, never duplicated
"""
import json
import logging
import math
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from learntrack.exceptions import ValidationError

logger = logging.getLogger(__name__)

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"

# snapshot attribute -> wire name
WIRE_NAMES = {
    "off_screen_time": "offScreenTime",
    "no_face_frames": "noFaceFrames",
    "total_frames": "totalFrames",
    "gaze_deviation": "gazeDeviation",
    "avg_key_delay": "avgKeyDelay",
    "paste_events": "pasteEvents",
    "backspace_rate": "backspaceRate",
    "tab_switches": "tabSwitches",
    "copy_events": "copyEvents",
}

# Counters add up across batches; rates are averaged over the batches reporting them
SUMMED_METRICS = ("off_screen_time", "no_face_frames", "total_frames", "paste_events", "tab_switches", "copy_events")
AVERAGED_METRICS = ("gaze_deviation", "avg_key_delay", "backspace_rate")

# Ceiling for any single reading; far above every cap, so it scores as full risk
MAX_METRIC_VALUE = 1e9


def _clean(value: Any) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    if math.isnan(value) or value < 0:
        return 0.0
    return min(value, MAX_METRIC_VALUE)


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Behavioral telemetry for one assessment session. None = not measured."""
    off_screen_time: Optional[float] = None
    no_face_frames: Optional[float] = None
    total_frames: Optional[float] = None
    gaze_deviation: Optional[float] = None
    avg_key_delay: Optional[float] = None
    paste_events: Optional[float] = None
    backspace_rate: Optional[float] = None
    tab_switches: Optional[float] = None
    copy_events: Optional[float] = None

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, _clean(getattr(self, f.name)))

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "TelemetrySnapshot":
        """Build from camelCase wire keys; unknown keys are ignored."""
        payload = payload or {}
        return cls(**{attr: payload.get(wire) for attr, wire in WIRE_NAMES.items()})

    def to_payload(self) -> Dict[str, float]:
        """camelCase dict of the measured metrics only."""
        return {
            wire: getattr(self, attr)
            for attr, wire in WIRE_NAMES.items()
            if getattr(self, attr) is not None
        }


def _no_face_ratio(s: TelemetrySnapshot) -> Optional[float]:
    if s.no_face_frames is None or not s.total_frames:
        return None
    return min(1.0, s.no_face_frames / s.total_frames)


def _key_delay(s: TelemetrySnapshot) -> Optional[float]:
    # 0 ms means no keystrokes were captured
    return s.avg_key_delay or None


MEASURES: Dict[str, Callable[[TelemetrySnapshot], Optional[float]]] = {
    "off_screen": lambda s: s.off_screen_time,
    "no_face": _no_face_ratio,
    "gaze": lambda s: s.gaze_deviation,
    "key_delay": _key_delay,
    "paste": lambda s: s.paste_events,
    "backspace": lambda s: s.backspace_rate,
    "tab_switch": lambda s: s.tab_switches,
    "copy": lambda s: s.copy_events,
}

METRIC_ORDER: Tuple[str, ...] = tuple(MEASURES.keys())


@dataclass(frozen=True)
class MetricRule:
    weight: float
    threshold: float
    cap: float
    flag: str
    high_severity: bool = False
    inverse: bool = False

    def risk(self, value: float) -> float:
        bounded = min(value, self.cap)
        if self.inverse:
            return (self.cap - bounded) / self.cap
        return bounded / self.cap

    def crossed(self, value: float) -> bool:
        if self.inverse:
            return value < self.threshold
        return value > self.threshold


DEFAULT_RULES: Dict[str, MetricRule] = {
    "off_screen": MetricRule(weight=15, threshold=30, cap=120, flag="FREQUENT_ABSENCE"),
    "no_face": MetricRule(weight=25, threshold=0.5, cap=1.0, flag="FACE_NOT_DETECTED", high_severity=True),
    "gaze": MetricRule(weight=10, threshold=30, cap=100, flag="UNUSUAL_GAZE_PATTERN"),
    "key_delay": MetricRule(weight=10, threshold=50, cap=100, flag="ABNORMAL_TYPING_SPEED", inverse=True),
    "paste": MetricRule(weight=20, threshold=0, cap=5, flag="PASTE_DETECTED", high_severity=True),
    "backspace": MetricRule(weight=5, threshold=30, cap=60, flag="UNUSUAL_EDITING_PATTERN"),
    "tab_switch": MetricRule(weight=20, threshold=10, cap=20, flag="EXCESSIVE_TAB_SWITCHING", high_severity=True),
    "copy": MetricRule(weight=15, threshold=0, cap=5, flag="COPY_DETECTED"),
}


@dataclass(frozen=True)
class ProctoringConfig:
    rules: Dict[str, MetricRule] = field(default_factory=lambda: dict(DEFAULT_RULES))
    low_bound: float = 40.0
    mid_bound: float = 70.0

    def __post_init__(self):
        validate_config(self)

    @classmethod
    def from_overrides(
        cls,
        overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
        low_bound: float = 40.0,
        mid_bound: float = 70.0
    ) -> "ProctoringConfig":
        """
        Merge {metric: {weight, threshold, cap, ...}} overrides onto the defaults.

        Raises:
            ValidationError: unknown metric or option
        """
        rules = dict(DEFAULT_RULES)
        for metric, options in (overrides or {}).items():
            if metric not in rules:
                raise ValidationError(
                    f"Unknown proctoring metric: {metric}",
                    field="rules",
                    constraint=f"one of {', '.join(METRIC_ORDER)}"
                )
            base = asdict(rules[metric])
            unknown = set(options) - set(base)
            if unknown:
                raise ValidationError(
                    f"Unknown options for {metric}: {', '.join(sorted(unknown))}",
                    field=f"rules.{metric}",
                    constraint="known rule option"
                )
            base.update(options)
            rules[metric] = MetricRule(**base)
        return cls(rules=rules, low_bound=low_bound, mid_bound=mid_bound)

    @classmethod
    def from_file(cls, path: str, low_bound: float = 40.0, mid_bound: float = 70.0) -> "ProctoringConfig":
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        return cls.from_overrides(
            data.get("rules", {}),
            low_bound=data.get("low_bound", low_bound),
            mid_bound=data.get("mid_bound", mid_bound),
        )


def _require_number(value: Any, field: str):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(
            f"{field} must be a finite number, got {value!r}",
            field=field,
            constraint="finite number"
        )


def validate_config(config: ProctoringConfig):
    missing = [m for m in METRIC_ORDER if m not in config.rules]
    extra = [m for m in config.rules if m not in MEASURES]
    if missing or extra:
        raise ValidationError(
            "Proctoring rules must cover exactly the known metrics",
            field="rules",
            constraint="known metrics",
            details={"missing": missing, "unknown": extra}
        )
    for metric, rule in config.rules.items():
        for option in ("weight", "threshold", "cap"):
            _require_number(getattr(rule, option), f"rules.{metric}.{option}")
        if rule.weight < 0 or rule.threshold < 0:
            raise ValidationError(
                f"{metric}: weight and threshold must be >= 0",
                field=f"rules.{metric}",
                constraint=">= 0"
            )
        if rule.cap <= 0:
            raise ValidationError(f"{metric}: cap must be > 0", field=f"rules.{metric}.cap", constraint="> 0")
    _require_number(config.low_bound, "low_bound")
    _require_number(config.mid_bound, "mid_bound")
    if not 0 <= config.low_bound <= config.mid_bound <= 100:
        raise ValidationError(
            "Severity bounds must satisfy 0 <= low_bound <= mid_bound <= 100",
            field="severity_bounds",
            constraint="0 <= low <= mid <= 100",
            details={"low_bound": config.low_bound, "mid_bound": config.mid_bound}
        )


DEFAULT_CONFIG = ProctoringConfig()


@dataclass(frozen=True)
class ProctoringResult:
    assessment_id: Optional[str]
    integrity_score: float
    flags: Tuple[str, ...]
    metrics: Dict[str, float]
    severity: str


def classify(integrity_score: float, flags: Iterable[str], high_flags: int, config: ProctoringConfig) -> str:
    if integrity_score < config.low_bound or high_flags >= 2:
        return SEVERITY_HIGH
    if integrity_score < config.mid_bound or list(flags):
        return SEVERITY_MEDIUM
    return SEVERITY_LOW


def score(
    snapshot: Optional[TelemetrySnapshot] = None,
    assessment_id: Optional[str] = None,
    config: Optional[ProctoringConfig] = None
) -> ProctoringResult:
    """
    Score one assessment session.

    Args:
        snapshot: Accumulated telemetry (None = nothing measured)
        assessment_id: Carried through to the result
        config: Rule table and severity bounds (defaults if None)

    Returns:
        ProctoringResult
    """
    snapshot = snapshot or TelemetrySnapshot()
    config = config or DEFAULT_CONFIG

    penalty = 0.0
    flags: List[str] = []
    high_flags = 0

    for metric in METRIC_ORDER:
        value = MEASURES[metric](snapshot)
        if value is None:
            continue
        rule = config.rules[metric]
        penalty += rule.risk(value) * rule.weight
        if rule.crossed(value) and rule.flag not in flags:
            flags.append(rule.flag)
            if rule.high_severity:
                high_flags += 1

    integrity_score = round(max(0.0, min(100.0, 100.0 - penalty)), 2)
    severity = classify(integrity_score, flags, high_flags, config)

    if flags:
        logger.info(
            f"[INTEGRITY SCORED] assessment={assessment_id} score={integrity_score} "
            f"severity={severity} flags={flags}"
        )

    return ProctoringResult(
        assessment_id=assessment_id,
        integrity_score=integrity_score,
        flags=tuple(flags),
        metrics=snapshot.to_payload(),
        severity=severity,
    )


def aggregate_snapshots(snapshots: Iterable[TelemetrySnapshot]) -> TelemetrySnapshot:
    """
    Fold the telemetry batches of one session into a single snapshot.

    Counters are summed, rates are averaged over the batches that report
    them. A metric no batch reports stays absent.
    """
    snapshots = list(snapshots)
    values: Dict[str, Optional[float]] = {}
    for attr in SUMMED_METRICS:
        reported = [getattr(s, attr) for s in snapshots if getattr(s, attr) is not None]
        values[attr] = sum(reported) if reported else None
    for attr in AVERAGED_METRICS:
        reported = [getattr(s, attr) for s in snapshots if getattr(s, attr) is not None]
        values[attr] = sum(reported) / len(reported) if reported else None
    return TelemetrySnapshot(**values)
