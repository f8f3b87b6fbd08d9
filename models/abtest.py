"""Dataclasses for A/B tests between rule variants."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.enums import ABTestStatus, VariantStatus
from models.rules import format_timestamp, new_id, parse_timestamp, utc_now


@dataclass
class ABTestVariant:
    name: str
    rule_id: str
    configuration: Dict[str, Any] = field(default_factory=dict)
    is_control: bool = False
    traffic_percentage: float = 50.0
    status: VariantStatus = VariantStatus.DRAFT
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_id("variant")
        if not isinstance(self.status, VariantStatus):
            self.status = VariantStatus(self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rule_id": self.rule_id,
            "configuration": dict(self.configuration),
            "is_control": self.is_control,
            "traffic_percentage": self.traffic_percentage,
            "status": self.status.value,
            "created_at": format_timestamp(self.created_at),
            "started_at": format_timestamp(self.started_at),
            "ended_at": format_timestamp(self.ended_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ABTestVariant":
        return cls(
            id=data.get("id", ""),
            name=data["name"],
            rule_id=data.get("rule_id", ""),
            configuration=dict(data.get("configuration") or {}),
            is_control=bool(data.get("is_control", False)),
            traffic_percentage=float(data.get("traffic_percentage", 0)),
            status=data.get("status", "draft"),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            started_at=parse_timestamp(data.get("started_at")),
            ended_at=parse_timestamp(data.get("ended_at")),
        )


@dataclass(frozen=True)
class ABTestResult:
    """Immutable per-variant snapshot; recalculation appends a new one."""
    test_id: str
    variant_id: str
    alerts_generated: int
    false_positive_rate: float
    true_positive_rate: float
    avg_execution_time: float
    statistical_significance: float
    confidence_lower: float
    confidence_upper: float
    user_satisfaction_score: Optional[float] = None
    sample_size: int = 0
    calculated_at: datetime = field(default_factory=utc_now)

    @property
    def confidence_interval(self):
        return {"lower": self.confidence_lower, "upper": self.confidence_upper}

    def to_dict(self) -> Dict[str, Any]:
        metrics = {
            "alerts_generated": self.alerts_generated,
            "false_positive_rate": round(self.false_positive_rate, 6),
            "true_positive_rate": round(self.true_positive_rate, 6),
            "avg_execution_time": round(self.avg_execution_time, 4),
        }
        if self.user_satisfaction_score is not None:
            metrics["user_satisfaction_score"] = self.user_satisfaction_score
        return {
            "test_id": self.test_id,
            "variant_id": self.variant_id,
            "metrics": metrics,
            "statistical_significance": self.statistical_significance,
            "confidence_interval": self.confidence_interval,
            "sample_size": self.sample_size,
            "calculated_at": format_timestamp(self.calculated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ABTestResult":
        metrics = data.get("metrics", {})
        interval = data.get("confidence_interval", {})
        return cls(
            test_id=data["test_id"],
            variant_id=data["variant_id"],
            alerts_generated=int(metrics.get("alerts_generated", 0)),
            false_positive_rate=float(metrics.get("false_positive_rate", 0.0)),
            true_positive_rate=float(metrics.get("true_positive_rate", 0.0)),
            avg_execution_time=float(metrics.get("avg_execution_time", 0.0)),
            user_satisfaction_score=metrics.get("user_satisfaction_score"),
            statistical_significance=float(data.get("statistical_significance", 1.0)),
            confidence_lower=float(interval.get("lower", 0.0)),
            confidence_upper=float(interval.get("upper", 0.0)),
            sample_size=int(data.get("sample_size", 0)),
            calculated_at=parse_timestamp(data.get("calculated_at")) or utc_now(),
        )


@dataclass
class ABTest:
    name: str
    base_rule_id: str
    variants: List[ABTestVariant] = field(default_factory=list)
    results: List[ABTestResult] = field(default_factory=list)
    status: ABTestStatus = ABTestStatus.DRAFT
    description: str = ""
    hypothesis: str = ""
    success_metric: str = "true_positive_rate"
    minimum_sample_size: int = 100
    current_sample_size: int = 0
    created_by: str = "system"
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = new_id("abtest")
        if not isinstance(self.status, ABTestStatus):
            self.status = ABTestStatus(self.status)

    @property
    def control(self) -> Optional[ABTestVariant]:
        controls = [v for v in self.variants if v.is_control]
        return controls[0] if len(controls) == 1 else None

    def get_variant(self, variant_id) -> Optional[ABTestVariant]:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None

    def active_variants(self) -> List[ABTestVariant]:
        return [v for v in self.variants if v.status == VariantStatus.RUNNING]

    def to_dict(self, include_results=True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "hypothesis": self.hypothesis,
            "base_rule_id": self.base_rule_id,
            "variants": [v.to_dict() for v in self.variants],
            "status": self.status.value,
            "success_metric": self.success_metric,
            "minimum_sample_size": self.minimum_sample_size,
            "current_sample_size": self.current_sample_size,
            "created_by": self.created_by,
            "created_at": format_timestamp(self.created_at),
            "started_at": format_timestamp(self.started_at),
            "ended_at": format_timestamp(self.ended_at),
        }
        if include_results:
            data["results"] = [r.to_dict() for r in self.results]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ABTest":
        return cls(
            id=data.get("id", ""),
            name=data["name"],
            description=data.get("description", ""),
            hypothesis=data.get("hypothesis", ""),
            base_rule_id=data["base_rule_id"],
            variants=[ABTestVariant.from_dict(v) for v in data.get("variants", [])],
            results=[ABTestResult.from_dict(r) for r in data.get("results", [])],
            status=data.get("status", "draft"),
            success_metric=data.get("success_metric", "true_positive_rate"),
            minimum_sample_size=int(data.get("minimum_sample_size", 100)),
            current_sample_size=int(data.get("current_sample_size", 0)),
            created_by=data.get("created_by", "system"),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            started_at=parse_timestamp(data.get("started_at")),
            ended_at=parse_timestamp(data.get("ended_at")),
        )


@dataclass
class VariantMetrics:
    """Running per-variant counters, kept apart from rule statistics."""
    variant_id: str
    evaluation_count: int = 0
    alerts_generated: int = 0
    true_positives: int = 0
    false_positives: int = 0
    total_execution_time: float = 0.0
    satisfaction_scores: List[float] = field(default_factory=list)

    @property
    def avg_execution_time(self):
        if self.evaluation_count == 0:
            return 0.0
        return self.total_execution_time / self.evaluation_count

    @property
    def true_positive_rate(self):
        return self.true_positives / max(self.alerts_generated, 1)

    @property
    def false_positive_rate(self):
        return self.false_positives / max(self.alerts_generated, 1)

    @property
    def user_satisfaction_score(self):
        if not self.satisfaction_scores:
            return None
        return sum(self.satisfaction_scores) / len(self.satisfaction_scores)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "evaluation_count": self.evaluation_count,
            "alerts_generated": self.alerts_generated,
            "true_positives": self.true_positives,
            "false_positives": self.false_positives,
            "avg_execution_time": round(self.avg_execution_time, 4),
            "true_positive_rate": round(self.true_positive_rate, 6),
            "false_positive_rate": round(self.false_positive_rate, 6),
        }
