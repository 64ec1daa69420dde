from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .status import AnalysisResult

# Volumes are fixed display values until the backend reports them.
END_DIASTOLIC_VOLUME_ML = 134.44
END_SYSTOLIC_VOLUME_ML = 73.28


def format_percent(value: float) -> str:
    return f"{value:.1f}%"


def format_volume(value_ml: float) -> str:
    return f"{value_ml:.2f} mL"


@dataclass(frozen=True)
class CardiacMetrics:
    ejection_fraction: float
    end_diastolic_volume_ml: float = END_DIASTOLIC_VOLUME_ML
    end_systolic_volume_ml: float = END_SYSTOLIC_VOLUME_ML

    @property
    def stroke_volume_ml(self) -> float:
        return self.end_diastolic_volume_ml - self.end_systolic_volume_ml

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ejection_fraction": format_percent(self.ejection_fraction),
            "end_diastolic_volume": format_volume(self.end_diastolic_volume_ml),
            "end_systolic_volume": format_volume(self.end_systolic_volume_ml),
            "stroke_volume": format_volume(self.stroke_volume_ml),
        }


@dataclass(frozen=True)
class DiagnosisSection:
    ejection_fraction: float
    problem: str
    cause: str
    cure: str

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "DiagnosisSection":
        return cls(
            ejection_fraction=result.ejection_fraction,
            problem=result.problem,
            cause=result.cause,
            cure=result.cure,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ejection_fraction": format_percent(self.ejection_fraction),
            "problem": self.problem,
            "cause": self.cause,
            "cure": self.cure,
        }
