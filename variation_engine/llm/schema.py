from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator

from variation_engine.core.collaborators import CriticVerdict, IntentAnalysis
from variation_engine.core.metadata import (
    Defect,
    DefectSeverity,
    InspectionStatus,
    Variant,
    WorkingArtifact,
)


class _ResponseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class VariantPayload(_ResponseModel):
    name: str = ""
    css: str = ""
    js: str = ""


class ArtifactPayload(_ResponseModel):
    variants: list[VariantPayload] = Field(default_factory=list)
    shared_css: str = Field(default="", alias="sharedCss")
    shared_js: str = Field(default="", alias="sharedJs")
    confidence: float | None = None

    @model_validator(mode="after")
    def require_code(self) -> ArtifactPayload:
        has_variant_code = any(item.css.strip() or item.js.strip() for item in self.variants)
        if not has_variant_code and not self.shared_css.strip() and not self.shared_js.strip():
            raise ValueError("artifact contains no CSS or JavaScript")
        return self

    def to_artifact(self) -> WorkingArtifact:
        return WorkingArtifact(
            variants=tuple(
                Variant(name=item.name or f"Variation {index}", css=item.css, js=item.js)
                for index, item in enumerate(self.variants, start=1)
            ),
            shared_css=self.shared_css,
            shared_js=self.shared_js,
        )


class DefectPayload(_ResponseModel):
    severity: Literal["critical", "major"]
    type: str = Field(min_length=1)
    description: str = Field(min_length=1)
    suggested_fix: str = Field(default="", alias="suggestedFix")

    def to_defect(self) -> Defect:
        return Defect(
            severity=DefectSeverity(self.severity),
            type=self.type,
            description=self.description,
            suggested_fix=self.suggested_fix,
        )


class CriticPayload(_ResponseModel):
    status: Literal["PASS", "GOAL_NOT_MET", "CRITICAL_DEFECT", "MAJOR_DEFECT"]
    goal_accomplished: StrictBool = Field(alias="goalAccomplished")
    defects: list[DefectPayload] = Field(default_factory=list)
    reasoning: str = ""
    should_continue: StrictBool | None = Field(default=None, alias="shouldContinue")

    def to_verdict(self) -> CriticVerdict:
        should_continue = self.should_continue
        if should_continue is None:
            should_continue = self.status != "PASS"
        return CriticVerdict(
            status=InspectionStatus(self.status),
            goal_accomplished=self.goal_accomplished,
            defects=[item.to_defect() for item in self.defects],
            reasoning=self.reasoning,
            should_continue=should_continue,
        )


class IntentPayload(_ResponseModel):
    type: Literal["REFINEMENT", "NEW_FEATURE", "COURSE_REVERSAL", "AMBIGUOUS"]
    confidence: float = Field(ge=0, le=100)
    refinement_type: Literal["incremental", "full_rewrite"] = Field(
        default="incremental", alias="refinementType"
    )
    reasoning: str = ""

    def to_analysis(self) -> IntentAnalysis:
        return IntentAnalysis(
            intent_type=self.type,
            confidence=self.confidence,
            refinement_type=self.refinement_type,
            reasoning=self.reasoning,
        )
