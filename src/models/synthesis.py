"""Input/output contract of the content synthesizer."""

from pydantic import BaseModel, Field


class Perspective(BaseModel):
    viewpoint: str = Field(description="Name of the angle, e.g. 'practitioner' or 'historical'")
    summary: str = Field(description="What this angle says about the topic")
    sources: list[str] = Field(default_factory=list, description="URLs backing this angle")


class SynthesizedContent(BaseModel):
    """Structured prose produced from one node's aggregated results."""

    summary: str = Field(description="Three to five sentence overview of the topic")
    key_points: list[str] = Field(default_factory=list, description="Most important takeaways")
    perspectives: list[Perspective] = Field(default_factory=list)
    factual_highlights: list[str] = Field(
        default_factory=list, description="Concrete, checkable facts drawn from the sources"
    )


class SynthesisMetadata(BaseModel):
    source_count: int = Field(ge=0)
    confidence_score: float = Field(ge=0.0, le=1.0)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    model: str | None = None


class SynthesisResult(BaseModel):
    synthesized_content: SynthesizedContent
    metadata: SynthesisMetadata


__all__ = ["Perspective", "SynthesisMetadata", "SynthesisResult", "SynthesizedContent"]
