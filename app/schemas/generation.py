from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, StrictStr


# --- Task Vocabulary ---

class TaskKind(str, Enum):
    """Kinds of content the generation service can produce."""
    QUESTION_SET = "question-set"
    CONCEPT_EXPLANATION = "concept-explanation"


class ExpectedShape(str, Enum):
    """Structural shape a normalized model response must conform to."""
    QUESTION_ARRAY = "question-array"
    EXPLANATION_OBJECT = "explanation-object"


# --- Request Parameters (validated caller input) ---

class _TaskParams(BaseModel):
    """Base for request parameters: immutable, whitespace-trimmed, numbers accepted as text."""
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
        populate_by_name=True,
        extra='ignore',
    )


class QuestionSetParams(_TaskParams):
    """Parameters for generating a set of interview questions with answers."""
    role: str = Field(..., min_length=1, description="Target job role (e.g., 'Frontend Developer').")
    experience: str = Field(..., min_length=1, description="Candidate experience in years.")
    topics: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("topics", "topicsToFocus"),
        description="Comma separated focus topics.",
    )
    count: int = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("count", "numberOfQuestions"),
        description="How many question/answer pairs to generate.",
    )


class ConceptParams(_TaskParams):
    """Parameters for explaining the concept behind a single interview question."""
    question: str = Field(..., min_length=1, description="The interview question to explain.")


TaskParams = Union[QuestionSetParams, ConceptParams]


@dataclass(frozen=True)
class GenerationRequest:
    """One validated generation call, owned by the service for its duration."""
    kind: TaskKind
    params: TaskParams
    identity: str


@dataclass(frozen=True)
class PromptSpec:
    """Instruction text plus the shape the response must be normalized into."""
    instruction: str
    shape: ExpectedShape


# --- Provider / Orchestration Results ---

@dataclass
class ProviderResult:
    """Raw text produced by one provider attempt."""
    text: str
    provider: str
    model: str
    success: bool = True

    @property
    def identifier(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass
class NormalizedResult:
    """Structured value conforming to the task's shape, tagged with its producer."""
    data: Any
    provider: str


@dataclass
class RetryAttempt:
    """Diagnostics for one failed attempt inside a retry loop."""
    attempt: int
    delay: float
    error: Optional[str] = None


@dataclass
class RateLimitPolicy:
    """Quota for one task kind."""
    limit: int
    window: float


@dataclass
class TaskPolicy:
    """Per task kind quota and generation budget."""
    rate_limit: RateLimitPolicy
    max_output_tokens: int


# --- Normalized Content Models (shape checks for model output) ---

def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


FilledStr = Annotated[StrictStr, AfterValidator(_not_blank)]


class QuestionAnswer(BaseModel):
    """A single interview question with its answer."""
    model_config = ConfigDict(extra="allow")

    question: FilledStr = Field(..., description="The interview question.")
    answer: FilledStr = Field(..., description="A beginner-friendly answer, may contain code blocks.")


class ConceptExplanation(BaseModel):
    """Explanation of the concept behind an interview question."""
    model_config = ConfigDict(extra="allow")

    title: FilledStr = Field(..., description="Short descriptive title.")
    explanation: FilledStr = Field(..., description="Detailed explanation, markdown allowed.")


# --- Caller-facing Result ---

class GenerationSuccess(BaseModel):
    """Successful generation, tagged with the provider/model that produced it."""
    success: Literal[True] = True
    data: Any
    provider: str


class GenerationFailure(BaseModel):
    """Classified failure. `error` is a stable kind string, `retry_after` is in seconds."""
    success: Literal[False] = False
    message: str
    error: str
    retry_after: Optional[int] = None


GenerationOutcome = Union[GenerationSuccess, GenerationFailure]
