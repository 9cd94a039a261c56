from app.schemas.generation import (
    ConceptParams,
    ExpectedShape,
    GenerationRequest,
    PromptSpec,
    QuestionSetParams,
    TaskKind,
)


def question_answer_prompt(role: str, experience: str, topics: str, count: int) -> str:
    """
    Generate the prompt for interview question/answer generation.

    Args:
        role: Target job role.
        experience: Candidate experience in years.
        topics: Comma separated focus topics.
        count: Number of questions to write.

    Returns:
        The formatted prompt string.
    """
    return (
        "You are an AI trained to generate technical interview questions and answers.\n\n"
        "Task:\n"
        f"- Role: {role}\n"
        f"- Candidate Experience: {experience} years\n"
        f"- Focus Topics: {topics}\n"
        f"- Write {count} interview questions.\n"
        "- For each question, generate a detailed but beginner-friendly answer.\n"
        "- If the answer needs a code example, add a small code block inside.\n"
        "- Keep formatting very clean.\n\n"
        "Return ONLY a pure JSON array with this structure:\n"
        "[{\"question\": \"Question here?\", \"answer\": \"Answer here.\"}]\n\n"
        "Important: Do NOT add any extra text. Only return valid JSON."
    )


def concept_explain_prompt(question: str) -> str:
    """
    Generate the prompt for explaining the concept behind an interview question.

    Args:
        question: The interview question to explain.

    Returns:
        The formatted prompt string.
    """
    return (
        "You are an AI assistant that explains technical interview concepts.\n\n"
        "Your task:\n"
        f"1. Explain this interview question: \"{question}\"\n"
        "2. Provide a clear, beginner-friendly explanation\n"
        "3. Include code examples if relevant\n"
        "4. Create a short descriptive title\n\n"
        "Return ONLY a JSON object with this structure:\n"
        "{\"title\": \"Short descriptive title here\", "
        "\"explanation\": \"Your detailed explanation here with markdown formatting if needed\"}\n\n"
        "Rules:\n"
        "- Do NOT include any text before or after the JSON\n"
        "- Do NOT add comments\n"
        "- Keep the title under 60 characters\n"
        "- Make sure all quotes are properly escaped"
    )


def build_prompt_spec(request: GenerationRequest) -> PromptSpec:
    """Derive the task-specific prompt and target shape from a request."""
    params = request.params
    if request.kind is TaskKind.QUESTION_SET:
        if not isinstance(params, QuestionSetParams):
            raise TypeError(f"Expected QuestionSetParams, got {type(params).__name__}")
        return PromptSpec(
            instruction=question_answer_prompt(params.role, params.experience, params.topics, params.count),
            shape=ExpectedShape.QUESTION_ARRAY,
        )
    if request.kind is TaskKind.CONCEPT_EXPLANATION:
        if not isinstance(params, ConceptParams):
            raise TypeError(f"Expected ConceptParams, got {type(params).__name__}")
        return PromptSpec(
            instruction=concept_explain_prompt(params.question),
            shape=ExpectedShape.EXPLANATION_OBJECT,
        )
    raise ValueError(f"Unsupported task kind: {request.kind}")
